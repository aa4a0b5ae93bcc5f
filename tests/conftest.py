"""
Pytest configuration and fixtures.

This file is automatically loaded by pytest and provides
shared fixtures for all tests.
"""

import random
from itertools import count

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from efhub.db.models import Base
from efhub.players.auth import register_player
from efhub.services.actors import Actor
from efhub.services.matches import submit_score, verify_result
from efhub.services.tournaments import add_participant, create_tournament


@pytest.fixture
def test_engine():
    """
    Create a test database engine.

    Uses a fresh SQLite in-memory database per test. StaticPool keeps the
    single connection alive so every session sees the same database.
    """
    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return sessionmaker(bind=test_engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db_session(session_factory):
    """A database session for a test, closed afterwards."""
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture(autouse=True)
def fast_password_hashing(monkeypatch):
    """Cheap password hashing for tests."""
    monkeypatch.setattr("efhub.players.auth.PBKDF2_ITERATIONS", 1_000)


@pytest.fixture
def rng():
    return random.Random(42)


@pytest.fixture
def make_player(db_session):
    """Factory registering players with unique phones and handles."""
    numbers = count(1)

    def _make(efootball_id=None, *, role="player", password="secret123"):
        n = next(numbers)
        return register_player(
            db_session,
            f"07{n:08d}",
            efootball_id or f"player_{n:03d}",
            password,
            role=role,
        )

    return _make


@pytest.fixture
def admin(make_player):
    return make_player("admin_one", role="admin")


@pytest.fixture
def admin_actor(admin):
    return Actor.for_player(admin)


@pytest.fixture
def make_tournament(db_session, admin_actor):
    """Factory creating tournaments that are already open for registration."""

    def _make(tournament_format="knockout", capacity=4, **options):
        options.setdefault("name", f"{tournament_format.title()} Cup")
        options.setdefault("status", "upcoming")
        return create_tournament(
            db_session,
            admin_actor,
            tournament_format=tournament_format,
            capacity=capacity,
            **options,
        )

    return _make


@pytest.fixture
def fill_tournament(db_session, make_player, rng):
    """Register new players (default: up to capacity); returns them in join order."""

    def _fill(tournament, n_players=None):
        players = []
        for _ in range(n_players if n_players is not None else tournament.capacity):
            player = make_player()
            add_participant(db_session, tournament.id, player.id, rng=rng)
            players.append(player)
        return players

    return _fill


@pytest.fixture
def play_match(db_session, admin_actor, rng):
    """Report a result from both players, verifying it as admin when it disputes."""

    def _play(match, player1_goals, player2_goals):
        submit_score(db_session, match.id, Actor(match.player1_id, "player"), player1_goals, rng=rng)
        submit_score(db_session, match.id, Actor(match.player2_id, "player"), player2_goals, rng=rng)
        if match.status == "disputed":
            verify_result(db_session, match.id, admin_actor, rng=rng)
        return match

    return _play


class FakeGateway:
    """Records STK pushes and answers like the sandbox gateway."""

    def __init__(self, response_code="0"):
        self.response_code = response_code
        self.pushes = []

    def stk_push(self, phone, amount, reference, description):
        self.pushes.append(
            {"phone": phone, "amount": amount, "reference": reference, "description": description}
        )
        n = len(self.pushes)
        return {
            "MerchantRequestID": f"mr-{n}",
            "CheckoutRequestID": f"ws_CO_{n}",
            "ResponseCode": self.response_code,
            "ResponseDescription": "Success. Request accepted for processing"
            if self.response_code == "0"
            else "Rejected",
        }


@pytest.fixture
def gateway():
    return FakeGateway()
