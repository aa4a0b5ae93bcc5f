"""Unit tests for tournament lifecycle, registration and fixture persistence."""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

from efhub.db.models import Match, Tournament, utc_now
from efhub.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    PreconditionError,
    ValidationError,
)
from efhub.services.actors import Actor
from efhub.services.tournaments import (
    add_participant,
    create_tournament,
    generate_fixtures,
    join_tournament,
    leave_tournament,
    transition_status,
)


def _matches(db_session, tournament):
    return list(
        db_session.scalars(
            select(Match).where(Match.tournament_id == tournament.id).order_by(Match.match_number)
        )
    )


def test_create_tournament_defaults(db_session, admin_actor):
    tournament = create_tournament(
        db_session, admin_actor, name="  Friday Cup ", tournament_format="league", capacity=8
    )
    assert tournament.name == "Friday Cup"
    assert tournament.status == "draft"
    assert tournament.organizer_id == admin_actor.player_id
    assert (tournament.points_for_win, tournament.points_for_draw, tournament.points_for_loss) == (3, 1, 0)
    assert tournament.tiebreakers == ["goalDifference", "goalsFor", "headToHead", "alphabetical"]
    assert tournament.qualifiers_per_group is None
    assert tournament.version_id == 1


def test_create_tournament_requires_admin(db_session, make_player):
    player = make_player()
    with pytest.raises(ForbiddenError):
        create_tournament(
            db_session, Actor.for_player(player), name="Cup", tournament_format="knockout", capacity=4
        )


@pytest.mark.parametrize(
    "overrides",
    [
        {"name": ""},
        {"tournament_format": "swiss"},
        {"capacity": 1},
        {"capacity": 129},
        {"entry_fee": -10},
        {"tiebreakers": ["goalsFor", "coinToss"]},
        {"tiebreakers": ["goalsFor", "goalsFor"]},
        {"tournament_format": "group+knockout"},
        {"tournament_format": "group+knockout", "qualifiers_per_group": 5},
        {"matches_per_day": 4},
        {"matches_per_day": 4, "daily_start_time": "18:00", "tournament_start": datetime(2026, 5, 1),
         "allowed_weekdays": [9]},
        {"status": "active"},
    ],
)
def test_create_tournament_validation(db_session, admin_actor, overrides):
    values = {"name": "Cup", "tournament_format": "knockout", "capacity": 8}
    values.update(overrides)
    with pytest.raises(ValidationError):
        create_tournament(db_session, admin_actor, **values)


def test_capacity_reached_generates_semi_finals(db_session, make_tournament, fill_tournament):
    tournament = make_tournament("knockout", 4)
    players = fill_tournament(tournament, 3)
    assert _matches(db_session, tournament) == []

    fill_tournament(tournament, 1)

    matches = _matches(db_session, tournament)
    assert len(matches) == 2
    assert {m.round for m in matches} == {"Semi-Finals"}
    assert [m.match_number for m in matches] == [1, 2]
    assert all(m.status == "scheduled" for m in matches)
    assert {p.id for p in players} < {pid for m in matches for pid in (m.player1_id, m.player2_id)}
    # Fixtures do not start the tournament.
    assert tournament.status == "upcoming"
    assert tournament.participant_count == 4


def test_add_participant_assigns_seeds_in_join_order(db_session, make_tournament, fill_tournament):
    tournament = make_tournament("league", 6)
    players = fill_tournament(tournament, 3)
    assert [(p.player_id, p.seed) for p in tournament.participants] == [
        (player.id, seed) for seed, player in enumerate(players, start=1)
    ]
    assert tournament.available_slots == 3


def test_add_participant_conflicts(db_session, make_tournament, fill_tournament, make_player):
    tournament = make_tournament("league", 3)
    first, _ = fill_tournament(tournament, 2)

    with pytest.raises(ConflictError, match="already registered"):
        add_participant(db_session, tournament.id, first.id)

    fill_tournament(tournament, 1)
    with pytest.raises(ConflictError):
        add_participant(db_session, tournament.id, make_player().id)

    with pytest.raises(NotFoundError):
        add_participant(db_session, tournament.id, 9999)


def test_add_participant_rejects_draft_and_closed_registration(db_session, make_tournament, make_player):
    draft = make_tournament("knockout", 4, status="draft")
    with pytest.raises(ConflictError):
        add_participant(db_session, draft.id, make_player().id)

    closed = make_tournament(
        "knockout",
        4,
        name="Closed Cup",
        registration_start=datetime(2020, 1, 1),
        registration_end=datetime(2020, 1, 2),
    )
    with pytest.raises(ConflictError, match="ended"):
        add_participant(db_session, closed.id, make_player().id)

    later = make_tournament(
        "knockout", 4, name="Later Cup", registration_start=utc_now() + timedelta(days=3)
    )
    assert later.registration_status() == "not_started"


def test_join_requires_free_tournament(db_session, make_tournament, make_player):
    paid = make_tournament("knockout", 4, entry_fee=200)
    player = make_player()
    with pytest.raises(PreconditionError):
        join_tournament(db_session, paid.id, Actor.for_player(player))

    free = make_tournament("knockout", 4, name="Free Cup")
    participant = join_tournament(db_session, free.id, Actor.for_player(player))
    assert participant.player_id == player.id


def test_leave_reseeds_remaining_players(db_session, make_tournament, fill_tournament):
    tournament = make_tournament("league", 8)
    a, b, c = fill_tournament(tournament, 3)

    leave_tournament(db_session, tournament.id, Actor.for_player(a))

    assert [(p.player_id, p.seed) for p in tournament.participants] == [(b.id, 1), (c.id, 2)]
    assert tournament.participant_count == 2
    with pytest.raises(NotFoundError):
        leave_tournament(db_session, tournament.id, Actor.for_player(a))


def test_leave_blocked_after_fixtures(db_session, make_tournament, fill_tournament):
    tournament = make_tournament("knockout", 4)
    players = fill_tournament(tournament)
    with pytest.raises(ConflictError):
        leave_tournament(db_session, tournament.id, Actor.for_player(players[0]))


def test_manual_fixture_generation(db_session, make_tournament, fill_tournament, admin_actor, rng):
    tournament = make_tournament("league", 8)
    fill_tournament(tournament, 5)

    with pytest.raises(ForbiddenError):
        generate_fixtures(db_session, tournament.id, Actor(tournament.participants[0].player_id, "player"))

    matches = generate_fixtures(db_session, tournament.id, admin_actor, rng=rng)
    assert len(matches) == 10
    assert [m.match_number for m in matches] == list(range(1, 11))

    with pytest.raises(ConflictError):
        generate_fixtures(db_session, tournament.id, admin_actor, rng=rng)


def test_fixture_generation_needs_two_players(db_session, make_tournament, fill_tournament, admin_actor):
    tournament = make_tournament("knockout", 8)
    fill_tournament(tournament, 1)
    with pytest.raises(ValidationError):
        generate_fixtures(db_session, tournament.id, admin_actor)


def test_odd_knockout_persists_completed_bye(db_session, make_tournament, fill_tournament):
    tournament = make_tournament("knockout", 5)
    fill_tournament(tournament)

    matches = _matches(db_session, tournament)
    byes = [m for m in matches if m.is_bye]
    assert len(matches) == 3
    assert len(byes) == 1
    bye = byes[0]
    assert bye.match_number == 3
    assert bye.status == "completed"
    assert bye.winner_id == bye.player1_id
    assert bye.confirmed_by_id is None
    assert bye.stats_applied_at is not None


def test_scheduled_fixtures_get_times(db_session, make_tournament, fill_tournament):
    tournament = make_tournament(
        "league",
        4,
        tournament_start=datetime(2026, 3, 2),
        matches_per_day=2,
        daily_start_time="18:00",
    )
    fill_tournament(tournament)

    times = [m.scheduled_time for m in _matches(db_session, tournament)]
    assert len(times) == 6
    assert all(t is not None for t in times)
    assert min(times) == datetime(2026, 3, 2, 18, 0)
    assert max(times) == datetime(2026, 3, 4, 18, 15)


def test_group_knockout_qualifiers_checked_against_smallest_group(
    db_session, make_tournament, fill_tournament, admin_actor
):
    tournament = make_tournament("group+knockout", 8, qualifiers_per_group=3)
    fill_tournament(tournament, 5)  # groups of 3 and 2
    with pytest.raises(ValidationError):
        generate_fixtures(db_session, tournament.id, admin_actor)


def test_status_transitions(db_session, make_tournament, fill_tournament, admin_actor):
    tournament = make_tournament("knockout", 4, status="draft")

    with pytest.raises(ConflictError):
        transition_status(db_session, tournament.id, admin_actor, "active")
    transition_status(db_session, tournament.id, admin_actor, "upcoming")

    with pytest.raises(PreconditionError):
        transition_status(db_session, tournament.id, admin_actor, "active")

    fill_tournament(tournament)
    transition_status(db_session, tournament.id, admin_actor, "active")
    assert tournament.status == "active"

    with pytest.raises(ConflictError):
        transition_status(db_session, tournament.id, admin_actor, "upcoming")
    with pytest.raises(ValidationError):
        transition_status(db_session, tournament.id, admin_actor, "paused")

    transition_status(db_session, tournament.id, admin_actor, "cancelled")
    assert tournament.completed_at is not None
    assert {m.status for m in _matches(db_session, tournament)} == {"cancelled"}
    with pytest.raises(ConflictError):
        transition_status(db_session, tournament.id, admin_actor, "completed")


def test_registration_bumps_tournament_version(db_session, make_tournament, fill_tournament):
    tournament = make_tournament("league", 6)
    version = tournament.version_id
    fill_tournament(tournament, 2)
    assert db_session.get(Tournament, tournament.id).version_id == version + 2
