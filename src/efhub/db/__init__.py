"""
Database module for efhub.

Provides SQLAlchemy ORM models and session management.

Usage:
    from efhub.db import get_session, Tournament, Match

    with get_session() as session:
        tournament = session.get(Tournament, 1)
"""

from efhub.db.models import (
    Base,
    Player,
    Tournament,
    Participant,
    Match,
    MatchDispute,
    Payment,
    LeaderboardEntry,
    OperationLog,
    utc_now,
)
from efhub.db.session import get_session, get_engine, SessionLocal

__all__ = [
    # Base
    "Base",
    # Models
    "Player",
    "Tournament",
    "Participant",
    "Match",
    "MatchDispute",
    "Payment",
    "LeaderboardEntry",
    "OperationLog",
    "utc_now",
    # Session
    "get_session",
    "get_engine",
    "SessionLocal",
]
