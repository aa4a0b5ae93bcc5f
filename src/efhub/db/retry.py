"""Run a unit of work, retrying it in a fresh session when it loses a write race."""

from __future__ import annotations

import logging
from typing import Callable, Optional, TypeVar

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from efhub.config import settings
from efhub.errors import ConcurrencyError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Unique constraints whose violation means another writer got there first.
_RACE_CONSTRAINTS = (
    "uq_match_tournament_number",
    "uq_participant_tournament_player",
    "uq_leaderboard_player_scope",
    "matches.tournament_id, matches.match_number",
    "participants.tournament_id, participants.player_id",
    "leaderboard_entries.player_id, leaderboard_entries.scope_type",
)

_TIMEOUT_MARKERS = ("statement timeout", "canceling statement", "lock timeout", "database is locked")


def as_concurrency_error(exc: Exception) -> Optional[ConcurrencyError]:
    """Translate a store-level race or timeout into ConcurrencyError, else None."""
    if isinstance(exc, ConcurrencyError):
        return exc
    if isinstance(exc, StaleDataError):
        return ConcurrencyError("Record was modified by another request")
    if isinstance(exc, IntegrityError):
        message = str(exc.orig)
        if any(marker in message for marker in _RACE_CONSTRAINTS):
            return ConcurrencyError("Concurrent insert conflicted with another request")
        return None
    if isinstance(exc, OperationalError):
        message = str(exc.orig).lower()
        if any(marker in message for marker in _TIMEOUT_MARKERS):
            return ConcurrencyError("Database timed out waiting for a lock")
    return None


def run_with_retry(
    session_factory: Callable[[], Session],
    operation: Callable[[Session], T],
    attempts: Optional[int] = None,
) -> T:
    """
    Run ``operation(session)`` and commit, retrying races in a new session.

    Domain errors (validation, conflict, ...) propagate on the first try.
    After the last attempt a ConcurrencyError is raised.
    """
    attempts = attempts or settings.concurrency_retry_attempts
    last_error: Optional[ConcurrencyError] = None

    for attempt in range(1, attempts + 1):
        session = session_factory()
        try:
            result = operation(session)
            session.commit()
            return result
        except Exception as exc:
            session.rollback()
            concurrency_error = as_concurrency_error(exc)
            if concurrency_error is None:
                raise
            last_error = concurrency_error
            logger.warning(
                "Write race on attempt %d/%d: %s", attempt, attempts, concurrency_error.message
            )
        finally:
            session.close()

    assert last_error is not None
    raise last_error
