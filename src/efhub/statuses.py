"""Shared status definitions and helpers.

This module is the single source of truth for the status vocabularies and
status groups reused across services, the web layer and the ORM defaults.
"""

from __future__ import annotations

from typing import Iterable

# =============================================================================
# Tournaments
# =============================================================================

TOURNAMENT_FORMATS: tuple[str, ...] = ("knockout", "group", "group+knockout", "league")

# Forward lifecycle; 'cancelled' sits outside the chain.
TOURNAMENT_LIFECYCLE: tuple[str, ...] = ("draft", "upcoming", "active", "completed")
ALL_TOURNAMENT_STATUSES: tuple[str, ...] = TOURNAMENT_LIFECYCLE + ("cancelled",)

# Formats whose later rounds are produced by knockout progression.
KNOCKOUT_FORMATS: frozenset[str] = frozenset({"knockout", "group+knockout"})

# =============================================================================
# Participants
# =============================================================================

PARTICIPANT_STATUSES: tuple[str, ...] = ("registered", "checked-in", "disqualified")
ACTIVE_PARTICIPANT_STATUSES: tuple[str, ...] = ("registered", "checked-in")

# =============================================================================
# Matches
# =============================================================================

ALL_MATCH_STATUSES: tuple[str, ...] = (
    "scheduled",
    "in_progress",
    "completed",
    "disputed",
    "cancelled",
)

MATCH_STATUS_GROUPS: dict[str, tuple[str, ...]] = {
    # Matches still waiting for scores.
    "pending": ("scheduled", "in_progress"),
    # Matches an admin has to look at.
    "needs_review": ("disputed",),
    # Scores may still be submitted.
    "open": ("scheduled", "in_progress", "disputed"),
    # No further result changes.
    "terminal": ("completed", "cancelled"),
    "all": ALL_MATCH_STATUSES,
}

MATCH_STAGES: tuple[str, ...] = ("knockout", "group", "league")

# =============================================================================
# Disputes, payments, leaderboards
# =============================================================================

DISPUTE_STATUSES: tuple[str, ...] = ("open", "under_review", "resolved", "rejected")
OPEN_DISPUTE_STATUSES: tuple[str, ...] = ("open", "under_review")

PAYMENT_TYPES: tuple[str, ...] = ("entry_fee", "prize_payout", "refund")
PAYMENT_STATUSES: tuple[str, ...] = ("pending", "completed", "failed", "cancelled")

LEADERBOARD_SCOPE_TYPES: tuple[str, ...] = ("global", "monthly", "weekly", "tournament")

PLAYER_ROLES: tuple[str, ...] = ("user", "player", "admin")

TIEBREAKERS: tuple[str, ...] = ("goalDifference", "goalsFor", "headToHead", "alphabetical")
DEFAULT_TIEBREAKERS: tuple[str, ...] = TIEBREAKERS


def get_status_group(group_name: str) -> tuple[str, ...]:
    """Return a named match status group, raising KeyError for unknown names."""
    return MATCH_STATUS_GROUPS[group_name]


def normalize_status_filter(
    raw_statuses: Iterable[str] | None,
    *,
    default_group: str = "all",
) -> list[str]:
    """Normalize requested match statuses against known values.

    - If no statuses are provided, returns the statuses from ``default_group``.
    - Unknown statuses are ignored.
    - Order is preserved and duplicates are removed.
    """
    if raw_statuses is None:
        return list(get_status_group(default_group))

    seen: set[str] = set()
    normalized: list[str] = []

    for raw in raw_statuses:
        status = raw.strip().lower()
        if not status or status in seen or status not in ALL_MATCH_STATUSES:
            continue
        seen.add(status)
        normalized.append(status)

    if normalized:
        return normalized

    return list(get_status_group(default_group))


def can_transition_tournament(current: str, target: str) -> bool:
    """Return True when ``current -> target`` is a legal tournament transition.

    The lifecycle only moves one step forward. ``cancelled`` is reachable from
    every state before ``completed``; both of those are terminal.
    """
    if current in ("completed", "cancelled"):
        return False
    if target == "cancelled":
        return True
    if current not in TOURNAMENT_LIFECYCLE or target not in TOURNAMENT_LIFECYCLE:
        return False
    return TOURNAMENT_LIFECYCLE.index(target) == TOURNAMENT_LIFECYCLE.index(current) + 1
