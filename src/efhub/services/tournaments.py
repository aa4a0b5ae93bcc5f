"""
Tournament lifecycle, participants and fixture persistence.

A tournament owns its participants: they are written together with the
tournament row, under its row lock, and the tournament's participant_count
column is bumped on every change so concurrent registrations collide on the
tournament's version counter instead of overshooting capacity.

Fixtures are generated exactly once per tournament, either by an admin or
automatically by the system when the last free slot is taken.
"""

from __future__ import annotations

import logging
import random
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from efhub.config import settings
from efhub.db.models import Match, Participant, Player, Tournament, utc_now
from efhub.errors import (
    ConflictError,
    NotFoundError,
    PreconditionError,
    ValidationError,
)
from efhub.fixtures.generator import MatchDraft, generate
from efhub.fixtures.scheduling import ScheduleConfig, parse_daily_start, schedule_matches
from efhub.services.actors import SYSTEM_ACTOR, Actor, require_admin, require_player
from efhub.statuses import (
    ALL_TOURNAMENT_STATUSES,
    MATCH_STATUS_GROUPS,
    OPEN_DISPUTE_STATUSES,
    TIEBREAKERS,
    TOURNAMENT_FORMATS,
    can_transition_tournament,
)

logger = logging.getLogger(__name__)

MIN_CAPACITY = 2
MAX_CAPACITY = 128


# =============================================================================
# Loading
# =============================================================================

def get_tournament(session: Session, tournament_id: int, *, for_update: bool = False) -> Tournament:
    """Load a tournament, optionally row-locked, raising NotFoundError."""
    if for_update:
        tournament = session.get(
            Tournament, tournament_id, with_for_update=True, populate_existing=True
        )
    else:
        tournament = session.get(Tournament, tournament_id)
    if tournament is None:
        raise NotFoundError(f"Tournament {tournament_id} not found")
    return tournament


def active_participant_ids(tournament: Tournament) -> list[int]:
    """Player ids of non-disqualified participants in seed order."""
    participants = tournament.active_participants
    participants.sort(key=lambda p: (p.seed or 0, p.id or 0))
    return [p.player_id for p in participants]


def count_matches(session: Session, tournament_id: int) -> int:
    return session.scalar(
        select(func.count(Match.id)).where(Match.tournament_id == tournament_id)
    ) or 0


# =============================================================================
# Creation and lifecycle
# =============================================================================

def _as_money(value, field_name: str) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field_name} must be a number")
    if amount < 0:
        raise ValidationError(f"{field_name} cannot be negative")
    return amount


def _validate_tiebreakers(tiebreakers: Sequence[str]) -> list[str]:
    ordered = list(tiebreakers)
    unknown = [name for name in ordered if name not in TIEBREAKERS]
    if unknown:
        raise ValidationError(f"Unknown tie-breakers: {', '.join(unknown)}")
    if len(set(ordered)) != len(ordered):
        raise ValidationError("Tie-breakers must not repeat")
    return ordered


def create_tournament(
    session: Session,
    actor: Actor,
    *,
    name: str,
    tournament_format: str,
    capacity: int,
    description: str = "",
    entry_fee=0,
    prize_pool=0,
    prize_distribution: Optional[list] = None,
    rules: Optional[str] = None,
    registration_start: Optional[datetime] = None,
    registration_end: Optional[datetime] = None,
    tournament_start: Optional[datetime] = None,
    tournament_end: Optional[datetime] = None,
    points_for_win: Optional[int] = None,
    points_for_draw: Optional[int] = None,
    points_for_loss: Optional[int] = None,
    tiebreakers: Optional[Sequence[str]] = None,
    qualifiers_per_group: Optional[int] = None,
    match_duration_minutes: int = 10,
    break_minutes: int = 5,
    matches_per_day: Optional[int] = None,
    allowed_weekdays: Optional[Sequence[int]] = None,
    daily_start_time: Optional[str] = None,
    is_public: bool = True,
    requires_approval: bool = False,
    status: str = "draft",
) -> Tournament:
    """
    Create a tournament in 'draft' (or directly in 'upcoming').

    Raises:
        ForbiddenError: Actor is not an admin
        ValidationError: Any field out of range, unknown format or
            tie-breaker, incomplete schedule configuration, or a
            group+knockout tournament without qualifiers_per_group
    """
    require_admin(actor, "create tournaments")

    name = (name or "").strip()
    if not name or len(name) > 100:
        raise ValidationError("Tournament name must be 1-100 characters")
    if len(description or "") > 500:
        raise ValidationError("Description cannot exceed 500 characters")
    if tournament_format not in TOURNAMENT_FORMATS:
        raise ValidationError(f"Unknown tournament format: {tournament_format!r}")
    if isinstance(capacity, bool) or not isinstance(capacity, int) or not MIN_CAPACITY <= capacity <= MAX_CAPACITY:
        raise ValidationError(f"Capacity must be between {MIN_CAPACITY} and {MAX_CAPACITY}")
    if status not in ("draft", "upcoming"):
        raise ValidationError("New tournaments start as 'draft' or 'upcoming'")

    if tournament_format == "group+knockout":
        if qualifiers_per_group is None:
            raise ValidationError("qualifiers_per_group is required for group+knockout tournaments")
        if qualifiers_per_group < 1 or qualifiers_per_group > settings.group_size:
            raise ValidationError(f"qualifiers_per_group must be between 1 and {settings.group_size}")
    else:
        qualifiers_per_group = None

    if registration_start and registration_end and registration_end < registration_start:
        raise ValidationError("registration_end must not precede registration_start")
    if tournament_start and tournament_end and tournament_end < tournament_start:
        raise ValidationError("tournament_end must not precede tournament_start")

    weekdays = list(allowed_weekdays) if allowed_weekdays is not None else list(range(7))
    if matches_per_day is not None or daily_start_time is not None:
        if matches_per_day is None or daily_start_time is None or tournament_start is None:
            raise ValidationError(
                "Scheduling needs matches_per_day, daily_start_time and tournament_start together"
            )
        # Validates ranges and weekday numbers.
        ScheduleConfig(
            match_duration_minutes=match_duration_minutes,
            break_minutes=break_minutes,
            matches_per_day=matches_per_day,
            daily_start_time=parse_daily_start(daily_start_time),
            allowed_weekdays=weekdays,
        )

    tournament = Tournament(
        name=name,
        description=description or "",
        organizer_id=actor.player_id,
        format=tournament_format,
        status=status,
        capacity=capacity,
        participant_count=0,
        entry_fee=_as_money(entry_fee, "entry_fee"),
        prize_pool=_as_money(prize_pool, "prize_pool"),
        prize_distribution=list(prize_distribution or []),
        rules=rules or "Standard eFootball rules apply",
        registration_start=registration_start,
        registration_end=registration_end,
        tournament_start=tournament_start,
        tournament_end=tournament_end,
        points_for_win=settings.default_points_for_win if points_for_win is None else points_for_win,
        points_for_draw=settings.default_points_for_draw if points_for_draw is None else points_for_draw,
        points_for_loss=settings.default_points_for_loss if points_for_loss is None else points_for_loss,
        tiebreakers=_validate_tiebreakers(tiebreakers) if tiebreakers is not None else list(TIEBREAKERS),
        qualifiers_per_group=qualifiers_per_group,
        match_duration_minutes=match_duration_minutes,
        break_minutes=break_minutes,
        matches_per_day=matches_per_day,
        allowed_weekdays=weekdays,
        daily_start_time=daily_start_time,
        is_public=is_public,
        requires_approval=requires_approval,
    )
    session.add(tournament)
    session.flush()
    logger.info(
        "Created %s tournament %s '%s' (capacity %d)",
        tournament_format, tournament.id, name, capacity,
    )
    return tournament


def transition_status(
    session: Session,
    tournament_id: int,
    actor: Actor,
    new_status: str,
) -> Tournament:
    """
    Move a tournament one step along draft -> upcoming -> active -> completed,
    or to 'cancelled' from any state before 'completed'. Cancelling also
    cancels every match still open for scores.

    Raises:
        ValidationError: Unknown status
        ConflictError: Illegal transition
        PreconditionError: Starting a tournament that has no fixtures
    """
    require_admin(actor, "change tournament status")
    if new_status not in ALL_TOURNAMENT_STATUSES:
        raise ValidationError(f"Unknown tournament status: {new_status!r}")

    tournament = get_tournament(session, tournament_id, for_update=True)
    if not can_transition_tournament(tournament.status, new_status):
        raise ConflictError(f"Cannot move tournament from '{tournament.status}' to '{new_status}'")
    if new_status == "active" and count_matches(session, tournament.id) == 0:
        raise PreconditionError("Generate fixtures before starting the tournament")

    previous = tournament.status
    tournament.status = new_status
    if new_status in ("completed", "cancelled"):
        tournament.completed_at = utc_now()
    if new_status == "cancelled":
        _cancel_open_matches(session, tournament, actor)
    session.flush()
    logger.info("Tournament %s: %s -> %s", tournament.id, previous, new_status)
    return tournament


def _cancel_open_matches(session: Session, tournament: Tournament, actor: Actor) -> int:
    """Cancel every match still open for scores, rejecting its open disputes."""
    now = utc_now()
    matches = list(
        session.scalars(
            select(Match).where(
                Match.tournament_id == tournament.id,
                Match.status.in_(MATCH_STATUS_GROUPS["open"]),
            )
        )
    )
    for match in matches:
        match.status = "cancelled"
        match.admin_notes = "Tournament cancelled"
        for dispute in match.disputes:
            if dispute.status in OPEN_DISPUTE_STATUSES:
                dispute.status = "rejected"
                dispute.resolved_by_id = actor.player_id
                dispute.resolution = "Tournament cancelled"
                dispute.resolved_at = now
    if matches:
        logger.info("Tournament %s: cancelled %d open matches", tournament.id, len(matches))
    return len(matches)


# =============================================================================
# Participants
# =============================================================================

def add_participant(
    session: Session,
    tournament_id: int,
    player_id: int,
    *,
    rng: Optional[random.Random] = None,
) -> Participant:
    """
    Register a player in a tournament.

    This is the single entry point used both by free self-service joins and
    by completed entry-fee payments. Taking the last free slot generates the
    fixtures with the system actor.

    Raises:
        NotFoundError: Unknown tournament or player
        ConflictError: Tournament not open for registration, full, or the
            player is already registered
    """
    tournament = get_tournament(session, tournament_id, for_update=True)
    player = session.get(Player, player_id)
    if player is None or not player.is_active:
        raise NotFoundError(f"Player {player_id} not found")

    if tournament.status != "upcoming":
        raise ConflictError(f"Tournament is {tournament.status}, registration is closed")
    registration = tournament.registration_status()
    if registration == "full":
        raise ConflictError("Tournament is full")
    if registration != "open":
        raise ConflictError(f"Registration {registration.replace('_', ' ')}")
    if any(p.player_id == player_id for p in tournament.participants):
        raise ConflictError("Player is already registered for this tournament")

    seed = tournament.participant_count + 1
    participant = Participant(player_id=player_id, seed=seed, position=seed, status="registered")
    tournament.participants.append(participant)
    tournament.participant_count = seed
    session.flush()
    logger.info(
        "Player %s joined tournament %s (%d/%d)",
        player_id, tournament.id, tournament.participant_count, tournament.capacity,
    )

    if tournament.participant_count == tournament.capacity:
        logger.info("Tournament %s reached capacity, generating fixtures", tournament.id)
        generate_fixtures(session, tournament.id, SYSTEM_ACTOR, rng=rng)

    return participant


def join_tournament(
    session: Session,
    tournament_id: int,
    actor: Actor,
    *,
    rng: Optional[random.Random] = None,
) -> Participant:
    """Self-service registration for free tournaments."""
    player_id = require_player(actor)
    tournament = get_tournament(session, tournament_id)
    if tournament.entry_fee > 0:
        raise PreconditionError("This tournament has an entry fee; pay to register")
    return add_participant(session, tournament_id, player_id, rng=rng)


def leave_tournament(session: Session, tournament_id: int, actor: Actor) -> None:
    """
    Withdraw from a tournament before fixtures exist.

    Remaining participants are re-seeded in join order.
    """
    player_id = require_player(actor)
    tournament = get_tournament(session, tournament_id, for_update=True)
    if tournament.status in ("active", "completed", "cancelled"):
        raise ConflictError(f"Cannot leave a tournament that is {tournament.status}")
    if count_matches(session, tournament.id) > 0:
        raise ConflictError("Cannot leave after fixtures have been generated")

    participant = next((p for p in tournament.participants if p.player_id == player_id), None)
    if participant is None:
        raise NotFoundError("Player is not registered for this tournament")

    tournament.participants.remove(participant)
    remaining = sorted(tournament.participants, key=lambda p: (p.seed or 0, p.id or 0))
    for index, other in enumerate(remaining, start=1):
        other.seed = index
        other.position = index
    tournament.participant_count = len(remaining)
    session.flush()
    logger.info("Player %s left tournament %s", player_id, tournament.id)


# =============================================================================
# Fixtures
# =============================================================================

def next_match_number(session: Session, tournament_id: int) -> int:
    """
    Next free match number for a tournament.

    Callers must hold the tournament row lock; the unique
    (tournament_id, match_number) constraint rejects any number taken twice.
    """
    current = session.scalar(
        select(func.max(Match.match_number)).where(Match.tournament_id == tournament_id)
    )
    return (current or 0) + 1


def persist_drafts(
    session: Session,
    tournament: Tournament,
    drafts: Sequence[MatchDraft],
) -> list[Match]:
    """
    Number and insert match drafts in order.

    Bye drafts become single-player matches that are already completed, with
    the system (NULL) as confirmer and their sole player as winner.
    """
    session.flush()
    number = next_match_number(session, tournament.id)
    now = utc_now()
    matches = []
    for draft in drafts:
        match = Match(
            tournament_id=tournament.id,
            round=draft.round,
            round_number=draft.round_number,
            stage=draft.stage,
            group_name=draft.group_name,
            match_number=number,
            player1_id=draft.player1_id,
            player2_id=draft.player2_id,
            scheduled_time=draft.scheduled_time,
            status="scheduled",
        )
        if draft.is_bye:
            match.status = "completed"
            match.winner_id = draft.player1_id
            match.confirmed_at = now
            # Byes never feed stats or leaderboards.
            match.stats_applied_at = now
        session.add(match)
        matches.append(match)
        number += 1
    session.flush()
    return matches


def _check_group_qualifiers(tournament: Tournament, player_count: int) -> None:
    group_count = -(-player_count // settings.group_size)
    smallest_group = player_count // group_count
    if tournament.qualifiers_per_group > smallest_group:
        raise ValidationError(
            f"qualifiers_per_group ({tournament.qualifiers_per_group}) exceeds the smallest "
            f"group size ({smallest_group})"
        )


def generate_fixtures(
    session: Session,
    tournament_id: int,
    actor: Actor,
    *,
    rng: Optional[random.Random] = None,
) -> list[Match]:
    """
    Generate and persist the initial fixtures for an upcoming tournament.

    Raises:
        ForbiddenError: Actor is not an admin or the system
        ConflictError: Tournament is not upcoming, or fixtures already exist
        ValidationError: Fewer than two active participants, or a
            group+knockout qualifier count larger than the smallest group
    """
    require_admin(actor, "generate fixtures")
    tournament = get_tournament(session, tournament_id, for_update=True)
    if tournament.status != "upcoming":
        raise ConflictError(f"Fixtures can only be generated for upcoming tournaments (is {tournament.status})")
    if count_matches(session, tournament.id) > 0:
        raise ConflictError("Fixtures have already been generated for this tournament")

    player_ids = active_participant_ids(tournament)
    if len(player_ids) < 2:
        raise ValidationError("At least two participants are required to generate fixtures")
    if tournament.format == "group+knockout":
        _check_group_qualifiers(tournament, len(player_ids))

    drafts = generate(
        tournament.format,
        player_ids,
        rng=rng or random.Random(),
        group_size=settings.group_size,
    )
    config = ScheduleConfig.from_tournament(tournament)
    if config is not None:
        schedule_matches(drafts, config, tournament.tournament_start)

    matches = persist_drafts(session, tournament, drafts)
    logger.info(
        "Generated %d %s fixtures for tournament %s",
        len(matches), tournament.format, tournament.id,
    )
    return matches
