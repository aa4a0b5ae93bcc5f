"""
Match Result Engine.

Each player submits their own goal count into their slot. Once both slots
are confirmed:

- equal scores are verified immediately by the system (a draw), except in
  knockout matches, which need a winner and attach a 'knockout_draw'
  dispute instead
- different scores move the match to 'disputed' and attach a
  'score_mismatch' dispute for an admin to resolve

A knockout match that cannot produce a winner, such as a cancelled one,
is settled by an admin walkover with award_walkover().

An admin (or the system) verifies a result with verify_result(); apart
from walkovers that is the only place a match becomes 'completed' with a
winner, and it runs the finalization cascade (player stats, leaderboards,
standings, progression) exactly once per match.

Matches of a cancelled or completed tournament take no further results.

Every read-modify-write loads the match row FOR UPDATE, and the match's
version counter turns any lost update into StaleDataError, which
db.retry maps to ConcurrencyError.
"""

from __future__ import annotations

import logging
import random
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from efhub.config import settings
from efhub.db.models import Match, MatchDispute, OperationLog, utc_now
from efhub.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    PreconditionError,
    ValidationError,
)
from efhub.services.actors import SYSTEM_ACTOR, Actor, require_admin
from efhub.services.leaderboard import record_match_outcome
from efhub.services.progression import handle_match_finished
from efhub.services.standings import recompute_standings
from efhub.statuses import OPEN_DISPUTE_STATUSES

logger = logging.getLogger(__name__)

EVENT_KINDS = ("goals", "yellow_cards", "red_cards", "substitutions")
DISPUTE_RECORD_OPERATION = "dispute_record"
SCORE_MISMATCH = "score_mismatch"
KNOCKOUT_DRAW = "knockout_draw"
SYSTEM_DISPUTE_REASONS = (SCORE_MISMATCH, KNOCKOUT_DRAW)


# =============================================================================
# Loading and validation
# =============================================================================

def get_match(session: Session, match_id: int, *, for_update: bool = True) -> Match:
    """Load a match (row-locked by default), raising NotFoundError."""
    if for_update:
        match = session.get(Match, match_id, with_for_update=True, populate_existing=True)
    else:
        match = session.get(Match, match_id)
    if match is None:
        raise NotFoundError(f"Match {match_id} not found")
    return match


def validate_score(score) -> int:
    """Accept an int in 0..max_score (bools are not scores)."""
    if isinstance(score, bool) or not isinstance(score, int):
        raise ValidationError("Score must be a whole number")
    if not 0 <= score <= settings.max_score:
        raise ValidationError(f"Score must be between 0 and {settings.max_score}")
    return score


def validate_events(events) -> Optional[dict]:
    """
    Check a slot's event payload.

    Format:
        {"goals": [{"minute": 12, "player": "Mbappe"}, ...],
         "yellow_cards": [...], "red_cards": [...], "substitutions": [...]}
    """
    if events is None:
        return None
    if not isinstance(events, dict):
        raise ValidationError("Match events must be an object")
    unknown = [key for key in events if key not in EVENT_KINDS]
    if unknown:
        raise ValidationError(f"Unknown match event kinds: {', '.join(sorted(unknown))}")
    cleaned = {}
    for kind in EVENT_KINDS:
        entries = events.get(kind, [])
        if not isinstance(entries, list) or not all(isinstance(e, dict) for e in entries):
            raise ValidationError(f"'{kind}' must be a list of objects")
        for entry in entries:
            minute = entry.get("minute")
            if minute is not None and (isinstance(minute, bool) or not isinstance(minute, int) or minute < 0):
                raise ValidationError(f"'{kind}' minute must be a non-negative whole number")
        cleaned[kind] = entries
    return cleaned


def _ensure_open(match: Match) -> None:
    if match.status == "completed":
        raise ConflictError("Match is already completed")
    if match.status == "cancelled":
        raise ConflictError("Match has been cancelled")
    if match.is_bye:
        raise ConflictError("Byes have no opponent to report a score against")


def _ensure_tournament_running(match: Match) -> None:
    status = match.tournament.status
    if status in ("completed", "cancelled"):
        raise ConflictError(f"Tournament is {status}; its matches take no more results")


def _needs_winner(match: Match) -> bool:
    return match.stage == "knockout"


def _start_tournament(match: Match) -> None:
    """The first reported score moves an upcoming tournament to active."""
    tournament = match.tournament
    if tournament.status == "upcoming":
        tournament.status = "active"
        logger.info("Tournament %s: upcoming -> active (first score reported)", tournament.id)


# =============================================================================
# Score submission
# =============================================================================

def submit_score(
    session: Session,
    match_id: int,
    actor: Actor,
    score,
    *,
    screenshot: Optional[str] = None,
    events: Optional[dict] = None,
    rng: Optional[random.Random] = None,
) -> Match:
    """
    Record the actor's own goal count for a match.

    Raises:
        NotFoundError: Unknown match
        ConflictError: Match completed, cancelled, or a bye, or its
            tournament is over
        ForbiddenError: Actor is not one of the two players
        ValidationError: Score or events malformed
    """
    match = get_match(session, match_id)
    _ensure_open(match)
    _ensure_tournament_running(match)
    slot = match.slot_for(actor.player_id)
    if slot is None:
        raise ForbiddenError("Only the two players of a match can submit its score")
    score = validate_score(score)
    events = validate_events(events)

    setattr(match, f"{slot}_score", score)
    setattr(match, f"{slot}_confirmed", True)
    if screenshot is not None:
        setattr(match, f"{slot}_screenshot", screenshot)
    if events is not None:
        setattr(match, f"{slot}_events", events)
    if match.status == "scheduled":
        match.status = "in_progress"
        match.actual_start_time = utc_now()
    _start_tournament(match)

    logger.info("Match %s: %s submitted %d", match.id, slot, score)

    if match.both_confirmed:
        if match.player1_score == match.player2_score and not _needs_winner(match):
            _close_open_disputes(
                match, None, "resolved", "Both players reported the same score"
            )
            session.flush()
            return verify_result(session, match.id, SYSTEM_ACTOR, rng=rng)
        _mark_disputed(session, match)

    session.flush()
    return match


def _mark_disputed(session: Session, match: Match) -> None:
    match.status = "disputed"
    logger.info(
        "Match %s disputed: player1 reported %d, player2 reported %d",
        match.id, match.player1_score, match.player2_score,
    )
    reason = _system_dispute_reason(match)
    for dispute in match.disputes:
        if dispute.raised_by_id is None and dispute.is_open and dispute.reason != reason:
            dispute.status = "resolved"
            dispute.resolved_at = utc_now()
            dispute.resolution = "Superseded by new scores"
    if any(d.reason == reason and d.is_open for d in match.disputes):
        return
    # Stale writes must surface here, not inside the savepoint guard below.
    session.flush()
    try:
        with session.begin_nested():
            _insert_system_dispute(session, match)
    except SQLAlchemyError as exc:
        logger.warning("Could not record dispute for match %s, queued for retry: %s", match.id, exc)
        session.add(
            OperationLog(
                operation=DISPUTE_RECORD_OPERATION,
                details={"match_id": match.id},
                success=False,
                error_message=str(exc),
                needs_retry=True,
                attempts=1,
            )
        )
    session.expire(match, ["disputes"])


def _system_dispute_reason(match: Match) -> str:
    if match.player1_score == match.player2_score:
        return KNOCKOUT_DRAW
    return SCORE_MISMATCH


def _insert_system_dispute(session: Session, match: Match) -> MatchDispute:
    reason = _system_dispute_reason(match)
    if reason == KNOCKOUT_DRAW:
        description = (
            f"Both players reported {match.player1_score}-{match.player2_score}; "
            "a knockout match needs a winner"
        )
    else:
        description = f"Player 1 reported {match.player1_score}, player 2 reported {match.player2_score}"
    dispute = MatchDispute(
        match_id=match.id,
        raised_by_id=None,
        reason=reason,
        description=description,
        status="open",
    )
    session.add(dispute)
    session.flush()
    return dispute


def retry_pending_disputes(session: Session) -> int:
    """
    Replay dispute records that failed during score submission.

    Returns:
        Number of queued records that were processed
    """
    pending = list(
        session.scalars(
            select(OperationLog)
            .where(
                OperationLog.operation == DISPUTE_RECORD_OPERATION,
                OperationLog.needs_retry.is_(True),
            )
            .order_by(OperationLog.id)
        )
    )
    processed = 0
    for log_entry in pending:
        match_id = (log_entry.details or {}).get("match_id")
        match = session.get(Match, match_id) if match_id is not None else None
        log_entry.attempts += 1
        if match is not None and match.status == "disputed" and not any(
            d.reason in SYSTEM_DISPUTE_REASONS and d.is_open for d in match.disputes
        ):
            _insert_system_dispute(session, match)
            session.expire(match, ["disputes"])
        log_entry.needs_retry = False
        log_entry.success = True
        log_entry.resolved_at = utc_now()
        processed += 1
    session.flush()
    if processed:
        logger.info("Replayed %d pending dispute records", processed)
    return processed


# =============================================================================
# Verification and finalization
# =============================================================================

def _close_open_disputes(match: Match, actor_id: Optional[int], status: str, resolution: str) -> None:
    now = utc_now()
    for dispute in match.disputes:
        if dispute.status in OPEN_DISPUTE_STATUSES:
            dispute.status = status
            dispute.resolved_by_id = actor_id
            dispute.resolution = resolution
            dispute.resolved_at = now


def _check_verifiable(match: Match, player1_score: Optional[int], player2_score: Optional[int]) -> None:
    if player1_score is None or player2_score is None:
        raise PreconditionError("Both players must submit their scores before verification")
    if player1_score == player2_score and _needs_winner(match):
        raise PreconditionError(
            "Knockout matches need a winner; correct the scores or award a walkover"
        )


def verify_result(
    session: Session,
    match_id: int,
    actor: Actor,
    *,
    rng: Optional[random.Random] = None,
) -> Match:
    """
    Compute and stamp a match's result from its two scores.

    Higher score wins; equal scores are a draw. Re-verifying a completed
    match recomputes the same result but does not re-run the cascade.

    Raises:
        ForbiddenError: Actor is not an admin or the system
        ConflictError: Match cancelled or a bye, or its tournament is over
        PreconditionError: Either score is still missing, or a knockout
            match is level
    """
    require_admin(actor, "verify match results")
    match = get_match(session, match_id)
    if match.status == "cancelled":
        raise ConflictError("Match has been cancelled")
    if match.is_bye:
        raise ConflictError("Byes are completed automatically")
    _ensure_tournament_running(match)
    _check_verifiable(match, match.player1_score, match.player2_score)

    if match.player1_score > match.player2_score:
        match.winner_id, match.loser_id, match.is_draw = match.player1_id, match.player2_id, False
    elif match.player2_score > match.player1_score:
        match.winner_id, match.loser_id, match.is_draw = match.player2_id, match.player1_id, False
    else:
        match.winner_id, match.loser_id, match.is_draw = None, None, True

    match.confirmed_by_id = actor.player_id
    match.confirmed_at = utc_now()
    match.status = "completed"
    if match.actual_end_time is None:
        match.actual_end_time = match.confirmed_at
    _close_open_disputes(match, actor.player_id, "resolved", "Result verified")
    session.flush()

    logger.info(
        "Match %s verified by %s: %d-%d (%s)",
        match.id,
        "system" if actor.player_id is None else f"player {actor.player_id}",
        match.player1_score,
        match.player2_score,
        "draw" if match.is_draw else f"winner {match.winner_id}",
    )
    finalize_match(session, match, rng=rng)
    return match


def finalize_match(session: Session, match: Match, *, rng: Optional[random.Random] = None) -> None:
    """
    Propagate a completed match.

    Standings are rebuilt every time (idempotent). Player stats,
    leaderboards and progression run once, guarded by stats_applied_at.
    """
    recompute_standings(session, match.tournament_id)
    if match.stats_applied_at is not None:
        return

    record_match_outcome(session, match)
    match.stats_applied_at = utc_now()
    session.flush()
    handle_match_finished(session, match, rng)


# =============================================================================
# Disputes
# =============================================================================

def get_dispute(session: Session, dispute_id: int) -> MatchDispute:
    dispute = session.get(MatchDispute, dispute_id)
    if dispute is None:
        raise NotFoundError(f"Dispute {dispute_id} not found")
    return dispute


def raise_dispute(
    session: Session,
    match_id: int,
    actor: Actor,
    reason: str,
    description: Optional[str] = None,
) -> MatchDispute:
    """A player of the match disputes its (reported or verified) result."""
    match = get_match(session, match_id)
    if not match.involves(actor.player_id):
        raise ForbiddenError("Only the players of a match can dispute it")
    if match.status == "cancelled":
        raise ConflictError("Match has been cancelled")
    reason = (reason or "").strip()
    if not reason or len(reason) > 50:
        raise ValidationError("Dispute reason must be 1-50 characters")

    dispute = MatchDispute(
        match_id=match.id,
        raised_by_id=actor.player_id,
        reason=reason,
        description=description,
        status="open",
    )
    session.add(dispute)
    session.flush()
    session.expire(match, ["disputes"])
    logger.info("Player %s raised dispute %s on match %s", actor.player_id, dispute.id, match.id)
    return dispute


def review_dispute(session: Session, dispute_id: int, actor: Actor) -> MatchDispute:
    require_admin(actor, "review disputes")
    dispute = get_dispute(session, dispute_id)
    if dispute.status != "open":
        raise ConflictError(f"Dispute is {dispute.status}, not open")
    dispute.status = "under_review"
    session.flush()
    return dispute


def resolve_dispute(
    session: Session,
    dispute_id: int,
    actor: Actor,
    decision: str,
    *,
    player1_score: Optional[int] = None,
    player2_score: Optional[int] = None,
    resolution: Optional[str] = None,
    rng: Optional[random.Random] = None,
) -> MatchDispute:
    """
    Close a dispute.

    decision 'rejected' closes it without touching the match. decision
    'resolved' verifies the match: with corrected scores (both required)
    they overwrite the submitted ones first, otherwise the submitted scores
    are verified as they stand. A level knockout match is resolved with
    corrected scores that name a winner (e.g. including penalties).

    Raises:
        ConflictError: Dispute already closed, corrected scores for a
            completed match, or the match can no longer be verified
        PreconditionError: The result to verify is incomplete or leaves a
            knockout match level
    """
    require_admin(actor, "resolve disputes")
    if decision not in ("resolved", "rejected"):
        raise ValidationError("decision must be 'resolved' or 'rejected'")
    if (player1_score is None) != (player2_score is None):
        raise ValidationError("Provide both corrected scores or neither")

    dispute = get_dispute(session, dispute_id)
    if dispute.status not in OPEN_DISPUTE_STATUSES:
        raise ConflictError(f"Dispute is already {dispute.status}")

    match = None
    if decision == "resolved":
        match = get_match(session, dispute.match_id)
        if player1_score is not None:
            if match.status == "completed":
                raise ConflictError("Completed results cannot be rewritten")
            player1_score = validate_score(player1_score)
            player2_score = validate_score(player2_score)
        if match.status != "completed":
            if match.status == "cancelled":
                raise ConflictError("Match has been cancelled")
            _ensure_tournament_running(match)
            if player1_score is None:
                _check_verifiable(match, match.player1_score, match.player2_score)
            else:
                _check_verifiable(match, player1_score, player2_score)

    dispute.status = decision
    dispute.resolved_by_id = actor.player_id
    dispute.resolved_at = utc_now()
    dispute.resolution = resolution or ("Result corrected" if player1_score is not None else decision)

    if match is not None:
        if player1_score is not None:
            match.player1_score = player1_score
            match.player2_score = player2_score
            match.player1_confirmed = True
            match.player2_confirmed = True
            match.admin_notes = dispute.resolution
        session.flush()
        if match.status != "completed":
            verify_result(session, match.id, actor, rng=rng)

    session.flush()
    logger.info("Dispute %s %s by player %s", dispute.id, decision, actor.player_id)
    return dispute


# =============================================================================
# Scheduling and cancellation
# =============================================================================

def reschedule_match(session: Session, match_id: int, actor: Actor, new_time: datetime) -> Match:
    """Move a match's scheduled time; either player or an admin may do so."""
    if not isinstance(new_time, datetime):
        raise ValidationError("new_time must be a datetime")
    match = get_match(session, match_id)
    if not (actor.is_admin or match.involves(actor.player_id)):
        raise ForbiddenError("Only the players of a match or an admin can reschedule it")
    if match.status in ("completed", "cancelled"):
        raise ConflictError(f"Cannot reschedule a {match.status} match")
    match.scheduled_time = new_time
    session.flush()
    logger.info("Match %s rescheduled to %s", match.id, new_time.isoformat())
    return match


def cancel_match(
    session: Session,
    match_id: int,
    actor: Actor,
    *,
    reason: Optional[str] = None,
    rng: Optional[random.Random] = None,
) -> Match:
    """
    Call off a match. A cancelled league or group match counts as played
    with no result; a cancelled knockout match still needs a walkover.
    """
    require_admin(actor, "cancel matches")
    match = get_match(session, match_id)
    if match.status in ("completed", "cancelled"):
        raise ConflictError(f"Cannot cancel a {match.status} match")
    _start_tournament(match)
    match.status = "cancelled"
    if reason:
        match.admin_notes = reason
    _close_open_disputes(match, actor.player_id, "rejected", "Match cancelled")
    session.flush()
    logger.info("Match %s cancelled by %s", match.id, actor.player_id)
    handle_match_finished(session, match, rng)
    return match


def award_walkover(
    session: Session,
    match_id: int,
    actor: Actor,
    winner_id: int,
    *,
    reason: Optional[str] = None,
    rng: Optional[random.Random] = None,
) -> Match:
    """
    Settle a knockout match without a playable result.

    The match is completed with ``winner_id`` through, whatever its state
    (scheduled, disputed as a level draw, or cancelled). Reported scores are
    cleared, so a walkover adds nothing to player stats, standings or
    leaderboards; it only lets the knockout bracket move on.

    Raises:
        ForbiddenError: Actor is not an admin
        ConflictError: Not a knockout match, a bye, already completed, or
            its tournament is over
        ValidationError: winner_id is not one of the two players
    """
    require_admin(actor, "award walkovers")
    match = get_match(session, match_id)
    if not _needs_winner(match):
        raise ConflictError("Walkovers only settle knockout matches")
    if match.is_bye:
        raise ConflictError("Byes are completed automatically")
    if match.status == "completed":
        raise ConflictError("Match is already completed")
    _ensure_tournament_running(match)
    if not match.involves(winner_id):
        raise ValidationError("The walkover winner must be one of the two players")
    _start_tournament(match)

    match.winner_id = winner_id
    match.loser_id = match.player2_id if winner_id == match.player1_id else match.player1_id
    match.is_draw = False
    match.player1_score = None
    match.player2_score = None
    match.player1_confirmed = False
    match.player2_confirmed = False
    match.status = "completed"
    match.confirmed_by_id = actor.player_id
    match.confirmed_at = utc_now()
    if match.actual_end_time is None:
        match.actual_end_time = match.confirmed_at
    match.admin_notes = reason or "Walkover"
    _close_open_disputes(match, actor.player_id, "resolved", "Walkover awarded")
    session.flush()

    logger.info("Match %s: walkover to player %s by %s", match.id, winner_id, actor.player_id)
    finalize_match(session, match, rng=rng)
    return match
