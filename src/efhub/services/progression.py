"""
Knockout progression and tournament completion.

After every finalized match the cascade calls handle_match_finished():

- knockout matches: once the latest knockout round is finished, its
  winners (bye players included) are paired into the next round; a single
  remaining winner completes the tournament
- group matches of a group+knockout tournament: once the whole group stage
  is finished, the top qualifiers of each group open the knockout stage
- league and group tournaments: complete when no match is left to play,
  won by the top of the standings
"""

from __future__ import annotations

import logging
import random
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from efhub.db.models import Match, Tournament, utc_now
from efhub.errors import ConflictError, PreconditionError, ValidationError
from efhub.fixtures.generator import build_knockout_round
from efhub.fixtures.scheduling import ScheduleConfig, schedule_matches
from efhub.services.standings import group_standings, recompute_standings
from efhub.services.tournaments import get_tournament, persist_drafts
from efhub.statuses import MATCH_STATUS_GROUPS

logger = logging.getLogger(__name__)

PENDING_STATUSES = MATCH_STATUS_GROUPS["open"]


def complete_tournament(session: Session, tournament: Tournament, winner_id: int) -> Tournament:
    tournament.status = "completed"
    tournament.winner_id = winner_id
    tournament.completed_at = utc_now()
    if tournament.tournament_end is None:
        tournament.tournament_end = tournament.completed_at
    session.flush()
    logger.info("Tournament %s completed, winner player %s", tournament.id, winner_id)
    return tournament


def _next_round_start(session: Session, tournament: Tournament) -> datetime:
    """First day after the latest scheduled match, or the tournament start."""
    latest = session.scalar(
        select(func.max(Match.scheduled_time)).where(Match.tournament_id == tournament.id)
    )
    if latest is None:
        return tournament.tournament_start
    return datetime.combine(latest.date() + timedelta(days=1), datetime.min.time())


def _persist_round(session: Session, tournament: Tournament, drafts) -> list[Match]:
    config = ScheduleConfig.from_tournament(tournament)
    if config is not None:
        schedule_matches(drafts, config, _next_round_start(session, tournament))
    return persist_drafts(session, tournament, drafts)


def on_round_complete(
    session: Session,
    tournament_id: int,
    rng: Optional[random.Random] = None,
) -> list[Match]:
    """
    Build the next knockout round once the latest one is finished.

    Returns:
        The newly created matches; empty while the round is still being
        played, and when the last winner completed the tournament

    Raises:
        PreconditionError: A finished knockout match has no winner
    """
    tournament = get_tournament(session, tournament_id, for_update=True)
    if tournament.status in ("completed", "cancelled"):
        return []

    knockout_matches = list(
        session.scalars(
            select(Match)
            .where(Match.tournament_id == tournament.id, Match.stage == "knockout")
            .order_by(Match.match_number)
        )
    )
    if not knockout_matches:
        return []

    latest_round = max(m.round_number for m in knockout_matches)
    round_matches = [m for m in knockout_matches if m.round_number == latest_round]
    if any(m.status in PENDING_STATUSES for m in round_matches):
        return []

    winners = []
    for match in round_matches:
        if match.winner_id is None:
            raise PreconditionError(
                f"Match {match.match_number} ({match.round}) finished without a winner"
            )
        winners.append(match.winner_id)

    if len(winners) == 1:
        complete_tournament(session, tournament, winners[0])
        return []

    drafts = build_knockout_round(winners, latest_round + 1, rng or random.Random())
    matches = _persist_round(session, tournament, drafts)
    logger.info(
        "Tournament %s: created %s (%d matches)", tournament.id, drafts[0].round, len(matches)
    )
    return matches


def group_stage_finished(session: Session, tournament_id: int) -> bool:
    pending = session.scalar(
        select(func.count(Match.id)).where(
            Match.tournament_id == tournament_id,
            Match.stage == "group",
            Match.status.in_(PENDING_STATUSES),
        )
    )
    return pending == 0


def seed_knockout_from_groups(
    session: Session,
    tournament_id: int,
    rng: Optional[random.Random] = None,
) -> list[Match]:
    """
    Open the knockout stage of a group+knockout tournament.

    Qualifiers are ordered by tier (every group winner, then every runner-up,
    ...) and paired best against worst, so group winners meet lower
    finishers from other groups.

    Raises:
        ConflictError: Not a group+knockout tournament
        PreconditionError: Group matches are still being played
        ValidationError: A group has fewer players than qualifiers_per_group
    """
    tournament = get_tournament(session, tournament_id, for_update=True)
    if tournament.format != "group+knockout":
        raise ConflictError("Only group+knockout tournaments have a knockout stage to seed")
    existing = session.scalar(
        select(func.count(Match.id)).where(
            Match.tournament_id == tournament.id, Match.stage == "knockout"
        )
    )
    if existing:
        return []
    if not group_stage_finished(session, tournament.id):
        raise PreconditionError("The group stage is not finished yet")

    qualifiers = tournament.qualifiers_per_group
    tables = group_standings(session, tournament)
    for name, rows in tables.items():
        if len(rows) < qualifiers:
            raise ValidationError(f"{name} has fewer than {qualifiers} players")

    seeded = [
        tables[name][tier].player_id
        for tier in range(qualifiers)
        for name in tables
    ]
    if len(seeded) == 1:
        complete_tournament(session, tournament, seeded[0])
        return []

    drafts = build_knockout_round(seeded, 1, rng or random.Random(), seeded=True)
    matches = _persist_round(session, tournament, drafts)
    logger.info(
        "Tournament %s: %d qualifiers from %d groups, knockout stage opened",
        tournament.id, len(seeded), len(tables),
    )
    return matches


def maybe_complete_tournament(session: Session, tournament_id: int) -> Optional[int]:
    """
    Complete a league or group tournament once no match is left to play.

    Returns:
        The winner's player id, or None if the tournament is still running
    """
    tournament = session.get(Tournament, tournament_id)
    if tournament is None or tournament.status in ("completed", "cancelled"):
        return None
    if tournament.format not in ("league", "group"):
        return None

    counts = dict(
        session.execute(
            select(Match.status, func.count(Match.id))
            .where(Match.tournament_id == tournament.id)
            .group_by(Match.status)
        ).all()
    )
    if not counts or any(counts.get(status) for status in PENDING_STATUSES):
        return None

    rows = recompute_standings(session, tournament.id)
    if not rows:
        return None
    complete_tournament(session, tournament, rows[0].player_id)
    return rows[0].player_id


def handle_match_finished(
    session: Session,
    match: Match,
    rng: Optional[random.Random] = None,
) -> list[Match]:
    """
    Advance the tournament after a match was completed or cancelled.

    A cancelled knockout match has no winner; progression is skipped with a
    warning until an admin awards a walkover.
    """
    tournament = match.tournament
    if tournament.status in ("completed", "cancelled"):
        return []

    if match.stage == "knockout":
        try:
            return on_round_complete(session, tournament.id, rng)
        except PreconditionError as exc:
            logger.warning("Knockout progression blocked in tournament %s: %s", tournament.id, exc.message)
            return []

    if tournament.format == "group+knockout":
        if group_stage_finished(session, tournament.id):
            return seed_knockout_from_groups(session, tournament.id, rng)
        return []

    maybe_complete_tournament(session, tournament.id)
    return []
