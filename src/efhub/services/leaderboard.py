"""
Global and period-scoped leaderboards.

Unlike tournament standings, leaderboard entries are updated incrementally:
each finalized match adds one result to both players' entries in every
configured scope, after which the whole scope is re-ranked by
(points, wins, win rate) so rank deltas stay consistent across entries.

Re-ranks of one scope are serialized with a scope lock; two re-ranks can
never interleave into a half-applied ordering.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from efhub.config import settings
from efhub.db.locks import scope_lock
from efhub.db.models import LeaderboardEntry, Match, Player, Tournament, utc_now
from efhub.errors import NotFoundError, ValidationError
from efhub.statuses import LEADERBOARD_SCOPE_TYPES

logger = logging.getLogger(__name__)

OUTCOMES = ("win", "draw", "loss")


def scope_period(scope_type: str, when: Optional[datetime] = None, tournament_id: Optional[int] = None) -> str:
    """
    Period key of a scope at a moment in time.

    Examples:
        >>> scope_period("global")
        'all-time'
        >>> scope_period("monthly", datetime(2026, 3, 9))
        '2026-03'
        >>> scope_period("weekly", datetime(2026, 3, 9))
        '2026-W11'
        >>> scope_period("tournament", tournament_id=7)
        '7'
    """
    if scope_type not in LEADERBOARD_SCOPE_TYPES:
        raise ValidationError(f"Unknown leaderboard scope: {scope_type!r}")
    if scope_type == "global":
        return "all-time"
    if scope_type == "tournament":
        if tournament_id is None:
            raise ValidationError("Tournament scope needs a tournament id")
        return str(tournament_id)
    when = when or utc_now()
    if scope_type == "monthly":
        return when.strftime("%Y-%m")
    iso_year, iso_week, _ = when.isocalendar()
    return f"{iso_year}-W{iso_week:02d}"


def compute_win_rate(wins: int, total: int) -> Decimal:
    """wins / total * 100 to two decimals; 0 when no matches were played."""
    if total <= 0:
        return Decimal("0")
    return (Decimal(wins * 100) / Decimal(total)).quantize(Decimal("0.01"))


def _lock_name(scope_type: str, period: str) -> str:
    return f"leaderboard:{scope_type}:{period}"


def _get_or_create_entry(
    session: Session,
    player_id: int,
    scope_type: str,
    period: str,
    tournament_id: Optional[int],
) -> LeaderboardEntry:
    entry = session.scalars(
        select(LeaderboardEntry).where(
            LeaderboardEntry.player_id == player_id,
            LeaderboardEntry.scope_type == scope_type,
            LeaderboardEntry.period == period,
        )
    ).first()
    if entry is None:
        entry = LeaderboardEntry(
            player_id=player_id,
            scope_type=scope_type,
            period=period,
            tournament_id=tournament_id,
            points=0,
            wins=0,
            draws=0,
            losses=0,
            total_matches=0,
            win_rate=Decimal("0"),
            rank=0,
            previous_rank=0,
            rank_change=0,
        )
        session.add(entry)
        session.flush()
    return entry


def _apply_outcome(entry: LeaderboardEntry, outcome: str, points: int) -> None:
    entry.total_matches += 1
    if outcome == "win":
        entry.wins += 1
    elif outcome == "draw":
        entry.draws += 1
    else:
        entry.losses += 1
    entry.points += points
    entry.win_rate = compute_win_rate(entry.wins, entry.total_matches)
    entry.last_updated = utc_now()


def rerank_scope(session: Session, scope_type: str, period: str) -> list[LeaderboardEntry]:
    """
    Re-rank every entry of one scope.

    Stores the old rank as previous_rank and the movement as rank_change
    (positive means the player climbed). Callers hold the scope lock.
    """
    session.flush()
    entries = list(
        session.scalars(
            select(LeaderboardEntry)
            .where(LeaderboardEntry.scope_type == scope_type, LeaderboardEntry.period == period)
            .order_by(
                LeaderboardEntry.points.desc(),
                LeaderboardEntry.wins.desc(),
                LeaderboardEntry.win_rate.desc(),
                LeaderboardEntry.player_id,
            )
        )
    )
    for rank, entry in enumerate(entries, start=1):
        previous = entry.rank
        entry.previous_rank = previous
        entry.rank = rank
        entry.rank_change = previous - rank if previous > 0 else 0
    session.flush()
    return entries


def update_player_stats(
    session: Session,
    player_id: int,
    outcome: str,
    scope_type: str,
    period: str,
    *,
    points: int,
    tournament_id: Optional[int] = None,
    rerank: bool = True,
) -> LeaderboardEntry:
    """
    Add one match result to a player's entry in a scope.

    Args:
        outcome: 'win', 'draw' or 'loss'
        points: League points earned by this result
        rerank: Re-rank the scope afterwards (takes the scope lock)
    """
    if outcome not in OUTCOMES:
        raise ValidationError(f"Unknown match outcome: {outcome!r}")

    with scope_lock(session, _lock_name(scope_type, period)):
        entry = _get_or_create_entry(session, player_id, scope_type, period, tournament_id)
        _apply_outcome(entry, outcome, points)
        if rerank:
            rerank_scope(session, scope_type, period)
    return entry


def _outcomes(match: Match, tournament: Tournament) -> list[tuple[int, str, int, int, int]]:
    """(player_id, outcome, points, goals_for, goals_against) for both players."""
    result = []
    for player_id, scored, conceded in (
        (match.player1_id, match.player1_score, match.player2_score),
        (match.player2_id, match.player2_score, match.player1_score),
    ):
        if scored > conceded:
            outcome, points = "win", tournament.points_for_win
        elif scored < conceded:
            outcome, points = "loss", tournament.points_for_loss
        else:
            outcome, points = "draw", tournament.points_for_draw
        result.append((player_id, outcome, points, scored, conceded))
    return result


def _update_player_aggregate(player: Player, outcome: str, points: int, scored: int, conceded: int) -> None:
    player.matches_played += 1
    if outcome == "win":
        player.wins += 1
    elif outcome == "draw":
        player.draws += 1
    else:
        player.losses += 1
    player.goals_for += scored
    player.goals_against += conceded
    player.points += points
    player.win_rate = compute_win_rate(player.wins, player.matches_played)


def record_match_outcome(session: Session, match: Match) -> None:
    """
    Apply a finalized two-player match to leaderboards and player stats.

    Scopes: every type in settings.leaderboard_scopes at the match's
    confirmation time, plus the match's tournament scope. Each scope is
    re-ranked once, after both players were applied.
    """
    if match.player2_id is None or match.player1_score is None or match.player2_score is None:
        return

    tournament = match.tournament
    when = match.confirmed_at or utc_now()
    outcomes = _outcomes(match, tournament)

    scopes = [(scope_type, scope_period(scope_type, when)) for scope_type in settings.leaderboard_scopes]
    scopes.append(("tournament", scope_period("tournament", tournament_id=tournament.id)))

    for scope_type, period in scopes:
        scope_tournament_id = tournament.id if scope_type == "tournament" else None
        with scope_lock(session, _lock_name(scope_type, period)):
            for player_id, outcome, points, _, _ in outcomes:
                update_player_stats(
                    session,
                    player_id,
                    outcome,
                    scope_type,
                    period,
                    points=points,
                    tournament_id=scope_tournament_id,
                    rerank=False,
                )
            rerank_scope(session, scope_type, period)

    global_ranks = {}
    if "global" in settings.leaderboard_scopes:
        global_ranks = {
            entry.player_id: entry.rank
            for entry in session.scalars(
                select(LeaderboardEntry).where(
                    LeaderboardEntry.scope_type == "global",
                    LeaderboardEntry.period == "all-time",
                )
            )
        }

    for player_id, outcome, points, scored, conceded in outcomes:
        player = session.get(Player, player_id)
        _update_player_aggregate(player, outcome, points, scored, conceded)
    # Every global rank may have moved, not only these two players'.
    if global_ranks:
        for player in session.scalars(select(Player).where(Player.id.in_(list(global_ranks)))):
            player.ranking = global_ranks[player.id]
    session.flush()
    logger.debug("Recorded match %s in %d leaderboard scopes", match.id, len(scopes))


def get_leaderboard(
    session: Session,
    scope_type: str = "global",
    period: Optional[str] = None,
    *,
    page: int = 1,
    page_size: int = 50,
) -> list[LeaderboardEntry]:
    """One page of a scope, best rank first."""
    if page < 1 or page_size < 1:
        raise ValidationError("page and page_size must be positive")
    if period is None:
        if scope_type == "tournament":
            raise ValidationError("Tournament leaderboards need a period (the tournament id)")
        period = scope_period(scope_type)
    elif scope_type not in LEADERBOARD_SCOPE_TYPES:
        raise ValidationError(f"Unknown leaderboard scope: {scope_type!r}")

    return list(
        session.scalars(
            select(LeaderboardEntry)
            .where(LeaderboardEntry.scope_type == scope_type, LeaderboardEntry.period == period)
            .order_by(LeaderboardEntry.rank, LeaderboardEntry.player_id)
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
    )


def get_player_position(
    session: Session,
    player_id: int,
    scope_type: str = "global",
    period: Optional[str] = None,
) -> Optional[LeaderboardEntry]:
    """A player's entry in a scope, or None if they have no results there."""
    if session.get(Player, player_id) is None:
        raise NotFoundError(f"Player {player_id} not found")
    period = period or scope_period(scope_type)
    return session.scalars(
        select(LeaderboardEntry).where(
            LeaderboardEntry.player_id == player_id,
            LeaderboardEntry.scope_type == scope_type,
            LeaderboardEntry.period == period,
        )
    ).first()
