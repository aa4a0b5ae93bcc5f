"""
Tournament-scoped standings.

Standings are always rebuilt from scratch: every participant's stats are
zeroed and each completed two-player match is folded in exactly once, so
recomputing from the same match set always gives the same table.

Ordering is points first, then the tournament's tie-break list applied left
to right to whoever is still level:

- goalDifference: goals for minus goals against, higher first
- goalsFor: goals scored, higher first
- headToHead: points earned in matches among the tied players only
- alphabetical: eFootball handle, A first

Player id breaks any tie that survives the configured list.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from efhub.db.models import Match, Player, Tournament
from efhub.errors import NotFoundError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PointsConfig:
    win: int = 3
    draw: int = 1
    loss: int = 0

    @classmethod
    def from_tournament(cls, tournament: Tournament) -> "PointsConfig":
        return cls(
            win=tournament.points_for_win,
            draw=tournament.points_for_draw,
            loss=tournament.points_for_loss,
        )


@dataclass
class StandingRow:
    """One line of a standings table."""

    player_id: int
    handle: str = ""
    matches_played: int = 0
    wins: int = 0
    draws: int = 0
    losses: int = 0
    goals_for: int = 0
    goals_against: int = 0
    points: int = 0

    @property
    def goal_difference(self) -> int:
        return self.goals_for - self.goals_against

    def record(self, scored: int, conceded: int, points: PointsConfig) -> None:
        self.matches_played += 1
        self.goals_for += scored
        self.goals_against += conceded
        if scored > conceded:
            self.wins += 1
            self.points += points.win
        elif scored < conceded:
            self.losses += 1
            self.points += points.loss
        else:
            self.draws += 1
            self.points += points.draw


def _countable(match: Match) -> bool:
    return (
        match.status == "completed"
        and match.player2_id is not None
        and match.player1_score is not None
        and match.player2_score is not None
    )


def _head_to_head_points(
    player_ids: set[int],
    matches: Sequence[Match],
    points: PointsConfig,
) -> dict[int, int]:
    """Points each player earned in matches played among ``player_ids`` only."""
    table = {player_id: StandingRow(player_id) for player_id in player_ids}
    for match in matches:
        if match.player1_id in player_ids and match.player2_id in player_ids:
            table[match.player1_id].record(match.player1_score, match.player2_score, points)
            table[match.player2_id].record(match.player2_score, match.player1_score, points)
    return {player_id: row.points for player_id, row in table.items()}


def _tiebreak_keys(
    tiebreaker: str,
    rows: Sequence[StandingRow],
    matches: Sequence[Match],
    points: PointsConfig,
) -> Optional[dict[int, object]]:
    """Sort key per player for one tie-breaker; lower sorts first."""
    if tiebreaker == "goalDifference":
        return {row.player_id: -row.goal_difference for row in rows}
    if tiebreaker == "goalsFor":
        return {row.player_id: -row.goals_for for row in rows}
    if tiebreaker == "headToHead":
        h2h = _head_to_head_points({row.player_id for row in rows}, matches, points)
        return {player_id: -value for player_id, value in h2h.items()}
    if tiebreaker == "alphabetical":
        return {row.player_id: row.handle.lower() for row in rows}
    logger.warning("Ignoring unknown tie-breaker %r", tiebreaker)
    return None


def _break_ties(
    rows: list[StandingRow],
    tiebreakers: Sequence[str],
    matches: Sequence[Match],
    points: PointsConfig,
) -> list[StandingRow]:
    if len(rows) <= 1:
        return rows
    if not tiebreakers:
        return sorted(rows, key=lambda row: row.player_id)

    keys = _tiebreak_keys(tiebreakers[0], rows, matches, points)
    if keys is None:
        return _break_ties(rows, tiebreakers[1:], matches, points)

    def key(row: StandingRow) -> object:
        return keys[row.player_id]

    ordered: list[StandingRow] = []
    for _, bucket in itertools.groupby(sorted(rows, key=key), key=key):
        ordered.extend(_break_ties(list(bucket), tiebreakers[1:], matches, points))
    return ordered


def sort_standings(
    rows: Iterable[StandingRow],
    tiebreakers: Sequence[str],
    matches: Sequence[Match] = (),
    points: PointsConfig = PointsConfig(),
) -> list[StandingRow]:
    """
    Order rows by points, then by the tie-break list.

    The result does not depend on the order of ``rows``.
    """
    by_points = sorted(rows, key=lambda row: -row.points)
    ordered: list[StandingRow] = []
    for _, bucket in itertools.groupby(by_points, key=lambda row: row.points):
        ordered.extend(_break_ties(list(bucket), list(tiebreakers), matches, points))
    return ordered


def compute_table(
    player_ids: Iterable[int],
    matches: Iterable[Match],
    *,
    handles: Optional[dict[int, str]] = None,
    points: PointsConfig = PointsConfig(),
    tiebreakers: Sequence[str] = (),
) -> list[StandingRow]:
    """
    Fold completed matches into a sorted standings table.

    Matches involving players outside ``player_ids`` are ignored.
    """
    handles = handles or {}
    table = {player_id: StandingRow(player_id, handle=handles.get(player_id, "")) for player_id in player_ids}
    counted = []
    for match in matches:
        if not _countable(match):
            continue
        if match.player1_id not in table or match.player2_id not in table:
            continue
        table[match.player1_id].record(match.player1_score, match.player2_score, points)
        table[match.player2_id].record(match.player2_score, match.player1_score, points)
        counted.append(match)
    return sort_standings(table.values(), tiebreakers, counted, points)


def _player_handles(session: Session, player_ids: Iterable[int]) -> dict[int, str]:
    ids = list(player_ids)
    if not ids:
        return {}
    rows = session.execute(select(Player.id, Player.efootball_id).where(Player.id.in_(ids)))
    return {player_id: handle for player_id, handle in rows}


def _completed_matches(session: Session, tournament_id: int, stage: Optional[str] = None) -> list[Match]:
    query = (
        select(Match)
        .where(Match.tournament_id == tournament_id, Match.status == "completed")
        .order_by(Match.match_number)
    )
    if stage is not None:
        query = query.where(Match.stage == stage)
    return list(session.scalars(query))


def recompute_standings(session: Session, tournament_id: int) -> list[StandingRow]:
    """
    Rebuild every participant's tournament stats and position.

    Returns:
        The standings table, best first
    """
    tournament = session.get(Tournament, tournament_id)
    if tournament is None:
        raise NotFoundError(f"Tournament {tournament_id} not found")

    session.flush()
    participants = {p.player_id: p for p in tournament.participants}
    rows = compute_table(
        participants,
        _completed_matches(session, tournament.id),
        handles=_player_handles(session, participants),
        points=PointsConfig.from_tournament(tournament),
        tiebreakers=tournament.tiebreakers,
    )

    for position, row in enumerate(rows, start=1):
        participant = participants[row.player_id]
        participant.matches_played = row.matches_played
        participant.wins = row.wins
        participant.draws = row.draws
        participant.losses = row.losses
        participant.goals_for = row.goals_for
        participant.goals_against = row.goals_against
        participant.points = row.points
        participant.position = position
    session.flush()
    return rows


def group_standings(session: Session, tournament: Tournament) -> dict[str, list[StandingRow]]:
    """
    Standings of each group, using group-stage matches only.

    Group membership is read from the group matches themselves.
    """
    members: dict[str, set[int]] = {}
    group_matches = list(
        session.scalars(
            select(Match)
            .where(Match.tournament_id == tournament.id, Match.stage == "group")
            .order_by(Match.match_number)
        )
    )
    for match in group_matches:
        group = members.setdefault(match.group_name, set())
        group.add(match.player1_id)
        if match.player2_id is not None:
            group.add(match.player2_id)

    handles = _player_handles(session, set().union(*members.values()) if members else set())
    points = PointsConfig.from_tournament(tournament)
    return {
        name: compute_table(
            sorted(members[name]),
            [m for m in group_matches if m.group_name == name],
            handles=handles,
            points=points,
            tiebreakers=tournament.tiebreakers,
        )
        for name in sorted(members, key=lambda label: (len(label), label))
    }
