"""Unit tests for knockout progression and tournament completion."""

from datetime import datetime

import pytest
from sqlalchemy import select

from efhub.db.models import Match
from efhub.draw import get_round_count
from efhub.errors import ConflictError, ForbiddenError, PreconditionError, ValidationError
from efhub.services.actors import Actor
from efhub.services.matches import award_walkover, cancel_match, resolve_dispute, submit_score, verify_result
from efhub.services.progression import on_round_complete, seed_knockout_from_groups
from efhub.services.standings import group_standings


def _matches(db_session, tournament, **filters):
    query = select(Match).where(Match.tournament_id == tournament.id).order_by(Match.match_number)
    for column, value in filters.items():
        query = query.where(getattr(Match, column) == value)
    return list(db_session.scalars(query))


def _play_out(db_session, tournament, play_match, max_rounds=10):
    """Player 1 wins every scheduled match 2-0 until nothing is left to play."""
    for _ in range(max_rounds):
        pending = _matches(db_session, tournament, status="scheduled")
        if not pending:
            return
        for match in pending:
            play_match(match, 2, 0)
    raise AssertionError("tournament did not finish")


@pytest.mark.parametrize("capacity", [2, 4, 5, 7, 8])
def test_knockout_runs_to_a_single_winner(db_session, make_tournament, fill_tournament, play_match, capacity):
    tournament = make_tournament("knockout", capacity)
    players = fill_tournament(tournament)

    _play_out(db_session, tournament, play_match)

    assert tournament.status == "completed"
    assert tournament.winner_id in {p.id for p in players}
    assert tournament.completed_at is not None

    matches = _matches(db_session, tournament)
    assert [m.match_number for m in matches] == list(range(1, len(matches) + 1))
    assert len([m for m in matches if not m.is_bye]) == capacity - 1
    assert max(m.round_number for m in matches) == get_round_count(capacity)
    final = matches[-1]
    assert final.round == "Final"
    assert final.winner_id == tournament.winner_id
    # Every player except the champion lost exactly once.
    losers = [m.loser_id for m in matches if not m.is_bye]
    assert sorted(losers) == sorted(p.id for p in players if p.id != tournament.winner_id)


def test_round_labels_follow_players_alive(db_session, make_tournament, fill_tournament, play_match):
    tournament = make_tournament("knockout", 5)
    fill_tournament(tournament)
    _play_out(db_session, tournament, play_match)

    labels = {m.round_number: m.round for m in _matches(db_session, tournament)}
    assert labels == {1: "Round 1", 2: "Round 2", 3: "Final"}


def test_next_round_waits_for_whole_round(db_session, make_tournament, fill_tournament, play_match):
    tournament = make_tournament("knockout", 4)
    fill_tournament(tournament)
    first, second = _matches(db_session, tournament)

    play_match(first, 3, 1)
    assert len(_matches(db_session, tournament)) == 2

    play_match(second, 0, 2)
    final = _matches(db_session, tournament, round_number=2)
    assert len(final) == 1
    assert final[0].round == "Final"
    assert {final[0].player1_id, final[0].player2_id} == {first.player1_id, second.player2_id}
    assert final[0].match_number == 3


def test_level_knockout_match_is_disputed_then_settled_by_corrected_score(
    db_session, make_tournament, fill_tournament, play_match, admin_actor
):
    tournament = make_tournament("knockout", 4)
    fill_tournament(tournament)
    first, second = _matches(db_session, tournament)

    submit_score(db_session, first.id, Actor(first.player1_id, "player"), 1)
    submit_score(db_session, first.id, Actor(first.player2_id, "player"), 1)
    play_match(second, 2, 0)

    assert first.status == "disputed"
    assert not first.is_draw
    assert first.stats_applied_at is None
    dispute = first.disputes[0]
    assert dispute.reason == "knockout_draw"
    assert _matches(db_session, tournament, round_number=2) == []
    with pytest.raises(PreconditionError):
        verify_result(db_session, first.id, admin_actor)
    with pytest.raises(PreconditionError):
        resolve_dispute(db_session, dispute.id, admin_actor, "resolved")
    assert dispute.status == "open"

    # Decided on penalties.
    resolve_dispute(
        db_session, dispute.id, admin_actor, "resolved", player1_score=1, player2_score=2,
        resolution="Won 4-3 on penalties",
    )

    assert first.winner_id == first.player2_id
    final = _matches(db_session, tournament, round_number=2)
    assert len(final) == 1
    assert final[0].round == "Final"
    assert {final[0].player1_id, final[0].player2_id} == {first.player2_id, second.player1_id}

    play_match(final[0], 3, 0)
    assert tournament.status == "completed"
    assert tournament.winner_id == final[0].player1_id


def test_cancelled_knockout_match_is_settled_by_walkover(
    db_session, make_tournament, fill_tournament, play_match, admin_actor
):
    tournament = make_tournament("knockout", 4)
    fill_tournament(tournament)
    first, second = _matches(db_session, tournament)

    play_match(first, 2, 1)
    cancel_match(db_session, second.id, admin_actor, reason="Server outage")
    assert _matches(db_session, tournament, round_number=2) == []
    with pytest.raises(PreconditionError):
        on_round_complete(db_session, tournament.id)

    with pytest.raises(ValidationError):
        award_walkover(db_session, second.id, admin_actor, first.player1_id)
    award_walkover(db_session, second.id, admin_actor, second.player2_id)

    assert second.status == "completed"
    assert second.winner_id == second.player2_id
    assert second.loser_id == second.player1_id
    assert (second.player1_score, second.player2_score) == (None, None)
    assert second.admin_notes == "Walkover"
    # Walkovers carry no result into player stats.
    assert second.winner.matches_played == 0

    final = _matches(db_session, tournament, round_number=2)[0]
    assert final.round == "Final"
    assert {final.player1_id, final.player2_id} == {first.player1_id, second.player2_id}
    with pytest.raises(ConflictError):
        award_walkover(db_session, second.id, admin_actor, second.player1_id)


def test_walkover_only_settles_knockout_matches(db_session, make_tournament, fill_tournament, admin_actor, make_player):
    tournament = make_tournament("league", 2)
    fill_tournament(tournament)
    match = _matches(db_session, tournament)[0]
    with pytest.raises(ConflictError):
        award_walkover(db_session, match.id, admin_actor, match.player1_id)

    cup = make_tournament("knockout", 2, name="Walkover Cup")
    fill_tournament(cup)
    final = _matches(db_session, cup)[0]
    with pytest.raises(ForbiddenError):
        award_walkover(db_session, final.id, Actor.for_player(make_player()), final.player1_id)

    award_walkover(db_session, final.id, admin_actor, final.player1_id, reason="Opponent withdrew")
    assert final.admin_notes == "Opponent withdrew"
    assert cup.status == "completed"
    assert cup.winner_id == final.player1_id


def test_later_rounds_are_scheduled_after_previous_one(db_session, make_tournament, fill_tournament, play_match):
    tournament = make_tournament(
        "knockout",
        4,
        tournament_start=datetime(2026, 3, 2),
        matches_per_day=4,
        daily_start_time="18:00",
    )
    fill_tournament(tournament)
    semis = _matches(db_session, tournament)
    assert [m.scheduled_time for m in semis] == [datetime(2026, 3, 2, 18, 0), datetime(2026, 3, 2, 18, 15)]

    for match in semis:
        play_match(match, 1, 0)

    final = _matches(db_session, tournament, round_number=2)[0]
    assert final.scheduled_time == datetime(2026, 3, 3, 18, 0)


def test_group_knockout_seeds_qualifiers_by_tier(db_session, make_tournament, fill_tournament, play_match):
    tournament = make_tournament("group+knockout", 8, qualifiers_per_group=2)
    fill_tournament(tournament)
    group_matches = _matches(db_session, tournament, stage="group")
    assert len(group_matches) == 12

    with pytest.raises(PreconditionError):
        seed_knockout_from_groups(db_session, tournament.id)

    for match in group_matches[:-1]:
        play_match(match, 2, 0)
    assert _matches(db_session, tournament, stage="knockout") == []
    play_match(group_matches[-1], 1, 3)

    tables = group_standings(db_session, tournament)
    assert list(tables) == ["Group A", "Group B"]
    group_a, group_b = tables["Group A"], tables["Group B"]

    semis = _matches(db_session, tournament, stage="knockout")
    assert [m.round for m in semis] == ["Semi-Finals", "Semi-Finals"]
    assert [(m.player1_id, m.player2_id) for m in semis] == [
        (group_a[0].player_id, group_b[1].player_id),
        (group_b[0].player_id, group_a[1].player_id),
    ]
    assert seed_knockout_from_groups(db_session, tournament.id) == []

    _play_out(db_session, tournament, play_match)
    assert tournament.status == "completed"
    assert tournament.winner_id == semis[0].player1_id


def test_seeding_requires_group_knockout_format(db_session, make_tournament, fill_tournament):
    tournament = make_tournament("league", 2)
    fill_tournament(tournament)
    with pytest.raises(ConflictError):
        seed_knockout_from_groups(db_session, tournament.id)


@pytest.mark.parametrize("tournament_format, capacity", [("league", 4), ("group", 6)])
def test_round_robin_formats_complete_with_table_leader(
    db_session, make_tournament, fill_tournament, play_match, tournament_format, capacity
):
    tournament = make_tournament(tournament_format, capacity)
    fill_tournament(tournament)
    matches = _matches(db_session, tournament)

    for match in matches[:-1]:
        play_match(match, 2, 1)
    assert tournament.status == "active"
    play_match(matches[-1], 0, 0)

    assert tournament.status == "completed"
    leader = min(tournament.participants, key=lambda p: p.position)
    assert tournament.winner_id == leader.player_id


def test_cancelled_matches_count_as_finished(db_session, make_tournament, fill_tournament, play_match, admin_actor):
    tournament = make_tournament("league", 3)
    fill_tournament(tournament)
    first, second, third = _matches(db_session, tournament)

    play_match(first, 1, 0)
    cancel_match(db_session, second.id, admin_actor, reason="Both no-show")
    assert tournament.status == "active"
    play_match(third, 0, 2)

    assert tournament.status == "completed"
