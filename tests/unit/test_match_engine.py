"""Unit tests for score submission, verification and disputes."""

from datetime import datetime

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from efhub.db.models import LeaderboardEntry, Match, MatchDispute, OperationLog
from efhub.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    PreconditionError,
    ValidationError,
)
from efhub.services import matches as match_service
from efhub.services.actors import Actor
from efhub.services.matches import (
    cancel_match,
    raise_dispute,
    reschedule_match,
    resolve_dispute,
    retry_pending_disputes,
    review_dispute,
    submit_score,
    validate_events,
    verify_result,
)
from efhub.services.tournaments import transition_status


@pytest.fixture
def league_match(db_session, make_tournament, fill_tournament):
    """First fixture of a full three-player league (three matches)."""
    tournament = make_tournament("league", 3)
    fill_tournament(tournament)
    return db_session.scalars(
        select(Match).where(Match.tournament_id == tournament.id).order_by(Match.match_number)
    ).first()


def _actors(match):
    return Actor(match.player1_id, "player"), Actor(match.player2_id, "player")


def test_first_submission_starts_match(db_session, league_match):
    alice, _ = _actors(league_match)
    submit_score(db_session, league_match.id, alice, 2, screenshot="uploads/a.png")

    assert league_match.status == "in_progress"
    assert league_match.player1_score == 2
    assert league_match.player1_confirmed
    assert league_match.player1_screenshot == "uploads/a.png"
    assert not league_match.player2_confirmed
    assert league_match.actual_start_time is not None


def test_equal_scores_auto_verify_as_draw(db_session, league_match):
    alice, bob = _actors(league_match)
    submit_score(db_session, league_match.id, alice, 2)
    submit_score(db_session, league_match.id, bob, 2)

    assert league_match.status == "completed"
    assert league_match.is_draw
    assert league_match.winner_id is None
    assert league_match.confirmed_by_id is None
    assert league_match.confirmed_at is not None
    assert league_match.stats_applied_at is not None


def test_mismatch_disputes_then_admin_verifies(db_session, league_match, admin_actor):
    alice, bob = _actors(league_match)
    submit_score(db_session, league_match.id, alice, 3)
    submit_score(db_session, league_match.id, bob, 1)

    assert league_match.status == "disputed"
    assert league_match.winner_id is None
    disputes = league_match.disputes
    assert len(disputes) == 1
    assert disputes[0].reason == "score_mismatch"
    assert disputes[0].status == "open"
    assert disputes[0].raised_by_id is None

    verify_result(db_session, league_match.id, admin_actor)

    assert league_match.status == "completed"
    assert league_match.winner_id == alice.player_id
    assert league_match.loser_id == bob.player_id
    assert league_match.confirmed_by_id == admin_actor.player_id
    assert league_match.disputes[0].status == "resolved"


def test_resubmitting_while_disputed_keeps_one_dispute(db_session, league_match):
    alice, bob = _actors(league_match)
    submit_score(db_session, league_match.id, alice, 3)
    submit_score(db_session, league_match.id, bob, 1)
    submit_score(db_session, league_match.id, bob, 2)

    open_disputes = [d for d in league_match.disputes if d.is_open]
    assert len(open_disputes) == 1
    assert league_match.status == "disputed"


def test_agreeing_after_dispute_closes_it(db_session, league_match):
    alice, bob = _actors(league_match)
    submit_score(db_session, league_match.id, alice, 3)
    submit_score(db_session, league_match.id, bob, 1)
    submit_score(db_session, league_match.id, alice, 1)

    assert league_match.status == "completed"
    assert league_match.is_draw
    assert all(not d.is_open for d in league_match.disputes)


def test_outsider_cannot_submit(db_session, league_match, make_player):
    outsider = Actor.for_player(make_player())
    with pytest.raises(ForbiddenError):
        submit_score(db_session, league_match.id, outsider, 1)
    assert league_match.player1_score is None


@pytest.mark.parametrize("score", [-1, 100, "3", 2.5, True, None])
def test_invalid_scores_rejected(db_session, league_match, score):
    alice, _ = _actors(league_match)
    with pytest.raises(ValidationError):
        submit_score(db_session, league_match.id, alice, score)


def test_validate_events():
    events = validate_events({"goals": [{"minute": 12, "player": "Mbappe"}]})
    assert events["goals"] == [{"minute": 12, "player": "Mbappe"}]
    assert events["red_cards"] == []
    with pytest.raises(ValidationError):
        validate_events({"penalties": []})
    with pytest.raises(ValidationError):
        validate_events({"goals": [{"minute": -4}]})
    with pytest.raises(ValidationError):
        validate_events({"goals": "twice"})


def test_completed_match_rejects_scores(db_session, league_match):
    alice, bob = _actors(league_match)
    submit_score(db_session, league_match.id, alice, 0)
    submit_score(db_session, league_match.id, bob, 0)
    with pytest.raises(ConflictError):
        submit_score(db_session, league_match.id, alice, 1)


def test_unknown_match(db_session, admin_actor):
    with pytest.raises(NotFoundError):
        submit_score(db_session, 424242, admin_actor, 1)


def test_verify_requires_admin_and_both_scores(db_session, league_match, admin_actor):
    alice, _ = _actors(league_match)
    submit_score(db_session, league_match.id, alice, 4)

    with pytest.raises(ForbiddenError):
        verify_result(db_session, league_match.id, alice)
    with pytest.raises(PreconditionError):
        verify_result(db_session, league_match.id, admin_actor)


def test_reverify_does_not_double_count(db_session, league_match, admin_actor):
    alice, bob = _actors(league_match)
    submit_score(db_session, league_match.id, alice, 3)
    submit_score(db_session, league_match.id, bob, 1)
    verify_result(db_session, league_match.id, admin_actor)
    applied_at = league_match.stats_applied_at
    winner = league_match.winner

    verify_result(db_session, league_match.id, admin_actor)

    assert league_match.stats_applied_at == applied_at
    assert winner.matches_played == 1
    assert winner.wins == 1


def test_dispute_write_failure_is_logged_and_retried(db_session, league_match, monkeypatch):
    alice, bob = _actors(league_match)

    def broken_insert(session, match):
        raise OperationalError("INSERT INTO match_disputes", {}, Exception("disk I/O error"))

    original_insert = match_service._insert_system_dispute
    monkeypatch.setattr(match_service, "_insert_system_dispute", broken_insert)
    submit_score(db_session, league_match.id, alice, 3)
    match = submit_score(db_session, league_match.id, bob, 1)

    # The submission itself succeeded.
    assert match.status == "disputed"
    assert match.player2_score == 1
    assert db_session.scalars(select(MatchDispute)).all() == []
    log_entry = db_session.scalars(select(OperationLog)).one()
    assert log_entry.operation == "dispute_record"
    assert log_entry.needs_retry
    assert log_entry.details == {"match_id": match.id}

    monkeypatch.setattr(match_service, "_insert_system_dispute", original_insert)
    assert retry_pending_disputes(db_session) == 1

    dispute = db_session.scalars(select(MatchDispute)).one()
    assert dispute.match_id == match.id
    assert dispute.reason == "score_mismatch"
    assert not log_entry.needs_retry
    assert log_entry.attempts == 2
    assert retry_pending_disputes(db_session) == 0


def test_player_dispute_review_and_reject(db_session, league_match, admin_actor, make_player):
    alice, bob = _actors(league_match)
    submit_score(db_session, league_match.id, alice, 2)
    submit_score(db_session, league_match.id, bob, 2)

    with pytest.raises(ForbiddenError):
        raise_dispute(db_session, league_match.id, Actor.for_player(make_player()), "cheating")
    with pytest.raises(ValidationError):
        raise_dispute(db_session, league_match.id, bob, "   ")

    dispute = raise_dispute(db_session, league_match.id, bob, "wrong_score", "It was 3-2")
    assert dispute.raised_by_id == bob.player_id

    review_dispute(db_session, dispute.id, admin_actor)
    assert dispute.status == "under_review"
    with pytest.raises(ConflictError):
        review_dispute(db_session, dispute.id, admin_actor)

    resolve_dispute(db_session, dispute.id, admin_actor, "rejected", resolution="Screenshot shows 2-2")
    assert dispute.status == "rejected"
    assert dispute.resolved_by_id == admin_actor.player_id
    assert league_match.is_draw
    with pytest.raises(ConflictError):
        resolve_dispute(db_session, dispute.id, admin_actor, "resolved")


def test_resolve_with_corrected_scores(db_session, league_match, admin_actor):
    alice, bob = _actors(league_match)
    submit_score(db_session, league_match.id, alice, 3)
    submit_score(db_session, league_match.id, bob, 1)
    dispute = league_match.disputes[0]

    with pytest.raises(ValidationError):
        resolve_dispute(db_session, dispute.id, admin_actor, "resolved", player1_score=1)

    resolve_dispute(
        db_session, dispute.id, admin_actor, "resolved", player1_score=1, player2_score=2
    )

    assert dispute.status == "resolved"
    assert league_match.status == "completed"
    assert (league_match.player1_score, league_match.player2_score) == (1, 2)
    assert league_match.winner_id == bob.player_id
    assert league_match.admin_notes == "Result corrected"


def test_reschedule_and_cancel(db_session, league_match, admin_actor, make_player):
    alice, _ = _actors(league_match)
    when = datetime(2026, 4, 1, 20, 0)
    reschedule_match(db_session, league_match.id, alice, when)
    assert league_match.scheduled_time == when

    with pytest.raises(ForbiddenError):
        reschedule_match(db_session, league_match.id, Actor.for_player(make_player()), when)
    with pytest.raises(ForbiddenError):
        cancel_match(db_session, league_match.id, alice)

    cancel_match(db_session, league_match.id, admin_actor, reason="No show")
    assert league_match.status == "cancelled"
    assert league_match.admin_notes == "No show"
    with pytest.raises(ConflictError):
        submit_score(db_session, league_match.id, alice, 1)
    with pytest.raises(ConflictError):
        cancel_match(db_session, league_match.id, admin_actor)


def test_first_score_starts_the_tournament(db_session, league_match):
    alice, _ = _actors(league_match)
    assert league_match.tournament.status == "upcoming"
    submit_score(db_session, league_match.id, alice, 1)
    assert league_match.tournament.status == "active"


def test_cancelled_tournament_takes_no_more_results(db_session, league_match, admin_actor):
    alice, bob = _actors(league_match)
    submit_score(db_session, league_match.id, alice, 3)
    submit_score(db_session, league_match.id, bob, 1)
    dispute = league_match.disputes[0]

    transition_status(db_session, league_match.tournament_id, admin_actor, "cancelled")

    matches = db_session.scalars(
        select(Match).where(Match.tournament_id == league_match.tournament_id)
    ).all()
    assert {m.status for m in matches} == {"cancelled"}
    assert league_match.admin_notes == "Tournament cancelled"
    assert dispute.status == "rejected"
    with pytest.raises(ConflictError):
        submit_score(db_session, league_match.id, alice, 2)
    with pytest.raises(ConflictError):
        verify_result(db_session, league_match.id, admin_actor)
    with pytest.raises(ConflictError):
        resolve_dispute(db_session, dispute.id, admin_actor, "resolved")
    assert db_session.scalars(select(LeaderboardEntry)).all() == []


def test_completed_tournament_takes_no_more_results(db_session, league_match, admin_actor):
    alice, bob = _actors(league_match)
    submit_score(db_session, league_match.id, alice, 2)
    submit_score(db_session, league_match.id, bob, 0)
    verify_result(db_session, league_match.id, admin_actor)
    transition_status(db_session, league_match.tournament_id, admin_actor, "completed")

    pending = db_session.scalars(
        select(Match).where(
            Match.tournament_id == league_match.tournament_id, Match.status == "scheduled"
        )
    ).first()
    with pytest.raises(ConflictError, match="Tournament is completed"):
        submit_score(db_session, pending.id, Actor(pending.player1_id, "player"), 1)
    with pytest.raises(ConflictError, match="Tournament is completed"):
        verify_result(db_session, league_match.id, admin_actor)
    assert pending.player1_score is None
