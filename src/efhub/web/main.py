"""
FastAPI application for efhub.

A thin JSON layer: each endpoint resolves the signed-in actor from the
session cookie, calls one service operation, commits, and serializes the
result. Domain errors become {"success": false, "error": kind, "message"}
with the kind's status code.

Run with:
    uvicorn efhub.web.main:app --host 0.0.0.0 --port 8000
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.middleware.sessions import SessionMiddleware

from efhub import __version__
from efhub.config import settings
from efhub.db.models import LeaderboardEntry, Match, MatchDispute, Payment, Tournament
from efhub.db.retry import as_concurrency_error
from efhub.db.session import get_db
from efhub.errors import EfhubError, PreconditionError
from efhub.players.auth import authenticate_player, mark_login, register_player
from efhub.services import leaderboard, matches, payments, tournaments
from efhub.services.actors import Actor
from efhub.services.standings import recompute_standings
from efhub.statuses import normalize_status_filter
from efhub.web.auth import current_player, login_session, logout_session, require_actor
from efhub.web.schemas import (
    CancelRequest,
    DisputeRequest,
    DisputeResolution,
    EntryPaymentRequest,
    LoginRequest,
    RegisterRequest,
    RescheduleRequest,
    ScoreSubmission,
    StatusChangeRequest,
    TournamentCreateRequest,
    WalkoverRequest,
)

logging.basicConfig(level=settings.log_level, format=settings.log_format)
logger = logging.getLogger(__name__)

app = FastAPI(title="efhub", version=__version__)
app.add_middleware(
    SessionMiddleware,
    secret_key=settings.session_secret,
    max_age=settings.session_max_age_seconds,
)
# Set by the deployment to an object with stk_push(phone, amount, reference, description).
app.state.payment_gateway = None


@app.exception_handler(EfhubError)
async def efhub_error_handler(request: Request, exc: EfhubError):
    return JSONResponse(exc.to_dict(), status_code=exc.http_status)


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    concurrency_error = as_concurrency_error(exc)
    if concurrency_error is not None:
        return JSONResponse(concurrency_error.to_dict(), status_code=concurrency_error.http_status)
    logger.exception("Unhandled database error on %s", request.url.path)
    return JSONResponse(
        {"success": False, "error": "internal_error", "message": "Database error"},
        status_code=500,
    )


# =============================================================================
# Serialization
# =============================================================================

def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _serialize_tournament(tournament: Tournament) -> Dict[str, Any]:
    return {
        "id": tournament.id,
        "name": tournament.name,
        "description": tournament.description,
        "format": tournament.format,
        "status": tournament.status,
        "capacity": tournament.capacity,
        "participant_count": tournament.participant_count,
        "available_slots": tournament.available_slots,
        "registration_status": tournament.registration_status(),
        "entry_fee": str(tournament.entry_fee),
        "prize_pool": str(tournament.prize_pool),
        "prize_distribution": tournament.prize_distribution,
        "tournament_start": _iso(tournament.tournament_start),
        "points": {
            "win": tournament.points_for_win,
            "draw": tournament.points_for_draw,
            "loss": tournament.points_for_loss,
        },
        "tiebreakers": tournament.tiebreakers,
        "qualifiers_per_group": tournament.qualifiers_per_group,
        "winner_id": tournament.winner_id,
    }


def _serialize_match(match: Match) -> Dict[str, Any]:
    return {
        "id": match.id,
        "tournament_id": match.tournament_id,
        "match_number": match.match_number,
        "round": match.round,
        "round_number": match.round_number,
        "stage": match.stage,
        "group_name": match.group_name,
        "status": match.status,
        "is_bye": match.is_bye,
        "scheduled_time": _iso(match.scheduled_time),
        "player1": {
            "id": match.player1_id,
            "score": match.player1_score,
            "confirmed": match.player1_confirmed,
        },
        "player2": {
            "id": match.player2_id,
            "score": match.player2_score,
            "confirmed": match.player2_confirmed,
        },
        "result": match.result_dict(),
    }


def _serialize_dispute(dispute: MatchDispute) -> Dict[str, Any]:
    return {
        "id": dispute.id,
        "match_id": dispute.match_id,
        "raised_by_id": dispute.raised_by_id,
        "reason": dispute.reason,
        "description": dispute.description,
        "status": dispute.status,
        "resolution": dispute.resolution,
        "resolved_at": _iso(dispute.resolved_at),
    }


def _serialize_entry(entry: LeaderboardEntry) -> Dict[str, Any]:
    return {
        "player_id": entry.player_id,
        "efootball_id": entry.player.efootball_id,
        "rank": entry.rank,
        "previous_rank": entry.previous_rank,
        "rank_change": entry.rank_change,
        "display_rank": entry.display_rank,
        "trend": entry.rank_trend,
        "points": entry.points,
        "wins": entry.wins,
        "draws": entry.draws,
        "losses": entry.losses,
        "total_matches": entry.total_matches,
        "win_rate": float(entry.win_rate),
    }


def _serialize_payment(payment: Payment) -> Dict[str, Any]:
    return {
        "id": payment.id,
        "transaction_id": payment.transaction_id,
        "type": payment.type,
        "amount": str(payment.amount),
        "status": payment.status,
        "checkout_request_id": payment.checkout_request_id,
    }


# =============================================================================
# Accounts
# =============================================================================

@app.post("/api/auth/register")
async def api_register(body: RegisterRequest, request: Request, db: Session = Depends(get_db)):
    player = register_player(
        db, body.phone, body.efootball_id, body.password, display_name=body.display_name
    )
    db.commit()
    login_session(request, player)
    return JSONResponse(
        {"success": True, "player": {"id": player.id, "efootball_id": player.efootball_id}},
        status_code=201,
    )


@app.post("/api/auth/login")
async def api_login(body: LoginRequest, request: Request, db: Session = Depends(get_db)):
    player = authenticate_player(db, body.phone, body.password)
    if player is None:
        return JSONResponse(
            {"success": False, "error": "invalid_credentials", "message": "Invalid phone or password"},
            status_code=401,
        )
    mark_login(db, player)
    db.commit()
    login_session(request, player)
    return {"success": True, "player": {"id": player.id, "role": player.role}}


@app.post("/api/auth/logout")
async def api_logout(request: Request):
    logout_session(request)
    return {"success": True}


@app.get("/api/auth/me")
async def api_me(request: Request, db: Session = Depends(get_db)):
    player = current_player(request, db)
    if player is None:
        return {"success": True, "player": None}
    return {
        "success": True,
        "player": {
            "id": player.id,
            "efootball_id": player.efootball_id,
            "role": player.role,
            "stats": {
                "matches_played": player.matches_played,
                "wins": player.wins,
                "draws": player.draws,
                "losses": player.losses,
                "points": player.points,
                "win_rate": float(player.win_rate),
                "ranking": player.ranking,
            },
        },
    }


# =============================================================================
# Tournaments
# =============================================================================

@app.post("/api/tournaments")
async def api_create_tournament(
    body: TournamentCreateRequest,
    actor: Actor = Depends(require_actor),
    db: Session = Depends(get_db),
):
    options = body.model_dump(exclude={"format"})
    tournament = tournaments.create_tournament(db, actor, tournament_format=body.format, **options)
    db.commit()
    return JSONResponse({"success": True, "tournament": _serialize_tournament(tournament)}, status_code=201)


@app.get("/api/tournaments/{tournament_id}")
async def api_tournament(tournament_id: int, db: Session = Depends(get_db)):
    tournament = tournaments.get_tournament(db, tournament_id)
    return {"success": True, "tournament": _serialize_tournament(tournament)}


@app.post("/api/tournaments/{tournament_id}/status")
async def api_tournament_status(
    tournament_id: int,
    body: StatusChangeRequest,
    actor: Actor = Depends(require_actor),
    db: Session = Depends(get_db),
):
    tournament = tournaments.transition_status(db, tournament_id, actor, body.status)
    db.commit()
    return {"success": True, "tournament": _serialize_tournament(tournament)}


@app.post("/api/tournaments/{tournament_id}/join")
async def api_join(tournament_id: int, actor: Actor = Depends(require_actor), db: Session = Depends(get_db)):
    participant = tournaments.join_tournament(db, tournament_id, actor)
    db.commit()
    return {"success": True, "participant": {"player_id": participant.player_id, "seed": participant.seed}}


@app.post("/api/tournaments/{tournament_id}/leave")
async def api_leave(tournament_id: int, actor: Actor = Depends(require_actor), db: Session = Depends(get_db)):
    tournaments.leave_tournament(db, tournament_id, actor)
    db.commit()
    return {"success": True}


@app.post("/api/tournaments/{tournament_id}/fixtures")
async def api_generate_fixtures(
    tournament_id: int,
    actor: Actor = Depends(require_actor),
    db: Session = Depends(get_db),
):
    created = tournaments.generate_fixtures(db, tournament_id, actor)
    db.commit()
    return JSONResponse(
        {"success": True, "matches": [_serialize_match(m) for m in created]},
        status_code=201,
    )


@app.get("/api/tournaments/{tournament_id}/fixtures")
async def api_fixtures(
    tournament_id: int,
    status: Optional[str] = Query(None, description="Comma-separated match statuses"),
    db: Session = Depends(get_db),
):
    tournaments.get_tournament(db, tournament_id)
    status_list = normalize_status_filter(status.split(",") if status else None)
    rows: List[Match] = list(
        db.scalars(
            select(Match)
            .where(Match.tournament_id == tournament_id, Match.status.in_(status_list))
            .order_by(Match.match_number)
        )
    )
    return {"success": True, "matches": [_serialize_match(m) for m in rows]}


@app.get("/api/tournaments/{tournament_id}/standings")
async def api_standings(tournament_id: int, db: Session = Depends(get_db)):
    rows = recompute_standings(db, tournament_id)
    db.commit()
    return {
        "success": True,
        "standings": [
            {
                "position": position,
                "player_id": row.player_id,
                "efootball_id": row.handle,
                "matches_played": row.matches_played,
                "wins": row.wins,
                "draws": row.draws,
                "losses": row.losses,
                "goals_for": row.goals_for,
                "goals_against": row.goals_against,
                "goal_difference": row.goal_difference,
                "points": row.points,
            }
            for position, row in enumerate(rows, start=1)
        ],
    }


# =============================================================================
# Matches and disputes
# =============================================================================

@app.post("/api/matches/{match_id}/score")
async def api_submit_score(
    match_id: int,
    body: ScoreSubmission,
    actor: Actor = Depends(require_actor),
    db: Session = Depends(get_db),
):
    match = matches.submit_score(
        db, match_id, actor, body.score, screenshot=body.screenshot, events=body.events
    )
    db.commit()
    return {"success": True, "match": _serialize_match(match)}


@app.post("/api/matches/{match_id}/verify")
async def api_verify(match_id: int, actor: Actor = Depends(require_actor), db: Session = Depends(get_db)):
    match = matches.verify_result(db, match_id, actor)
    db.commit()
    return {"success": True, "match": _serialize_match(match)}


@app.post("/api/matches/{match_id}/reschedule")
async def api_reschedule(
    match_id: int,
    body: RescheduleRequest,
    actor: Actor = Depends(require_actor),
    db: Session = Depends(get_db),
):
    match = matches.reschedule_match(db, match_id, actor, body.scheduled_time)
    db.commit()
    return {"success": True, "match": _serialize_match(match)}


@app.post("/api/matches/{match_id}/cancel")
async def api_cancel(
    match_id: int,
    body: CancelRequest,
    actor: Actor = Depends(require_actor),
    db: Session = Depends(get_db),
):
    match = matches.cancel_match(db, match_id, actor, reason=body.reason)
    db.commit()
    return {"success": True, "match": _serialize_match(match)}


@app.post("/api/matches/{match_id}/walkover")
async def api_walkover(
    match_id: int,
    body: WalkoverRequest,
    actor: Actor = Depends(require_actor),
    db: Session = Depends(get_db),
):
    match = matches.award_walkover(db, match_id, actor, body.winner_id, reason=body.reason)
    db.commit()
    return {"success": True, "match": _serialize_match(match)}


@app.post("/api/matches/{match_id}/disputes")
async def api_raise_dispute(
    match_id: int,
    body: DisputeRequest,
    actor: Actor = Depends(require_actor),
    db: Session = Depends(get_db),
):
    dispute = matches.raise_dispute(db, match_id, actor, body.reason, body.description)
    db.commit()
    return JSONResponse({"success": True, "dispute": _serialize_dispute(dispute)}, status_code=201)


@app.post("/api/disputes/{dispute_id}/review")
async def api_review_dispute(
    dispute_id: int,
    actor: Actor = Depends(require_actor),
    db: Session = Depends(get_db),
):
    dispute = matches.review_dispute(db, dispute_id, actor)
    db.commit()
    return {"success": True, "dispute": _serialize_dispute(dispute)}


@app.post("/api/disputes/{dispute_id}/resolve")
async def api_resolve_dispute(
    dispute_id: int,
    body: DisputeResolution,
    actor: Actor = Depends(require_actor),
    db: Session = Depends(get_db),
):
    dispute = matches.resolve_dispute(
        db,
        dispute_id,
        actor,
        body.decision,
        player1_score=body.player1_score,
        player2_score=body.player2_score,
        resolution=body.resolution,
    )
    db.commit()
    return {"success": True, "dispute": _serialize_dispute(dispute)}


# =============================================================================
# Leaderboard
# =============================================================================

@app.get("/api/leaderboard")
async def api_leaderboard(
    scope: str = Query("global", description="global, monthly, weekly or tournament"),
    period: Optional[str] = Query(None, description="Period key, e.g. 2026-03 or 2026-W11"),
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=100),
    db: Session = Depends(get_db),
):
    entries = leaderboard.get_leaderboard(db, scope, period, page=page, page_size=per_page)
    if period is None:
        period = leaderboard.scope_period(scope)
    return {
        "success": True,
        "scope": scope,
        "period": period,
        "entries": [_serialize_entry(e) for e in entries],
        "page": page,
        "per_page": per_page,
    }


# =============================================================================
# Payments
# =============================================================================

@app.post("/api/tournaments/{tournament_id}/payments")
async def api_entry_payment(
    tournament_id: int,
    body: EntryPaymentRequest,
    request: Request,
    actor: Actor = Depends(require_actor),
    db: Session = Depends(get_db),
):
    gateway = request.app.state.payment_gateway
    if gateway is None:
        raise PreconditionError("Payment gateway is not configured")
    payment = payments.initiate_entry_payment(db, actor, tournament_id, body.phone, gateway)
    db.commit()
    return JSONResponse({"success": True, "payment": _serialize_payment(payment)}, status_code=201)


@app.post("/api/payments/mpesa/callback")
async def api_mpesa_callback(request: Request, db: Session = Depends(get_db)):
    """Gateway webhook; always acknowledged with HTTP 200."""
    try:
        payload = await request.json()
    except ValueError:
        payload = None
    ack = payments.handle_stk_callback(db, payload)
    db.commit()
    return ack
