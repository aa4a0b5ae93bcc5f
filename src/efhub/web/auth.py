"""Session-cookie actor resolution for the JSON API."""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from efhub.db.models import Player
from efhub.db.session import get_db
from efhub.errors import ForbiddenError
from efhub.services.actors import Actor

PLAYER_SESSION_KEY = "player_id"


def current_player(request: Request, db: Session) -> Optional[Player]:
    player_id = request.session.get(PLAYER_SESSION_KEY)
    if not player_id:
        return None
    player = db.get(Player, player_id)
    if player is None or not player.is_active:
        return None
    return player


def login_session(request: Request, player: Player) -> None:
    request.session[PLAYER_SESSION_KEY] = player.id


def logout_session(request: Request) -> None:
    request.session.pop(PLAYER_SESSION_KEY, None)


def require_actor(request: Request, db: Session = Depends(get_db)) -> Actor:
    """FastAPI dependency: the signed-in caller, never an implicit admin."""
    player = current_player(request, db)
    if player is None:
        raise ForbiddenError("Sign in first")
    return Actor.for_player(player)
