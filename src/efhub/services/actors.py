"""Caller identity passed explicitly into every service operation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from efhub.errors import ForbiddenError


@dataclass(frozen=True)
class Actor:
    """An authenticated caller: player id plus role."""

    player_id: Optional[int]
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role in ("admin", "system")

    @property
    def is_system(self) -> bool:
        return self.role == "system"

    @classmethod
    def for_player(cls, player) -> "Actor":
        return cls(player_id=player.id, role=player.role)


# Used by automatic triggers (capacity-reached fixture generation, auto-verified draws).
SYSTEM_ACTOR = Actor(player_id=None, role="system")


def require_admin(actor: Optional[Actor], action: str) -> Actor:
    if actor is None or not actor.is_admin:
        raise ForbiddenError(f"Admin access required to {action}")
    return actor


def require_player(actor: Optional[Actor]) -> int:
    """Return the actor's player id, rejecting anonymous and system callers."""
    if actor is None or actor.player_id is None:
        raise ForbiddenError("A signed-in player is required")
    return actor.player_id
