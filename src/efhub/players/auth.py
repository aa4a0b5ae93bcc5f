"""Player credentials, registration and authentication."""

from __future__ import annotations

import hashlib
import hmac
import logging
import os
import re
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from efhub.db.models import Player, utc_now
from efhub.errors import ConflictError, NotFoundError, ValidationError
from efhub.players.phone import normalize_phone
from efhub.statuses import PLAYER_ROLES

logger = logging.getLogger(__name__)

PBKDF2_ALGORITHM = "sha256"
PBKDF2_ITERATIONS = 390_000
SALT_SIZE = 16
MIN_PASSWORD_LENGTH = 6

_EFOOTBALL_ID_PATTERN = re.compile(r"^[A-Za-z0-9_.-]{3,20}$")


def hash_password(password: str) -> str:
    """Hash a plaintext password using PBKDF2-HMAC-SHA256."""
    if not password:
        raise ValueError("Password cannot be empty")

    salt = os.urandom(SALT_SIZE).hex()
    derived = hashlib.pbkdf2_hmac(
        PBKDF2_ALGORITHM,
        password.encode("utf-8"),
        bytes.fromhex(salt),
        PBKDF2_ITERATIONS,
    ).hex()
    return f"pbkdf2_{PBKDF2_ALGORITHM}${PBKDF2_ITERATIONS}${salt}${derived}"


def verify_password(password: str, stored_hash: str) -> bool:
    """Verify a plaintext password against a stored PBKDF2 hash."""
    try:
        scheme, iter_raw, salt_hex, expected_hex = stored_hash.split("$", 3)
        if scheme != f"pbkdf2_{PBKDF2_ALGORITHM}":
            return False
        actual_hex = hashlib.pbkdf2_hmac(
            PBKDF2_ALGORITHM,
            password.encode("utf-8"),
            bytes.fromhex(salt_hex),
            int(iter_raw),
        ).hex()
        return hmac.compare_digest(actual_hex, expected_hex)
    except (ValueError, TypeError):
        return False


def register_player(
    db: Session,
    phone: str,
    efootball_id: str,
    password: str,
    *,
    role: str = "player",
    display_name: Optional[str] = None,
) -> Player:
    """
    Create a player account.

    Raises:
        ValidationError: Bad phone number, handle, password or role
        ConflictError: Phone or handle already registered
    """
    normalized_phone = normalize_phone(phone)
    if normalized_phone is None:
        raise ValidationError("Invalid phone number. Use format 07XXXXXXXX or 2547XXXXXXXX")
    handle = (efootball_id or "").strip()
    if not _EFOOTBALL_ID_PATTERN.match(handle):
        raise ValidationError("eFootball ID must be 3-20 letters, digits, '_', '.' or '-'")
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if role not in PLAYER_ROLES:
        raise ValidationError(f"Unknown role: {role!r}")

    existing = db.scalars(
        select(Player).where(
            (Player.phone == normalized_phone) | (Player.efootball_id == handle)
        )
    ).first()
    if existing is not None:
        if existing.phone == normalized_phone:
            raise ConflictError("Phone number already registered")
        raise ConflictError("eFootball ID already taken")

    player = Player(
        phone=normalized_phone,
        efootball_id=handle,
        password_hash=hash_password(password),
        role=role,
        display_name=display_name or handle,
    )
    db.add(player)
    db.flush()
    logger.info("Registered player %s (%s)", player.id, handle)
    return player


def authenticate_player(db: Session, phone: str, password: str) -> Optional[Player]:
    """Return the active player when credentials are valid."""
    normalized_phone = normalize_phone(phone)
    if normalized_phone is None:
        return None
    player = db.scalars(select(Player).where(Player.phone == normalized_phone)).first()
    if not player or not player.is_active:
        return None
    if not verify_password(password, player.password_hash):
        return None
    return player


def mark_login(db: Session, player: Player) -> None:
    """Record login timestamp for auditability."""
    player.last_login_at = utc_now()
    db.flush()


def deactivate_player(db: Session, player_id: int) -> Player:
    """Soft-delete: players are never removed, only marked inactive."""
    player = db.get(Player, player_id)
    if player is None:
        raise NotFoundError(f"Player {player_id} not found")
    player.is_active = False
    db.flush()
    logger.info("Deactivated player %s", player_id)
    return player
