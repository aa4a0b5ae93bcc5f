"""Scope locks that serialise read-modify-write cycles on shared rows.

Leaderboard re-ranking touches every entry of a scope, which no single row
lock protects. On PostgreSQL a transaction-scoped advisory lock covers it;
other backends (SQLite in tests) fall back to a process-local lock per key.
Both kinds are held until the surrounding transaction commits or rolls
back, so a second writer never ranks on top of uncommitted rows.
"""

from __future__ import annotations

import hashlib
import threading
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import event, text
from sqlalchemy.orm import Session, SessionTransaction

from efhub.config import settings
from efhub.errors import ConcurrencyError

_local_locks: dict[int, threading.Lock] = {}
_local_locks_guard = threading.Lock()

# session.info key holding the local locks a session's transaction owns
_HELD_KEY = "efhub_scope_locks"


def advisory_lock_key(name: str) -> int:
    """Return a deterministic signed 64-bit lock key from a scope name."""
    digest = hashlib.sha256(name.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], byteorder="big", signed=True)


def _local_lock(key: int) -> threading.Lock:
    with _local_locks_guard:
        lock = _local_locks.get(key)
        if lock is None:
            lock = threading.Lock()
            _local_locks[key] = lock
        return lock


def _acquire_local(session: Session, key: int) -> None:
    held: dict[int, threading.Lock] = session.info.setdefault(_HELD_KEY, {})
    if key in held:
        return
    lock = _local_lock(key)
    if not lock.acquire(timeout=settings.db_statement_timeout_ms / 1000):
        raise ConcurrencyError("Timed out waiting for a scope lock")
    held[key] = lock


@event.listens_for(Session, "after_transaction_end")
def _release_local_locks(session: Session, transaction: SessionTransaction) -> None:
    # Savepoints end inside the outer transaction; only its end releases.
    if transaction.parent is not None:
        return
    held = session.info.pop(_HELD_KEY, None)
    if held:
        for lock in held.values():
            lock.release()


@contextmanager
def scope_lock(session: Session, name: str) -> Generator[None, None, None]:
    """
    Lock ``name`` for the rest of the session's current transaction.

    On PostgreSQL this is ``pg_advisory_xact_lock``. Elsewhere a
    process-local lock is taken and released by the transaction's end.
    Re-entering a scope the transaction already holds does not block.

    Raises:
        ConcurrencyError: The local lock was not granted within the
            statement timeout
    """
    key = advisory_lock_key(name)
    bind = session.get_bind()
    if bind.dialect.name == "postgresql":
        session.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": key})
        yield
        return

    # Open the transaction whose end will release the lock.
    session.connection()
    _acquire_local(session, key)
    yield
