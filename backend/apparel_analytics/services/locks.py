"""Postgres advisory locks. Every helper is a no-op on other dialects."""

from __future__ import annotations

import hashlib
import logging

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

logger = logging.getLogger("apparel_analytics.locks")


def advisory_key(*parts: object) -> int:
    """Stable signed 64-bit key derived from ``parts``."""
    raw = ":".join(str(p) for p in parts).encode("utf-8")
    return int.from_bytes(hashlib.sha256(raw).digest()[:8], "big", signed=True)


def _is_postgres(db: Session) -> bool:
    bind = db.get_bind()
    return getattr(bind.dialect, "name", "") == "postgresql"


def pg_advisory_xact_lock(db: Session, key: int) -> None:
    """Block until the transaction-scoped lock is held; released on commit/rollback."""
    if not _is_postgres(db):
        return
    db.execute(text("SELECT pg_advisory_xact_lock(:k)"), {"k": int(key)})


def try_pg_advisory_lock(db: Session, key: int) -> bool:
    """Best-effort session-level lock. Returns True when held (or not on Postgres)."""
    if not _is_postgres(db):
        return True
    try:
        locked = db.execute(text("SELECT pg_try_advisory_lock(:k)"), {"k": int(key)}).scalar()
        return bool(locked)
    except DBAPIError as exc:
        # If the lock call fails, don't block the job forever; just proceed.
        logger.warning("advisory_lock_failed", extra={"key": int(key), "error": str(exc)})
        db.rollback()
        return True


def unlock_pg_advisory_lock(db: Session, key: int) -> None:
    if not _is_postgres(db):
        return
    try:
        db.execute(text("SELECT pg_advisory_unlock(:k)"), {"k": int(key)})
    except DBAPIError as exc:
        logger.warning("advisory_unlock_failed", extra={"key": int(key), "error": str(exc)})
