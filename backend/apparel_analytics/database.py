import logging
import os

from sqlalchemy import create_engine, text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import NullPool

from apparel_analytics.config import settings

logger = logging.getLogger("apparel_analytics.database")

db_url = str(settings.database_url)
is_postgres = db_url.startswith("postgresql")


def _env_int(key: str, default: int) -> int:
    try:
        return int(os.getenv(key, str(default)))
    except ValueError:
        return default


def _env_bool(key: str, default: str = "false") -> bool:
    v = os.getenv(key, default)
    return str(v).strip().lower() in {"1", "true", "yes", "y", "on"}


engine_kwargs: dict = {"future": True}
POOL_CONFIG: dict[str, int | str | None] = {
    "pool_size": None,
    "max_overflow": None,
    "pool_timeout": None,
    "pool_recycle": None,
    "use_null_pool": None,
}

if is_postgres:
    # psycopg3 supports connect_timeout in seconds; avoids long hangs on DB outages.
    engine_kwargs["connect_args"] = {
        "connect_timeout": _env_int("DB_CONNECT_TIMEOUT_SECONDS", 10)
    }
    engine_kwargs["pool_pre_ping"] = True

    if _env_bool("DB_USE_NULL_POOL"):
        # Transaction poolers / serverless: let the pooler own connections.
        engine_kwargs["poolclass"] = NullPool
        POOL_CONFIG["use_null_pool"] = "true"
    else:
        pool = {
            "pool_size": _env_int("DB_POOL_SIZE", 5),
            "max_overflow": _env_int("DB_MAX_OVERFLOW", 10),
            "pool_timeout": _env_int("DB_POOL_TIMEOUT_SECONDS", 30),
            "pool_recycle": _env_int("DB_POOL_RECYCLE_SECONDS", 1800),
        }
        engine_kwargs.update(pool)
        POOL_CONFIG.update(pool)
        POOL_CONFIG["use_null_pool"] = "false"
elif db_url.startswith("sqlite"):
    # Sessions are handed to worker threads (overview endpoint, scheduler).
    engine_kwargs["connect_args"] = {"check_same_thread": False}

engine = create_engine(db_url, **engine_kwargs)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)
Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        if is_postgres:
            timeout_ms = _env_int("DB_STATEMENT_TIMEOUT_MS", 15000)
            if timeout_ms > 0:
                try:
                    db.execute(text(f"SET statement_timeout = {timeout_ms}"))
                except DBAPIError as exc:
                    logger.warning("statement_timeout_not_set", extra={"error": str(exc)})
                    db.rollback()
        yield db
    finally:
        db.close()
