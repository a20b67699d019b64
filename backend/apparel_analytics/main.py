import logging
import os
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from apparel_analytics.api.router import api_router
from apparel_analytics.api.routes import health
from apparel_analytics.config import settings
from apparel_analytics.core.observability import (
    global_exception_handler,
    request_logging_middleware,
)
from apparel_analytics.database import POOL_CONFIG, engine
from apparel_analytics.services.locks import advisory_key
from apparel_analytics.services.scheduler import runner as daily_runner

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
logger = logging.getLogger("apparel_analytics")

ALEMBIC_INI = Path(__file__).resolve().parents[1] / "alembic.ini"
MIGRATIONS_LOCK_KEY = advisory_key("alembic_migrations")

openapi_path = f"{settings.api_prefix}/openapi.json" if settings.enable_docs else None

app = FastAPI(
    title=settings.app_name,
    version=settings.build_version or "0.1.0",
    docs_url="/docs" if settings.enable_docs else None,
    redoc_url=None,
    openapi_url=openapi_path,
)
app.state.logger = logger

app.add_exception_handler(Exception, global_exception_handler)
app.middleware("http")(request_logging_middleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)
app.include_router(api_router, prefix=settings.api_prefix)


def _is_test_env() -> bool:
    return (settings.environment or "").lower() == "test"


def upgrade_database() -> bool:
    """Apply Alembic migrations to head. Returns False when another instance holds the lock."""

    from alembic import command
    from alembic.config import Config
    from sqlalchemy import text

    cfg = Config(str(ALEMBIC_INI))
    with engine.connect() as connection:
        on_postgres = connection.dialect.name == "postgresql"
        if on_postgres:
            locked = connection.execute(
                text("select pg_try_advisory_lock(:k)"), {"k": MIGRATIONS_LOCK_KEY}
            ).scalar()
            if not locked:
                return False
        try:
            # env.py picks this connection up instead of opening its own.
            cfg.attributes["connection"] = connection
            command.upgrade(cfg, "head")
        finally:
            if on_postgres:
                connection.execute(text("select pg_advisory_unlock(:k)"), {"k": MIGRATIONS_LOCK_KEY})
                connection.commit()
    return True


@app.on_event("startup")
def on_startup():
    logger.info(
        "runtime_config",
        extra={
            "pid": os.getpid(),
            "environment": settings.environment,
            "db_pool": POOL_CONFIG,
            "analytics_timezone": settings.analytics_timezone,
            "scheduler_enabled": settings.scheduler_enabled,
        },
    )

    if settings.run_migrations_on_start and not _is_test_env():
        try:
            applied = upgrade_database()
            logger.info("migrations_checked", extra={"applied": applied})
        except SQLAlchemyError as exc:
            # Endpoints that need the schema will surface the failure.
            logger.error("migrations_failed", extra={"error": str(exc)})

    if settings.scheduler_enabled and not _is_test_env():
        daily_runner.start()
        logger.info("scheduler_started", extra={"hour_utc": daily_runner.hour_utc})


@app.on_event("shutdown")
def on_shutdown():
    daily_runner.stop()


@app.get("/", tags=["meta"])
def root():
    return {"service": settings.app_name, "openapi": openapi_path}


for _path in ("/health", "/healthz"):
    app.add_api_route(_path, health.healthcheck, methods=["GET"], tags=["meta"])
