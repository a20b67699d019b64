from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from apparel_analytics.config import settings
from apparel_analytics.core.observability import uptime_seconds, utc_now_iso
from apparel_analytics.database import get_db

router = APIRouter(prefix="/health", tags=["health"])

_db_dep = Depends(get_db)


@router.get("", summary="Healthcheck")
def healthcheck():
    """Liveness. Keep payload stable for monitoring systems."""
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.environment,
        "time": utc_now_iso(),
        "uptime_seconds": round(uptime_seconds(), 2),
        "version": getattr(settings, "build_version", None),
    }


@router.get("/db", summary="Database readiness")
def database_check(db: Session = _db_dep):
    try:
        db.execute(text("select 1"))
        ok = True
    except SQLAlchemyError:
        ok = False
    return {"status": "ok" if ok else "degraded", "database": ok, "time": utc_now_iso()}
