from __future__ import annotations

import logging
from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from apparel_analytics.api.deps import require_cron_secret
from apparel_analytics.database import get_db
from apparel_analytics.services.date_ranges import is_supported_date
from apparel_analytics.services.scheduler import (
    default_target_date,
    run_scheduled_analytics,
    run_scheduled_financials,
)

logger = logging.getLogger("apparel_analytics.cron")

router = APIRouter(
    prefix="/cron",
    tags=["cron"],
    dependencies=[Depends(require_cron_secret)],
)

_db_dep = Depends(get_db)


def _target_date(raw: str | None) -> date:
    if not raw:
        return default_target_date()
    try:
        target = date.fromisoformat(raw.strip())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "invalid_date", "message": f"date must be YYYY-MM-DD, got {raw!r}"},
        ) from None
    if not is_supported_date(target):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "invalid_date", "message": f"date out of supported range: {raw!r}"},
        )
    return target


@router.api_route("/analytics", methods=["GET", "POST"])
def run_analytics_rollups(
    date_param: str | None = Query(None, alias="date", description="YYYY-MM-DD; defaults to yesterday"),
    db: Session = _db_dep,
):
    """Refresh the daily KPI store for every tenant on one date."""

    target = _target_date(date_param)
    result = run_scheduled_analytics(db, target_date=target)
    payload = result.as_dict()
    if not result.success:
        logger.warning("cron_analytics_partial_failure", extra={"date": target.isoformat()})
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=payload)
    return payload


@router.api_route("/financial-calculation", methods=["GET", "POST"])
def run_financial_calculation(
    date_param: str | None = Query(None, alias="date", description="YYYY-MM-DD; defaults to yesterday"),
    db: Session = _db_dep,
):
    target = _target_date(date_param)
    try:
        result = run_scheduled_financials(db, target_date=target)
    except SQLAlchemyError:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"code": "financial_calculation_failed", "message": "Financial calculation failed"},
        ) from None
    return {"success": True, **result.as_dict()}
