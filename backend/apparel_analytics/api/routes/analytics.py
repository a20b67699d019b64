from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.orm import Session

from apparel_analytics.api.deps import (
    get_current_actor,
    get_query_service,
    get_session_factory,
    raise_query_error,
)
from apparel_analytics.schemas.analytics import (
    BreakdownItem,
    DashboardKpis,
    DashboardOverview,
    DrilldownPage,
    KpiCard,
    TrendPoint,
)
from apparel_analytics.services.analytics_export import EXPORT_FORMATS, build_drilldown_export
from apparel_analytics.services.date_ranges import DateRange, resolve_date_range
from apparel_analytics.services.query_service import AnalyticsQueryService, gather_dashboard_overview
from apparel_analytics.services.scoping import ActorContext, AnalyticsQueryError, DimensionFilters

router = APIRouter(prefix="/analytics", tags=["analytics"])

_service_dep = Depends(get_query_service)
_actor_dep = Depends(get_current_actor)
_session_factory_dep = Depends(get_session_factory)


@dataclass(frozen=True)
class AnalyticsWindow:
    date_range: DateRange
    filters: DimensionFilters


def analytics_window(
    start: str | None = Query(None, description="ISO date, inclusive"),
    end: str | None = Query(None, description="ISO date, inclusive"),
    preset: str | None = Query(None, description="today | mtd | ytd | <N>d"),
    style_ids: list[str] | None = Query(None),
    vendor_ids: list[str] | None = Query(None),
    tailor_ids: list[str] | None = Query(None),
    svc: AnalyticsQueryService = _service_dep,
) -> AnalyticsWindow:
    try:
        date_range = resolve_date_range(start=start, end=end, preset=preset, today=svc.today)
    except AnalyticsQueryError as exc:
        raise_query_error(exc)
    filters = DimensionFilters.from_params(
        style_ids=style_ids,
        vendor_ids=vendor_ids,
        tailor_ids=tailor_ids,
    )
    return AnalyticsWindow(date_range=date_range, filters=filters)


_window_dep = Depends(analytics_window)


def _run(op: Callable[[], object]):
    try:
        return op()
    except AnalyticsQueryError as exc:
        raise_query_error(exc)


@router.get("/kpis", response_model=DashboardKpis)
def get_kpis(
    window: AnalyticsWindow = _window_dep,
    svc: AnalyticsQueryService = _service_dep,
):
    return _run(lambda: svc.get_dashboard_kpis(window.date_range, window.filters))


@router.get("/cards", response_model=list[KpiCard])
def get_cards(
    window: AnalyticsWindow = _window_dep,
    svc: AnalyticsQueryService = _service_dep,
):
    return _run(lambda: svc.get_kpi_cards(window.date_range, window.filters))


@router.get("/trends", response_model=list[TrendPoint])
def get_trends(
    metric: str | None = Query(None),
    granularity: str = Query("day"),
    window: AnalyticsWindow = _window_dep,
    svc: AnalyticsQueryService = _service_dep,
):
    return _run(
        lambda: svc.get_trend_data(metric, window.date_range, granularity, window.filters)
    )


@router.get("/breakdown", response_model=list[BreakdownItem])
def get_breakdown(
    metric: str | None = Query(None),
    group_by: str = Query("style"),
    limit: int | None = Query(None, description="clamped to the configured default and maximum"),
    window: AnalyticsWindow = _window_dep,
    svc: AnalyticsQueryService = _service_dep,
):
    return _run(
        lambda: svc.get_breakdown(metric, group_by, window.date_range, limit, window.filters)
    )


@router.get("/table", response_model=DrilldownPage)
def get_table(
    limit: int | None = Query(None, description="clamped to the configured default and maximum"),
    skip: int = Query(0, ge=0),
    window: AnalyticsWindow = _window_dep,
    svc: AnalyticsQueryService = _service_dep,
):
    return _run(lambda: svc.get_drilldown_table(window.date_range, limit, skip, window.filters))


@router.get("/overview", response_model=DashboardOverview)
def get_overview(
    metric: str = Query("shipped_pcs"),
    group_by: str = Query("style"),
    granularity: str = Query("day"),
    limit: int | None = Query(None, description="clamped to the configured default and maximum"),
    window: AnalyticsWindow = _window_dep,
    actor: ActorContext = _actor_dep,
    session_factory: Callable[[], Session] = _session_factory_dep,
):
    return _run(
        lambda: gather_dashboard_overview(
            session_factory,
            actor,
            window.date_range,
            metric=metric,
            group_by=group_by,
            granularity=granularity,
            limit=limit,
            filters=window.filters,
        )
    )


@router.get("/export")
def export_table(
    format: str = Query("csv"),
    limit: int | None = Query(None, description="clamped to the configured default and maximum"),
    skip: int = Query(0, ge=0),
    window: AnalyticsWindow = _window_dep,
    svc: AnalyticsQueryService = _service_dep,
):
    fmt = (format or "").strip().lower()
    if fmt not in EXPORT_FORMATS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "code": "invalid_format",
                "message": f"Unsupported export format: {format}",
                "allowed": list(EXPORT_FORMATS),
            },
        )

    page = _run(lambda: svc.get_drilldown_table(window.date_range, limit, skip, window.filters))
    body, media_type = build_drilldown_export(page, fmt=fmt)
    filename = (
        f"analytics_{window.date_range.start.isoformat()}_{window.date_range.end.isoformat()}.{fmt}"
    )
    return Response(
        content=body,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
