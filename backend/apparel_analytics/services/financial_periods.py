from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any

from sqlalchemy.orm import Session

from apparel_analytics import models
from apparel_analytics.services.date_ranges import range_bounds_utc
from apparel_analytics.services.financial_calculation import (
    CostBreakdown,
    InventoryTurnover,
    PLStatement,
    RevenueBreakdown,
    RevenueResult,
    build_pl_statement,
    calculate_costs,
    calculate_inventory_turnover,
    calculate_revenue,
    calculate_revenue_breakdown,
)
from apparel_analytics.services.locks import advisory_key, pg_advisory_xact_lock
from apparel_analytics.services.status_sets import StatusSets, default_status_sets

logger = logging.getLogger("apparel_analytics.financial_periods")

PERIOD_TYPES: tuple[str, ...] = ("daily", "weekly", "monthly", "quarterly", "yearly")


@dataclass(frozen=True)
class PeriodWindow:
    period_type: str
    period_key: str
    start_date: date
    end_date: date

    def is_closed_on(self, target: date) -> bool:
        return target == self.end_date

    def bounds_utc(self) -> tuple[datetime, datetime]:
        return range_bounds_utc(self.start_date, self.end_date)


def period_window(period_type: str, target: date) -> PeriodWindow:
    """The period of ``period_type`` containing ``target``, with its canonical key."""

    if period_type == "daily":
        return PeriodWindow("daily", target.isoformat(), target, target)

    if period_type == "weekly":
        # ISO weeks start on Monday; the key uses the ISO week-numbering year.
        start = target - timedelta(days=target.weekday())
        iso_year, iso_week, _ = target.isocalendar()
        return PeriodWindow("weekly", f"{iso_year}-W{iso_week:02d}", start, start + timedelta(days=6))

    if period_type == "monthly":
        last = calendar.monthrange(target.year, target.month)[1]
        return PeriodWindow(
            "monthly",
            f"{target.year:04d}-{target.month:02d}",
            target.replace(day=1),
            target.replace(day=last),
        )

    if period_type == "quarterly":
        quarter = (target.month - 1) // 3 + 1
        first_month = 3 * (quarter - 1) + 1
        last_month = first_month + 2
        return PeriodWindow(
            "quarterly",
            f"{target.year:04d}-Q{quarter}",
            date(target.year, first_month, 1),
            date(target.year, last_month, calendar.monthrange(target.year, last_month)[1]),
        )

    if period_type == "yearly":
        return PeriodWindow(
            "yearly",
            f"{target.year:04d}",
            date(target.year, 1, 1),
            date(target.year, 12, 31),
        )

    raise ValueError(f"unsupported period_type: {period_type}")


def periods_due(target: date) -> list[PeriodWindow]:
    """Daily always; longer periods only on their last day."""

    due: list[PeriodWindow] = []
    for period_type in PERIOD_TYPES:
        window = period_window(period_type, target)
        if period_type == "daily" or window.is_closed_on(target):
            due.append(window)
    return due


@dataclass(frozen=True)
class FinancialFigures:
    revenue: RevenueResult
    costs: CostBreakdown
    pl: PLStatement
    breakdown: RevenueBreakdown
    turnover: InventoryTurnover


def compute_period_figures(
    db: Session,
    *,
    window: PeriodWindow,
    statuses: StatusSets | None = None,
) -> FinancialFigures:
    statuses = statuses or default_status_sets()
    start, end = window.bounds_utc()
    revenue = calculate_revenue(db, start=start, end=end, statuses=statuses)
    costs = calculate_costs(db, start=start, end=end, statuses=statuses)
    return FinancialFigures(
        revenue=revenue,
        costs=costs,
        pl=build_pl_statement(revenue.total, costs),
        breakdown=calculate_revenue_breakdown(db, start=start, end=end, statuses=statuses),
        turnover=calculate_inventory_turnover(
            db, start=start, end=end, statuses=statuses, material_cost=costs.material_cost
        ),
    )


def _period_values(figures: FinancialFigures) -> dict[str, Any]:
    c = figures.costs
    pl = figures.pl
    return {
        "total_revenue": figures.revenue.total,
        "revenue_breakdown": figures.breakdown.as_dict(),
        "tailor_cost": c.tailor_cost,
        "material_cost": c.material_cost,
        "overhead_cost": c.overhead_cost,
        "logistics_cost": c.logistics_cost,
        "quality_cost": c.quality_cost,
        "other_cost": c.other_cost,
        "total_cost": c.total,
        "gross_profit": pl.gross_profit,
        "gross_profit_margin": pl.gross_profit_margin,
        "operating_profit": pl.operating_profit,
        "operating_profit_margin": pl.operating_profit_margin,
        "ebitda": pl.ebitda,
        "ebitda_margin": pl.ebitda_margin,
        "net_profit": pl.net_profit,
        "net_profit_margin": pl.net_profit_margin,
        "return_on_sales": pl.return_on_sales,
        "inventory_turnover": figures.turnover.turnover,
    }


@dataclass(frozen=True)
class FinancialPeriodSummary:
    period_type: str
    period_key: str
    start_date: date
    end_date: date
    status: str  # created | updated | skipped_finalized
    total_revenue: float
    net_profit: float

    def as_dict(self) -> dict[str, Any]:
        return {
            "period_type": self.period_type,
            "period_key": self.period_key,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "status": self.status,
            "total_revenue": self.total_revenue,
            "net_profit": self.net_profit,
        }


@dataclass(frozen=True)
class FinancialPeriodRunResult:
    target_date: date
    periods: dict[str, FinancialPeriodSummary | None]

    def as_dict(self) -> dict[str, Any]:
        return {
            "date": self.target_date.isoformat(),
            "results": {k: (v.as_dict() if v else None) for k, v in self.periods.items()},
        }


def _get_period(db: Session, period_type: str, period_key: str) -> models.FinancialPeriod | None:
    return (
        db.query(models.FinancialPeriod)
        .filter(models.FinancialPeriod.period_type == period_type)
        .filter(models.FinancialPeriod.period_key == period_key)
        .first()
    )


def upsert_financial_period(
    db: Session,
    *,
    window: PeriodWindow,
    figures: FinancialFigures,
    now: datetime | None = None,
) -> FinancialPeriodSummary:
    """Write every computed field and reset ``is_finalized``; finalized rows are left alone."""

    now = now or datetime.now(timezone.utc)
    pg_advisory_xact_lock(db, advisory_key("financial_period", window.period_type, window.period_key))

    row = _get_period(db, window.period_type, window.period_key)
    if row is not None and row.is_finalized:
        logger.info(
            "financial_period_skipped_finalized",
            extra={"period_type": window.period_type, "period_key": window.period_key},
        )
        return FinancialPeriodSummary(
            period_type=window.period_type,
            period_key=window.period_key,
            start_date=row.start_date,
            end_date=row.end_date,
            status="skipped_finalized",
            total_revenue=float(row.total_revenue),
            net_profit=float(row.net_profit),
        )

    status = "updated"
    if row is None:
        row = models.FinancialPeriod(
            period_type=window.period_type,
            period_key=window.period_key,
            created_at=now,
        )
        db.add(row)
        status = "created"

    row.start_date = window.start_date
    row.end_date = window.end_date
    for key, value in _period_values(figures).items():
        setattr(row, key, value)
    row.is_finalized = False
    row.finalized_at = None
    row.finalized_by = None
    row.updated_at = now
    db.flush()

    return FinancialPeriodSummary(
        period_type=window.period_type,
        period_key=window.period_key,
        start_date=window.start_date,
        end_date=window.end_date,
        status=status,
        total_revenue=figures.revenue.total,
        net_profit=figures.pl.net_profit,
    )


def execute_financial_period_run(
    db: Session,
    *,
    target_date: date,
    statuses: StatusSets | None = None,
    now: datetime | None = None,
) -> FinancialPeriodRunResult:
    """Compute and upsert every period that is due on ``target_date``.

    Flushes only; the caller commits. Periods that are not due are reported as ``None``.
    """

    statuses = statuses or default_status_sets()
    results: dict[str, FinancialPeriodSummary | None] = {t: None for t in PERIOD_TYPES}

    for window in periods_due(target_date):
        figures = compute_period_figures(db, window=window, statuses=statuses)
        results[window.period_type] = upsert_financial_period(
            db, window=window, figures=figures, now=now
        )

    logger.info(
        "financial_period_run_ok",
        extra={
            "target_date": target_date.isoformat(),
            "written": [k for k, v in results.items() if v and v.status != "skipped_finalized"],
        },
    )
    return FinancialPeriodRunResult(target_date=target_date, periods=results)


def finalize_financial_period(
    db: Session,
    *,
    period_type: str,
    period_key: str,
    finalized_by: str | None,
    now: datetime | None = None,
) -> models.FinancialPeriod:
    """Explicitly close a period so routine re-runs stop overwriting it."""

    row = _get_period(db, period_type, period_key)
    if row is None:
        raise LookupError(f"financial period not found: {period_type} {period_key}")
    if not row.is_finalized:
        row.is_finalized = True
        row.finalized_at = now or datetime.now(timezone.utc)
        row.finalized_by = finalized_by
        db.flush()
        logger.info(
            "financial_period_finalized",
            extra={"period_type": period_type, "period_key": period_key, "by": finalized_by},
        )
    return row
