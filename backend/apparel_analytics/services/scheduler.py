from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from apparel_analytics.config import settings
from apparel_analytics.database import SessionLocal
from apparel_analytics.services.date_ranges import analytics_today
from apparel_analytics.services.financial_periods import (
    FinancialPeriodRunResult,
    execute_financial_period_run,
)
from apparel_analytics.services.locks import (
    advisory_key,
    try_pg_advisory_lock,
    unlock_pg_advisory_lock,
)
from apparel_analytics.services.rollup_engine import list_rollup_tenants, refresh_daily_analytics
from apparel_analytics.services.tailor_ledger import reconcile_tailor_ledger

logger = logging.getLogger("apparel_analytics.scheduler")

SCHEDULED_RUN_LOCK_KEY = advisory_key("scheduled_analytics_run")


def calculate_next_run(now: datetime, hour_utc: int) -> datetime:
    """Next occurrence of ``hour_utc``:00 UTC strictly after ``now``."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    now = now.astimezone(timezone.utc)
    next_run = now.replace(hour=int(hour_utc), minute=0, second=0, microsecond=0)
    if next_run <= now:
        next_run = next_run + timedelta(days=1)
    return next_run


def default_target_date(now: datetime | None = None) -> date:
    """Yesterday in the analytics timezone: the last fully elapsed day."""
    return analytics_today(now) - timedelta(days=1)


@dataclass(frozen=True)
class TenantRefreshOutcome:
    tenant_id: str
    success: bool
    count: int = 0
    error: str | None = None

    def as_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "tenant_id": self.tenant_id,
            "success": self.success,
            "count": self.count,
        }
        if self.error:
            out["error"] = self.error
        return out


@dataclass(frozen=True)
class ScheduledAnalyticsResult:
    target_date: date
    tenants: list[TenantRefreshOutcome] = field(default_factory=list)
    ledger_repairs: int = 0

    @property
    def success(self) -> bool:
        return all(t.success for t in self.tenants)

    def as_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "date": self.target_date.isoformat(),
            "results": [t.as_dict() for t in self.tenants],
            "ledger_repairs": self.ledger_repairs,
        }


def run_scheduled_analytics(
    db: Session,
    *,
    target_date: date,
    tenant_ids: list[str] | None = None,
) -> ScheduledAnalyticsResult:
    """Refresh every tenant for ``target_date``; each tenant-day commits on its own.

    A failing tenant is rolled back and reported; the others still run. Re-running the
    same date is always safe.
    """

    tenants = tenant_ids if tenant_ids is not None else list_rollup_tenants(db)
    outcomes: list[TenantRefreshOutcome] = []
    for tenant_id in tenants:
        try:
            res = refresh_daily_analytics(db, tenant_id=tenant_id, day=target_date)
            db.commit()
            outcomes.append(TenantRefreshOutcome(tenant_id=tenant_id, success=True, count=res.count))
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception(
                "daily_rollup_failed",
                extra={"tenant_id": tenant_id, "date": target_date.isoformat()},
            )
            outcomes.append(TenantRefreshOutcome(tenant_id=tenant_id, success=False, error=str(exc)))

    repairs = reconcile_tailor_ledger(db)
    db.commit()

    result = ScheduledAnalyticsResult(
        target_date=target_date,
        tenants=outcomes,
        ledger_repairs=len(repairs),
    )
    logger.info(
        "scheduled_analytics_done",
        extra={
            "date": target_date.isoformat(),
            "tenants": len(outcomes),
            "failed": sum(1 for o in outcomes if not o.success),
            "ledger_repairs": len(repairs),
        },
    )
    return result


def run_scheduled_financials(db: Session, *, target_date: date) -> FinancialPeriodRunResult:
    try:
        result = execute_financial_period_run(db, target_date=target_date)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("financial_period_run_failed", extra={"date": target_date.isoformat()})
        raise
    return result


class DailyJobRunner:
    """Daily in-process trigger for rollups and financial periods.

    Every API worker starts one; the session-level advisory lock lets a single worker run a date.
    """

    def __init__(
        self,
        hour_utc: int = 2,
        session_factory: Callable[[], Session] = SessionLocal,
    ) -> None:
        self.hour_utc = int(hour_utc)
        self._session_factory = session_factory
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="daily-job-runner", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=timeout)

    def run_once(self, target_date: date | None = None) -> bool:
        """Run rollups then financial periods for one date. False when another worker holds the lock."""

        target = target_date or default_target_date()
        db = self._session_factory()
        got_lock = try_pg_advisory_lock(db, SCHEDULED_RUN_LOCK_KEY)
        if not got_lock:
            logger.info("scheduled_run_skipped_locked", extra={"date": target.isoformat()})
            db.close()
            return False
        try:
            analytics = run_scheduled_analytics(db, target_date=target)
            financials = run_scheduled_financials(db, target_date=target)
            logger.info(
                "scheduled_run_ok",
                extra={
                    "date": target.isoformat(),
                    "analytics": analytics.as_dict(),
                    "financials": financials.as_dict(),
                },
            )
            return True
        finally:
            unlock_pg_advisory_lock(db, SCHEDULED_RUN_LOCK_KEY)
            db.close()

    def _loop(self) -> None:
        while not self._stop.is_set():
            now = datetime.now(timezone.utc)
            next_run = calculate_next_run(now, self.hour_utc)
            wait_s = max(0.0, (next_run - now).total_seconds())
            logger.info(
                "scheduler_wait",
                extra={"next_run_utc": next_run.isoformat(), "wait_seconds": int(wait_s)},
            )
            if self._stop.wait(wait_s):
                break

            try:
                self.run_once()
            except Exception as exc:
                # The next wake-up retries from scratch.
                logger.exception("scheduled_run_failed", extra={"error": str(exc)})


# Started and stopped by the app lifecycle hooks in main.py.
runner = DailyJobRunner(hour_utc=settings.scheduler_hour_utc)
