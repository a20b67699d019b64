"""Daily KPI rollups: grouped aggregations over the operational tables, and the
idempotent write of their per-day totals into the KPI store.

Aggregations cover a whole span of days in one grouped query per source and bucket
the grouped rows into local calendar days afterwards, so a backfill or a query-time
fallback over years of history costs the same handful of statements as one day.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

from sqlalchemy import and_, case, func, or_
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from apparel_analytics import models
from apparel_analytics.config import settings
from apparel_analytics.services.date_ranges import DateRange, day_bounds_utc
from apparel_analytics.services.locks import advisory_key, pg_advisory_xact_lock
from apparel_analytics.services.status_sets import StatusSets, default_status_sets

logger = logging.getLogger("apparel_analytics.rollup")

STYLE_METRICS: tuple[str, ...] = (
    "cutting_received_pcs",
    "cutting_fabric_meters",
    "in_production_pcs",
    "in_production_orders",
    "completed_pcs",
    "shipped_pcs",
    "expected_receivable_amount",
    "tailor_expense_amount",
    "completed_issued_pcs",
    "rejected_pcs",
    "shipment_count",
    "late_shipments",
)

TAILOR_METRICS: tuple[str, ...] = (
    "in_production_pcs",
    "in_production_orders",
    "completed_pcs",
    "tailor_expense_amount",
    "completed_issued_pcs",
    "rejected_pcs",
)


def _amount(v) -> float:
    return round(float(v or 0.0), 4)


@dataclass
class StyleDayTotals:
    style_id: str
    vendor_id: str | None = None
    cutting_received_pcs: int = 0
    cutting_fabric_meters: float = 0.0
    in_production_pcs: int = 0
    in_production_orders: int = 0
    completed_pcs: int = 0
    shipped_pcs: int = 0
    expected_receivable_amount: float = 0.0
    tailor_expense_amount: float = 0.0
    completed_issued_pcs: int = 0
    rejected_pcs: int = 0
    shipment_count: int = 0
    late_shipments: int = 0

    def as_values(self) -> dict:
        return {f.name: getattr(self, f.name) for f in fields(self) if f.name != "style_id"}


@dataclass
class TailorDayTotals:
    style_id: str
    tailor_id: str
    vendor_id: str | None = None
    in_production_pcs: int = 0
    in_production_orders: int = 0
    completed_pcs: int = 0
    tailor_expense_amount: float = 0.0
    completed_issued_pcs: int = 0
    rejected_pcs: int = 0

    def as_values(self) -> dict:
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name not in ("style_id", "tailor_id")
        }


@dataclass(frozen=True)
class DailyRollup:
    tenant_id: str | None
    day: date
    styles: dict[str, StyleDayTotals] = field(default_factory=dict)
    tailors: dict[tuple[str, str], TailorDayTotals] = field(default_factory=dict)


@dataclass(frozen=True)
class RefreshResult:
    success: bool
    count: int
    tenant_id: str | None = None
    day: date | None = None
    tailor_rows: int = 0
    removed_rows: int = 0


# --- aggregation specs (one per metric source / dimension) -------------------


def shipment_amount_expr():
    """Invoice value, else pieces x vendor rate, else 0. Requires the Rate outer join."""
    return func.coalesce(
        models.Shipment.invoice_value,
        models.Shipment.pcs_shipped * models.Rate.vendor_rate,
        0.0,
    )


def shipment_rate_join():
    return and_(
        models.Rate.style_id == models.Shipment.style_id,
        models.Rate.vendor_id == models.Shipment.vendor_id,
    )


def receivable_condition(statuses: StatusSets):
    return and_(
        func.lower(models.Shipment.shipment_status).in_(sorted(statuses.receivable_shipments)),
        or_(
            models.Shipment.payment_status.is_(None),
            func.lower(models.Shipment.payment_status).in_(sorted(statuses.unpaid_payments)),
        ),
    )


def job_completed_at_expr():
    # Jobs closed before completion timestamps were tracked only carry updated_at.
    return func.coalesce(models.TailorJob.completed_date, models.TailorJob.updated_at)


def local_day(ts: datetime, tz: ZoneInfo) -> date:
    # SQLite returns stored timestamps naive; they are UTC.
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(tz).date()


def _fold_by_day(rows, tz: ZoneInfo, width: int) -> dict[tuple, list]:
    """Sum ``(timestamp, *keys, *values)`` rows into ``{(local day, *keys): values}``.

    ``width`` is the number of key columns following the timestamp.
    """
    folded: dict[tuple, list] = {}
    for ts, *rest in rows:
        key = (local_day(ts, tz),) + tuple(str(k) for k in rest[:width])
        values = [v or 0 for v in rest[width:]]
        acc = folded.get(key)
        folded[key] = values if acc is None else [a + v for a, v in zip(acc, values)]
    return folded


def aggregate_cutting_by_style(
    db: Session, *, tenant_id: str, start: datetime, end: datetime, tz: ZoneInfo
) -> list[tuple[date, str, int, float]]:
    c = models.FabricCutting
    rows = (
        db.query(
            c.occurred_at,
            c.style_id,
            func.coalesce(func.sum(c.quantity_received), 0),
            func.coalesce(func.sum(c.fabric_meters), 0.0),
        )
        .filter(c.tenant_id == tenant_id)
        .filter(c.occurred_at >= start)
        .filter(c.occurred_at < end)
        .group_by(c.occurred_at, c.style_id)
        .all()
    )
    return [
        (day, sid, int(pcs), _amount(meters))
        for (day, sid), (pcs, meters) in _fold_by_day(rows, tz, 1).items()
    ]


def aggregate_issued_jobs_by_style_tailor(
    db: Session, *, tenant_id: str, start: datetime, end: datetime, tz: ZoneInfo
) -> list[tuple[date, str, str, int, int, float]]:
    j = models.TailorJob
    rows = (
        db.query(
            j.issue_date,
            j.style_id,
            j.tailor_id,
            func.coalesce(func.sum(j.issued_pcs), 0),
            func.count(j.id),
            func.coalesce(func.sum(j.issued_pcs * j.rate), 0.0),
        )
        .join(models.Style, models.Style.id == j.style_id)
        .filter(models.Style.tenant_id == tenant_id)
        .filter(j.issue_date >= start)
        .filter(j.issue_date < end)
        .group_by(j.issue_date, j.style_id, j.tailor_id)
        .all()
    )
    return [
        (day, sid, tid, int(pcs), int(orders), _amount(expense))
        for (day, sid, tid), (pcs, orders, expense) in _fold_by_day(rows, tz, 2).items()
    ]


def aggregate_completed_jobs_by_style_tailor(
    db: Session,
    *,
    tenant_id: str,
    start: datetime,
    end: datetime,
    tz: ZoneInfo,
    statuses: StatusSets,
) -> list[tuple[date, str, str, int, int, int]]:
    """Returned, issued and rejected pieces of jobs in the completed-status set, by
    completion day.

    Jobs that merely have returned pieces (in-progress partial returns) do not count.
    """
    j = models.TailorJob
    completed_at = job_completed_at_expr()
    rows = (
        db.query(
            completed_at,
            j.style_id,
            j.tailor_id,
            func.coalesce(func.sum(j.returned_pcs), 0),
            func.coalesce(func.sum(j.issued_pcs), 0),
            func.coalesce(func.sum(j.rejected_pcs), 0),
        )
        .join(models.Style, models.Style.id == j.style_id)
        .filter(models.Style.tenant_id == tenant_id)
        .filter(func.lower(j.status).in_(sorted(statuses.completed)))
        .filter(completed_at >= start)
        .filter(completed_at < end)
        .group_by(completed_at, j.style_id, j.tailor_id)
        .all()
    )
    return [
        (day, sid, tid, int(returned), int(issued), int(rejected))
        for (day, sid, tid), (returned, issued, rejected) in _fold_by_day(rows, tz, 2).items()
    ]


def aggregate_shipments_by_style(
    db: Session,
    *,
    tenant_id: str,
    start: datetime,
    end: datetime,
    tz: ZoneInfo,
    statuses: StatusSets,
) -> list[tuple[date, str, int, float, int, int]]:
    """Pieces, receivable, shipment count and late shipments per style and day.

    A shipment is late when its local ship day falls after its promised date.
    """
    s = models.Shipment
    receivable = case((receivable_condition(statuses), shipment_amount_expr()), else_=0.0)
    rows = (
        db.query(
            s.shipped_at,
            s.style_id,
            s.promised_date,
            func.coalesce(func.sum(s.pcs_shipped), 0),
            func.coalesce(func.sum(receivable), 0.0),
            func.count(s.id),
        )
        .outerjoin(models.Rate, shipment_rate_join())
        .filter(s.tenant_id == tenant_id)
        .filter(s.shipped_at >= start)
        .filter(s.shipped_at < end)
        .group_by(s.shipped_at, s.style_id, s.promised_date)
        .all()
    )
    folded: dict[tuple[date, str], list] = {}
    for shipped_at, sid, promised, pcs, amount, count in rows:
        day = local_day(shipped_at, tz)
        acc = folded.setdefault((day, str(sid)), [0, 0.0, 0, 0])
        acc[0] += int(pcs or 0)
        acc[1] += float(amount or 0.0)
        acc[2] += int(count or 0)
        if promised is not None and day > promised:
            acc[3] += int(count or 0)
    return [
        (day, sid, pcs, _amount(amount), count, late)
        for (day, sid), (pcs, amount, count, late) in folded.items()
    ]


# --- merge -------------------------------------------------------------------


def compute_daily_rollups(
    db: Session,
    *,
    tenant_id: str | None,
    start_day: date,
    end_day: date,
    statuses: StatusSets | None = None,
    tz_name: str | None = None,
) -> dict[date, DailyRollup]:
    """Per-style and per-(style, tailor) totals for every day of ``[start_day, end_day]``.

    Read-only. Every day of the span gets a rollup, empty when nothing happened.
    """

    span = DateRange(start_day, end_day)
    rollups = {d: DailyRollup(tenant_id=tenant_id or None, day=d) for d in span.iter_days()}
    if not tenant_id or span.is_empty:
        return rollups

    statuses = statuses or default_status_sets()
    tz = ZoneInfo(tz_name or settings.analytics_timezone)
    start, _ = day_bounds_utc(start_day, tz_name)
    _, end = day_bounds_utc(end_day, tz_name)
    window = {"tenant_id": tenant_id, "start": start, "end": end, "tz": tz}

    def _style(day: date, style_id: str) -> StyleDayTotals | None:
        rollup = rollups.get(day)
        if rollup is None:
            return None
        return rollup.styles.setdefault(style_id, StyleDayTotals(style_id=style_id))

    def _tailor(day: date, style_id: str, tailor_id: str) -> TailorDayTotals:
        return rollups[day].tailors.setdefault(
            (style_id, tailor_id), TailorDayTotals(style_id=style_id, tailor_id=tailor_id)
        )

    for day, style_id, pcs, meters in aggregate_cutting_by_style(db, **window):
        s = _style(day, style_id)
        if s is None:
            continue
        s.cutting_received_pcs = pcs
        s.cutting_fabric_meters = meters

    issued = aggregate_issued_jobs_by_style_tailor(db, **window)
    for day, style_id, tailor_id, pcs, orders, expense in issued:
        s = _style(day, style_id)
        if s is None:
            continue
        s.in_production_pcs += pcs
        s.in_production_orders += orders
        s.tailor_expense_amount = _amount(s.tailor_expense_amount + expense)
        t = _tailor(day, style_id, tailor_id)
        t.in_production_pcs = pcs
        t.in_production_orders = orders
        t.tailor_expense_amount = expense

    completed = aggregate_completed_jobs_by_style_tailor(db, statuses=statuses, **window)
    for day, style_id, tailor_id, returned, issued_pcs, rejected in completed:
        s = _style(day, style_id)
        if s is None:
            continue
        s.completed_pcs += returned
        s.completed_issued_pcs += issued_pcs
        s.rejected_pcs += rejected
        t = _tailor(day, style_id, tailor_id)
        t.completed_pcs = returned
        t.completed_issued_pcs = issued_pcs
        t.rejected_pcs = rejected

    shipped = aggregate_shipments_by_style(db, statuses=statuses, **window)
    for day, style_id, pcs, receivable, count, late in shipped:
        s = _style(day, style_id)
        if s is None:
            continue
        s.shipped_pcs = pcs
        s.expected_receivable_amount = receivable
        s.shipment_count = count
        s.late_shipments = late

    style_ids = sorted({sid for r in rollups.values() for sid in r.styles})
    if style_ids:
        owners = dict(
            db.query(models.Style.id, models.Style.vendor_id)
            .filter(models.Style.id.in_(style_ids))
            .all()
        )
        for rollup in rollups.values():
            for style_id, totals in rollup.styles.items():
                totals.vendor_id = owners.get(style_id)
            for (style_id, _), totals in rollup.tailors.items():
                totals.vendor_id = owners.get(style_id)

    return rollups


def compute_daily_rollup(
    db: Session,
    *,
    tenant_id: str | None,
    day: date,
    statuses: StatusSets | None = None,
    tz_name: str | None = None,
) -> DailyRollup:
    """Compute the per-style and per-(style, tailor) totals for one tenant-day. Read-only."""

    return compute_daily_rollups(
        db,
        tenant_id=tenant_id,
        start_day=day,
        end_day=day,
        statuses=statuses,
        tz_name=tz_name,
    )[day]


# --- persistence -------------------------------------------------------------


def _assign(row, values: dict) -> bool:
    changed = False
    for key, value in values.items():
        if getattr(row, key) != value:
            setattr(row, key, value)
            changed = True
    return changed


_UPSERT_INSERTS = {"postgresql": postgresql.insert, "sqlite": sqlite.insert}


def _insert_row(db: Session, model, key: tuple[str, ...], values: dict) -> None:
    """Insert one store row.

    A row that a concurrent refresh inserted after our read is overwritten with these
    values instead of failing on the unique key.
    """

    insert = _UPSERT_INSERTS.get(db.get_bind().dialect.name)
    if insert is None:
        row = model(**values)
        try:
            with db.begin_nested():
                db.add(row)
                db.flush()
        except IntegrityError:
            existing = (
                db.query(model)
                .filter(*(getattr(model, k) == values[k] for k in key))
                .one_or_none()
            )
            if existing is None:
                raise
            _assign(existing, {k: v for k, v in values.items() if k not in key and k != "created_at"})
        return
    stmt = insert(model).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=list(key),
        set_={k: stmt.excluded[k] for k in values if k not in key and k != "created_at"},
    )
    db.execute(stmt)


def _existing_rows(db: Session, model, rollup: DailyRollup, key: tuple[str, ...]) -> dict:
    rows = (
        db.query(model)
        .filter(model.tenant_id == rollup.tenant_id)
        .filter(model.kpi_date == rollup.day)
        .all()
    )
    return {tuple(getattr(row, k) for k in key): row for row in rows}


_STYLE_KEY = ("style_id",)
_TAILOR_KEY = ("style_id", "tailor_id")


def _sync_style_rows(db: Session, rollup: DailyRollup, now: datetime) -> tuple[int, int]:
    existing = _existing_rows(db, models.DailyKpi, rollup, _STYLE_KEY)
    written = 0
    for style_id, totals in rollup.styles.items():
        values = totals.as_values()
        row = existing.pop((style_id,), None)
        if row is None:
            _insert_row(
                db,
                models.DailyKpi,
                ("tenant_id", "kpi_date") + _STYLE_KEY,
                {
                    "tenant_id": rollup.tenant_id,
                    "kpi_date": rollup.day,
                    "style_id": style_id,
                    "created_at": now,
                    "updated_at": now,
                    **values,
                },
            )
            written += 1
        elif _assign(row, values):
            row.updated_at = now
            written += 1

    # Styles that no longer have activity on this day.
    for stale in existing.values():
        db.delete(stale)
    return written, len(existing)


def _sync_tailor_rows(db: Session, rollup: DailyRollup, now: datetime) -> tuple[int, int]:
    existing = _existing_rows(db, models.DailyKpiTailor, rollup, _TAILOR_KEY)
    written = 0
    for key, totals in rollup.tailors.items():
        values = totals.as_values()
        row = existing.pop(key, None)
        if row is None:
            _insert_row(
                db,
                models.DailyKpiTailor,
                ("tenant_id", "kpi_date") + _TAILOR_KEY,
                {
                    "tenant_id": rollup.tenant_id,
                    "kpi_date": rollup.day,
                    "style_id": key[0],
                    "tailor_id": key[1],
                    "updated_at": now,
                    **values,
                },
            )
            written += 1
        elif _assign(row, values):
            row.updated_at = now
            written += 1

    for stale in existing.values():
        db.delete(stale)
    return written, len(existing)


def _record_refresh(db: Session, rollup: DailyRollup, now: datetime) -> None:
    record = (
        db.query(models.DailyKpiRefresh)
        .filter(models.DailyKpiRefresh.tenant_id == rollup.tenant_id)
        .filter(models.DailyKpiRefresh.kpi_date == rollup.day)
        .first()
    )
    values = {
        "style_rows": len(rollup.styles),
        "tailor_rows": len(rollup.tailors),
        "refreshed_at": now,
    }
    if record is None:
        _insert_row(
            db,
            models.DailyKpiRefresh,
            ("tenant_id", "kpi_date"),
            {"tenant_id": rollup.tenant_id, "kpi_date": rollup.day, **values},
        )
        return
    _assign(record, values)


def normalize_day(value: date | datetime, tz_name: str | None = None) -> date:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(ZoneInfo(tz_name or settings.analytics_timezone)).date()
    return value


def refresh_daily_analytics(
    db: Session,
    *,
    tenant_id: str | None,
    day: date | datetime,
    statuses: StatusSets | None = None,
    now: datetime | None = None,
) -> RefreshResult:
    """Recompute and store the daily KPI rows of one tenant-day.

    Every field is set from a fresh computation, so re-running the same day never
    double-counts. Rows are flushed, not committed: the caller owns the transaction and
    either commits the whole day or rolls it back. A missing tenant is a no-op.
    """

    day = normalize_day(day)
    if not tenant_id:
        logger.info("daily_rollup_skipped_no_tenant", extra={"date": day.isoformat()})
        return RefreshResult(success=True, count=0, tenant_id=None, day=day)

    # Serialize concurrent refreshes of the same tenant-day (Postgres only).
    pg_advisory_xact_lock(db, advisory_key("daily_kpi", tenant_id, day.isoformat()))

    rollup = compute_daily_rollup(db, tenant_id=tenant_id, day=day, statuses=statuses)
    now = now or datetime.now(timezone.utc)

    written, removed = _sync_style_rows(db, rollup, now)
    tailor_written, tailor_removed = _sync_tailor_rows(db, rollup, now)
    _record_refresh(db, rollup, now)
    db.flush()

    logger.info(
        "daily_rollup_refreshed",
        extra={
            "tenant_id": tenant_id,
            "date": day.isoformat(),
            "style_rows": len(rollup.styles),
            "tailor_rows": len(rollup.tailors),
            "written": written + tailor_written,
            "removed": removed + tailor_removed,
        },
    )
    return RefreshResult(
        success=True,
        count=len(rollup.styles),
        tenant_id=tenant_id,
        day=day,
        tailor_rows=len(rollup.tailors),
        removed_rows=removed + tailor_removed,
    )


def list_rollup_tenants(db: Session) -> list[str]:
    rows = db.query(models.Style.tenant_id).distinct().order_by(models.Style.tenant_id.asc()).all()
    return [str(r[0]) for r in rows if r[0]]
