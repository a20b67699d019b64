"""Role-scoped reads over the daily KPI store.

Ranges are answered by summing stored daily rows. Days inside the range that have no
refresh record yet (and are not in the future) are computed on the fly with the same
aggregation the rollup engine uses, so a dashboard never shows a hole just because the
nightly job has not run. The service never writes.
"""

from __future__ import annotations

import logging
from collections import OrderedDict, defaultdict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Callable, Iterable

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from apparel_analytics import models
from apparel_analytics.config import Settings, settings
from apparel_analytics.models import RoleName
from apparel_analytics.schemas.analytics import (
    AmountMetric,
    BreakdownItem,
    CuttingReceivedMetric,
    DashboardKpis,
    DashboardOverview,
    DateRangeRead,
    DrilldownPage,
    DrilldownRow,
    InProductionMetric,
    KpiCard,
    LateShipmentsMetric,
    Pagination,
    PendingFromTailorsMetric,
    ProductionYieldMetric,
    ReworkRateMetric,
    TotalMetric,
    TrendPoint,
)
from apparel_analytics.services.date_ranges import DateRange, analytics_today, day_bounds_utc
from apparel_analytics.services.rollup_engine import (
    STYLE_METRICS,
    TAILOR_METRICS,
    DailyRollup,
    compute_daily_rollups,
)
from apparel_analytics.services.scoping import (
    ActorContext,
    AnalyticsInputError,
    DimensionFilters,
    InvalidMetricError,
    QueryServiceNotInitializedError,
    ResolvedScope,
    ScopeForbiddenError,
    resolve_scope,
)
from apparel_analytics.services.status_sets import StatusSets

logger = logging.getLogger("apparel_analytics.query")

GRANULARITIES = ("day", "week", "month")
GROUP_BY_DIMENSIONS = ("style", "vendor", "tailor")
UNASSIGNED = "unassigned"


@dataclass(frozen=True)
class MetricSpec:
    name: str
    label: str
    unit: str
    tailor_scoped: bool
    # (numerator, denominator) stored columns of a percentage metric.
    ratio: tuple[str, str] | None = None

    @property
    def inputs(self) -> tuple[str, ...]:
        return self.ratio or (self.name,)


METRICS: dict[str, MetricSpec] = {
    m.name: m
    for m in (
        MetricSpec("cutting_received_pcs", "Cutting Received", "pcs", False),
        MetricSpec("cutting_fabric_meters", "Fabric Received", "meters", False),
        MetricSpec("in_production_pcs", "In Production", "pcs", True),
        MetricSpec("in_production_orders", "Production Orders", "orders", True),
        MetricSpec("completed_pcs", "Pcs Completed", "pcs", True),
        MetricSpec("shipped_pcs", "Pcs Shipped", "pcs", False),
        MetricSpec("expected_receivable_amount", "Expected Receivable", "currency", False),
        MetricSpec("tailor_expense_amount", "Tailoring Expense", "currency", True),
        MetricSpec("rejected_pcs", "Rejected Pcs", "pcs", True),
        MetricSpec("late_shipments", "Late Shipments", "shipments", False),
        MetricSpec(
            "production_yield_pct",
            "Production Yield",
            "%",
            True,
            ratio=("completed_pcs", "completed_issued_pcs"),
        ),
        MetricSpec(
            "rework_rate_pct",
            "Rework Rate",
            "%",
            True,
            ratio=("rejected_pcs", "completed_pcs"),
        ),
        MetricSpec(
            "late_shipment_pct",
            "Late Shipment Rate",
            "%",
            False,
            ratio=("late_shipments", "shipment_count"),
        ),
    )
}

# Names used by the dashboard client.
METRIC_ALIASES: dict[str, str] = {
    "cuttingReceived": "cutting_received_pcs",
    "cuttingReceivedPcs": "cutting_received_pcs",
    "fabricMeters": "cutting_fabric_meters",
    "inProduction": "in_production_pcs",
    "inProductionPcs": "in_production_pcs",
    "inProductionOrders": "in_production_orders",
    "completedPcs": "completed_pcs",
    "pcsCompleted": "completed_pcs",
    "shippedPcs": "shipped_pcs",
    "pcsShipped": "shipped_pcs",
    "expectedReceivable": "expected_receivable_amount",
    "expectedReceivableAmount": "expected_receivable_amount",
    "tailorExpense": "tailor_expense_amount",
    "tailoringExpense": "tailor_expense_amount",
    "tailorExpenseAmount": "tailor_expense_amount",
    "rejectedPcs": "rejected_pcs",
    "lateShipments": "late_shipments",
    "productionYield": "production_yield_pct",
    "reworkRate": "rework_rate_pct",
    "lateShipmentRate": "late_shipment_pct",
}

# (card id, metric or None for pending from tailors)
_CARDS: tuple[tuple[str, str | None], ...] = (
    ("cutting-received", "cutting_received_pcs"),
    ("in-production", "in_production_pcs"),
    ("pcs-shipped", "shipped_pcs"),
    ("pcs-completed", "completed_pcs"),
    ("expected-receivable", "expected_receivable_amount"),
    ("tailoring-expense", "tailor_expense_amount"),
    ("pending-from-tailors", None),
    ("production-yield", "production_yield_pct"),
    ("rework-rate", "rework_rate_pct"),
    ("late-shipments", "late_shipments"),
)

# KPI fields built from columns only per-style rows carry.
STYLE_ONLY_KPIS = ("cutting_received", "pcs_shipped", "expected_receivable", "late_shipments")


def resolve_metric(name: str | None) -> MetricSpec:
    raw = str(name or "").strip()
    if not raw:
        raise AnalyticsInputError("metric is required", code="missing_metric")
    spec = METRICS.get(METRIC_ALIASES.get(raw, raw))
    if spec is None:
        raise InvalidMetricError(
            f"Invalid metric: {raw}",
            extra={"allowed": sorted(METRICS)},
        )
    return spec


def clamp_limit(limit: int | None, *, default: int, maximum: int) -> int:
    if limit is None or limit <= 0:
        return default
    return min(int(limit), maximum)


def ratio_pct(numerator: float, denominator: float) -> float:
    if not denominator:
        return 0.0
    return round(float(numerator) / float(denominator) * 100.0, 2)


def metric_value(values: dict[str, float], spec: MetricSpec) -> float:
    """Value of ``spec`` over summed stored columns; percentages are ratios of sums."""
    if spec.ratio:
        numerator, denominator = spec.ratio
        return ratio_pct(values.get(numerator) or 0, values.get(denominator) or 0)
    return round(float(values.get(spec.name) or 0), 2)


def compute_trend(current: float, previous: float, *, epsilon: float) -> tuple[float, str]:
    """Percent change against ``previous`` and an up/down/flat direction.

    From a zero baseline any growth reads as +100%.
    """

    diff = float(current) - float(previous)
    if abs(diff) < epsilon:
        direction = "flat"
    else:
        direction = "up" if diff > 0 else "down"

    if previous == 0:
        pct = 100.0 if current > 0 else 0.0
    else:
        pct = diff / abs(float(previous)) * 100.0
    return round(pct, 2), direction


def bucket_start(d: date, granularity: str) -> date:
    if granularity == "week":
        return d - timedelta(days=d.weekday())
    if granularity == "month":
        return d.replace(day=1)
    return d


def bucket_label(start: date, granularity: str) -> str:
    if granularity == "week":
        iso_year, iso_week, _ = start.isocalendar()
        return f"{iso_year}-W{iso_week:02d}"
    if granularity == "month":
        return f"{start.year:04d}-{start.month:02d}"
    return start.isoformat()


@dataclass(frozen=True)
class KpiRecord:
    """One daily row, stored or computed, with its dimension keys."""

    kpi_date: date
    style_id: str
    vendor_id: str | None
    tailor_id: str | None
    values: dict[str, float]


class AnalyticsQueryService:
    def __init__(
        self,
        db: Session,
        actor: ActorContext,
        *,
        statuses: StatusSets | None = None,
        cfg: Settings | None = None,
        today: date | None = None,
    ) -> None:
        self.db = db
        self.actor = actor
        self.settings = cfg or settings
        self.statuses = statuses or StatusSets.from_settings(self.settings)
        self._today = today
        self._scope: ResolvedScope | None = None
        self._fallback_cache: dict[date, DailyRollup] = {}

    def init(self) -> "AnalyticsQueryService":
        self._scope = resolve_scope(self.db, self.actor)
        return self

    @property
    def scope(self) -> ResolvedScope:
        if self._scope is None:
            raise QueryServiceNotInitializedError("init() must be called before querying")
        return self._scope

    @property
    def today(self) -> date:
        return self._today or analytics_today()

    # --- row loading ---------------------------------------------------------

    def _prepare(self, filters: DimensionFilters | None) -> DimensionFilters:
        filters = filters or DimensionFilters()
        self.scope.check_filters(filters)
        return filters

    def _uses_tailor_rows(self, filters: DimensionFilters) -> bool:
        return self.scope.is_tailor or bool(filters.tailor_ids)

    def _check_metric_source(self, spec: MetricSpec, *, tailor_rows: bool) -> None:
        if not tailor_rows or spec.tailor_scoped:
            return
        if self.scope.is_tailor:
            raise ScopeForbiddenError(
                f"Metric {spec.name} is not visible to tailors",
                extra={"metric": spec.name},
            )
        raise InvalidMetricError(
            f"Metric {spec.name} is not tracked per tailor",
            extra={"allowed": sorted(n for n, m in METRICS.items() if m.tailor_scoped)},
        )

    def _uncovered_days(self, date_range: DateRange) -> list[date]:
        scope = self.scope
        # Future days are never computed.
        span = DateRange(date_range.start, min(date_range.end, self.today))
        if scope.tenant_id is None or span.is_empty:
            return []
        covered = {
            r[0]
            for r in self.db.query(models.DailyKpiRefresh.kpi_date)
            .filter(models.DailyKpiRefresh.tenant_id == scope.tenant_id)
            .filter(models.DailyKpiRefresh.kpi_date >= span.start)
            .filter(models.DailyKpiRefresh.kpi_date <= span.end)
            .all()
        }
        return [d for d in span.iter_days() if d not in covered]

    def _fallback_rollups(self, days: list[date]) -> dict[date, DailyRollup]:
        """Live rollups of ``days``, computed in one pass over their span and cached."""
        todo = [d for d in days if d not in self._fallback_cache]
        if todo:
            computed = compute_daily_rollups(
                self.db,
                tenant_id=self.scope.tenant_id,
                start_day=min(todo),
                end_day=max(todo),
                statuses=self.statuses,
                tz_name=self.settings.analytics_timezone,
            )
            for d in todo:
                self._fallback_cache[d] = computed[d]
        return {d: self._fallback_cache[d] for d in days}

    def _stored_records(
        self, date_range: DateRange, filters: DimensionFilters, *, tailor_rows: bool
    ) -> list[KpiRecord]:
        model = models.DailyKpiTailor if tailor_rows else models.DailyKpi
        metrics = TAILOR_METRICS if tailor_rows else STYLE_METRICS
        q = (
            self.db.query(model)
            .filter(model.kpi_date >= date_range.start)
            .filter(model.kpi_date <= date_range.end)
        )
        if tailor_rows:
            q = self.scope.apply_tailor_rows(q, model)
            if filters.tailor_ids:
                q = q.filter(model.tailor_id.in_(sorted(filters.tailor_ids)))
        else:
            q = self.scope.apply_style_rows(q, model)
        if filters.style_ids:
            q = q.filter(model.style_id.in_(sorted(filters.style_ids)))
        if filters.vendor_ids:
            q = q.filter(model.vendor_id.in_(sorted(filters.vendor_ids)))

        return [
            KpiRecord(
                kpi_date=row.kpi_date,
                style_id=row.style_id,
                vendor_id=row.vendor_id,
                tailor_id=row.tailor_id if tailor_rows else None,
                values={m: getattr(row, m) for m in metrics},
            )
            for row in q.all()
        ]

    def _computed_records(
        self, days: list[date], filters: DimensionFilters, *, tailor_rows: bool
    ) -> list[KpiRecord]:
        scope = self.scope
        out: list[KpiRecord] = []
        for day, rollup in self._fallback_rollups(days).items():
            totals = rollup.tailors.values() if tailor_rows else rollup.styles.values()
            for t in totals:
                tailor_id = getattr(t, "tailor_id", None)
                if not scope.allows(style_id=t.style_id, vendor_id=t.vendor_id, tailor_id=tailor_id):
                    continue
                if not filters.matches(style_id=t.style_id, vendor_id=t.vendor_id, tailor_id=tailor_id):
                    continue
                values = t.as_values()
                values.pop("vendor_id", None)
                out.append(
                    KpiRecord(
                        kpi_date=day,
                        style_id=t.style_id,
                        vendor_id=t.vendor_id,
                        tailor_id=tailor_id,
                        values=values,
                    )
                )
        return out

    def _records(self, date_range: DateRange, filters: DimensionFilters, *, tailor_rows: bool) -> list[KpiRecord]:
        if self.scope.tenant_id is None or date_range.is_empty:
            return []
        # Tailor actors never read per-style rows.
        if self.scope.is_tailor and not tailor_rows:
            return []
        records = self._stored_records(date_range, filters, tailor_rows=tailor_rows)
        missing = self._uncovered_days(date_range)
        if missing:
            logger.info(
                "analytics_fallback_days",
                extra={"tenant_id": self.scope.tenant_id, "days": len(missing)},
            )
            records.extend(self._computed_records(missing, filters, tailor_rows=tailor_rows))
        return records

    def _totals(
        self, date_range: DateRange, filters: DimensionFilters, *, tailor_rows: bool
    ) -> dict[str, float]:
        """Summed stored columns. Only the columns of the row type read are present."""
        columns = TAILOR_METRICS if tailor_rows else STYLE_METRICS
        totals: dict[str, float] = {m: 0 for m in columns}
        for r in self._records(date_range, filters, tailor_rows=tailor_rows):
            for metric, value in r.values.items():
                totals[metric] += value or 0
        return totals

    def _pending_from_tailors(self, as_of: date, filters: DimensionFilters) -> tuple[int, int]:
        """Pieces still out with tailors on jobs issued up to ``as_of`` and not yet closed."""

        scope = self.scope
        if scope.tenant_id is None:
            return 0, 0
        _, end = day_bounds_utc(as_of, self.settings.analytics_timezone)
        j = models.TailorJob
        q = (
            self.db.query(
                func.coalesce(func.sum(j.issued_pcs - j.returned_pcs), 0),
                func.count(j.id),
            )
            .join(models.Style, models.Style.id == j.style_id)
            .filter(models.Style.tenant_id == scope.tenant_id)
            .filter(func.lower(j.status).in_(sorted(self.statuses.open_jobs)))
            .filter(j.issue_date < end)
        )
        if scope.role == RoleName.vendor:
            clauses = [models.Style.vendor_id == scope.vendor_id]
            if scope.vendor_style_ids:
                clauses.append(j.style_id.in_(sorted(scope.vendor_style_ids)))
            q = q.filter(or_(*clauses))
        elif scope.role == RoleName.tailor:
            q = q.filter(j.tailor_id == scope.tailor_id)
        if filters.style_ids:
            q = q.filter(j.style_id.in_(sorted(filters.style_ids)))
        if filters.vendor_ids:
            q = q.filter(models.Style.vendor_id.in_(sorted(filters.vendor_ids)))
        if filters.tailor_ids:
            q = q.filter(j.tailor_id.in_(sorted(filters.tailor_ids)))
        pcs, count = q.one()
        return max(int(pcs or 0), 0), int(count or 0)

    def _pending(self, date_range: DateRange, filters: DimensionFilters) -> tuple[int, int]:
        if date_range.is_empty:
            return 0, 0
        return self._pending_from_tailors(date_range.end, filters)

    # --- operations ----------------------------------------------------------

    def get_dashboard_kpis(
        self, date_range: DateRange, filters: DimensionFilters | None = None
    ) -> DashboardKpis:
        filters = self._prepare(filters)
        tailor_rows = self._uses_tailor_rows(filters)
        totals = self._totals(date_range, filters, tailor_rows=tailor_rows)
        pending_pcs, pending_jobs = self._pending(date_range, filters)

        currency = self.settings.currency
        style_level: dict = {"unavailable": list(STYLE_ONLY_KPIS)}
        if not tailor_rows:
            style_level = {
                "cutting_received": CuttingReceivedMetric(
                    pcs=int(totals["cutting_received_pcs"]),
                    fabric_meters=round(float(totals["cutting_fabric_meters"]), 2),
                ),
                "pcs_shipped": TotalMetric(total=int(totals["shipped_pcs"])),
                "expected_receivable": AmountMetric(
                    amount=round(float(totals["expected_receivable_amount"]), 2),
                    currency=currency,
                ),
                "late_shipments": LateShipmentsMetric(
                    count=int(totals["late_shipments"]),
                    total=int(totals["shipment_count"]),
                    percentage=metric_value(totals, METRICS["late_shipment_pct"]),
                ),
            }

        return DashboardKpis(
            date_range=DateRangeRead(start=date_range.start, end=date_range.end),
            in_production=InProductionMetric(
                pcs=int(totals["in_production_pcs"]),
                orders=int(totals["in_production_orders"]),
            ),
            pcs_completed=TotalMetric(total=int(totals["completed_pcs"])),
            tailoring_expense=AmountMetric(
                amount=round(float(totals["tailor_expense_amount"]), 2),
                currency=currency,
            ),
            pending_from_tailors=PendingFromTailorsMetric(pcs=pending_pcs, assignments=pending_jobs),
            production_yield=ProductionYieldMetric(
                percentage=metric_value(totals, METRICS["production_yield_pct"]),
                returned_pcs=int(totals["completed_pcs"]),
                issued_pcs=int(totals["completed_issued_pcs"]),
            ),
            rework_rate=ReworkRateMetric(
                percentage=metric_value(totals, METRICS["rework_rate_pct"]),
                rejected_pcs=int(totals["rejected_pcs"]),
                returned_pcs=int(totals["completed_pcs"]),
            ),
            **style_level,
        )

    def get_kpi_cards(
        self, date_range: DateRange, filters: DimensionFilters | None = None
    ) -> list[KpiCard]:
        """Headline cards with the trend against the preceding range of equal length.

        Cards whose metric per-tailor rows do not carry are left out when the read is
        answered from them.
        """

        filters = self._prepare(filters)
        tailor_rows = self._uses_tailor_rows(filters)
        previous_range = date_range if date_range.is_empty else date_range.previous()
        current = self._totals(date_range, filters, tailor_rows=tailor_rows)
        previous = self._totals(previous_range, filters, tailor_rows=tailor_rows)
        pending_now = self._pending(date_range, filters)[0]
        pending_before = self._pending(previous_range, filters)[0]

        cards: list[KpiCard] = []
        for card_id, metric in _CARDS:
            if metric is None:
                label, unit = "Pending from Tailors", "pcs"
                cur, prev = float(pending_now), float(pending_before)
            else:
                spec = METRICS[metric]
                if tailor_rows and not spec.tailor_scoped:
                    continue
                label = spec.label
                unit = self.settings.currency if spec.unit == "currency" else spec.unit
                cur, prev = metric_value(current, spec), metric_value(previous, spec)
            trend, direction = compute_trend(cur, prev, epsilon=self.settings.trend_flat_epsilon)
            cards.append(
                KpiCard(
                    id=card_id,
                    label=label,
                    value=cur,
                    unit=unit,
                    trend=trend,
                    trend_direction=direction,
                )
            )
        return cards

    def get_trend_data(
        self,
        metric: str | None,
        date_range: DateRange,
        granularity: str = "day",
        filters: DimensionFilters | None = None,
    ) -> list[TrendPoint]:
        spec = resolve_metric(metric)
        if granularity not in GRANULARITIES:
            raise AnalyticsInputError(
                f"Invalid granularity: {granularity}",
                code="invalid_granularity",
                extra={"allowed": list(GRANULARITIES)},
            )
        filters = self._prepare(filters)
        tailor_rows = self._uses_tailor_rows(filters)
        self._check_metric_source(spec, tailor_rows=tailor_rows)

        if date_range.is_empty:
            return []

        buckets: OrderedDict[date, dict[str, float]] = OrderedDict()
        for d in date_range.iter_days():
            buckets.setdefault(bucket_start(d, granularity), defaultdict(float))

        for r in self._records(date_range, filters, tailor_rows=tailor_rows):
            bucket = buckets.get(bucket_start(r.kpi_date, granularity))
            if bucket is None:
                continue
            for column in spec.inputs:
                bucket[column] += float(r.values.get(column) or 0)

        return [
            TrendPoint(
                date=max(start, date_range.start),
                label=bucket_label(start, granularity),
                value=metric_value(sums, spec),
            )
            for start, sums in buckets.items()
        ]

    def _labels(self, group_by: str, keys: Iterable[str]) -> dict[str, str]:
        ids = sorted(k for k in keys if k != UNASSIGNED)
        if not ids:
            return {}
        if group_by == "style":
            rows = (
                self.db.query(models.Style.id, models.Style.code, models.Style.name)
                .filter(models.Style.id.in_(ids))
                .all()
            )
            return {str(i): f"{code} - {name}" if code else str(name) for i, code, name in rows}
        model = models.Vendor if group_by == "vendor" else models.Tailor
        rows = self.db.query(model.id, model.name).filter(model.id.in_(ids)).all()
        return {str(i): str(name) for i, name in rows}

    def get_breakdown(
        self,
        metric: str | None,
        group_by: str,
        date_range: DateRange,
        limit: int | None = None,
        filters: DimensionFilters | None = None,
    ) -> list[BreakdownItem]:
        """Top ``limit`` groups by ``metric``, descending.

        Percentages are shares of the returned (limited) groups' total, so they sum
        to 100 even when smaller groups are cut off. For a percentage metric such as
        production yield the group's own rate is reported instead.
        """

        spec = resolve_metric(metric)
        if group_by not in GROUP_BY_DIMENSIONS:
            raise AnalyticsInputError(
                f"Invalid group_by: {group_by}",
                code="invalid_group_by",
                extra={"allowed": list(GROUP_BY_DIMENSIONS)},
            )
        filters = self._prepare(filters)
        tailor_rows = group_by == "tailor" or self._uses_tailor_rows(filters)
        self._check_metric_source(spec, tailor_rows=tailor_rows)

        limit = clamp_limit(
            limit,
            default=self.settings.breakdown_default_limit,
            maximum=self.settings.breakdown_max_limit,
        )

        grouped: dict[str, dict[str, float]] = defaultdict(lambda: defaultdict(float))
        for r in self._records(date_range, filters, tailor_rows=tailor_rows):
            if group_by == "style":
                key = r.style_id
            elif group_by == "vendor":
                key = r.vendor_id
            else:
                key = r.tailor_id
            sums = grouped[key or UNASSIGNED]
            for column in spec.inputs:
                sums[column] += float(r.values.get(column) or 0)

        values = {key: metric_value(sums, spec) for key, sums in grouped.items()}
        ranked = sorted(values.items(), key=lambda kv: (-kv[1], kv[0]))[:limit]
        total = sum(v for _, v in ranked)
        labels = self._labels(group_by, (k for k, _ in ranked))

        return [
            BreakdownItem(
                key=key,
                label=labels.get(key, "Unassigned" if key == UNASSIGNED else key),
                value=value,
                # A percentage metric is its own share.
                percentage=value if spec.ratio else (round(value / total * 100.0, 2) if total else 0.0),
            )
            for key, value in ranked
        ]

    def get_drilldown_table(
        self,
        date_range: DateRange,
        limit: int | None = None,
        skip: int = 0,
        filters: DimensionFilters | None = None,
    ) -> DrilldownPage:
        filters = self._prepare(filters)
        limit = clamp_limit(
            limit,
            default=self.settings.table_default_limit,
            maximum=self.settings.table_max_limit,
        )
        skip = max(int(skip or 0), 0)

        tailor_rows = self._uses_tailor_rows(filters)
        records = self._records(date_range, filters, tailor_rows=tailor_rows)
        records.sort(key=lambda r: (-r.kpi_date.toordinal(), r.style_id, r.tailor_id or ""))
        page = records[skip : skip + limit]

        styles: dict[str, tuple[str | None, str | None]] = {}
        style_ids = sorted({r.style_id for r in page})
        if style_ids:
            rows = (
                self.db.query(models.Style.id, models.Style.code, models.Style.name)
                .filter(models.Style.id.in_(style_ids))
                .all()
            )
            styles = {str(i): (code, name) for i, code, name in rows}

        vendors: dict[str, str] = {}
        vendor_ids = sorted({r.vendor_id for r in page if r.vendor_id})
        if vendor_ids:
            rows = (
                self.db.query(models.Vendor.id, models.Vendor.name)
                .filter(models.Vendor.id.in_(vendor_ids))
                .all()
            )
            vendors = {str(i): str(name) for i, name in rows}

        data = []
        for r in page:
            code, name = styles.get(r.style_id, (None, None))
            data.append(
                DrilldownRow(
                    date=r.kpi_date,
                    style_id=r.style_id,
                    style_code=code,
                    style_name=name,
                    vendor_id=r.vendor_id,
                    vendor_name=vendors.get(r.vendor_id) if r.vendor_id else None,
                    tailor_id=r.tailor_id,
                    **{k: v for k, v in r.values.items() if k in DrilldownRow.model_fields},
                )
            )

        return DrilldownPage(
            data=data,
            pagination=Pagination(
                total=len(records),
                limit=limit,
                skip=skip,
                has_more=skip + len(page) < len(records),
            ),
        )


def gather_dashboard_overview(
    session_factory: Callable[[], Session],
    actor: ActorContext,
    date_range: DateRange,
    *,
    metric: str = "shipped_pcs",
    group_by: str = "style",
    granularity: str = "day",
    limit: int | None = None,
    filters: DimensionFilters | None = None,
    max_workers: int = 4,
) -> DashboardOverview:
    """Run the independent dashboard reads concurrently, one session per read."""

    # Validate up front so a bad parameter fails before any thread starts.
    spec = resolve_metric(metric)

    def _run(op: Callable[[AnalyticsQueryService], object]):
        db = session_factory()
        try:
            return op(AnalyticsQueryService(db, actor).init())
        finally:
            db.close()

    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="analytics-overview") as pool:
        kpis_f = pool.submit(_run, lambda s: s.get_dashboard_kpis(date_range, filters))
        cards_f = pool.submit(_run, lambda s: s.get_kpi_cards(date_range, filters))
        trend_f = pool.submit(
            _run, lambda s: s.get_trend_data(spec.name, date_range, granularity, filters)
        )
        breakdown_f = pool.submit(
            _run, lambda s: s.get_breakdown(spec.name, group_by, date_range, limit, filters)
        )
        return DashboardOverview(
            kpis=kpis_f.result(),
            cards=cards_f.result(),
            trend=trend_f.result(),
            breakdown=breakdown_f.result(),
            metric=spec.name,
            group_by=group_by,
            granularity=granularity,
        )
