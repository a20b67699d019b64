"""Revenue, cost and P&L figures over a ``[start, end)`` window.

Every function here is read-only. Figures come straight from the operational tables,
not from the daily rollups, so a period can be recomputed without refreshing rollups
first.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime

from sqlalchemy import func
from sqlalchemy.orm import Session

from apparel_analytics import models
from apparel_analytics.services.rollup_engine import (
    job_completed_at_expr,
    shipment_amount_expr,
    shipment_rate_join,
)
from apparel_analytics.services.status_sets import StatusSets, default_status_sets

COST_CATEGORIES = ("overhead", "logistics", "quality", "other")
UNSPECIFIED = "unspecified"


def _money(v) -> float:
    return round(float(v or 0.0), 2)


def safe_ratio_pct(numerator: float, denominator: float) -> float:
    """``numerator / denominator * 100``; 0 when the denominator is 0."""
    if not denominator:
        return 0.0
    return round(float(numerator) / float(denominator) * 100.0, 4)


@dataclass(frozen=True)
class RevenueResult:
    total: float
    shipments: int
    pcs_shipped: int


@dataclass(frozen=True)
class CostBreakdown:
    tailor_cost: float = 0.0
    material_cost: float = 0.0
    overhead_cost: float = 0.0
    logistics_cost: float = 0.0
    quality_cost: float = 0.0
    other_cost: float = 0.0

    @property
    def direct_costs(self) -> float:
        return _money(self.tailor_cost + self.material_cost)

    @property
    def operating_expenses(self) -> float:
        return _money(self.overhead_cost + self.logistics_cost + self.quality_cost + self.other_cost)

    @property
    def total(self) -> float:
        return _money(self.direct_costs + self.operating_expenses)


@dataclass(frozen=True)
class PLStatement:
    revenue: float
    direct_costs: float
    gross_profit: float
    gross_profit_margin: float
    operating_expenses: float
    operating_profit: float
    operating_profit_margin: float
    ebitda: float
    ebitda_margin: float
    net_profit: float
    net_profit_margin: float
    return_on_sales: float


@dataclass(frozen=True)
class BreakdownLine:
    key: str
    label: str
    amount: float
    pcs: int = 0


@dataclass(frozen=True)
class RevenueBreakdown:
    by_vendor: tuple[BreakdownLine, ...] = field(default_factory=tuple)
    by_style: tuple[BreakdownLine, ...] = field(default_factory=tuple)
    by_tailor: tuple[BreakdownLine, ...] = field(default_factory=tuple)
    by_size: tuple[BreakdownLine, ...] = field(default_factory=tuple)
    by_fabric_type: tuple[BreakdownLine, ...] = field(default_factory=tuple)

    def as_dict(self) -> dict[str, list[dict]]:
        return {
            name: [asdict(line) for line in getattr(self, name)]
            for name in ("by_vendor", "by_style", "by_tailor", "by_size", "by_fabric_type")
        }


@dataclass(frozen=True)
class InventoryTurnover:
    material_cost: float
    inventory_value: float
    turnover: float


def calculate_revenue(
    db: Session,
    *,
    start: datetime,
    end: datetime,
    statuses: StatusSets | None = None,
) -> RevenueResult:
    statuses = statuses or default_status_sets()
    s = models.Shipment
    total, count, pcs = (
        db.query(
            func.coalesce(func.sum(shipment_amount_expr()), 0.0),
            func.count(s.id),
            func.coalesce(func.sum(s.pcs_shipped), 0),
        )
        .select_from(s)
        .outerjoin(models.Rate, shipment_rate_join())
        .filter(func.lower(s.shipment_status).in_(sorted(statuses.revenue_shipments)))
        .filter(s.shipped_at >= start)
        .filter(s.shipped_at < end)
        .one()
    )
    return RevenueResult(total=_money(total), shipments=int(count or 0), pcs_shipped=int(pcs or 0))


def calculate_costs(
    db: Session,
    *,
    start: datetime,
    end: datetime,
    statuses: StatusSets | None = None,
) -> CostBreakdown:
    statuses = statuses or default_status_sets()

    j = models.TailorJob
    completed_at = job_completed_at_expr()
    tailor_cost = (
        db.query(func.coalesce(func.sum(j.returned_pcs * j.rate), 0.0))
        .filter(func.lower(j.status).in_(sorted(statuses.completed)))
        .filter(completed_at >= start)
        .filter(completed_at < end)
        .scalar()
    )

    t = models.InventoryTransaction
    material_cost = (
        db.query(func.coalesce(func.sum(func.coalesce(t.total_cost, t.quantity * t.unit_cost)), 0.0))
        .filter(func.lower(t.transaction_type).in_(sorted(statuses.material_transactions)))
        .filter(t.occurred_at >= start)
        .filter(t.occurred_at < end)
        .scalar()
    )

    c = models.CostEntry
    by_category: dict[str, float] = {k: 0.0 for k in COST_CATEGORIES}
    rows = (
        db.query(func.lower(c.category), func.coalesce(func.sum(c.amount), 0.0))
        .filter(func.lower(c.status).in_(sorted(statuses.approved_costs)))
        .filter(c.incurred_at >= start)
        .filter(c.incurred_at < end)
        .group_by(func.lower(c.category))
        .all()
    )
    for category, amount in rows:
        bucket = category if category in by_category else "other"
        by_category[bucket] += float(amount or 0.0)

    return CostBreakdown(
        tailor_cost=_money(tailor_cost),
        material_cost=_money(material_cost),
        overhead_cost=_money(by_category["overhead"]),
        logistics_cost=_money(by_category["logistics"]),
        quality_cost=_money(by_category["quality"]),
        other_cost=_money(by_category["other"]),
    )


def build_pl_statement(revenue: float, costs: CostBreakdown) -> PLStatement:
    revenue = _money(revenue)
    gross_profit = _money(revenue - costs.direct_costs)
    operating_profit = _money(gross_profit - costs.operating_expenses)
    # No depreciation, amortisation, interest or tax lines are tracked.
    ebitda = operating_profit
    net_profit = operating_profit
    net_margin = safe_ratio_pct(net_profit, revenue)
    return PLStatement(
        revenue=revenue,
        direct_costs=costs.direct_costs,
        gross_profit=gross_profit,
        gross_profit_margin=safe_ratio_pct(gross_profit, revenue),
        operating_expenses=costs.operating_expenses,
        operating_profit=operating_profit,
        operating_profit_margin=safe_ratio_pct(operating_profit, revenue),
        ebitda=ebitda,
        ebitda_margin=safe_ratio_pct(ebitda, revenue),
        net_profit=net_profit,
        net_profit_margin=net_margin,
        return_on_sales=net_margin,
    )


def calculate_pl_statement(
    db: Session,
    *,
    start: datetime,
    end: datetime,
    statuses: StatusSets | None = None,
) -> PLStatement:
    revenue = calculate_revenue(db, start=start, end=end, statuses=statuses)
    costs = calculate_costs(db, start=start, end=end, statuses=statuses)
    return build_pl_statement(revenue.total, costs)


def _lines(rows) -> tuple[BreakdownLine, ...]:
    lines = [
        BreakdownLine(
            key=str(key) if key is not None else UNSPECIFIED,
            label=str(label) if label else (str(key) if key is not None else UNSPECIFIED),
            amount=_money(amount),
            pcs=int(pcs or 0),
        )
        for key, label, amount, pcs in rows
    ]
    lines.sort(key=lambda line: (-line.amount, line.key))
    return tuple(lines)


def calculate_revenue_breakdown(
    db: Session,
    *,
    start: datetime,
    end: datetime,
    statuses: StatusSets | None = None,
) -> RevenueBreakdown:
    statuses = statuses or default_status_sets()
    s = models.Shipment
    amount = func.coalesce(func.sum(shipment_amount_expr()), 0.0)
    pcs = func.coalesce(func.sum(s.pcs_shipped), 0)

    def _shipments(*cols):
        return (
            db.query(*cols, amount, pcs)
            .select_from(s)
            .outerjoin(models.Rate, shipment_rate_join())
            .filter(func.lower(s.shipment_status).in_(sorted(statuses.revenue_shipments)))
            .filter(s.shipped_at >= start)
            .filter(s.shipped_at < end)
        )

    by_vendor = (
        _shipments(s.vendor_id, models.Vendor.name)
        .outerjoin(models.Vendor, models.Vendor.id == s.vendor_id)
        .group_by(s.vendor_id, models.Vendor.name)
        .all()
    )
    by_style = (
        _shipments(s.style_id, models.Style.name)
        .outerjoin(models.Style, models.Style.id == s.style_id)
        .group_by(s.style_id, models.Style.name)
        .all()
    )
    size = func.coalesce(s.size_label, UNSPECIFIED)
    by_size = _shipments(size, size).group_by(size).all()
    fabric = func.coalesce(models.Style.fabric_type, UNSPECIFIED)
    by_fabric = (
        _shipments(fabric, fabric)
        .outerjoin(models.Style, models.Style.id == s.style_id)
        .group_by(fabric)
        .all()
    )

    # Tailor revenue: completed pieces valued at the style owner's vendor rate.
    j = models.TailorJob
    completed_at = job_completed_at_expr()
    by_tailor = (
        db.query(
            j.tailor_id,
            models.Tailor.name,
            func.coalesce(func.sum(j.returned_pcs * func.coalesce(models.Rate.vendor_rate, 0.0)), 0.0),
            func.coalesce(func.sum(j.returned_pcs), 0),
        )
        .select_from(j)
        .join(models.Style, models.Style.id == j.style_id)
        .outerjoin(
            models.Rate,
            (models.Rate.style_id == j.style_id) & (models.Rate.vendor_id == models.Style.vendor_id),
        )
        .outerjoin(models.Tailor, models.Tailor.id == j.tailor_id)
        .filter(func.lower(j.status).in_(sorted(statuses.completed)))
        .filter(completed_at >= start)
        .filter(completed_at < end)
        .group_by(j.tailor_id, models.Tailor.name)
        .all()
    )

    return RevenueBreakdown(
        by_vendor=_lines(by_vendor),
        by_style=_lines(by_style),
        by_tailor=_lines(by_tailor),
        by_size=_lines(by_size),
        by_fabric_type=_lines(by_fabric),
    )


def calculate_inventory_turnover(
    db: Session,
    *,
    start: datetime,
    end: datetime,
    statuses: StatusSets | None = None,
    material_cost: float | None = None,
) -> InventoryTurnover:
    """Material consumed in the window over the current inventory value."""

    if material_cost is None:
        material_cost = calculate_costs(db, start=start, end=end, statuses=statuses).material_cost

    i = models.InventoryItem
    inventory_value = _money(
        db.query(func.coalesce(func.sum(i.quantity * i.unit_cost), 0.0)).scalar()
    )
    turnover = round(float(material_cost) / inventory_value, 4) if inventory_value else 0.0
    return InventoryTurnover(
        material_cost=_money(material_cost),
        inventory_value=inventory_value,
        turnover=turnover,
    )
