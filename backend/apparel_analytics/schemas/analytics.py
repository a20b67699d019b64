from __future__ import annotations

import datetime as dt
from typing import Literal, Optional

from pydantic import BaseModel, Field

TrendDirection = Literal["up", "down", "flat"]
Granularity = Literal["day", "week", "month"]
GroupBy = Literal["style", "vendor", "tailor"]


class DateRangeRead(BaseModel):
    start: dt.date
    end: dt.date


class PcsMetric(BaseModel):
    pcs: int = 0


class CuttingReceivedMetric(PcsMetric):
    fabric_meters: float = 0.0


class InProductionMetric(PcsMetric):
    orders: int = 0


class TotalMetric(BaseModel):
    total: int = 0


class AmountMetric(BaseModel):
    amount: float = 0.0
    currency: str


class PendingFromTailorsMetric(PcsMetric):
    assignments: int = 0


class ProductionYieldMetric(BaseModel):
    percentage: float = 0.0
    returned_pcs: int = 0
    issued_pcs: int = 0


class ReworkRateMetric(BaseModel):
    percentage: float = 0.0
    rejected_pcs: int = 0
    returned_pcs: int = 0


class LateShipmentsMetric(BaseModel):
    count: int = 0
    total: int = 0
    percentage: float = 0.0


class DashboardKpis(BaseModel):
    """Range KPIs. Style-level figures are ``None`` and named in ``unavailable`` when the
    read is answered from per-tailor rows, which do not carry them.
    """

    date_range: DateRangeRead
    cutting_received: Optional[CuttingReceivedMetric] = None
    in_production: InProductionMetric
    pcs_shipped: Optional[TotalMetric] = None
    pcs_completed: TotalMetric
    expected_receivable: Optional[AmountMetric] = None
    tailoring_expense: AmountMetric
    pending_from_tailors: PendingFromTailorsMetric
    production_yield: ProductionYieldMetric
    rework_rate: ReworkRateMetric
    late_shipments: Optional[LateShipmentsMetric] = None
    unavailable: list[str] = Field(default_factory=list)


class KpiCard(BaseModel):
    id: str
    label: str
    value: float
    unit: str
    trend: float
    trend_direction: TrendDirection


class TrendPoint(BaseModel):
    date: dt.date
    label: str
    value: float


class BreakdownItem(BaseModel):
    key: str
    label: str
    value: float
    percentage: float


class DrilldownRow(BaseModel):
    date: dt.date
    style_id: str
    style_code: Optional[str] = None
    style_name: Optional[str] = None
    vendor_id: Optional[str] = None
    vendor_name: Optional[str] = None
    tailor_id: Optional[str] = None
    # Style-level columns stay None on per-tailor rows.
    cutting_received_pcs: Optional[int] = None
    in_production_pcs: int = 0
    in_production_orders: int = 0
    completed_pcs: int = 0
    completed_issued_pcs: int = 0
    rejected_pcs: int = 0
    shipped_pcs: Optional[int] = None
    shipment_count: Optional[int] = None
    late_shipments: Optional[int] = None
    expected_receivable_amount: Optional[float] = None
    tailor_expense_amount: float = 0.0


class Pagination(BaseModel):
    total: int
    limit: int
    skip: int
    has_more: bool


class DrilldownPage(BaseModel):
    data: list[DrilldownRow] = Field(default_factory=list)
    pagination: Pagination


class DashboardOverview(BaseModel):
    kpis: DashboardKpis
    cards: list[KpiCard]
    trend: list[TrendPoint]
    breakdown: list[BreakdownItem]
    metric: str
    group_by: GroupBy
    granularity: Granularity
