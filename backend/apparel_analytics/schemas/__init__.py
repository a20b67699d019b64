from apparel_analytics.schemas.analytics import (
    BreakdownItem,
    DashboardKpis,
    DashboardOverview,
    DrilldownPage,
    DrilldownRow,
    KpiCard,
    Pagination,
    TrendPoint,
)

__all__ = [
    "BreakdownItem",
    "DashboardKpis",
    "DashboardOverview",
    "DrilldownPage",
    "DrilldownRow",
    "KpiCard",
    "Pagination",
    "TrendPoint",
]
