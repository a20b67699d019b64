from apparel_analytics.models.analytics import DailyKpi, DailyKpiRefresh, DailyKpiTailor
from apparel_analytics.models.domain import (
    CostEntry,
    FabricCutting,
    InventoryItem,
    InventoryTransaction,
    LedgerEntryType,
    Rate,
    RoleName,
    Shipment,
    Style,
    Tailor,
    TailorJob,
    TailorPayment,
    Vendor,
)
from apparel_analytics.models.financial import FinancialPeriod

__all__ = [
    "CostEntry",
    "DailyKpi",
    "DailyKpiRefresh",
    "DailyKpiTailor",
    "FabricCutting",
    "FinancialPeriod",
    "InventoryItem",
    "InventoryTransaction",
    "LedgerEntryType",
    "Rate",
    "RoleName",
    "Shipment",
    "Style",
    "Tailor",
    "TailorJob",
    "TailorPayment",
    "Vendor",
]
