from apparel_analytics.services.financial_periods import execute_financial_period_run
from apparel_analytics.services.query_service import AnalyticsQueryService
from apparel_analytics.services.rollup_engine import refresh_daily_analytics
from apparel_analytics.services.tailor_ledger import reconcile_tailor_ledger

__all__ = [
    "AnalyticsQueryService",
    "execute_financial_period_run",
    "reconcile_tailor_ledger",
    "refresh_daily_analytics",
]
