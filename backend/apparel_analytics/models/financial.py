from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Float,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from apparel_analytics.database import Base


class FinancialPeriod(Base):
    __tablename__ = "financial_periods"
    __table_args__ = (
        UniqueConstraint("period_type", "period_key", name="uq_financial_periods_type_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # daily | weekly | monthly | quarterly | yearly
    period_type: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    period_key: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)

    total_revenue: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    # {"by_vendor": [...], "by_style": [...], "by_tailor": [...], "by_size": [...], "by_fabric_type": [...]}
    revenue_breakdown: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    tailor_cost: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    material_cost: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    overhead_cost: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    logistics_cost: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    quality_cost: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    other_cost: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    total_cost: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    gross_profit: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    gross_profit_margin: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    operating_profit: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    operating_profit_margin: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    ebitda: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    ebitda_margin: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    net_profit: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    net_profit_margin: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    return_on_sales: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    inventory_turnover: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    is_finalized: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    finalized_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    finalized_by: Mapped[str | None] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=datetime.utcnow
    )
