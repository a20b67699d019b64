from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import (
    Date,
    DateTime,
    Float,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from apparel_analytics.database import Base


class DailyKpi(Base):
    """One row per (tenant, date, style); rewritten in full by every refresh."""

    __tablename__ = "daily_kpi"
    __table_args__ = (
        UniqueConstraint(
            "tenant_id",
            "kpi_date",
            "style_id",
            name="uq_daily_kpi_tenant_date_style",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    kpi_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    style_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    vendor_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)

    cutting_received_pcs: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    cutting_fabric_meters: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    in_production_pcs: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    in_production_orders: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed_pcs: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    shipped_pcs: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    expected_receivable_amount: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    tailor_expense_amount: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    # Ratio inputs; yield, rework and late percentages are derived at read time.
    completed_issued_pcs: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rejected_pcs: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    shipment_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    late_shipments: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=datetime.utcnow
    )


class DailyKpiTailor(Base):
    """Per-tailor sub-totals of the production metrics of a daily KPI row."""

    __tablename__ = "daily_kpi_tailor"
    __table_args__ = (
        UniqueConstraint(
            "tenant_id",
            "kpi_date",
            "style_id",
            "tailor_id",
            name="uq_daily_kpi_tailor_tenant_date_style_tailor",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    kpi_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    style_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    tailor_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    vendor_id: Mapped[str | None] = mapped_column(String(36), nullable=True)

    in_production_pcs: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    in_production_orders: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed_pcs: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tailor_expense_amount: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    completed_issued_pcs: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rejected_pcs: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=datetime.utcnow
    )


class DailyKpiRefresh(Base):
    """Marks a (tenant, date) as covered by a completed refresh."""

    __tablename__ = "daily_kpi_refreshes"
    __table_args__ = (
        UniqueConstraint("tenant_id", "kpi_date", name="uq_daily_kpi_refreshes_tenant_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    kpi_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    style_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tailor_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    refreshed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=datetime.utcnow
    )
