"""Operational records owned by the portal's CRUD surface.

The analytics core only reads these tables. Statuses are plain strings because the
status sets that give them meaning are configuration (see ``services.status_sets``).
"""

import uuid
from datetime import date, datetime
from enum import Enum as PyEnum

from sqlalchemy import (
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from apparel_analytics.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class RoleName(PyEnum):
    admin = "admin"
    manager = "manager"
    vendor = "vendor"
    tailor = "tailor"


class LedgerEntryType(PyEnum):
    earning = "earning"
    payout = "payout"
    advance = "advance"
    deduction = "deduction"


class Vendor(Base):
    __tablename__ = "vendors"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    styles = relationship("Style", back_populates="vendor")


class Tailor(Base):
    __tablename__ = "tailors"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class Style(Base):
    __tablename__ = "styles"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    vendor_id: Mapped[str | None] = mapped_column(
        ForeignKey("vendors.id"), nullable=True, index=True
    )
    code: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    fabric_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    vendor = relationship("Vendor", back_populates="styles")


class Rate(Base):
    """Per-piece price charged to a vendor for a style."""

    __tablename__ = "rates"
    __table_args__ = (UniqueConstraint("style_id", "vendor_id", name="uq_rates_style_vendor"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    style_id: Mapped[str] = mapped_column(ForeignKey("styles.id"), nullable=False, index=True)
    vendor_id: Mapped[str] = mapped_column(ForeignKey("vendors.id"), nullable=False, index=True)
    vendor_rate: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)


class FabricCutting(Base):
    __tablename__ = "fabric_cuttings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    style_id: Mapped[str] = mapped_column(ForeignKey("styles.id"), nullable=False, index=True)
    vendor_id: Mapped[str | None] = mapped_column(
        ForeignKey("vendors.id"), nullable=True, index=True
    )
    quantity_received: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    fabric_meters: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )


class TailorJob(Base):
    # Tenant is derived through the style.
    __tablename__ = "tailor_jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    style_id: Mapped[str] = mapped_column(ForeignKey("styles.id"), nullable=False, index=True)
    tailor_id: Mapped[str] = mapped_column(ForeignKey("tailors.id"), nullable=False, index=True)
    # NULL for rework jobs.
    fabric_cutting_id: Mapped[str | None] = mapped_column(
        ForeignKey("fabric_cuttings.id"), nullable=True
    )
    issued_pcs: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    returned_pcs: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Returned pieces failing QC and sent back for rework.
    rejected_pcs: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rate: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending", index=True)
    issue_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
    completed_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=datetime.utcnow
    )


class Shipment(Base):
    __tablename__ = "shipments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    style_id: Mapped[str] = mapped_column(ForeignKey("styles.id"), nullable=False, index=True)
    vendor_id: Mapped[str | None] = mapped_column(
        ForeignKey("vendors.id"), nullable=True, index=True
    )
    pcs_shipped: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    invoice_value: Mapped[float | None] = mapped_column(Float, nullable=True)
    size_label: Mapped[str | None] = mapped_column(String(32), nullable=True)
    payment_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    shipment_status: Mapped[str] = mapped_column(String(32), nullable=False, default="shipped")
    shipped_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
    # Shipped on a later local day than this is late.
    promised_date: Mapped[date | None] = mapped_column(Date, nullable=True)


class TailorPayment(Base):
    """Append-only tailor ledger; ``balance_after`` is the running balance."""

    __tablename__ = "tailor_payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    tailor_id: Mapped[str] = mapped_column(ForeignKey("tailors.id"), nullable=False, index=True)
    entry_type: Mapped[str] = mapped_column(String(16), nullable=False)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    balance_after: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    note: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=datetime.utcnow, index=True
    )


class CostEntry(Base):
    __tablename__ = "cost_entries"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    tenant_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    # overhead | logistics | quality | other
    category: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    incurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
    description: Mapped[str | None] = mapped_column(String(255), nullable=True)


class InventoryItem(Base):
    __tablename__ = "inventory_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    tenant_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    unit_cost: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)


class InventoryTransaction(Base):
    __tablename__ = "inventory_transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    item_id: Mapped[str] = mapped_column(
        ForeignKey("inventory_items.id"), nullable=False, index=True
    )
    # consumption | issue | receipt | adjustment
    transaction_type: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    quantity: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    unit_cost: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    total_cost: Mapped[float | None] = mapped_column(Float, nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
