"""portal core tables read by analytics

Revision ID: 20261019_0001_portal_core_tables
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_0001_portal_core_tables"
down_revision = None
branch_labels = None
depends_on = None


def _uuid_pk() -> sa.Column:
    return sa.Column("id", sa.String(length=36), primary_key=True)


def _tenant(nullable: bool = False) -> sa.Column:
    return sa.Column("tenant_id", sa.String(length=64), nullable=nullable, index=True)


def upgrade() -> None:
    op.create_table(
        "vendors",
        _uuid_pk(),
        _tenant(),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("code", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_table(
        "tailors",
        _uuid_pk(),
        _tenant(),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_table(
        "styles",
        _uuid_pk(),
        _tenant(),
        sa.Column("vendor_id", sa.String(length=36), sa.ForeignKey("vendors.id"), nullable=True, index=True),
        sa.Column("code", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("fabric_type", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_table(
        "rates",
        _uuid_pk(),
        sa.Column("style_id", sa.String(length=36), sa.ForeignKey("styles.id"), nullable=False, index=True),
        sa.Column("vendor_id", sa.String(length=36), sa.ForeignKey("vendors.id"), nullable=False, index=True),
        sa.Column("vendor_rate", sa.Float(), nullable=False, server_default="0"),
        sa.UniqueConstraint("style_id", "vendor_id", name="uq_rates_style_vendor"),
    )
    op.create_table(
        "fabric_cuttings",
        _uuid_pk(),
        _tenant(),
        sa.Column("style_id", sa.String(length=36), sa.ForeignKey("styles.id"), nullable=False, index=True),
        sa.Column("vendor_id", sa.String(length=36), sa.ForeignKey("vendors.id"), nullable=True, index=True),
        sa.Column("quantity_received", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("fabric_meters", sa.Float(), nullable=False, server_default="0"),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False, index=True),
    )
    op.create_table(
        "tailor_jobs",
        _uuid_pk(),
        sa.Column("style_id", sa.String(length=36), sa.ForeignKey("styles.id"), nullable=False, index=True),
        sa.Column("tailor_id", sa.String(length=36), sa.ForeignKey("tailors.id"), nullable=False, index=True),
        sa.Column("fabric_cutting_id", sa.String(length=36), sa.ForeignKey("fabric_cuttings.id"), nullable=True),
        sa.Column("issued_pcs", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("returned_pcs", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("rate", sa.Float(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="pending", index=True),
        sa.Column("issue_date", sa.DateTime(timezone=True), nullable=False, index=True),
        sa.Column("completed_date", sa.DateTime(timezone=True), nullable=True, index=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_table(
        "shipments",
        _uuid_pk(),
        _tenant(),
        sa.Column("style_id", sa.String(length=36), sa.ForeignKey("styles.id"), nullable=False, index=True),
        sa.Column("vendor_id", sa.String(length=36), sa.ForeignKey("vendors.id"), nullable=True, index=True),
        sa.Column("pcs_shipped", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("invoice_value", sa.Float(), nullable=True),
        sa.Column("size_label", sa.String(length=32), nullable=True),
        sa.Column("payment_status", sa.String(length=32), nullable=True),
        sa.Column("shipment_status", sa.String(length=32), nullable=False, server_default="shipped"),
        sa.Column("shipped_at", sa.DateTime(timezone=True), nullable=False, index=True),
    )
    op.create_table(
        "tailor_payments",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _tenant(),
        sa.Column("tailor_id", sa.String(length=36), sa.ForeignKey("tailors.id"), nullable=False, index=True),
        sa.Column("entry_type", sa.String(length=16), nullable=False),
        sa.Column("amount", sa.Float(), nullable=False),
        sa.Column("balance_after", sa.Float(), nullable=False, server_default="0"),
        sa.Column("note", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now(), index=True),
    )
    op.create_table(
        "cost_entries",
        _uuid_pk(),
        _tenant(nullable=True),
        sa.Column("category", sa.String(length=32), nullable=False, index=True),
        sa.Column("amount", sa.Float(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("incurred_at", sa.DateTime(timezone=True), nullable=False, index=True),
        sa.Column("description", sa.String(length=255), nullable=True),
    )
    op.create_table(
        "inventory_items",
        _uuid_pk(),
        _tenant(nullable=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("quantity", sa.Float(), nullable=False, server_default="0"),
        sa.Column("unit_cost", sa.Float(), nullable=False, server_default="0"),
    )
    op.create_table(
        "inventory_transactions",
        _uuid_pk(),
        sa.Column("item_id", sa.String(length=36), sa.ForeignKey("inventory_items.id"), nullable=False, index=True),
        sa.Column("transaction_type", sa.String(length=32), nullable=False, index=True),
        sa.Column("quantity", sa.Float(), nullable=False, server_default="0"),
        sa.Column("unit_cost", sa.Float(), nullable=False, server_default="0"),
        sa.Column("total_cost", sa.Float(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False, index=True),
    )


def downgrade() -> None:
    for table in (
        "inventory_transactions",
        "inventory_items",
        "cost_entries",
        "tailor_payments",
        "shipments",
        "tailor_jobs",
        "fabric_cuttings",
        "rates",
        "styles",
        "tailors",
        "vendors",
    ):
        op.drop_table(table)
