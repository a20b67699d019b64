"""daily KPI store + financial periods

Revision ID: 20261019_0002_analytics_read_models
Revises: 20261019_0001_portal_core_tables
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_0002_analytics_read_models"
down_revision = "20261019_0001_portal_core_tables"
branch_labels = None
depends_on = None


def _money(name: str) -> sa.Column:
    return sa.Column(name, sa.Float(), nullable=False, server_default="0")


def _count(name: str) -> sa.Column:
    return sa.Column(name, sa.Integer(), nullable=False, server_default="0")


def upgrade() -> None:
    op.create_table(
        "daily_kpi",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.String(length=64), nullable=False, index=True),
        sa.Column("kpi_date", sa.Date(), nullable=False, index=True),
        sa.Column("style_id", sa.String(length=36), nullable=False, index=True),
        sa.Column("vendor_id", sa.String(length=36), nullable=True, index=True),
        _count("cutting_received_pcs"),
        _money("cutting_fabric_meters"),
        _count("in_production_pcs"),
        _count("in_production_orders"),
        _count("completed_pcs"),
        _count("shipped_pcs"),
        _money("expected_receivable_amount"),
        _money("tailor_expense_amount"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("tenant_id", "kpi_date", "style_id", name="uq_daily_kpi_tenant_date_style"),
    )
    op.create_index("ix_daily_kpi_tenant_date", "daily_kpi", ["tenant_id", "kpi_date"])

    op.create_table(
        "daily_kpi_tailor",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.String(length=64), nullable=False, index=True),
        sa.Column("kpi_date", sa.Date(), nullable=False, index=True),
        sa.Column("style_id", sa.String(length=36), nullable=False, index=True),
        sa.Column("tailor_id", sa.String(length=36), nullable=False, index=True),
        sa.Column("vendor_id", sa.String(length=36), nullable=True),
        _count("in_production_pcs"),
        _count("in_production_orders"),
        _count("completed_pcs"),
        _money("tailor_expense_amount"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint(
            "tenant_id",
            "kpi_date",
            "style_id",
            "tailor_id",
            name="uq_daily_kpi_tailor_tenant_date_style_tailor",
        ),
    )

    op.create_table(
        "daily_kpi_refreshes",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.String(length=64), nullable=False, index=True),
        sa.Column("kpi_date", sa.Date(), nullable=False, index=True),
        _count("style_rows"),
        _count("tailor_rows"),
        sa.Column("refreshed_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("tenant_id", "kpi_date", name="uq_daily_kpi_refreshes_tenant_date"),
    )

    op.create_table(
        "financial_periods",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("period_type", sa.String(length=16), nullable=False, index=True),
        sa.Column("period_key", sa.String(length=16), nullable=False, index=True),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        _money("total_revenue"),
        sa.Column("revenue_breakdown", sa.JSON(), nullable=True),
        _money("tailor_cost"),
        _money("material_cost"),
        _money("overhead_cost"),
        _money("logistics_cost"),
        _money("quality_cost"),
        _money("other_cost"),
        _money("total_cost"),
        _money("gross_profit"),
        _money("gross_profit_margin"),
        _money("operating_profit"),
        _money("operating_profit_margin"),
        _money("ebitda"),
        _money("ebitda_margin"),
        _money("net_profit"),
        _money("net_profit_margin"),
        _money("return_on_sales"),
        _money("inventory_turnover"),
        sa.Column("is_finalized", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("finalized_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finalized_by", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("period_type", "period_key", name="uq_financial_periods_type_key"),
    )


def downgrade() -> None:
    op.drop_table("financial_periods")
    op.drop_table("daily_kpi_refreshes")
    op.drop_table("daily_kpi_tailor")
    op.drop_index("ix_daily_kpi_tenant_date", table_name="daily_kpi")
    op.drop_table("daily_kpi")
