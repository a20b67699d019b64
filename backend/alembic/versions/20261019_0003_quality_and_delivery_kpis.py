"""yield / rework / late-shipment inputs

Revision ID: 20261019_0003_quality_and_delivery_kpis
Revises: 20261019_0002_analytics_read_models
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_0003_quality_and_delivery_kpis"
down_revision = "20261019_0002_analytics_read_models"
branch_labels = None
depends_on = None


def _count(name: str) -> sa.Column:
    return sa.Column(name, sa.Integer(), nullable=False, server_default="0")


def upgrade() -> None:
    op.add_column("tailor_jobs", _count("rejected_pcs"))
    op.add_column("shipments", sa.Column("promised_date", sa.Date(), nullable=True))

    for name in ("completed_issued_pcs", "rejected_pcs", "shipment_count", "late_shipments"):
        op.add_column("daily_kpi", _count(name))
    for name in ("completed_issued_pcs", "rejected_pcs"):
        op.add_column("daily_kpi_tailor", _count(name))

    # Stored rows predate the new inputs; drop coverage so the next refresh or
    # read recomputes those days.
    op.execute("DELETE FROM daily_kpi_refreshes")


def downgrade() -> None:
    with op.batch_alter_table("daily_kpi_tailor") as batch:
        batch.drop_column("rejected_pcs")
        batch.drop_column("completed_issued_pcs")
    with op.batch_alter_table("daily_kpi") as batch:
        for name in ("late_shipments", "shipment_count", "rejected_pcs", "completed_issued_pcs"):
            batch.drop_column(name)
    with op.batch_alter_table("shipments") as batch:
        batch.drop_column("promised_date")
    with op.batch_alter_table("tailor_jobs") as batch:
        batch.drop_column("rejected_pcs")
