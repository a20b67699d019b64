from __future__ import annotations

from dataclasses import dataclass

from apparel_analytics.config import Settings, settings


@dataclass(frozen=True)
class StatusSets:
    """Named status memberships shared by the rollup, query and financial engines."""

    completed: frozenset[str]
    open_jobs: frozenset[str]
    receivable_shipments: frozenset[str]
    unpaid_payments: frozenset[str]
    revenue_shipments: frozenset[str]
    approved_costs: frozenset[str]
    material_transactions: frozenset[str]

    @classmethod
    def from_settings(cls, cfg: Settings | None = None) -> "StatusSets":
        cfg = cfg or settings
        return cls(
            completed=frozenset(cfg.completed_statuses),
            open_jobs=frozenset(cfg.open_job_statuses),
            receivable_shipments=frozenset(cfg.receivable_shipment_statuses),
            unpaid_payments=frozenset(cfg.unpaid_payment_statuses),
            revenue_shipments=frozenset(cfg.revenue_shipment_statuses),
            approved_costs=frozenset(cfg.approved_cost_statuses),
            material_transactions=frozenset(cfg.material_transaction_types),
        )


def default_status_sets() -> StatusSets:
    return StatusSets.from_settings(settings)
