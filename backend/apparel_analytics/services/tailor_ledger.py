from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from apparel_analytics import models
from apparel_analytics.models import LedgerEntryType
from apparel_analytics.services.locks import advisory_key, pg_advisory_xact_lock

logger = logging.getLogger("apparel_analytics.tailor_ledger")

_CREDIT_TYPES = {LedgerEntryType.earning.value}
_DEBIT_TYPES = {
    LedgerEntryType.payout.value,
    LedgerEntryType.advance.value,
    LedgerEntryType.deduction.value,
}

# Balances are compared at paisa/cent precision.
_TOLERANCE = 0.005


def signed_amount(entry_type: str, amount: float) -> float:
    t = str(entry_type or "").strip().lower()
    if t in _CREDIT_TYPES:
        return abs(float(amount))
    if t in _DEBIT_TYPES:
        return -abs(float(amount))
    raise ValueError(f"unsupported ledger entry_type: {entry_type}")


def _ordered_entries(db: Session, tailor_id: str):
    return (
        db.query(models.TailorPayment)
        .filter(models.TailorPayment.tailor_id == tailor_id)
        .order_by(models.TailorPayment.created_at.asc(), models.TailorPayment.id.asc())
    )


def current_balance(db: Session, *, tailor_id: str) -> float:
    last = (
        db.query(models.TailorPayment)
        .filter(models.TailorPayment.tailor_id == tailor_id)
        .order_by(models.TailorPayment.created_at.desc(), models.TailorPayment.id.desc())
        .first()
    )
    return float(last.balance_after) if last is not None else 0.0


def append_ledger_entry(
    db: Session,
    *,
    tenant_id: str,
    tailor_id: str,
    entry_type: str,
    amount: float,
    note: str | None = None,
    created_at: datetime | None = None,
) -> models.TailorPayment:
    """Append one entry, folding it onto the tailor's last balance."""

    delta = signed_amount(entry_type, amount)
    pg_advisory_xact_lock(db, advisory_key("tailor_ledger", tailor_id))
    balance = round(current_balance(db, tailor_id=tailor_id) + delta, 2)
    entry = models.TailorPayment(
        tenant_id=tenant_id,
        tailor_id=tailor_id,
        entry_type=str(entry_type).strip().lower(),
        amount=abs(float(amount)),
        balance_after=balance,
        note=note,
    )
    if created_at is not None:
        entry.created_at = created_at
    db.add(entry)
    db.flush()
    return entry


@dataclass(frozen=True)
class LedgerDiscrepancy:
    tailor_id: str
    entry_id: int
    stored_balance: float
    expected_balance: float


def reconcile_tailor_ledger(
    db: Session,
    *,
    tenant_id: str | None = None,
    tailor_id: str | None = None,
) -> list[LedgerDiscrepancy]:
    """Re-fold every entry from zero and repair stored balances that drifted.

    Returns what was repaired. Flushes only; the caller commits.
    """

    q = db.query(models.TailorPayment.tailor_id).distinct()
    if tenant_id is not None:
        q = q.filter(models.TailorPayment.tenant_id == tenant_id)
    if tailor_id is not None:
        q = q.filter(models.TailorPayment.tailor_id == tailor_id)
    tailor_ids = sorted(str(r[0]) for r in q.all())

    repaired: list[LedgerDiscrepancy] = []
    for tid in tailor_ids:
        pg_advisory_xact_lock(db, advisory_key("tailor_ledger", tid))
        balance = 0.0
        for entry in _ordered_entries(db, tid).all():
            balance = round(balance + signed_amount(entry.entry_type, entry.amount), 2)
            if abs(float(entry.balance_after) - balance) > _TOLERANCE:
                repaired.append(
                    LedgerDiscrepancy(
                        tailor_id=tid,
                        entry_id=int(entry.id),
                        stored_balance=float(entry.balance_after),
                        expected_balance=balance,
                    )
                )
                entry.balance_after = balance

    if repaired:
        db.flush()
        logger.warning(
            "tailor_ledger_repaired",
            extra={"tenant_id": tenant_id, "entries": len(repaired), "tailors": len(tailor_ids)},
        )
    else:
        logger.info(
            "tailor_ledger_consistent",
            extra={"tenant_id": tenant_id, "tailors": len(tailor_ids)},
        )
    return repaired
