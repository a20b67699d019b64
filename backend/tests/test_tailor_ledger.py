from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from apparel_analytics.services.tailor_ledger import (
    append_ledger_entry,
    current_balance,
    reconcile_tailor_ledger,
    signed_amount,
)

import factories as f

T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def test_signed_amount():
    assert signed_amount("earning", 120) == 120.0
    assert signed_amount("Payout", 50) == -50.0
    assert signed_amount("advance", -30) == -30.0
    assert signed_amount("deduction", 10) == -10.0
    with pytest.raises(ValueError):
        signed_amount("bonus", 10)


def test_entries_fold_onto_running_balance(memory_session):
    db = memory_session
    t = f.tailor(db)
    steps = [("earning", 1000.0), ("advance", 250.0), ("earning", 120.5), ("payout", 500.0)]
    balances = []
    for i, (entry_type, amount) in enumerate(steps):
        entry = append_ledger_entry(
            db,
            tenant_id="t1",
            tailor_id=t.id,
            entry_type=entry_type,
            amount=amount,
            created_at=T0 + timedelta(hours=i),
        )
        balances.append(entry.balance_after)
    db.commit()

    assert balances == [1000.0, 750.0, 870.5, 370.5]
    assert current_balance(db, tailor_id=t.id) == 370.5
    assert reconcile_tailor_ledger(db) == []


def test_unknown_entry_type_writes_nothing(memory_session):
    db = memory_session
    t = f.tailor(db)

    with pytest.raises(ValueError):
        append_ledger_entry(db, tenant_id="t1", tailor_id=t.id, entry_type="bonus", amount=5)

    assert current_balance(db, tailor_id=t.id) == 0.0


def test_reconcile_repairs_drift_per_tailor(memory_session):
    db = memory_session
    a = f.tailor(db, name="Tailor A")
    b = f.tailor(db, name="Tailor B", tenant_id="t2")
    first = append_ledger_entry(
        db, tenant_id="t1", tailor_id=a.id, entry_type="earning", amount=400, created_at=T0
    )
    second = append_ledger_entry(
        db,
        tenant_id="t1",
        tailor_id=a.id,
        entry_type="deduction",
        amount=40,
        created_at=T0 + timedelta(hours=1),
    )
    other = append_ledger_entry(
        db, tenant_id="t2", tailor_id=b.id, entry_type="earning", amount=80, created_at=T0
    )
    first.balance_after = 390.0
    other.balance_after = 1.0
    db.commit()

    repaired = reconcile_tailor_ledger(db, tenant_id="t1")
    db.commit()

    assert [(r.entry_id, r.stored_balance, r.expected_balance) for r in repaired] == [
        (first.id, 390.0, 400.0)
    ]
    assert first.balance_after == 400.0
    assert second.balance_after == 360.0
    # Other tenants are left alone when scoped.
    assert other.balance_after == 1.0

    assert len(reconcile_tailor_ledger(db, tailor_id=b.id)) == 1
    assert other.balance_after == 80.0
