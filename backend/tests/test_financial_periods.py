from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from apparel_analytics import models
from apparel_analytics.services.financial_calculation import (
    CostBreakdown,
    build_pl_statement,
    safe_ratio_pct,
)
from apparel_analytics.services.financial_periods import (
    execute_financial_period_run,
    finalize_financial_period,
    period_window,
    periods_due,
)

import factories as f

QUARTER_END = date(2026, 3, 31)  # Tuesday


def _due(target: date) -> set[str]:
    return {w.period_type for w in periods_due(target)}


@pytest.mark.parametrize(
    "target, expected",
    [
        (date(2026, 3, 15), {"daily", "weekly"}),  # Sunday
        (date(2026, 3, 17), {"daily"}),
        (QUARTER_END, {"daily", "monthly", "quarterly"}),
        (date(2026, 4, 30), {"daily", "monthly"}),
        (date(2026, 12, 31), {"daily", "monthly", "quarterly", "yearly"}),
    ],
)
def test_periods_are_due_only_on_their_last_day(target, expected):
    assert _due(target) == expected


def test_period_keys():
    assert period_window("daily", QUARTER_END).period_key == "2026-03-31"
    assert period_window("monthly", QUARTER_END).period_key == "2026-03"
    assert period_window("quarterly", QUARTER_END).period_key == "2026-Q1"
    assert period_window("yearly", QUARTER_END).period_key == "2026"

    week = period_window("weekly", date(2026, 4, 5))
    assert week.period_key == "2026-W14"
    assert (week.start_date, week.end_date) == (date(2026, 3, 30), date(2026, 4, 5))


def test_weekly_key_uses_iso_week_year():
    week = period_window("weekly", date(2027, 1, 3))
    assert week.period_key == "2026-W53"
    assert week.start_date == date(2026, 12, 28)


def test_unknown_period_type_rejected():
    with pytest.raises(ValueError):
        period_window("fortnightly", QUARTER_END)


def test_zero_revenue_margins_are_zero():
    pl = build_pl_statement(0.0, CostBreakdown(tailor_cost=100.0, overhead_cost=50.0))

    assert pl.gross_profit == -100.0
    assert pl.net_profit == -150.0
    assert pl.gross_profit_margin == 0.0
    assert pl.net_profit_margin == 0.0
    assert pl.return_on_sales == 0.0
    assert safe_ratio_pct(5, 0) == 0.0


def _seed_quarter_end(db):
    v = f.vendor(db, tenant_id="t1")
    t = f.tailor(db, tenant_id="t1")
    s = f.style(db, vendor_id=v.id)
    f.shipment(db, style=s, day=QUARTER_END, pcs=100, invoice_value=10000.0)
    # Not yet shipped: no revenue.
    f.shipment(db, style=s, day=QUARTER_END, pcs=50, invoice_value=5000.0, shipment_status="packed")
    f.job(
        db,
        style=s,
        tailor_id=t.id,
        issue_day=date(2026, 3, 20),
        issued=100,
        returned=100,
        rate=20.0,
        status="completed",
        completed_day=QUARTER_END,
    )

    item = models.InventoryItem(name="Cotton roll", quantity=100, unit_cost=30.0)
    db.add(item)
    db.flush()
    db.add(
        models.InventoryTransaction(
            item_id=item.id,
            transaction_type="consumption",
            quantity=50,
            unit_cost=30.0,
            total_cost=1500.0,
            occurred_at=f.at(QUARTER_END),
        )
    )
    for category, amount, status in [
        ("overhead", 500.0, "approved"),
        ("logistics", 300.0, "approved"),
        ("marketing", 200.0, "approved"),
        ("overhead", 999.0, "pending"),
    ]:
        db.add(
            models.CostEntry(
                category=category,
                amount=amount,
                status=status,
                incurred_at=f.at(QUARTER_END),
            )
        )
    db.commit()
    return v, t, s


def test_run_writes_due_periods_with_pl_figures(memory_session):
    db = memory_session
    _seed_quarter_end(db)

    result = execute_financial_period_run(db, target_date=QUARTER_END)
    db.commit()

    assert result.periods["weekly"] is None
    assert result.periods["yearly"] is None
    assert {k for k, v in result.periods.items() if v} == {"daily", "monthly", "quarterly"}
    assert result.periods["daily"].status == "created"

    row = (
        db.query(models.FinancialPeriod)
        .filter_by(period_type="monthly", period_key="2026-03")
        .one()
    )
    assert row.total_revenue == 10000.0
    assert row.tailor_cost == 2000.0
    assert row.material_cost == 1500.0
    assert row.overhead_cost == 500.0
    assert row.logistics_cost == 300.0
    assert row.other_cost == 200.0
    assert row.total_cost == 4500.0
    assert row.gross_profit == 6500.0
    assert row.gross_profit_margin == 65.0
    assert row.operating_profit == 5500.0
    assert row.net_profit_margin == 55.0
    assert row.ebitda == row.net_profit == 5500.0
    assert row.inventory_turnover == 0.5
    assert row.is_finalized is False
    assert row.revenue_breakdown["by_style"][0]["amount"] == 10000.0
    assert row.revenue_breakdown["by_fabric_type"][0]["key"] == "cotton"

    payload = result.as_dict()
    assert payload["date"] == "2026-03-31"
    assert payload["results"]["weekly"] is None


def test_rerun_updates_in_place(memory_session):
    db = memory_session
    _seed_quarter_end(db)
    execute_financial_period_run(db, target_date=QUARTER_END)
    db.commit()

    result = execute_financial_period_run(db, target_date=QUARTER_END)
    db.commit()

    assert result.periods["daily"].status == "updated"
    assert db.query(models.FinancialPeriod).count() == 3


def test_finalized_period_is_not_overwritten(memory_session):
    db = memory_session
    _, _, s = _seed_quarter_end(db)
    execute_financial_period_run(db, target_date=QUARTER_END)
    finalize_financial_period(
        db,
        period_type="monthly",
        period_key="2026-03",
        finalized_by="controller",
        now=datetime(2026, 4, 1, tzinfo=timezone.utc),
    )
    db.commit()

    f.shipment(db, style=s, day=QUARTER_END, pcs=10, invoice_value=1000.0)
    db.commit()
    result = execute_financial_period_run(db, target_date=QUARTER_END)
    db.commit()

    assert result.periods["monthly"].status == "skipped_finalized"
    assert result.periods["monthly"].total_revenue == 10000.0
    assert result.periods["daily"].total_revenue == 11000.0

    monthly = db.query(models.FinancialPeriod).filter_by(period_type="monthly").one()
    assert monthly.is_finalized is True
    assert monthly.total_revenue == 10000.0
    assert monthly.finalized_by == "controller"


def test_finalize_missing_period_raises(memory_session):
    with pytest.raises(LookupError):
        finalize_financial_period(
            memory_session, period_type="monthly", period_key="1999-01", finalized_by=None
        )


def test_empty_day_produces_zero_row(memory_session):
    db = memory_session
    result = execute_financial_period_run(db, target_date=date(2026, 3, 17))
    db.commit()

    row = db.query(models.FinancialPeriod).one()
    assert result.periods["daily"].status == "created"
    assert row.total_revenue == 0.0
    assert row.gross_profit_margin == 0.0
    assert row.inventory_turnover == 0.0
