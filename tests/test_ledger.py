"""Tests for the balance bookkeeping rules."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

import pytest

from isp_billing.data_models import BillingProfile, Charge, PAID, PENDING, CANCELLED
from isp_billing.errors import InvalidChargeTransitionError
from isp_billing.ledger import (
    balance_status,
    billing_periods,
    charge_edit_delta,
    missing_monthly_charges,
    monthly_charge,
    payment_edit_delta,
    period_status,
    reconcile,
)

PROFILE = BillingProfile(installation_date=date(2025, 1, 25), billing_day=10, monthly_fee=Decimal("500"))


def test_balance_status():
    assert balance_status(Decimal("10")) == "debt"
    assert balance_status(Decimal("-0.01")) == "credit"
    assert balance_status(0) == "current"


def test_payment_edit_delta():
    assert payment_edit_delta(Decimal("100"), Decimal("150")) == Decimal("-50")
    assert payment_edit_delta(Decimal("100"), Decimal("80")) == Decimal("20")


def test_charge_edit_delta():
    assert charge_edit_delta(Decimal("100"), Decimal("120"), PENDING, PENDING) == Decimal("20")
    assert charge_edit_delta(Decimal("100"), Decimal("120"), PENDING, PAID) == Decimal("-120")
    assert charge_edit_delta(Decimal("100"), Decimal("100"), PENDING, CANCELLED) == Decimal("-100")
    assert charge_edit_delta(Decimal("100"), Decimal("90"), PAID, PAID) == Decimal("0")


@pytest.mark.parametrize("old,new", [(PAID, PENDING), (CANCELLED, PENDING), (PAID, CANCELLED), (PENDING, "partial")])
def test_charge_edit_rejects_illegal_transitions(old, new):
    with pytest.raises(InvalidChargeTransitionError):
        charge_edit_delta(Decimal("100"), Decimal("100"), old, new)


def test_charge_state_machine():
    charge = Charge(id="c1", description="x", amount=Decimal("10"))
    paid = charge.mark_paid(date(2025, 2, 1), "p1")
    assert paid.status == PAID and paid.payment_id == "p1"
    assert charge.status == PENDING
    with pytest.raises(InvalidChargeTransitionError):
        paid.cancel()
    assert charge.cancel().status == CANCELLED


def test_monthly_charge_is_due_on_billing_day():
    charge = monthly_charge(PROFILE, 2025, 3, datetime(2025, 3, 1))
    assert charge.description == "Mensualidad 3/2025"
    assert charge.amount == Decimal("500")
    assert charge.due_date == date(2025, 3, 10)
    assert charge.status == PENDING


def test_billing_periods_span_installation_to_today():
    assert billing_periods(date(2024, 11, 30), date(2025, 2, 1)) == [(2024, 11), (2024, 12), (2025, 1), (2025, 2)]


def test_missing_monthly_charges_skips_existing_periods():
    existing = [
        Charge(id="a", description="Mensualidad 2/2025", amount=Decimal("500"), status=PAID),
        Charge(id="b", description="Prorrateo inicial", amount=Decimal("250")),
    ]
    missing = missing_monthly_charges(PROFILE, existing, date(2025, 3, 15))
    assert [c.description for c in missing] == ["Mensualidad 1/2025", "Mensualidad 3/2025"]


def test_period_status():
    due = date(2025, 3, 10)
    assert period_status(Decimal("500"), Decimal("500"), due, date(2025, 4, 1)) == "paid"
    assert period_status(Decimal("500"), Decimal("200"), due, date(2025, 3, 1)) == "partial"
    assert period_status(Decimal("500"), Decimal("0"), due, date(2025, 3, 11)) == "overdue"
    assert period_status(Decimal("500"), Decimal("0"), due, date(2025, 3, 10)) == "pending"


def test_reconcile():
    charges = [
        Charge(id="a", description="a", amount=Decimal("100")),
        Charge(id="b", description="b", amount=Decimal("200")),
        Charge(id="c", description="c", amount=Decimal("50"), status=PAID),
    ]
    assert reconcile(Decimal("300"), charges) == Decimal("0")
    # a partial payment of 250 covered "a" only
    assert reconcile(Decimal("50"), charges[1:]) == Decimal("150")
    assert reconcile(Decimal("-20"), []) == Decimal("0")
