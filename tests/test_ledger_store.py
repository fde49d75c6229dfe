"""Tests for the SQLAlchemy ledger store."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

import pytest

from isp_billing.data_models import BillingProfile, Charge, PAID, PENDING
from isp_billing.errors import CreditExceedsAvailableError, InvalidChargeTransitionError, NegativeAmountError
from isp_billing.ledger import reconcile
from isp_billing_web.ledger_store import LedgerStore


def _onboard(store, **overrides):
    fields = dict(
        installation_date=date(2025, 1, 25),
        billing_day=10,
        monthly_fee=Decimal("500"),
        installation_cost=Decimal("800"),
    )
    fields.update(overrides)
    return store.create_account("Ana Pérez", BillingProfile(**fields), created_at=datetime(2025, 1, 25, 12))


def test_create_account_stores_initial_charges(store):
    account = _onboard(store)
    assert account["balance"] == 1050.0
    assert account["prorated_amount"] == 250.0
    assert account["first_billing_date"] == "2025-02-10"
    charges = store.list_charges(account["id"])
    assert [c.description for c in charges] == ["Costo de instalación", "Prorrateo inicial"]
    assert reconcile(Decimal(str(account["balance"])), charges) == Decimal("0")


def test_partial_payment_covers_oldest_charge(store):
    account = _onboard(store)
    result = store.apply_payment(account["id"], Decimal("900"), date(2025, 2, 1))

    assert len(result.charges_to_mark_paid) == 1
    charges = store.list_charges(account["id"])
    assert [c.status for c in charges] == [PAID, PENDING]
    assert charges[0].payment_id is not None
    assert store.get_account(account["id"])["balance"] == 150.0
    assert len(store.list_payments(account["id"])) == 1


def test_overpayment_creates_paid_advance_months(store):
    account = _onboard(store)
    store.apply_payment(account["id"], Decimal("2200"), date(2025, 2, 1))

    paid = store.list_charges(account["id"], status=PAID)
    assert len(paid) == 4
    assert {c.description for c in paid[2:]} == {"Mensualidad 3/2025", "Mensualidad 4/2025"}
    assert store.get_account(account["id"])["balance"] == -1150.0


def test_credit_balance_can_pay_new_charges(store):
    account = _onboard(store, installation_cost=Decimal("0"), installation_date=date(2025, 1, 10))
    store.apply_payment(account["id"], Decimal("200"), date(2025, 1, 10))
    store.add_charge(
        account["id"],
        Charge(id=None, description="Cambio de equipo", amount=Decimal("150"), created_at=datetime(2025, 1, 20)),
    )
    assert store.get_account(account["id"])["balance"] == -50.0

    with pytest.raises(CreditExceedsAvailableError):
        store.apply_payment(account["id"], Decimal("0"), date(2025, 1, 21), credit_to_use=Decimal("150"))

    result = store.apply_payment(account["id"], Decimal("100"), date(2025, 1, 21), credit_to_use=Decimal("50"))
    assert len(result.charges_to_mark_paid) == 1
    assert store.list_charges(account["id"], status=PENDING) == []
    assert store.get_account(account["id"])["balance"] == -100.0
    assert store.list_payments(account["id"])[-1]["credit_used"] == 50.0


def test_failed_payment_changes_nothing(store):
    account = _onboard(store)
    with pytest.raises(CreditExceedsAvailableError):
        store.apply_payment(account["id"], Decimal("100"), date(2025, 2, 1), credit_to_use=Decimal("5"))
    assert store.get_account(account["id"])["balance"] == 1050.0
    assert store.list_payments(account["id"]) == []
    assert all(c.status == PENDING for c in store.list_charges(account["id"]))


def test_generate_monthly_charges_is_idempotent(store):
    account = _onboard(store, installation_cost=Decimal("0"))
    created = store.generate_monthly_charges(account["id"], date(2025, 3, 15))
    assert [c.description for c in created] == ["Mensualidad 1/2025", "Mensualidad 2/2025", "Mensualidad 3/2025"]
    assert store.generate_monthly_charges(account["id"], date(2025, 3, 20)) == []
    assert store.get_account(account["id"])["balance"] == 1750.0


def test_cancelling_a_charge_lowers_the_balance(store):
    account = _onboard(store)
    charge = store.list_charges(account["id"])[0]
    updated = store.update_charge_status(account["id"], charge.id, "cancelled")
    assert updated.status == "cancelled"
    assert store.get_account(account["id"])["balance"] == 250.0
    with pytest.raises(InvalidChargeTransitionError):
        store.update_charge_status(account["id"], charge.id, PENDING)


def test_unknown_account_raises_lookup_error(store):
    with pytest.raises(LookupError):
        store.get_account("missing")


def test_payment_failing_midway_is_rolled_back(store, monkeypatch):
    account = _onboard(store)

    def fail(*args, **kwargs):
        raise RuntimeError("disk full")

    # covered charges are already updated when the advance months are written
    monkeypatch.setattr(LedgerStore, "_charge_row", staticmethod(fail))
    with pytest.raises(RuntimeError):
        store.apply_payment(account["id"], Decimal("2200"), date(2025, 2, 1))
    monkeypatch.undo()

    charges = store.list_charges(account["id"])
    assert [c.status for c in charges] == [PENDING, PENDING]
    assert all(c.payment_id is None and c.paid_date is None for c in charges)
    assert store.get_account(account["id"])["balance"] == 1050.0
    assert store.list_payments(account["id"]) == []


@pytest.mark.parametrize("amount", [Decimal("-100"), Decimal("0")])
def test_add_charge_rejects_non_positive_amount(store, amount):
    account = _onboard(store)
    with pytest.raises(NegativeAmountError):
        store.add_charge(account["id"], Charge(id=None, description="Ajuste", amount=amount))
    assert len(store.list_charges(account["id"])) == 2
    assert store.get_account(account["id"])["balance"] == 1050.0


def test_add_charge_rejects_non_pending_status(store):
    account = _onboard(store)
    with pytest.raises(InvalidChargeTransitionError):
        store.add_charge(account["id"], Charge(id=None, description="Ajuste", amount=Decimal("100"), status=PAID))
    assert store.get_account(account["id"])["balance"] == 1050.0


def test_update_charge_rejects_non_positive_amount(store):
    account = _onboard(store)
    charge = store.list_charges(account["id"])[0]
    with pytest.raises(NegativeAmountError):
        store.update_charge_status(account["id"], charge.id, PENDING, Decimal("-500"))
    assert store.list_charges(account["id"])[0].amount == Decimal("800")
    assert store.get_account(account["id"])["balance"] == 1050.0


def test_terminal_charge_amount_cannot_change(store):
    account = _onboard(store)
    store.apply_payment(account["id"], Decimal("800"), date(2025, 2, 1))
    paid = store.list_charges(account["id"], status=PAID)[0]
    with pytest.raises(InvalidChargeTransitionError):
        store.update_charge_status(account["id"], paid.id, PAID, Decimal("500"))
    assert store.list_charges(account["id"], status=PAID)[0].amount == Decimal("800")
    # same amount, same status is still accepted
    assert store.update_charge_status(account["id"], paid.id, PAID).amount == Decimal("800")
