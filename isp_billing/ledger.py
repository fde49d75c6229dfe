"""Balance bookkeeping rules.

The account balance is a denormalized figure kept next to the charges. This
module holds the rules for every write that moves it outside of payment
allocation (monthly fee generation, edits to charges and payments) together
with the read-side helpers used by reports: balance and period status and a
reconciliation check between the balance and the unpaid charges.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple

from .allocator import monthly_description
from .data_models import BillingProfile, Charge, check_transition, CANCELLED, PAID, PENDING
from .engine import validate_billing_day
from .utils import Number, add_months, to_decimal

DEBT = "debt"
CREDIT = "credit"
CURRENT = "current"


def balance_status(balance: Number) -> str:
    value = to_decimal(balance)
    if value > 0:
        return DEBT
    if value < 0:
        return CREDIT
    return CURRENT


def payment_edit_delta(old_amount: Number, new_amount: Number) -> Decimal:
    """Balance change when the amount of a recorded payment is edited.

    Raising a payment lowers the balance and vice versa.
    """
    return -(to_decimal(new_amount) - to_decimal(old_amount))


def charge_edit_delta(old_amount: Number, new_amount: Number, old_status: str, new_status: str) -> Decimal:
    """Balance change when a charge's amount and/or status is edited.

    A pending charge is already part of the balance, so editing its amount
    moves the balance by the difference. Paying it removes the new amount,
    cancelling it removes the old one. Paid and cancelled charges are
    terminal and do not move the balance.

    Raises
    ------
    InvalidChargeTransitionError
        If the status change is not allowed.
    """
    check_transition(old_status, new_status)
    old = to_decimal(old_amount)
    new = to_decimal(new_amount)
    if old_status == PENDING and new_status == PAID:
        return -new
    if old_status == PENDING and new_status == CANCELLED:
        return -old
    if old_status == PENDING:
        return new - old
    return Decimal("0")


def monthly_charge(profile: BillingProfile, year: int, month: int, created_at: datetime) -> Charge:
    """The pending monthly fee charge for ``month/year``, due on the billing day."""
    validate_billing_day(profile.billing_day)
    due = date(year, month, profile.billing_day)
    return Charge(
        id=None,
        description=monthly_description(due),
        amount=to_decimal(profile.monthly_fee),
        status=PENDING,
        created_at=created_at,
        due_date=due,
    )


def billing_periods(installation_date: date, today: date) -> List[Tuple[int, int]]:
    """Every ``(year, month)`` from the installation month through ``today``'s."""
    periods: List[Tuple[int, int]] = []
    current = installation_date.replace(day=1)
    end = today.replace(day=1)
    while current <= end:
        periods.append((current.year, current.month))
        current = add_months(current, 1)
    return periods


def missing_monthly_charges(
    profile: BillingProfile,
    charges: Iterable[Charge],
    today: date,
    created_at: Optional[datetime] = None,
) -> List[Charge]:
    """Monthly fee charges that should exist by ``today`` but do not.

    A period counts as charged when any charge, whatever its status, carries
    that period's monthly description. Advance months paid ahead of time
    therefore are not generated again.
    """
    existing = {c.description for c in charges}
    stamp = created_at or datetime.combine(today, datetime.min.time())
    missing: List[Charge] = []
    for year, month in billing_periods(profile.installation_date, today):
        charge = monthly_charge(profile, year, month, stamp)
        if charge.description not in existing:
            missing.append(charge)
    return missing


def period_status(monthly_fee: Number, total_paid: Number, due_date: date, today: date) -> str:
    """Status of one billing period: paid, partial, overdue or pending."""
    fee = to_decimal(monthly_fee)
    paid = to_decimal(total_paid)
    if paid >= fee:
        return PAID
    if paid > 0:
        return "partial"
    if due_date < today:
        return "overdue"
    return PENDING


def reconcile(balance: Number, charges: Iterable[Charge]) -> Decimal:
    """Difference between the unpaid charges and the debt in the balance.

    Zero means the two agree. A positive result means pending charges
    exceed the recorded debt, which is the normal state after a partial
    payment that did not cover the oldest charge.
    """
    unpaid = sum((c.amount for c in charges if c.status == PENDING), Decimal("0"))
    debt = max(to_decimal(balance), Decimal("0"))
    return unpaid - debt
