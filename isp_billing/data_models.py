"""Data models for the billing core.

This module defines dataclasses for the entities the calculator and the
allocator work with: billing profiles, charges, payments and the results the
two computations produce. Money values are ``Decimal`` throughout.
"""

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional

from .errors import InvalidChargeTransitionError

PENDING = "pending"
PAID = "paid"
CANCELLED = "cancelled"

CHARGE_STATUSES = (PENDING, PAID, CANCELLED)

# Allowed status changes. ``paid`` and ``cancelled`` are terminal.
_TRANSITIONS = {
    PENDING: {PAID, CANCELLED},
    PAID: set(),
    CANCELLED: set(),
}


def check_transition(old_status: str, new_status: str) -> None:
    """Raise ``InvalidChargeTransitionError`` unless ``old -> new`` is allowed.

    Keeping the same status is always accepted.
    """
    if old_status not in _TRANSITIONS or new_status not in _TRANSITIONS:
        raise InvalidChargeTransitionError(f"Unknown charge status: {old_status} -> {new_status}")
    if old_status == new_status:
        return
    if new_status not in _TRANSITIONS[old_status]:
        raise InvalidChargeTransitionError(f"Charge cannot go from {old_status} to {new_status}")


@dataclass
class BillingProfile:
    """Billing settings of a client account.

    Attributes
    ----------
    installation_date: date
        Day the service was installed.
    billing_day: int
        Day of the month (1..28) on which the monthly fee is charged.
    monthly_fee: Decimal
        Recurring fee of the client's plan.
    balance: Decimal
        Signed account balance. Positive means the client owes money,
        negative is credit in the client's favour.
    """

    installation_date: date
    billing_day: int
    monthly_fee: Decimal
    balance: Decimal = Decimal("0")
    installation_cost: Decimal = Decimal("0")
    additional_charges: Decimal = Decimal("0")


@dataclass
class ProrationResult:
    prorated_amount: Decimal
    days_charged: int
    first_billing_date: date


@dataclass
class Charge:
    """A billable line item attached to an account.

    ``id`` is ``None`` for charges that have been computed but not stored
    yet (for example advance months produced by the allocator).
    """

    id: Optional[str]
    description: str
    amount: Decimal
    status: str = PENDING
    created_at: Optional[datetime] = None
    due_date: Optional[date] = None
    paid_date: Optional[date] = None
    payment_id: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        return self.status == PENDING

    def mark_paid(self, paid_date: date, payment_id: Optional[str] = None) -> "Charge":
        """Return a copy of the charge in the ``paid`` state."""
        check_transition(self.status, PAID)
        return replace(self, status=PAID, paid_date=paid_date, payment_id=payment_id)

    def cancel(self) -> "Charge":
        check_transition(self.status, CANCELLED)
        return replace(self, status=CANCELLED)


@dataclass
class Payment:
    """A recorded payment.

    ``amount`` is the cash portion only. ``credit_used`` records how much of
    the account's credit balance was consumed together with it; a payment
    with ``amount == 0`` may exist purely to record credit consumption.
    """

    id: Optional[str]
    amount: Decimal
    date: date
    method: str = ""
    notes: Optional[str] = None
    credit_used: Decimal = Decimal("0")


@dataclass
class PaidCharge:
    """A pending charge that a payment covers in full."""

    charge_id: Optional[str]
    paid_date: date
    payment_id: Optional[str]


@dataclass
class AllocationResult:
    """Everything a payment changes on an account.

    The persistence layer must apply the three parts (charge updates, new
    advance charges and the balance) as a single atomic unit.
    """

    charges_to_mark_paid: List[PaidCharge]
    advance_charges_to_create: List[Charge]
    new_balance: Decimal
    advance_months: int
    excess_credit: Decimal
    unapplied_amount: Decimal
    summary: Dict[str, object] = field(default_factory=dict)
