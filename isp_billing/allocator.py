"""Payment allocation.

A payment (cash, optionally topped up with part of the account's credit
balance) is applied to the account's pending charges oldest first. A charge
is either covered in full or left pending; the walk stops at the first
charge the remaining money cannot cover. Money left over once every charge
is covered prepays whole future months, and whatever is still left after
that stays on the account as credit.

The allocator never touches storage and never reads the clock. It returns an
``AllocationResult`` describing every mutation; the caller must persist that
result in one transaction.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from .data_models import AllocationResult, Charge, PaidCharge, PAID
from .errors import CreditExceedsAvailableError, EmptyPaymentError, NegativeAmountError
from .utils import Number, add_months, format_currency, round_currency, to_decimal

logger = logging.getLogger(__name__)

MONTHLY_DESCRIPTION = "Mensualidad {month}/{year}"


def available_credit(balance: Number) -> Decimal:
    """Credit the account can spend: the negative part of its balance."""
    value = to_decimal(balance)
    return -value if value < 0 else Decimal("0")


def monthly_description(dt: date) -> str:
    return MONTHLY_DESCRIPTION.format(month=dt.month, year=dt.year)


def _sort_charges(charges: Iterable[Charge]) -> List[Charge]:
    # sorted() is stable: charges sharing a timestamp keep their given order
    return sorted(charges, key=lambda c: c.created_at or datetime.min)


def _validate(cash: Decimal, credit: Decimal, balance: Decimal) -> None:
    if cash < 0:
        raise NegativeAmountError(f"Cash amount must not be negative; got {cash}")
    if credit < 0:
        raise NegativeAmountError(f"Credit to use must not be negative; got {credit}")
    if cash == 0 and credit == 0:
        raise EmptyPaymentError("A payment needs a cash amount or credit to use")
    available = available_credit(balance)
    if credit > available:
        raise CreditExceedsAvailableError(
            f"Requested credit {credit} exceeds available credit {available}"
        )


def _retire_debt(
    charges: List[Charge], total: Decimal
) -> Tuple[List[Charge], Decimal, Decimal]:
    """Cover charges in order until one cannot be paid in full.

    Returns the covered charges, the money left over and the total of the
    charges that remain pending.
    """
    remaining = total
    covered: List[Charge] = []
    still_pending = Decimal("0")
    stopped = False
    for charge in charges:
        if not stopped and remaining >= charge.amount:
            covered.append(charge)
            remaining -= charge.amount
        else:
            stopped = True
            still_pending += charge.amount
    return covered, remaining, still_pending


def _advance_charges(
    months: int,
    monthly_fee: Decimal,
    reference_date: date,
    payment_id: Optional[str],
) -> List[Charge]:
    created_at = datetime.combine(reference_date, datetime.min.time())
    charges: List[Charge] = []
    for i in range(1, months + 1):
        period = add_months(reference_date, i)
        charges.append(
            Charge(
                id=None,
                description=monthly_description(period),
                amount=monthly_fee,
                status=PAID,
                created_at=created_at,
                due_date=period,
                paid_date=reference_date,
                payment_id=payment_id,
            )
        )
    return charges


def _summary_message(covered: int, advance_months: int, credit: Decimal, excess_credit: Decimal) -> str:
    parts = [f"{covered} charge(s) covered"]
    if advance_months:
        parts.append(f"{advance_months} month(s) paid in advance")
    if credit > 0:
        parts.append(f"{format_currency(credit)} of credit applied")
    if excess_credit > 0:
        parts.append(f"{format_currency(excess_credit)} left as credit")
    return ", ".join(parts)


def allocate_payment(
    cash_amount: Number,
    credit_amount_to_use: Number,
    pending_charges: Iterable[Charge],
    monthly_fee: Number,
    current_balance: Number,
    reference_date: date,
    payment_id: Optional[str] = None,
) -> AllocationResult:
    """Allocate a payment over an account's pending charges.

    Parameters
    ----------
    cash_amount: Number
        Cash (or transfer) received. May be zero when the payment only
        consumes credit.
    credit_amount_to_use: Number
        Part of the account's credit balance to spend together with the
        cash. Must not exceed ``available_credit(current_balance)``.
    pending_charges: Iterable[Charge]
        The account's charges. Only ``pending`` ones are considered; they
        are walked in ``created_at`` order.
    monthly_fee: Number
        Fee of one billing cycle, used to size advance months. A zero fee
        disables advance months.
    current_balance: Number
        Account balance before the payment (positive owed, negative credit).
    reference_date: date
        Payment date. Covered charges get it as ``paid_date`` and advance
        months are dated from the following month on.
    payment_id: Optional[str]
        Identifier linked to every charge the payment pays.

    Raises
    ------
    NegativeAmountError, EmptyPaymentError, CreditExceedsAvailableError
        When the preconditions do not hold. Nothing is computed then.
    """
    cash = to_decimal(cash_amount)
    credit = to_decimal(credit_amount_to_use)
    balance = to_decimal(current_balance)
    fee = to_decimal(monthly_fee)
    if fee < 0:
        raise NegativeAmountError(f"Monthly fee must not be negative; got {fee}")
    _validate(cash, credit, balance)

    total = cash + credit
    charges = _sort_charges(c for c in pending_charges if c.is_pending)

    covered, remaining, still_pending = _retire_debt(charges, total)
    paid = [PaidCharge(charge_id=c.id, paid_date=reference_date, payment_id=payment_id) for c in covered]

    advance_months = 0
    excess_credit = Decimal("0")
    unapplied = remaining
    excess = remaining - still_pending
    if remaining > 0 and excess > 0:
        if fee > 0:
            advance_months = int(excess // fee)
            excess_credit = excess % fee
        else:
            excess_credit = excess
        unapplied = Decimal("0")
    advance = _advance_charges(advance_months, fee, reference_date, payment_id)

    new_balance = balance + credit - cash

    summary: Dict[str, object] = {
        "charges_covered": len(covered),
        "charges_pending": len(charges) - len(covered),
        "advance_months": advance_months,
        "cash_amount": float(cash),
        "credit_applied": float(credit),
        "total_payment": float(total),
        "still_pending": float(still_pending),
        "excess_credit": float(round_currency(excess_credit)),
        "unapplied_amount": float(round_currency(unapplied)),
        "new_balance": float(round_currency(new_balance)),
        "message": _summary_message(len(covered), advance_months, credit, excess_credit),
    }
    logger.debug(
        "Allocated payment %s: cash=%s credit=%s covered=%d advance=%d balance %s -> %s",
        payment_id, cash, credit, len(covered), advance_months, balance, new_balance,
    )

    return AllocationResult(
        charges_to_mark_paid=paid,
        advance_charges_to_create=advance,
        new_balance=new_balance,
        advance_months=advance_months,
        excess_credit=excess_credit,
        unapplied_amount=unapplied,
        summary=summary,
    )
