"""Billing calculator.

This module implements the arithmetic used when a client is onboarded: the
prorated charge for the days between installation and the first billing
day, the initial balance, the onboarding charges themselves and the next
billing date of an account. Everything here is pure: dates are passed in,
nothing reads the clock.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal, getcontext
from typing import List, Optional

from .data_models import BillingProfile, Charge, ProrationResult, PENDING
from .errors import InvalidBillingDayError, NegativeAmountError
from .utils import Number, add_months, last_day_of_month, round_currency, to_decimal

getcontext().prec = 28  # increase precision for financial calculations

MIN_BILLING_DAY = 1
MAX_BILLING_DAY = 28  # every month has a 28th
DAYS_PER_MONTH = Decimal(30)

INSTALLATION_DESCRIPTION = "Costo de instalación"
PRORATION_DESCRIPTION = "Prorrateo inicial"
ADDITIONAL_DESCRIPTION = "Cargos adicionales"


def validate_billing_day(billing_day: int) -> int:
    """Return ``billing_day`` unchanged or raise ``InvalidBillingDayError``."""
    if isinstance(billing_day, bool) or not isinstance(billing_day, int):
        raise InvalidBillingDayError(f"Billing day must be an integer; got {billing_day!r}")
    if not MIN_BILLING_DAY <= billing_day <= MAX_BILLING_DAY:
        raise InvalidBillingDayError(
            f"Billing day must be between {MIN_BILLING_DAY} and {MAX_BILLING_DAY}; got {billing_day}"
        )
    return billing_day


def _non_negative(value: Number, name: str) -> Decimal:
    amount = to_decimal(value)
    if amount < 0:
        raise NegativeAmountError(f"{name} must not be negative; got {amount}")
    return amount


def calculate_proration(installation_date: date, billing_day: int, monthly_fee: Number) -> ProrationResult:
    """Return the prorated first charge for a new installation.

    When the service is installed on or before the billing day, the client
    pays for the days up to the billing day of the same month. When it is
    installed after the billing day, the prorated span runs to the end of
    the month and then up to the day *before* the billing day of the next
    month, since the billing day itself starts the first full cycle.

    The daily rate always assumes a 30 day month::

        prorated = round_half_up(monthly_fee / 30 * days_charged, 2)

    Raises
    ------
    InvalidBillingDayError
        If ``billing_day`` is outside 1..28.
    NegativeAmountError
        If ``monthly_fee`` is negative.
    """
    validate_billing_day(billing_day)
    fee = _non_negative(monthly_fee, "Monthly fee")
    install_day = installation_date.day

    if install_day <= billing_day:
        first_billing_date = installation_date.replace(day=billing_day)
        days_charged = billing_day - install_day
    else:
        # billing_day <= 28, so the replace never overflows the next month
        first_billing_date = add_months(installation_date.replace(day=1), 1).replace(day=billing_day)
        days_until_end_of_month = last_day_of_month(installation_date) - install_day
        days_charged = days_until_end_of_month + (billing_day - 1)

    daily_rate = fee / DAYS_PER_MONTH
    prorated_amount = round_currency(daily_rate * days_charged)

    return ProrationResult(
        prorated_amount=prorated_amount,
        days_charged=days_charged,
        first_billing_date=first_billing_date,
    )


def calculate_initial_balance(
    prorated_amount: Number,
    installation_cost: Number,
    additional_charges: Number = Decimal("0"),
) -> Decimal:
    """Return the balance a new account starts with."""
    return (
        _non_negative(prorated_amount, "Prorated amount")
        + _non_negative(installation_cost, "Installation cost")
        + _non_negative(additional_charges, "Additional charges")
    )


def next_billing_date(billing_day: int, today: date) -> date:
    """Return the next date on which the monthly fee is due.

    The billing day of the current month counts only if it is still ahead;
    on the billing day itself the next date is one month later.
    """
    validate_billing_day(billing_day)
    candidate = today.replace(day=billing_day)
    if candidate <= today:
        candidate = add_months(candidate, 1)
    return candidate


def build_initial_charges(
    profile: BillingProfile,
    proration: ProrationResult,
    created_at: datetime,
    notes: Optional[str] = None,
) -> List[Charge]:
    """Return the pending charges created when a client is onboarded.

    Zero amounts produce no charge. The charges add up to
    ``calculate_initial_balance`` for the same inputs.
    """
    lines = [
        (INSTALLATION_DESCRIPTION, _non_negative(profile.installation_cost, "Installation cost")),
        (PRORATION_DESCRIPTION, proration.prorated_amount),
        (notes or ADDITIONAL_DESCRIPTION, _non_negative(profile.additional_charges, "Additional charges")),
    ]
    charges: List[Charge] = []
    for description, amount in lines:
        if amount > 0:
            charges.append(
                Charge(
                    id=None,
                    description=description,
                    amount=amount,
                    status=PENDING,
                    created_at=created_at,
                )
            )
    return charges
