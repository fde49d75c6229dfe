"""Command-line interface for the billing core.

This module uses the ``click`` library to implement a multi-command
interface. Users can compute the proration of a new installation, the
initial balance of an account, the next billing date and a preview of how
a payment would be allocated. Results can be printed to the terminal or
exported to JSON files.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import click

from .allocator import allocate_payment
from .data_models import AllocationResult, Charge, ProrationResult, PENDING
from .engine import calculate_initial_balance, calculate_proration, next_billing_date
from .errors import BillingError
from .formatter import print_allocation, print_proration
from .utils import parse_date, to_decimal

LOG_LEVEL_ENV = "ISP_BILLING_LOG_LEVEL"


def parse_amount(value: str):
    """Parse a money string such as ``"1,250.50"`` into a ``Decimal``."""
    try:
        return to_decimal(value)
    except ValueError:
        raise click.BadParameter(f"Invalid amount: {value}")


def parse_day(value: str) -> date:
    try:
        return parse_date(value)
    except ValueError as exc:
        raise click.BadParameter(str(exc))


def parse_charge_strings(values: Tuple[str, ...]) -> List[Charge]:
    """Parse ``ID:AMOUNT[:YYYY-MM-DD]`` entries into pending charges.

    Charges without a date keep the order they were given in.
    """
    charges: List[Charge] = []
    for position, item in enumerate(values):
        parts = item.split(":")
        if len(parts) not in (2, 3):
            raise click.BadParameter(f"Charge must be in ID:AMOUNT[:YYYY-MM-DD] format; got {item}")
        charge_id, amount_str = parts[0], parts[1]
        amount = parse_amount(amount_str)
        if amount <= 0:
            raise click.BadParameter(f"Charge amount must be positive; got {item}")
        if len(parts) == 3:
            created = datetime.combine(parse_day(parts[2]), datetime.min.time())
        else:
            created = datetime.min.replace(microsecond=position)
        charges.append(
            Charge(id=charge_id, description=charge_id, amount=amount, status=PENDING, created_at=created)
        )
    return charges


def proration_to_dict(result: ProrationResult) -> Dict[str, Any]:
    return {
        "prorated_amount": float(result.prorated_amount),
        "days_charged": result.days_charged,
        "first_billing_date": result.first_billing_date.isoformat(),
    }


def charge_to_dict(charge: Charge) -> Dict[str, Any]:
    return {
        "id": charge.id,
        "description": charge.description,
        "amount": float(charge.amount),
        "status": charge.status,
        "due_date": charge.due_date.isoformat() if charge.due_date else None,
        "paid_date": charge.paid_date.isoformat() if charge.paid_date else None,
        "payment_id": charge.payment_id,
    }


def allocation_to_dict(result: AllocationResult) -> Dict[str, Any]:
    """Convert an allocation into JSON-serialisable dictionaries."""
    return {
        "summary": result.summary,
        "charges_to_mark_paid": [
            {
                "charge_id": p.charge_id,
                "paid_date": p.paid_date.isoformat(),
                "payment_id": p.payment_id,
            }
            for p in result.charges_to_mark_paid
        ],
        "advance_charges_to_create": [charge_to_dict(c) for c in result.advance_charges_to_create],
        "new_balance": float(result.new_balance),
    }


def export_to_json(path: Path, data: Dict[str, Any]) -> None:
    with path.open("w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)


def configure_logging(level: Optional[str]) -> None:
    name = (level or os.environ.get(LOG_LEVEL_ENV) or "WARNING").upper()
    logging.basicConfig(
        level=getattr(logging, name, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@click.group()
@click.option("--log-level", "log_level", help=f"Logging level (defaults to ${LOG_LEVEL_ENV} or WARNING)")
def cli(log_level: Optional[str]) -> None:
    """Billing calculator for ISP client accounts."""
    configure_logging(log_level)


@cli.command()
@click.option("--installation-date", "-i", "installation_date", required=True, help="Installation date (YYYY-MM-DD)")
@click.option("--billing-day", "-b", "billing_day", required=True, type=int, help="Billing day of the month (1-28)")
@click.option("--fee", "-f", "fee", required=True, help="Monthly fee")
@click.option("--installation-cost", "installation_cost", default="0", help="One-off installation cost")
@click.option("--additional", "additional", default="0", help="Additional one-off charges")
@click.option("--output", "output", type=str, help="Output file path (.json)")
def prorate(
    installation_date: str,
    billing_day: int,
    fee: str,
    installation_cost: str,
    additional: str,
    output: Optional[str],
) -> None:
    """Compute the prorated first charge and the initial balance."""
    try:
        result = calculate_proration(parse_day(installation_date), billing_day, parse_amount(fee))
        balance = calculate_initial_balance(
            result.prorated_amount, parse_amount(installation_cost), parse_amount(additional)
        )
    except BillingError as exc:
        raise click.BadParameter(str(exc))
    if output:
        path = Path(output)
        if path.suffix.lower() != ".json":
            raise click.BadParameter("Proration export must use .json extension")
        data = proration_to_dict(result)
        data["initial_balance"] = float(balance)
        export_to_json(path, data)
        click.echo(f"Proration exported to {path}")
    else:
        print_proration(result, balance)


@cli.command("initial-balance")
@click.option("--prorated", "prorated", required=True, help="Prorated amount")
@click.option("--installation-cost", "installation_cost", required=True, help="Installation cost")
@click.option("--additional", "additional", default="0", help="Additional one-off charges")
def initial_balance(prorated: str, installation_cost: str, additional: str) -> None:
    """Print the balance a new account starts with."""
    try:
        total = calculate_initial_balance(
            parse_amount(prorated), parse_amount(installation_cost), parse_amount(additional)
        )
    except BillingError as exc:
        raise click.BadParameter(str(exc))
    click.echo(f"{total:.2f}")


@cli.command("next-billing")
@click.option("--billing-day", "-b", "billing_day", required=True, type=int, help="Billing day of the month (1-28)")
@click.option("--today", "today", help="Reference date (YYYY-MM-DD); defaults to the current date")
def next_billing(billing_day: int, today: Optional[str]) -> None:
    """Print the next date on which the monthly fee is due."""
    reference = parse_day(today) if today else date.today()
    try:
        click.echo(next_billing_date(billing_day, reference).isoformat())
    except BillingError as exc:
        raise click.BadParameter(str(exc))


@cli.command()
@click.option("--cash", "cash", default="0", help="Cash amount received")
@click.option("--credit", "credit", default="0", help="Credit balance to use")
@click.option("--charge", "charge", multiple=True, help="Pending charge in ID:AMOUNT[:YYYY-MM-DD] format, oldest first")
@click.option("--fee", "-f", "fee", required=True, help="Monthly fee")
@click.option("--balance", "balance", default="0", help="Current account balance (negative is credit)")
@click.option("--date", "payment_date", help="Payment date (YYYY-MM-DD); defaults to the current date")
@click.option("--payment-id", "payment_id", help="Identifier to link paid charges to")
@click.option("--output", "output", type=str, help="Output file path (.json)")
def allocate(
    cash: str,
    credit: str,
    charge: Tuple[str, ...],
    fee: str,
    balance: str,
    payment_date: Optional[str],
    payment_id: Optional[str],
    output: Optional[str],
) -> None:
    """Preview how a payment would be applied to pending charges.

    Example:

        isp-billing allocate --cash 320 --fee 150 --charge c1:100:2025-01-10
    """
    reference = parse_day(payment_date) if payment_date else date.today()
    try:
        result = allocate_payment(
            parse_amount(cash),
            parse_amount(credit),
            parse_charge_strings(charge),
            parse_amount(fee),
            parse_amount(balance),
            reference,
            payment_id,
        )
    except BillingError as exc:
        raise click.ClickException(str(exc))
    if output:
        path = Path(output)
        if path.suffix.lower() != ".json":
            raise click.BadParameter("Allocation export must use .json extension")
        export_to_json(path, allocation_to_dict(result))
        click.echo(f"Allocation exported to {path}")
    else:
        print_allocation(result)


if __name__ == "__main__":
    cli()
