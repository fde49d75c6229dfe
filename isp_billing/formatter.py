"""Output helpers for the billing CLI.

This module renders proration results, allocation previews and charge
lists in a plain tabular text format using built-in printing, the same
way regardless of terminal.
"""

from __future__ import annotations

from typing import Dict, Iterable

from .data_models import AllocationResult, Charge, ProrationResult
from .utils import format_currency


def print_proration(result: ProrationResult, initial_balance=None) -> None:
    """Print a proration result in a human-readable format."""
    print("Proration")
    print("-" * 72)
    print(f"Days charged       : {result.days_charged}")
    print(f"Prorated amount    : {format_currency(result.prorated_amount)}")
    print(f"First billing date : {result.first_billing_date.isoformat()}")
    if initial_balance is not None:
        print(f"Initial balance    : {format_currency(initial_balance)}")
    print("-" * 72)


def print_charges(charges: Iterable[Charge]) -> None:
    """Print charges as a simple tab separated table."""
    headers = ["Id", "Description", "Amount", "Status", "Due", "Paid"]
    print("\t".join(headers))
    for charge in charges:
        row = [
            charge.id or "-",
            charge.description,
            f"{charge.amount:.2f}",
            charge.status,
            charge.due_date.isoformat() if charge.due_date else "-",
            charge.paid_date.isoformat() if charge.paid_date else "-",
        ]
        print("\t".join(row))


def print_allocation(result: AllocationResult) -> None:
    """Print the preview of a payment before it is recorded."""
    summary: Dict[str, object] = result.summary
    print("Payment preview")
    print("-" * 72)
    print(f"Cash               : {format_currency(summary['cash_amount'])}")
    if summary.get("credit_applied"):
        print(f"Credit applied     : {format_currency(summary['credit_applied'])}")
    print(f"Total payment      : {format_currency(summary['total_payment'])}")
    print(f"Charges covered    : {summary['charges_covered']}")
    if summary.get("charges_pending"):
        print(f"Charges pending    : {summary['charges_pending']} ({format_currency(summary['still_pending'])})")
    if result.advance_months:
        print(f"Advance months     : {result.advance_months}")
    if summary.get("excess_credit"):
        print(f"Left as credit     : {format_currency(summary['excess_credit'])}")
    if summary.get("unapplied_amount"):
        print(f"Unapplied          : {format_currency(summary['unapplied_amount'])}")
    print(f"New balance        : {format_currency(result.new_balance)}")
    print("-" * 72)
    if result.advance_charges_to_create:
        print_charges(result.advance_charges_to_create)
