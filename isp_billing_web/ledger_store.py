"""Persistence layer for billing profiles, charges and payments.

The store keeps accounts in any SQLAlchemy-compatible database. It defaults
to SQLite for local development and accepts URLs such as PostgreSQL for
deployments.

Recording a payment touches three tables: the payment row, the charges it
covers (plus any advance months it prepays) and the account balance. All of
it is written in one session and committed once, so a failure leaves the
account exactly as it was.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Dict, Iterable, List, Any, Optional
from uuid import uuid4

from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, Numeric, String, Text, create_engine, select
from sqlalchemy.orm import declarative_base, sessionmaker

from isp_billing.allocator import allocate_payment
from isp_billing.data_models import AllocationResult, BillingProfile, Charge, PENDING
from isp_billing.engine import build_initial_charges, calculate_initial_balance, calculate_proration
from isp_billing.errors import InvalidChargeTransitionError, NegativeAmountError
from isp_billing.ledger import charge_edit_delta, missing_monthly_charges
from isp_billing.utils import to_decimal

logger = logging.getLogger(__name__)

Base = declarative_base()

MONEY = Numeric(12, 2)


def _positive_amount(value) -> Decimal:
    amount = to_decimal(value)
    if amount <= 0:
        raise NegativeAmountError(f"Charge amount must be positive; got {amount}")
    return amount


class AccountModel(Base):
    __tablename__ = "billing_accounts"

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    installation_date = Column(Date, nullable=False)
    billing_day = Column(Integer, nullable=False)
    monthly_fee = Column(MONEY, nullable=False)
    installation_cost = Column(MONEY, nullable=False, default=0)
    additional_charges = Column(MONEY, nullable=False, default=0)
    prorated_amount = Column(MONEY, nullable=False, default=0)
    first_billing_date = Column(Date, nullable=False)
    balance = Column(MONEY, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class ChargeModel(Base):
    __tablename__ = "charges"

    id = Column(String(64), primary_key=True)
    account_id = Column(String(64), ForeignKey("billing_accounts.id"), index=True, nullable=False)
    description = Column(String(255), nullable=False)
    amount = Column(MONEY, nullable=False)
    status = Column(String(16), nullable=False, default=PENDING)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    due_date = Column(Date)
    paid_date = Column(Date)
    payment_id = Column(String(64), ForeignKey("payments.id"))


class PaymentModel(Base):
    __tablename__ = "payments"

    id = Column(String(64), primary_key=True)
    account_id = Column(String(64), ForeignKey("billing_accounts.id"), index=True, nullable=False)
    amount = Column(MONEY, nullable=False)
    credit_used = Column(MONEY, nullable=False, default=0)
    payment_date = Column(Date, nullable=False)
    method = Column(String(64), nullable=False, default="")
    notes = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class LedgerStore:
    """Database-backed account ledger."""

    def __init__(self, url: str) -> None:
        self._engine = create_engine(url, future=True)
        Base.metadata.create_all(self._engine)
        self._session_factory = sessionmaker(self._engine, expire_on_commit=False, future=True)

    def create_account(
        self,
        name: str,
        profile: BillingProfile,
        *,
        notes: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Onboard a client: store the profile and its initial charges.

        The starting balance is the sum of the installation cost, the
        proration and the additional charges.
        """
        proration = calculate_proration(profile.installation_date, profile.billing_day, profile.monthly_fee)
        balance = calculate_initial_balance(
            proration.prorated_amount, profile.installation_cost, profile.additional_charges
        )
        stamp = created_at or datetime.utcnow()
        account_id = uuid4().hex
        account = AccountModel(
            id=account_id,
            name=name,
            installation_date=profile.installation_date,
            billing_day=profile.billing_day,
            monthly_fee=to_decimal(profile.monthly_fee),
            installation_cost=to_decimal(profile.installation_cost),
            additional_charges=to_decimal(profile.additional_charges),
            prorated_amount=proration.prorated_amount,
            first_billing_date=proration.first_billing_date,
            balance=balance,
            created_at=stamp,
        )
        with self._session_factory() as session:
            session.add(account)
            for offset, charge in enumerate(build_initial_charges(profile, proration, stamp, notes)):
                session.add(self._charge_row(account_id, charge, offset))
            session.commit()
        logger.info("Created account %s with initial balance %s", account_id, balance)
        return self._account_dict(account)

    def get_account(self, account_id: str) -> Dict[str, Any]:
        with self._session_factory() as session:
            return self._account_dict(self._load_account(session, account_id))

    def list_charges(self, account_id: str, status: Optional[str] = None) -> List[Charge]:
        with self._session_factory() as session:
            self._load_account(session, account_id)
            query = (
                select(ChargeModel)
                .where(ChargeModel.account_id == account_id)
                .order_by(ChargeModel.created_at.asc())
            )
            if status:
                query = query.where(ChargeModel.status == status)
            rows: Iterable[ChargeModel] = session.execute(query).scalars()
            return [self._to_charge(row) for row in rows]

    def add_charge(self, account_id: str, charge: Charge) -> Charge:
        """Store a new pending charge and raise the balance by its amount."""
        if charge.status != PENDING:
            raise InvalidChargeTransitionError(f"New charges must be pending; got {charge.status}")
        _positive_amount(charge.amount)
        with self._session_factory() as session:
            account = self._load_account(session, account_id)
            row = self._charge_row(account_id, charge)
            session.add(row)
            account.balance = to_decimal(account.balance) + to_decimal(charge.amount)
            session.commit()
            return self._to_charge(row)

    def generate_monthly_charges(self, account_id: str, today: date) -> List[Charge]:
        """Create the monthly fee charges missing up to ``today``'s month."""
        with self._session_factory() as session:
            account = self._load_account(session, account_id)
            existing = [
                self._to_charge(row)
                for row in session.execute(
                    select(ChargeModel).where(ChargeModel.account_id == account_id)
                ).scalars()
            ]
            profile = self._to_profile(account)
            created: List[Charge] = []
            for offset, charge in enumerate(missing_monthly_charges(profile, existing, today)):
                row = self._charge_row(account_id, charge, offset)
                session.add(row)
                account.balance = to_decimal(account.balance) + to_decimal(charge.amount)
                created.append(self._to_charge(row))
            session.commit()
        if created:
            logger.info("Generated %d monthly charge(s) for account %s", len(created), account_id)
        return created

    def update_charge_status(self, account_id: str, charge_id: str, status: str, amount=None) -> Charge:
        """Edit a charge administratively, moving the balance accordingly."""
        with self._session_factory() as session:
            account = self._load_account(session, account_id)
            row = session.get(ChargeModel, charge_id)
            if row is None or row.account_id != account_id:
                raise LookupError(f"Charge {charge_id} not found")
            old_amount = to_decimal(row.amount)
            new_amount = _positive_amount(amount) if amount is not None else old_amount
            if new_amount != old_amount and row.status != PENDING:
                raise InvalidChargeTransitionError(f"Cannot change the amount of a {row.status} charge")
            delta = charge_edit_delta(row.amount, new_amount, row.status, status)
            row.amount = new_amount
            row.status = status
            account.balance = to_decimal(account.balance) + delta
            session.commit()
            return self._to_charge(row)

    def apply_payment(
        self,
        account_id: str,
        cash_amount,
        payment_date: date,
        *,
        credit_to_use=Decimal("0"),
        method: str = "",
        notes: Optional[str] = None,
    ) -> AllocationResult:
        """Record a payment and everything its allocation implies.

        The snapshot of pending charges and balance, the allocation and all
        writes happen inside one session; nothing is committed unless every
        write succeeds.
        """
        payment_id = uuid4().hex
        with self._session_factory() as session:
            try:
                account = self._load_account(session, account_id)
                pending_rows = {
                    row.id: row
                    for row in session.execute(
                        select(ChargeModel)
                        .where(ChargeModel.account_id == account_id, ChargeModel.status == PENDING)
                        .order_by(ChargeModel.created_at.asc())
                    ).scalars()
                }
                result = allocate_payment(
                    cash_amount,
                    credit_to_use,
                    [self._to_charge(row) for row in pending_rows.values()],
                    account.monthly_fee,
                    account.balance,
                    payment_date,
                    payment_id,
                )
                session.add(
                    PaymentModel(
                        id=payment_id,
                        account_id=account_id,
                        amount=to_decimal(cash_amount),
                        credit_used=to_decimal(credit_to_use),
                        payment_date=payment_date,
                        method=method,
                        notes=notes,
                    )
                )
                # payment row must exist before charges reference it
                session.flush()
                for paid in result.charges_to_mark_paid:
                    row = pending_rows[paid.charge_id]
                    updated = self._to_charge(row).mark_paid(paid.paid_date, paid.payment_id)
                    row.status = updated.status
                    row.paid_date = updated.paid_date
                    row.payment_id = updated.payment_id
                for offset, charge in enumerate(result.advance_charges_to_create):
                    session.add(self._charge_row(account_id, charge, offset))
                account.balance = result.new_balance
                session.commit()
            except Exception:
                session.rollback()
                raise
        logger.info(
            "Recorded payment %s for account %s: %s",
            payment_id, account_id, result.summary.get("message"),
        )
        return result

    def list_payments(self, account_id: str) -> List[Dict[str, Any]]:
        with self._session_factory() as session:
            self._load_account(session, account_id)
            rows = session.execute(
                select(PaymentModel)
                .where(PaymentModel.account_id == account_id)
                .order_by(PaymentModel.payment_date.asc(), PaymentModel.created_at.asc())
            ).scalars()
            return [
                {
                    "id": row.id,
                    "amount": float(row.amount),
                    "credit_used": float(row.credit_used),
                    "payment_date": row.payment_date.isoformat(),
                    "method": row.method,
                    "notes": row.notes,
                }
                for row in rows
            ]

    @staticmethod
    def _load_account(session, account_id: str) -> AccountModel:
        account = session.get(AccountModel, account_id)
        if account is None:
            raise LookupError(f"Account {account_id} not found")
        return account

    @staticmethod
    def _charge_row(account_id: str, charge: Charge, offset: int = 0) -> ChargeModel:
        # charges created together keep their order when sorted by created_at
        created_at = (charge.created_at or datetime.utcnow()) + timedelta(microseconds=offset)
        return ChargeModel(
            id=charge.id or uuid4().hex,
            account_id=account_id,
            description=charge.description,
            amount=to_decimal(charge.amount),
            status=charge.status,
            created_at=created_at,
            due_date=charge.due_date,
            paid_date=charge.paid_date,
            payment_id=charge.payment_id,
        )

    @staticmethod
    def _to_charge(row: ChargeModel) -> Charge:
        return Charge(
            id=row.id,
            description=row.description,
            amount=to_decimal(row.amount),
            status=row.status,
            created_at=row.created_at,
            due_date=row.due_date,
            paid_date=row.paid_date,
            payment_id=row.payment_id,
        )

    @staticmethod
    def _to_profile(row: AccountModel) -> BillingProfile:
        return BillingProfile(
            installation_date=row.installation_date,
            billing_day=row.billing_day,
            monthly_fee=to_decimal(row.monthly_fee),
            balance=to_decimal(row.balance),
            installation_cost=to_decimal(row.installation_cost),
            additional_charges=to_decimal(row.additional_charges),
        )

    @staticmethod
    def _account_dict(row: AccountModel) -> Dict[str, Any]:
        return {
            "id": row.id,
            "name": row.name,
            "installation_date": row.installation_date.isoformat(),
            "billing_day": row.billing_day,
            "monthly_fee": float(row.monthly_fee),
            "prorated_amount": float(row.prorated_amount),
            "first_billing_date": row.first_billing_date.isoformat(),
            "balance": float(row.balance),
        }


def create_store_from_env(url: str | None) -> LedgerStore:
    return LedgerStore(url or "sqlite:///isp_billing.sqlite3")
