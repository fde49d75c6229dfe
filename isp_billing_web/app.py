import logging
import os
from datetime import date, datetime

from flask import Flask, jsonify, request

from isp_billing.allocator import allocate_payment, available_credit
from isp_billing.data_models import BillingProfile, Charge, PENDING
from isp_billing.engine import calculate_initial_balance, calculate_proration, next_billing_date
from isp_billing.errors import BillingError
from isp_billing.ledger import balance_status, reconcile
from isp_billing.main import allocation_to_dict, charge_to_dict, proration_to_dict
from isp_billing.utils import parse_date, to_decimal
from isp_billing_web.ledger_store import LedgerStore, create_store_from_env

logger = logging.getLogger(__name__)


def _payload() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        data = request.form.to_dict()
    if not isinstance(data, dict):
        raise ValueError("Request body must be an object")
    return data


def _required(data: dict, name: str):
    value = data.get(name)
    if value is None or value == "":
        raise ValueError(f"Missing field: {name}")
    return value


def _date_field(data: dict, name: str, default: date = None) -> date:
    value = data.get(name)
    if not value:
        if default is None:
            raise ValueError(f"Missing field: {name}")
        return default
    return parse_date(str(value))


def _int_field(data: dict, name: str) -> int:
    try:
        return int(_required(data, name))
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid integer for {name}") from exc


def _charges_from_payload(items) -> list:
    """Build pending charges from ``[{"id", "amount", "created_at"?}, ...]``.

    Items without ``created_at`` keep the order they were sent in.
    """
    charges = []
    for position, item in enumerate(items or []):
        created = item.get("created_at")
        created_at = (
            datetime.fromisoformat(created) if created else datetime.min.replace(microsecond=position)
        )
        charges.append(
            Charge(
                id=item.get("id"),
                description=item.get("description") or str(item.get("id")),
                amount=to_decimal(_required(item, "amount")),
                status=item.get("status", PENDING),
                created_at=created_at,
            )
        )
    return charges


def _profile_from_payload(data: dict) -> BillingProfile:
    return BillingProfile(
        installation_date=_date_field(data, "installation_date"),
        billing_day=_int_field(data, "billing_day"),
        monthly_fee=to_decimal(_required(data, "monthly_fee")),
        installation_cost=to_decimal(data.get("installation_cost") or "0"),
        additional_charges=to_decimal(data.get("additional_charges") or "0"),
    )


def _account_view(store: LedgerStore, account_id: str) -> dict:
    account = store.get_account(account_id)
    charges = store.list_charges(account_id)
    account["status"] = balance_status(account["balance"])
    account["available_credit"] = float(available_credit(account["balance"]))
    account["unreconciled"] = float(reconcile(account["balance"], charges))
    return account


def create_app(store: LedgerStore = None) -> Flask:
    app = Flask(__name__)
    app.secret_key = os.environ.get("FLASK_SECRET_KEY", "dev-secret-key")
    ledger = store or create_store_from_env(os.environ.get("ISP_BILLING_DATABASE_URL"))
    app.config["LEDGER_STORE"] = ledger

    @app.errorhandler(BillingError)
    def handle_billing_error(exc):
        return jsonify({"error": str(exc), "type": type(exc).__name__}), 400

    @app.errorhandler(LookupError)
    def handle_not_found(exc):
        return jsonify({"error": str(exc.args[0] if exc.args else exc)}), 404

    @app.errorhandler(ValueError)
    def handle_bad_input(exc):
        return jsonify({"error": str(exc)}), 400

    @app.post("/api/proration")
    def proration():
        data = _payload()
        profile = _profile_from_payload(data)
        result = calculate_proration(profile.installation_date, profile.billing_day, profile.monthly_fee)
        body = proration_to_dict(result)
        body["initial_balance"] = float(
            calculate_initial_balance(
                result.prorated_amount, profile.installation_cost, profile.additional_charges
            )
        )
        return jsonify(body)

    @app.get("/api/next-billing")
    def next_billing():
        billing_day = _int_field(request.args, "billing_day")
        today = _date_field(request.args, "today", date.today())
        return jsonify({"next_billing_date": next_billing_date(billing_day, today).isoformat()})

    @app.post("/api/allocation/preview")
    def allocation_preview():
        data = _payload()
        result = allocate_payment(
            to_decimal(data.get("cash_amount") or "0"),
            to_decimal(data.get("credit_amount_to_use") or "0"),
            _charges_from_payload(data.get("pending_charges")),
            to_decimal(_required(data, "monthly_fee")),
            to_decimal(data.get("current_balance") or "0"),
            _date_field(data, "date", date.today()),
            data.get("payment_id"),
        )
        return jsonify(allocation_to_dict(result))

    @app.post("/api/accounts")
    def create_account():
        data = _payload()
        name = str(_required(data, "name")).strip()
        account = ledger.create_account(name, _profile_from_payload(data), notes=data.get("notes"))
        return jsonify(account), 201

    @app.get("/api/accounts/<account_id>")
    def get_account(account_id):
        return jsonify(_account_view(ledger, account_id))

    @app.get("/api/accounts/<account_id>/charges")
    def list_charges(account_id):
        status = request.args.get("status")
        return jsonify([charge_to_dict(c) for c in ledger.list_charges(account_id, status)])

    @app.post("/api/accounts/<account_id>/charges/generate")
    def generate_charges(account_id):
        data = _payload()
        created = ledger.generate_monthly_charges(account_id, _date_field(data, "today", date.today()))
        return jsonify([charge_to_dict(c) for c in created]), 201

    @app.post("/api/accounts/<account_id>/charges/<charge_id>")
    def update_charge(account_id, charge_id):
        data = _payload()
        amount = data.get("amount")
        charge = ledger.update_charge_status(
            account_id,
            charge_id,
            _required(data, "status"),
            to_decimal(amount) if amount not in (None, "") else None,
        )
        return jsonify(charge_to_dict(charge))

    @app.get("/api/accounts/<account_id>/payments")
    def list_payments(account_id):
        return jsonify(ledger.list_payments(account_id))

    @app.post("/api/accounts/<account_id>/payments")
    def record_payment(account_id):
        data = _payload()
        result = ledger.apply_payment(
            account_id,
            to_decimal(data.get("cash_amount") or "0"),
            _date_field(data, "payment_date", date.today()),
            credit_to_use=to_decimal(data.get("credit_amount_to_use") or "0"),
            method=data.get("method", ""),
            notes=data.get("notes"),
        )
        logger.debug("Payment recorded for %s", account_id)
        return jsonify(allocation_to_dict(result)), 201

    return app


if __name__ == "__main__":
    print("Starting ISP billing web app...")
    create_app().run(host="0.0.0.0", port=8710, debug=True)
