"""Shared fixtures: a fresh SQLite ledger per test."""

from __future__ import annotations

import pytest

from isp_billing_web.app import create_app
from isp_billing_web.ledger_store import LedgerStore


@pytest.fixture()
def store(tmp_path):
    return LedgerStore(f"sqlite:///{tmp_path / 'ledger.sqlite3'}")


@pytest.fixture()
def client(store):
    app = create_app(store)
    app.config["TESTING"] = True
    return app.test_client()
