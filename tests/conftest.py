"""
Shared fixtures and record builders for journal tests.

Every test gets a fresh SQLite file under tmp_path; builders return
plain model instances so pure-function tests never touch the store.
"""

from __future__ import annotations

from typing import Any

import pytest

from tradebook.journal.models import (
    ConfluenceItem,
    FinancialTransaction,
    Trade,
    TradingAccount,
)
from tradebook.journal.store import JournalStore

USER_ID = "user-1"
OTHER_USER_ID = "user-2"


# ─────────────────────────────────────────────────────────
# Builders
# ─────────────────────────────────────────────────────────

def make_trade(**overrides: Any) -> Trade:
    """Open long EURUSD trade unless overridden."""
    fields: dict[str, Any] = {
        "user_id": USER_ID,
        "trading_account_id": "acct-1",
        "symbol": "EURUSD",
        "trade_type": "long",
        "entry_price": 1.1,
        "quantity": 1000.0,
        "entry_date": "2024-01-15T10:30:00+00:00",
    }
    fields.update(overrides)
    return Trade(**fields)


def make_closed(pnl: float, exit_date: str = "2024-01-16T09:00:00+00:00", **overrides: Any) -> Trade:
    return make_trade(status="closed", pnl=pnl, exit_price=1.2, exit_date=exit_date, **overrides)


def make_account(**overrides: Any) -> TradingAccount:
    fields: dict[str, Any] = {
        "id": "acct-1",
        "user_id": USER_ID,
        "name": "Main Account",
        "currency": "USD",
        "initial_balance": 1000.0,
        "current_balance": 1000.0,
    }
    fields.update(overrides)
    return TradingAccount(**fields)


def make_transaction(tx_type: str, amount: float, **overrides: Any) -> FinancialTransaction:
    fields: dict[str, Any] = {
        "user_id": USER_ID,
        "trading_account_id": "acct-1",
        "transaction_type": tx_type,
        "amount": amount,
        "transaction_date": "2024-01-10T00:00:00+00:00",
    }
    fields.update(overrides)
    return FinancialTransaction(**fields)


def make_item(item_id: str, weight: float, category: str | None = None, **overrides: Any) -> ConfluenceItem:
    fields: dict[str, Any] = {
        "id": item_id,
        "user_id": USER_ID,
        "name": f"Factor {item_id}",
        "weight": weight,
        "category": category,
    }
    fields.update(overrides)
    return ConfluenceItem(**fields)


# ─────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────

@pytest.fixture
def store(tmp_path) -> JournalStore:
    s = JournalStore(db_path=str(tmp_path / "journal.db"))
    yield s
    s.close()


@pytest.fixture
def account(store: JournalStore) -> TradingAccount:
    return store.add_account(make_account())


@pytest.fixture
def gate_catalog() -> list[ConfluenceItem]:
    """A(2.0), B(1.5), C(2.5)"""
    return [
        make_item("A", 2.0, "Technical Analysis"),
        make_item("B", 1.5, "Market Structure"),
        make_item("C", 2.5),
    ]
