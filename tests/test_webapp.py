"""HTTP surface: auth header, error mapping, display of infinite values, CSV download."""

from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from tradebook.api.broker import AuthLink, BrokerClient
from tradebook.api.service import JournalServiceManager
from tradebook.api.webapp import app
from tradebook.utils.exceptions import BrokerError

from conftest import OTHER_USER_ID, USER_ID

HEADERS = {"X-User-Id": USER_ID}


@pytest.fixture
def broker():
    return AsyncMock(spec=BrokerClient)


@pytest.fixture
def client(store, broker):
    JournalServiceManager.reset(JournalServiceManager(store=store, broker=broker))
    yield TestClient(app)
    JournalServiceManager.reset()


@pytest.fixture
def account_id(client):
    resp = client.post("/api/accounts", json={"name": "Main Account", "initial_balance": 1000},
                       headers=HEADERS)
    assert resp.status_code == 200
    return resp.json()["id"]


def _trade(account_id, **overrides):
    body = {
        "trading_account_id": account_id,
        "symbol": "EURUSD",
        "trade_type": "long",
        "entry_price": 1.2,
        "quantity": 10000,
        "entry_date": "2024-01-15T10:00:00+00:00",
    }
    body.update(overrides)
    return body


class TestBasics:

    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}

    def test_missing_user_header(self, client):
        assert client.get("/api/accounts").status_code == 401

    def test_accounts_are_per_user(self, client, account_id):
        resp = client.get(f"/api/accounts/{account_id}", headers={"X-User-Id": OTHER_USER_ID})
        assert resp.status_code == 404
        assert resp.json()["category"] == "not_found"


class TestErrors:

    def test_validation_error_names_the_field(self, client, account_id):
        resp = client.post("/api/trades", json=_trade(account_id, trade_type="hold"), headers=HEADERS)
        assert resp.status_code == 422
        body = resp.json()
        assert body["category"] == "validation"
        assert body["field"] == "trade_type"

    def test_unknown_trade(self, client):
        resp = client.get("/api/trades/missing", headers=HEADERS)
        assert resp.status_code == 404
        assert resp.json()["error"] == "Trade missing not found"

    def test_csv_parse_error(self, client, account_id):
        resp = client.post(f"/api/accounts/{account_id}/import/preview",
                           json={"content": "Symbol,Trade Type\n"}, headers=HEADERS)
        assert resp.status_code == 400
        assert resp.json()["category"] == "parse"

    def test_broker_error(self, client, broker, account_id):
        broker.initiate_auth.side_effect = BrokerError("Invalid account number", 400)
        resp = client.post(f"/api/accounts/{account_id}/broker/connect",
                           json={"account_number": "x"}, headers=HEADERS)
        assert resp.status_code == 400
        assert resp.json() == {"error": "Invalid account number", "category": "broker"}


class TestTrades:

    def test_create_and_list(self, client, account_id):
        created = client.post("/api/trades", json=_trade(account_id, exit_price=1.205, commission=2,
                                                         swap=1, exit_date="2024-01-16T00:00:00+00:00"),
                              headers=HEADERS)
        assert created.status_code == 200
        assert created.json()["status"] == "closed"
        assert created.json()["pnl"] == pytest.approx(47)

        listing = client.get("/api/trades", params={"status": "closed"}, headers=HEADERS).json()
        assert listing["total"] == 1

    def test_delete_and_restore(self, client, account_id):
        trade_id = client.post("/api/trades", json=_trade(account_id), headers=HEADERS).json()["id"]
        undo = client.delete(f"/api/trades/{trade_id}", headers=HEADERS).json()
        assert client.get(f"/api/trades/{trade_id}", headers=HEADERS).status_code == 404
        restored = client.post("/api/trades/restore", json=undo, headers=HEADERS)
        assert restored.status_code == 200
        assert restored.json()["id"] == trade_id

    def test_partial_close_rejects_full_quantity(self, client, account_id):
        trade_id = client.post("/api/trades", json=_trade(account_id, quantity=10), headers=HEADERS).json()["id"]
        resp = client.post(f"/api/trades/{trade_id}/partial-close",
                           json={"quantity": 10, "exit_price": 1.21}, headers=HEADERS)
        assert resp.status_code == 422


class TestAnalytics:

    def test_profit_factor_without_losses_is_infinite(self, client, account_id):
        client.post("/api/trades", json=_trade(account_id, exit_price=1.21, pnl=100,
                                               exit_date="2024-01-16T00:00:00+00:00"), headers=HEADERS)
        stats = client.get("/api/dashboard", headers=HEADERS).json()
        assert stats["profit_factor"] == "∞"
        assert stats["total_pnl"] == 100

    def test_calendar(self, client, account_id):
        client.post("/api/trades", json=_trade(account_id, exit_price=1.21, pnl=100,
                                               exit_date="2024-01-16T00:00:00+00:00"), headers=HEADERS)
        days = client.get("/api/calendar", params={"year": 2024, "month": 1}, headers=HEADERS).json()["days"]
        assert days == [{"date": "2024-01-16", "pnl": 100.0, "trades": 1}]

    def test_auto_pnl_calculator(self, client):
        resp = client.post("/api/calc/auto-pnl", json={
            "entry_price": 1.2, "exit_price": 1.205, "quantity": 10000,
            "trade_type": "long", "commission": 2, "swap": 1,
        }, headers=HEADERS)
        assert resp.json() == {"pnl": 47.0, "update": True}

    def test_month_out_of_range(self, client):
        resp = client.get("/api/reports/monthly", params={"year": 2024, "month": 13}, headers=HEADERS)
        assert resp.status_code == 422
        assert resp.json()["field"] == "month"

    def test_performance_score(self, client, account_id):
        client.post("/api/trades", json=_trade(account_id, exit_price=1.21, pnl=100,
                                               exit_date="2024-01-16T00:00:00+00:00"), headers=HEADERS)
        resp = client.get("/api/analytics/performance", headers=HEADERS)
        assert resp.status_code == 200
        assert resp.json()["score"] == 75
        assert resp.json()["label"] == "Good"

    def test_compare_accounts_needs_known_accounts(self, client, account_id):
        resp = client.get("/api/compare/accounts", params={"first": account_id, "second": "missing"},
                          headers=HEADERS)
        assert resp.status_code == 404

    def test_compare_periods(self, client, account_id):
        client.post("/api/trades", json=_trade(account_id, exit_price=1.21, pnl=100,
                                               exit_date="2024-01-16T00:00:00+00:00"), headers=HEADERS)
        resp = client.get("/api/compare/periods", params={"from_date": "2024-01-01",
                                                          "to_date": "2024-01-31", "granularity": "daily"},
                          headers=HEADERS)
        assert resp.status_code == 200
        body = resp.json()
        assert body["first"]["periods"] == ["2024-01-16"]
        assert body["first"]["stats"]["profit_factor"] == "∞"
        assert body["second"]["periods"] == []


class TestCsv:

    def test_export_download(self, client, account_id):
        client.post("/api/trades", json=_trade(account_id), headers=HEADERS)
        resp = client.get(f"/api/accounts/{account_id}/export", headers=HEADERS)
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/csv")
        assert 'filename="Main_Account_trades_' in resp.headers["content-disposition"]
        assert resp.text.splitlines()[0].startswith("Symbol,Trade Type,Entry Price")

    def test_export_selected_columns(self, client, account_id):
        client.post("/api/trades", json=_trade(account_id, notes="breakout"), headers=HEADERS)
        resp = client.get(f"/api/accounts/{account_id}/export",
                          params={"columns": "Notes"}, headers=HEADERS)
        assert resp.text.splitlines()[0] == "Symbol,Trade Type,Entry Price,Quantity,Entry Date,Notes"

    def test_export_empty_account(self, client, account_id):
        resp = client.get(f"/api/accounts/{account_id}/export", headers=HEADERS)
        assert resp.status_code == 422

    def test_import_confirm(self, client, account_id):
        content = ("Symbol,Trade Type,Entry Price,Quantity,Entry Date,PnL\n"
                   "EURUSD,buy,1.1,1000,2024-01-15,25\n"
                   "GBPUSD,sell,1.3,500,2024-01-16,\n")
        resp = client.post(f"/api/accounts/{account_id}/import/confirm",
                           json={"content": content}, headers=HEADERS)
        assert resp.status_code == 200
        assert resp.json() == {"imported": 2, "warnings": []}


class TestBroker:

    def test_connect_returns_auth_url(self, client, broker, account_id):
        broker.initiate_auth.return_value = AuthLink(authUrl="https://broker.example/auth", state="abc")
        resp = client.post(f"/api/accounts/{account_id}/broker/connect",
                           json={"account_number": "123"}, headers=HEADERS)
        assert resp.status_code == 200
        assert resp.json()["auth_url"] == "https://broker.example/auth"

    def test_import_with_malformed_date(self, client, broker, account_id):
        resp = client.post(f"/api/accounts/{account_id}/broker/import",
                           json={"from_date": "yesterday"}, headers=HEADERS)
        assert resp.status_code == 422
        assert resp.json()["field"] == "from_date"
