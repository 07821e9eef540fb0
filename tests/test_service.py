"""JournalService: the operations behind the HTTP routes, against a real store."""

from datetime import date
from unittest.mock import AsyncMock

import pytest

from tradebook.api.broker import AccountInfo, AuthLink, BrokerClient, SyncResult
from tradebook.api.service import JournalService, JournalServiceManager
from tradebook.utils.exceptions import NotFoundError, ValidationError

from conftest import OTHER_USER_ID, USER_ID, make_closed


@pytest.fixture
def service(store):
    return JournalService(USER_ID, store)


@pytest.fixture
def acct(service):
    return service.create_account({"name": "Main Account", "initial_balance": 1000})


def _trade(account_id, **overrides):
    data = {
        "trading_account_id": account_id,
        "symbol": "EURUSD",
        "trade_type": "long",
        "entry_price": 1.2,
        "quantity": 10000,
        "entry_date": "2024-01-15T10:00:00+00:00",
    }
    data.update(overrides)
    return data


class TestAccounts:

    def test_create_sets_current_balance(self, acct):
        assert acct["current_balance"] == 1000
        assert acct["equity"] == 1000

    def test_create_requires_name(self, service):
        with pytest.raises(ValidationError) as exc:
            service.create_account({"name": "  "})
        assert exc.value.field == "name"

    def test_protected_fields_are_ignored(self, service, acct):
        updated = service.update_account(acct["id"], {"id": "hijack", "user_id": OTHER_USER_ID,
                                                      "name": "Renamed"})
        assert updated["id"] == acct["id"]
        assert updated["user_id"] == USER_ID
        assert updated["name"] == "Renamed"

    def test_account_equity(self, service, acct):
        service.create_trade(_trade(acct["id"], exit_price=1.21, pnl=100,
                                    exit_date="2024-01-16T00:00:00+00:00"))
        service.create_trade(_trade(acct["id"], exit_price=1.19, pnl=-40,
                                    exit_date="2024-01-17T00:00:00+00:00"))
        service.create_trade(_trade(acct["id"]))
        service.create_transaction({"trading_account_id": acct["id"],
                                    "transaction_type": "deposit", "amount": 300})
        service.create_transaction({"trading_account_id": acct["id"],
                                    "transaction_type": "withdrawal", "amount": 100})
        result = service.account_equity(acct["id"])
        assert result["realized_pnl"] == 60
        assert result["net_transactions"] == 200
        assert result["equity"] == 1260

    def test_equity_counts_every_closed_trade(self, service, store, acct):
        store.add_trades([make_closed(1.0, trading_account_id=acct["id"]) for _ in range(5001)])
        assert service.account_equity(acct["id"])["equity"] == 6001
        assert service.get_account(acct["id"])["equity"] == 6001
        assert service.dashboard(acct["id"])["closed_trades"] == 5001
        assert service.export_csv(acct["id"])["count"] == 5001
        assert len(service.list_trades(account_id=acct["id"], limit=50)["trades"]) == 50

    def test_transaction_amount_must_be_positive(self, service, acct):
        with pytest.raises(ValidationError):
            service.create_transaction({"trading_account_id": acct["id"],
                                        "transaction_type": "deposit", "amount": -5})

    def test_other_users_cannot_see_accounts(self, store, acct):
        other = JournalService(OTHER_USER_ID, store)
        assert other.list_accounts() == []
        with pytest.raises(NotFoundError):
            other.get_account(acct["id"])


class TestTrades:

    def test_create_closed_trade_computes_pnl(self, service, acct):
        trade = service.create_trade(_trade(acct["id"], exit_price=1.205, commission=2, swap=1,
                                            exit_date="2024-01-16T00:00:00+00:00"))
        assert trade["status"] == "closed"
        assert trade["pnl"] == pytest.approx(47)

    def test_create_open_trade_computes_risk_reward(self, service, acct):
        trade = service.create_trade(_trade(acct["id"], stop_loss=1.19, take_profit=1.23))
        assert trade["status"] == "open"
        assert trade["pnl"] is None
        assert trade["risk_reward_ratio"] == pytest.approx(3.0)

    def test_invalid_trade_type(self, service, acct):
        with pytest.raises(ValidationError) as exc:
            service.create_trade(_trade(acct["id"], trade_type="hold"))
        assert exc.value.field == "trade_type"

    def test_pnl_without_exit_price_stays_open(self, service, acct):
        assert service.create_trade(_trade(acct["id"], pnl=5))["status"] == "open"
        dated = service.create_trade(_trade(acct["id"], exit_date="2024-01-16T00:00:00+00:00"))
        assert dated["status"] == "open"

    def test_exit_price_alone_closes_with_computed_pnl(self, service, acct):
        trade = service.create_trade(_trade(acct["id"], exit_price=1.205))
        assert trade["status"] == "closed"
        assert trade["pnl"] == pytest.approx(50)

    def test_total_follows_every_filter(self, service, acct):
        service.create_trade(_trade(acct["id"]))
        service.create_trade(_trade(acct["id"], symbol="XAUUSD", entry_date="2024-02-10T00:00:00+00:00"))
        listing = service.list_trades(symbol="xau")
        assert listing["total"] == 1
        assert len(listing["trades"]) == 1
        assert service.list_trades(from_date="2024-02-01", to_date="2024-02-10")["total"] == 1

    def test_unknown_account(self, service):
        with pytest.raises(NotFoundError):
            service.create_trade(_trade("missing"))

    def test_close_trade(self, service, acct):
        trade = service.create_trade(_trade(acct["id"], commission=2, swap=1))
        closed = service.close_trade(trade["id"], "1.205", "2024-01-16T00:00:00+00:00")
        assert closed["status"] == "closed"
        assert closed["pnl"] == pytest.approx(47)

    def test_close_trade_requires_exit_price(self, service, acct):
        trade = service.create_trade(_trade(acct["id"]))
        with pytest.raises(ValidationError) as exc:
            service.close_trade(trade["id"], "", "")
        assert exc.value.field == "exit_price"

    def test_partial_close(self, service, acct):
        trade = service.create_trade(_trade(acct["id"], entry_price=100, quantity=10))
        result = service.partial_close(trade["id"], 4, 110, "2024-01-16T00:00:00+00:00")
        assert result["closed"]["quantity"] == 4
        assert result["closed"]["pnl"] == pytest.approx(40)
        assert result["remaining"]["quantity"] == 6
        listing = service.list_trades(account_id=acct["id"])
        assert listing["total"] == 2

    def test_delete_then_restore(self, service, acct):
        item = service.create_confluence_item({"name": "Trend", "weight": 3})
        trade = service.create_trade(_trade(acct["id"], confluence_item_ids=[item["id"]]))
        assert trade["confluence_score"] == 3

        undo = service.delete_trade(trade["id"])
        with pytest.raises(NotFoundError):
            service.get_trade(trade["id"])

        restored = service.restore_trade(undo)
        assert restored["id"] == trade["id"]
        assert restored["confluence"] == {item["id"]: True}

    def test_copy_trade(self, service, acct):
        other = service.create_account({"name": "Copy Target"})
        trade = service.create_trade(_trade(acct["id"], exit_price=1.21, pnl=100,
                                            exit_date="2024-01-16T00:00:00+00:00"))
        copied = service.copy_trade(trade["id"], other["id"])
        assert copied["trading_account_id"] == other["id"]
        assert copied["source"] == "copied"
        assert copied["status"] == "open"


class TestCalculators:

    def test_preview_auto_pnl(self):
        result = JournalService.preview_auto_pnl("1.2", "1.205", "10000", "long", "2", "1", "47")
        assert result == {"pnl": 47.0, "update": False}

    def test_preview_auto_pnl_incomplete(self):
        assert JournalService.preview_auto_pnl("1.2", "", "10000", "long") == {"pnl": None, "update": False}

    def test_preview_risk_reward_with_size(self):
        result = JournalService.preview_risk_reward(1.2, 1.19, 1.23, 10000, 1)
        assert result["risk_reward_ratio"] == pytest.approx(3.0)
        assert result["position_size"] == pytest.approx(10000)

    def test_bad_number(self):
        with pytest.raises(ValidationError) as exc:
            JournalService.preview_risk_reward("abc", 1.19, 1.23)
        assert exc.value.field == "entry_price"


class TestConfluence:

    def test_evaluate(self, service):
        a = service.create_confluence_item({"name": "Trend", "weight": 2.0, "category": "Technical Analysis"})
        b = service.create_confluence_item({"name": "Structure", "weight": 1.5})
        c = service.create_confluence_item({"name": "News", "weight": 2.5})
        blocked = service.evaluate_confluence([a["id"], c["id"]])
        assert blocked["score"] == 4.5
        assert blocked["can_proceed"] is False
        passed = service.evaluate_confluence([a["id"], b["id"], c["id"]])
        assert passed["can_proceed"] is True

    def test_weight_out_of_range(self, service):
        with pytest.raises(ValidationError) as exc:
            service.create_confluence_item({"name": "Heavy", "weight": 11})
        assert exc.value.field == "weight"

    def test_unknown_item(self, service):
        with pytest.raises(ValidationError):
            service.evaluate_confluence(["missing"])


class TestCsv:

    def test_export_and_import(self, service, acct):
        service.create_trade(_trade(acct["id"], exit_price=1.21, pnl=100,
                                    exit_date="2024-01-16T00:00:00+00:00"))
        service.create_trade(_trade(acct["id"], symbol="GBPUSD", trade_type="short"))
        exported = service.export_csv(acct["id"], today=date(2024, 3, 5))
        assert exported["filename"] == "Main_Account_trades_2024-03-05.csv"
        assert exported["count"] == 2

        target = service.create_account({"name": "Imported"})
        preview = service.import_csv_preview(target["id"], exported["content"])
        assert preview["count"] == 2
        assert service.list_trades(account_id=target["id"])["total"] == 0

        result = service.import_csv_confirm(target["id"], exported["content"])
        assert result["imported"] == 2
        trades = service.list_trades(account_id=target["id"])["trades"]
        assert {t["source"] for t in trades} == {"csv"}

    def test_export_empty_account(self, service, acct):
        with pytest.raises(ValidationError):
            service.export_csv(acct["id"])


class TestAnalytics:

    def test_dashboard_flags_mixed_currencies(self, service, acct):
        eur = service.create_account({"name": "Euro", "currency": "EUR", "initial_balance": 500})
        service.create_trade(_trade(acct["id"], exit_price=1.21, pnl=100,
                                    exit_date="2024-01-16T00:00:00+00:00"))
        service.create_trade(_trade(eur["id"], exit_price=1.19, pnl=-50,
                                    exit_date="2024-01-16T00:00:00+00:00"))
        stats = service.dashboard()
        assert stats["mixed_currencies"] is True
        assert stats["currencies"] == ["EUR", "USD"]
        assert stats["total_pnl"] == 50
        assert stats["total_equity"] == 1550

        single = service.dashboard(acct["id"])
        assert single["mixed_currencies"] is False
        assert single["total_pnl"] == 100

    def test_drawdown_breach_deactivates(self, service):
        prop = service.create_account({"name": "Prop", "initial_balance": 10000,
                                       "is_prop_firm": True, "max_loss_limit": 1000})
        service.create_trade(_trade(prop["id"], exit_price=1.1, pnl=-1100,
                                    exit_date="2024-01-16T00:00:00+00:00"))
        status = service.check_drawdown(prop["id"])
        assert status["breached"] is True
        account = service.get_account(prop["id"])
        assert account["is_active"] is False
        assert account["max_drawdown_reached"] is True
        assert account["breach_reason"] == "Max drawdown exceeded"
        assert account["current_drawdown"] == 1100

    def test_no_breach_within_limit(self, service):
        prop = service.create_account({"name": "Prop", "initial_balance": 10000,
                                       "is_prop_firm": True, "max_loss_limit": 1000})
        service.create_trade(_trade(prop["id"], exit_price=1.1, pnl=-500,
                                    exit_date="2024-01-16T00:00:00+00:00"))
        assert service.check_drawdown(prop["id"])["breached"] is False
        assert service.get_account(prop["id"])["is_active"] is True

    def test_equity_curve(self, service, acct):
        service.create_trade(_trade(acct["id"], exit_price=1.21, pnl=100,
                                    exit_date="2024-01-16T00:00:00+00:00"))
        service.create_trade(_trade(acct["id"], exit_price=1.19, pnl=-150,
                                    exit_date="2024-01-17T00:00:00+00:00"))
        curve = service.equity_curve(acct["id"])
        assert [p["balance"] for p in curve["points"]] == [1100, 950]
        assert curve["max_drawdown"] == 150

    def test_bad_month_is_a_validation_error(self, service):
        with pytest.raises(ValidationError) as exc:
            service.monthly_report(2024, 13)
        assert exc.value.field == "month"
        with pytest.raises(ValidationError):
            service.calendar(2024, 0)

    def test_dashboard_performance_score(self, service, acct):
        service.create_trade(_trade(acct["id"], exit_price=1.21, pnl=100,
                                    exit_date="2024-01-16T00:00:00+00:00"))
        performance = service.dashboard(acct["id"])["performance"]
        assert performance == {"score": 75, "label": "Good", "win_rate": 100.0,
                               "profit_factor": 100.0, "risk_reward": 0.0}

    def test_performance_score_per_strategy(self, service, acct):
        strategy = service.create_strategy({"name": "Breakout"})
        service.create_trade(_trade(acct["id"], exit_price=1.21, pnl=100, stop_loss=1.19,
                                    take_profit=1.23, strategy_id=strategy["id"],
                                    exit_date="2024-01-16T00:00:00+00:00"))
        service.create_trade(_trade(acct["id"], exit_price=1.19, pnl=-100,
                                    exit_date="2024-01-17T00:00:00+00:00"))
        result = service.performance_score(strategy_id=strategy["id"])
        assert result["closed_trades"] == 1
        assert result["avg_risk_reward"] == pytest.approx(3.0)
        assert result["score"] == 100
        assert result["label"] == "Excellent"

    def test_compare_periods(self, service, acct):
        for day, pnl in (("2024-01-10", 100), ("2024-02-10", -40), ("2024-03-10", 60)):
            service.create_trade(_trade(acct["id"], exit_price=1.21, pnl=pnl,
                                        exit_date=f"{day}T12:00:00+00:00"))
        result = service.compare_periods("2024-01-01", "2024-03-31", "monthly", acct["id"])
        assert result["first"]["periods"] == ["2024-01", "2024-02"]
        assert result["second"]["periods"] == ["2024-03"]
        assert result["first"]["stats"]["total_pnl"] == 60
        assert result["second"]["stats"]["total_pnl"] == 60

    def test_compare_periods_rejects_bad_input(self, service):
        with pytest.raises(ValidationError) as exc:
            service.compare_periods("2024-13-01", "2024-03-31")
        assert exc.value.field == "from_date"
        with pytest.raises(ValidationError) as exc:
            service.compare_periods("2024-01-01", "2024-03-31", "hourly")
        assert exc.value.field == "granularity"

    def test_compare_accounts(self, service, acct):
        other = service.create_account({"name": "Swing"})
        service.create_trade(_trade(acct["id"], exit_price=1.21, pnl=100,
                                    exit_date="2024-01-16T00:00:00+00:00"))
        service.create_trade(_trade(other["id"], exit_price=1.19, pnl=-30,
                                    exit_date="2024-02-16T00:00:00+00:00"))
        result = service.compare_accounts(acct["id"], other["id"])
        assert result["accounts"] == {"first": "Main Account", "second": "Swing"}
        assert result["first"]["total_pnl"] == 100
        assert result["second"]["total_pnl"] == -30
        assert result["monthly"] == [
            {"month": "2024-01", "first": 100.0, "second": 0.0},
            {"month": "2024-02", "first": 0.0, "second": -30.0},
        ]


class TestBroker:

    @pytest.mark.asyncio
    async def test_connect(self, store, acct):
        broker = AsyncMock(spec=BrokerClient)
        broker.initiate_auth.return_value = AuthLink(authUrl="https://broker.example/auth", state="s1")
        service = JournalService(USER_ID, store, broker)
        result = await service.connect_broker(acct["id"], "12345")
        assert result == {"auth_url": "https://broker.example/auth", "state": "s1"}
        broker.initiate_auth.assert_awaited_once_with(acct["id"], "12345")

    @pytest.mark.asyncio
    async def test_sync_updates_balance(self, store, acct):
        broker = AsyncMock(spec=BrokerClient)
        broker.sync.return_value = SyncResult(
            trades_imported=3, account_info=AccountInfo(balance=1234.5, currency="EUR"))
        service = JournalService(USER_ID, store, broker)
        result = await service.broker_sync(acct["id"], full_sync=True)
        assert result["trades_imported"] == 3
        account = service.get_account(acct["id"])
        assert account["current_balance"] == 1234.5
        assert account["currency"] == "EUR"

    @pytest.mark.asyncio
    async def test_import_passes_dates(self, store, acct):
        broker = AsyncMock(spec=BrokerClient)
        broker.import_trades.return_value = 7
        service = JournalService(USER_ID, store, broker)
        result = await service.broker_import(acct["id"], "2024-01-01", "2024-01-31")
        assert result == {"imported": 7}
        _, start, end = broker.import_trades.await_args.args
        assert (start.day, end.day) == (1, 31)

    @pytest.mark.asyncio
    async def test_import_rejects_malformed_date(self, store, acct):
        broker = AsyncMock(spec=BrokerClient)
        service = JournalService(USER_ID, store, broker)
        with pytest.raises(ValidationError) as exc:
            await service.broker_import(acct["id"], "01/31/2024")
        assert exc.value.field == "from_date"
        broker.import_trades.assert_not_awaited()


class TestManager:

    def test_services_share_store_and_broker(self, store):
        broker = AsyncMock(spec=BrokerClient)
        manager = JournalServiceManager(store=store, broker=broker)
        first, second = manager.get_service(USER_ID), manager.get_service(OTHER_USER_ID)
        assert first.user_id == USER_ID
        assert second.user_id == OTHER_USER_ID
        assert first._store is second._store is store
        assert first._broker is second._broker is broker
        assert not hasattr(manager, "_services")

    def test_user_id_is_required(self, store):
        with pytest.raises(ValidationError):
            JournalService("", store)
