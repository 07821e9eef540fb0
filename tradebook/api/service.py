from __future__ import annotations

from datetime import date, datetime
from typing import Any, Optional

from tradebook.api.broker import BrokerClient
from tradebook.journal import confluence, lifecycle, metrics, reports
from tradebook.journal.csv_transcoder import export_filename, export_trades, import_trades
from tradebook.journal.models import (
    ConfluenceItem, FinancialTransaction, Note, Strategy, Trade,
    TradeSource, TradeStatus, TradingAccount, infer_status, to_payload, utc_now,
)
from tradebook.journal.store import JournalStore
from tradebook.utils.config import get_settings
from tradebook.utils.exceptions import ValidationError
from tradebook.utils.logger import get_logger

logger = get_logger(__name__)

# Never taken from request bodies
_PROTECTED = ("id", "user_id", "created_at", "updated_at")


def _merge(record: Any, data: dict[str, Any]) -> Any:
    model = type(record)
    d = record.to_dict()
    d.update({k: v for k, v in to_payload(data, model).items() if k not in _PROTECTED})
    return model.from_dict(d)


def _build(model: type, data: dict[str, Any], user_id: str) -> Any:
    payload = {k: v for k, v in to_payload(data, model).items() if k not in _PROTECTED}
    return model.from_dict({**payload, "user_id": user_id})


def _optional_float(value: Any, field: str) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field.replace('_', ' ').capitalize()} must be a number", field=field)


def _check_period(year: Optional[int], month: Optional[int]) -> None:
    if year is not None and not 1 <= year <= 9999:
        raise ValidationError("Year must be between 1 and 9999", field="year")
    if month is not None and not 1 <= month <= 12:
        raise ValidationError("Month must be between 1 and 12", field="month")


def _parse_datetime(value: str, field: str) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        raise ValidationError(f"{field.replace('_', ' ').capitalize()} must be an ISO date", field=field)


def _parse_day(value: str, field: str) -> date:
    parsed = _parse_datetime(value, field)
    if parsed is None:
        raise ValidationError(f"{field.replace('_', ' ').capitalize()} is required", field=field)
    return parsed.date()


class JournalService:
    """One user's view of the journal: store access plus the derived numbers."""

    def __init__(self, user_id: str, store: JournalStore, broker: Optional[BrokerClient] = None) -> None:
        if not user_id:
            raise ValidationError("User id is required", field="user_id")
        self.user_id = user_id
        self._store = store
        self._broker = broker

    # ─── Accounts ────────────────────────────────────────────────

    def _account_view(self, account: TradingAccount) -> dict[str, Any]:
        d = account.to_dict()
        d["equity"] = self._equity(account)
        return d

    def _equity(self, account: TradingAccount) -> float:
        trades = self._store.query_trades(self.user_id, account_id=account.id,
                                          status=TradeStatus.CLOSED.value)
        txs = self._store.list_transactions(self.user_id, account.id)
        return metrics.equity(account, trades, txs)

    def list_accounts(self, active_only: bool = False) -> list[dict[str, Any]]:
        return [self._account_view(a) for a in self._store.list_accounts(self.user_id, active_only)]

    def get_account(self, account_id: str) -> dict[str, Any]:
        return self._account_view(self._store.require_account(self.user_id, account_id))

    def create_account(self, data: dict[str, Any]) -> dict[str, Any]:
        account = _build(TradingAccount, data, self.user_id)
        if "current_balance" not in data:
            account.current_balance = account.initial_balance
        account.validate()
        self._store.add_account(account)
        logger.info("account_created", account_id=account.id, broker=account.broker)
        return self._account_view(account)

    def update_account(self, account_id: str, data: dict[str, Any]) -> dict[str, Any]:
        account = _merge(self._store.require_account(self.user_id, account_id), data)
        account.validate()
        self._store.update_account(account)
        return self._account_view(account)

    def deactivate_account(self, account_id: str) -> dict[str, Any]:
        account = self._store.deactivate_account(self.user_id, account_id)
        logger.info("account_deactivated", account_id=account_id)
        return self._account_view(account)

    def delete_account(self, account_id: str) -> dict[str, Any]:
        removed = self._store.delete_account(self.user_id, account_id)
        logger.info("account_deleted", account_id=account_id, trades_removed=removed)
        return {"deleted": True, "trades_removed": removed}

    def account_equity(self, account_id: str) -> dict[str, Any]:
        account = self._store.require_account(self.user_id, account_id)
        trades = self._store.query_trades(self.user_id, account_id=account_id,
                                          status=TradeStatus.CLOSED.value)
        txs = self._store.list_transactions(self.user_id, account_id)
        equity = metrics.equity(account, trades, txs)
        goal = account.equity_goal
        return {
            "account_id": account_id,
            "currency": account.currency,
            "initial_balance": account.initial_balance,
            "realized_pnl": metrics.total_pnl(trades),
            "net_transactions": metrics.net_transactions(txs),
            "equity": equity,
            "equity_goal": goal,
            "goal_progress": (equity / goal * 100) if goal else None,
        }

    def check_drawdown(self, account_id: str) -> dict[str, Any]:
        """Recompute prop-firm drawdown; a breach deactivates the account."""
        account = self._store.require_account(self.user_id, account_id)
        status = reports.drawdown_status(account, self._equity(account))
        if not status["monitored"]:
            return status
        if status["breached"]:
            if not account.max_drawdown_reached:
                account.is_active = False
                account.max_drawdown_reached = True
                account.breach_reason = status["breach_reason"]
                account.breach_date = status["breach_date"]
                logger.warning("prop_firm_breach", account_id=account_id,
                               drawdown=status["current_drawdown"], limit=status["max_loss_limit"])
        account.current_drawdown = status["current_drawdown"]
        self._store.update_account(account)
        return status

    # ─── Trades ──────────────────────────────────────────────────

    def _prepare_trade(self, trade: Trade, explicit_status: bool) -> Trade:
        if trade.risk_reward_ratio is None and trade.stop_loss is not None and trade.take_profit is not None:
            ratio = metrics.risk_reward_ratio(trade.entry_price, trade.stop_loss, trade.take_profit)
            trade.risk_reward_ratio = ratio or None
        if trade.exit_price is not None and trade.pnl is None:
            trade.pnl = metrics.auto_pnl(trade.entry_price, trade.exit_price, trade.quantity,
                                         trade.trade_type, trade.commission, trade.swap)
        if not explicit_status:
            trade.status = infer_status(trade.exit_price, trade.exit_date, trade.pnl)
        trade.validate()
        return trade

    def _trade_view(self, trade: Trade) -> dict[str, Any]:
        d = trade.to_dict()
        selections = self._store.get_trade_confluence(self.user_id, trade.id)
        d["confluence"] = selections
        catalog = self._store.list_confluence_items(self.user_id)
        d["confluence_score"] = confluence.checked_weight(
            catalog, [k for k, v in selections.items() if v])
        return d

    def list_trades(self, account_id: str = "", status: str = "", strategy_id: str = "",
                    symbol: str = "", source: str = "", from_date: str = "", to_date: str = "",
                    limit: int = 500, offset: int = 0) -> dict[str, Any]:
        trades = self._store.query_trades(
            self.user_id, account_id=account_id, status=status, strategy_id=strategy_id,
            symbol=symbol, source=source, from_date=from_date, to_date=to_date,
            limit=limit, offset=offset)
        total = self._store.count_trades(
            self.user_id, account_id=account_id, status=status, strategy_id=strategy_id,
            symbol=symbol, source=source, from_date=from_date, to_date=to_date)
        return {"trades": [t.to_dict() for t in trades], "total": total}

    def get_trade(self, trade_id: str) -> dict[str, Any]:
        return self._trade_view(self._store.require_trade(self.user_id, trade_id))

    def create_trade(self, data: dict[str, Any]) -> dict[str, Any]:
        trade = _build(Trade, data, self.user_id)
        self._store.require_account(self.user_id, trade.trading_account_id)
        self._prepare_trade(trade, explicit_status=bool(data.get("status")))
        self._store.add_trade(trade)
        checked = data.get("confluence_item_ids")
        if checked:
            self.save_trade_confluence(trade.id, checked)
        logger.info("trade_created", trade_id=trade.id, symbol=trade.symbol, status=trade.status)
        return self._trade_view(trade)

    def update_trade(self, trade_id: str, data: dict[str, Any]) -> dict[str, Any]:
        trade = _merge(self._store.require_trade(self.user_id, trade_id), data)
        if "trading_account_id" in data:
            self._store.require_account(self.user_id, trade.trading_account_id)
        self._prepare_trade(trade, explicit_status=bool(data.get("status")))
        self._store.update_trade(trade)
        return self._trade_view(trade)

    def close_trade(self, trade_id: str, exit_price: Any, exit_date: str,
                    pnl: Any = None, commission: Any = None, swap: Any = None) -> dict[str, Any]:
        price = _optional_float(exit_price, "exit_price")
        if price is None:
            raise ValidationError("Exit price is required", field="exit_price")
        trade = self._store.require_trade(self.user_id, trade_id)
        closed = lifecycle.close_trade(
            trade, price, exit_date or utc_now(),
            pnl=_optional_float(pnl, "pnl"),
            commission=_optional_float(commission, "commission"),
            swap=_optional_float(swap, "swap"))
        self._store.update_trade(closed)
        logger.info("trade_closed", trade_id=trade_id, pnl=closed.pnl)
        return self._trade_view(closed)

    def partial_close(self, trade_id: str, quantity: Any, exit_price: Any, exit_date: str,
                      pnl: Any = None, commission: Any = 0.0, swap: Any = 0.0) -> dict[str, Any]:
        qty = _optional_float(quantity, "quantity")
        price = _optional_float(exit_price, "exit_price")
        if qty is None:
            raise ValidationError("Quantity is required", field="quantity")
        if price is None:
            raise ValidationError("Exit price is required", field="exit_price")
        trade = self._store.require_trade(self.user_id, trade_id)
        closed_part, remainder = lifecycle.split_partial_close(
            trade, qty, price, exit_date or utc_now(),
            pnl=_optional_float(pnl, "pnl"),
            commission=_optional_float(commission, "commission") or 0.0,
            swap=_optional_float(swap, "swap") or 0.0)
        self._store.partial_close(closed_part, remainder)
        return {"closed": closed_part.to_dict(), "remaining": remainder.to_dict()}

    def delete_trade(self, trade_id: str) -> dict[str, Any]:
        """Delete and hand back everything needed to undo."""
        selections = self._store.get_trade_confluence(self.user_id, trade_id)
        trade = self._store.delete_trade(self.user_id, trade_id)
        logger.info("trade_deleted", trade_id=trade_id)
        return {"deleted": trade.to_dict(), "confluence": selections}

    def restore_trade(self, data: dict[str, Any]) -> dict[str, Any]:
        """Undo a delete: re-insert the record returned by delete_trade."""
        record = dict(data.get("deleted") or data)
        record["user_id"] = self.user_id
        trade = Trade.from_dict(record)
        self._store.require_account(self.user_id, trade.trading_account_id)
        trade.validate()
        self._store.add_trade(trade)
        selections = data.get("confluence") or {}
        if selections:
            self._store.save_trade_confluence(self.user_id, trade.id, selections)
        logger.info("trade_restored", trade_id=trade.id)
        return self._trade_view(trade)

    def copy_trade(self, trade_id: str, target_account_id: str, include_exit: bool = False) -> dict[str, Any]:
        trade = self._store.require_trade(self.user_id, trade_id)
        self._store.require_account(self.user_id, target_account_id)
        copied = lifecycle.copy_trade(trade, target_account_id, include_exit)
        self._store.add_trade(copied)
        return copied.to_dict()

    @staticmethod
    def preview_auto_pnl(entry_price: Any, exit_price: Any, quantity: Any, trade_type: str,
                         commission: Any = 0.0, swap: Any = 0.0, current_pnl: Any = None) -> dict[str, Any]:
        entry = _optional_float(entry_price, "entry_price")
        exit_ = _optional_float(exit_price, "exit_price")
        qty = _optional_float(quantity, "quantity")
        if entry is None or exit_ is None or qty is None:
            return {"pnl": None, "update": False}
        pnl = metrics.auto_pnl(entry, exit_, qty, trade_type,
                               _optional_float(commission, "commission") or 0.0,
                               _optional_float(swap, "swap") or 0.0)
        current = _optional_float(current_pnl, "current_pnl")
        return {"pnl": round(pnl, 2), "update": metrics.should_update_pnl(current, pnl)}

    @staticmethod
    def preview_risk_reward(entry_price: Any, stop_loss: Any, take_profit: Any,
                            account_balance: Any = None, risk_pct: Any = None) -> dict[str, Any]:
        entry = _optional_float(entry_price, "entry_price")
        sl = _optional_float(stop_loss, "stop_loss")
        tp = _optional_float(take_profit, "take_profit")
        result: dict[str, Any] = {"risk_reward_ratio": metrics.risk_reward_ratio(entry, sl, tp)}
        balance = _optional_float(account_balance, "account_balance")
        pct = _optional_float(risk_pct, "risk_pct")
        if balance is not None and pct is not None and entry is not None and sl is not None:
            result["position_size"] = metrics.position_size(balance, pct, entry, sl)
        return result

    # ─── Financial transactions ──────────────────────────────────

    def list_transactions(self, account_id: str = "") -> list[dict[str, Any]]:
        return [tx.to_dict() for tx in self._store.list_transactions(self.user_id, account_id)]

    def create_transaction(self, data: dict[str, Any]) -> dict[str, Any]:
        tx = _build(FinancialTransaction, data, self.user_id)
        tx.validate()
        self._store.require_account(self.user_id, tx.trading_account_id)
        self._store.add_transaction(tx)
        logger.info("transaction_recorded", account_id=tx.trading_account_id,
                    type=tx.transaction_type, amount=tx.amount)
        return tx.to_dict()

    def delete_transaction(self, tx_id: str) -> dict[str, Any]:
        self._store.delete_transaction(self.user_id, tx_id)
        return {"deleted": True}

    # ─── Strategies ──────────────────────────────────────────────

    def list_strategies(self, active_only: bool = False) -> list[dict[str, Any]]:
        return [s.to_dict() for s in self._store.list_strategies(self.user_id, active_only)]

    def create_strategy(self, data: dict[str, Any]) -> dict[str, Any]:
        strategy = _build(Strategy, data, self.user_id)
        strategy.validate()
        return self._store.add_strategy(strategy).to_dict()

    def update_strategy(self, strategy_id: str, data: dict[str, Any]) -> dict[str, Any]:
        strategy = _merge(self._store.require_strategy(self.user_id, strategy_id), data)
        strategy.validate()
        return self._store.update_strategy(strategy).to_dict()

    def delete_strategy(self, strategy_id: str) -> dict[str, Any]:
        self._store.delete_strategy(self.user_id, strategy_id)
        return {"deleted": True}

    # ─── Confluence ──────────────────────────────────────────────

    def list_confluence_items(self, active_only: bool = False) -> dict[str, Any]:
        items = self._store.list_confluence_items(self.user_id, active_only)
        return {
            "items": [i.to_dict() for i in items],
            "total_weight": confluence.total_weight(items),
            "categories": confluence.CATEGORIES,
        }

    def create_confluence_item(self, data: dict[str, Any]) -> dict[str, Any]:
        item = _build(ConfluenceItem, data, self.user_id)
        item.validate()
        return self._store.add_confluence_item(item).to_dict()

    def update_confluence_item(self, item_id: str, data: dict[str, Any]) -> dict[str, Any]:
        item = _merge(self._store.require_confluence_item(self.user_id, item_id), data)
        item.validate()
        return self._store.update_confluence_item(item).to_dict()

    def delete_confluence_item(self, item_id: str) -> dict[str, Any]:
        self._store.delete_confluence_item(self.user_id, item_id)
        return {"deleted": True}

    def new_confluence_session(self, checked_ids: Optional[list[str]] = None) -> confluence.ConfluenceSession:
        session = confluence.ConfluenceSession(
            catalog=self._store.list_confluence_items(self.user_id, active_only=True))
        for item_id in checked_ids or []:
            session.check(item_id)
        return session

    def evaluate_confluence(self, checked_ids: list[str]) -> dict[str, Any]:
        return self.new_confluence_session(checked_ids).to_dict()

    def save_trade_confluence(self, trade_id: str, checked_ids: list[str]) -> dict[str, Any]:
        self._store.require_trade(self.user_id, trade_id)
        session = self.new_confluence_session(checked_ids)
        self._store.save_trade_confluence(self.user_id, trade_id, session.selections())
        return session.to_dict()

    def trade_confluence(self, trade_id: str) -> dict[str, Any]:
        self._store.require_trade(self.user_id, trade_id)
        selections = self._store.get_trade_confluence(self.user_id, trade_id)
        catalog = self._store.list_confluence_items(self.user_id)
        checked = [k for k, v in selections.items() if v]
        score = confluence.checked_weight(catalog, checked)
        return {"selections": selections, "score": score, "passes_gate": confluence.passes_gate(score)}

    # ─── Notes ───────────────────────────────────────────────────

    def list_notes(self, tag: str = "") -> list[dict[str, Any]]:
        return [n.to_dict() for n in self._store.list_notes(self.user_id, tag)]

    def create_note(self, data: dict[str, Any]) -> dict[str, Any]:
        note = _build(Note, data, self.user_id)
        note.validate()
        return self._store.add_note(note).to_dict()

    def update_note(self, note_id: str, data: dict[str, Any]) -> dict[str, Any]:
        note = _merge(self._store.require_note(self.user_id, note_id), data)
        note.validate()
        return self._store.update_note(note).to_dict()

    def delete_note(self, note_id: str) -> dict[str, Any]:
        self._store.delete_note(self.user_id, note_id)
        return {"deleted": True}

    # ─── CSV ─────────────────────────────────────────────────────

    def export_csv(self, account_id: str, columns: Optional[list[str]] = None,
                   today: Optional[date] = None) -> dict[str, Any]:
        account = self._store.require_account(self.user_id, account_id)
        trades = self._store.query_trades(self.user_id, account_id=account_id,
                                          order_by="entry_date DESC")
        if not trades:
            raise ValidationError("No trades available for export in this account", field="trading_account_id")
        scores = self._store.trade_confluence_scores(self.user_id)
        return {
            "filename": export_filename(account.name, today),
            "content": export_trades(trades, columns, scores),
            "count": len(trades),
        }

    def import_csv_preview(self, account_id: str, text: str) -> dict[str, Any]:
        self._store.require_account(self.user_id, account_id)
        return import_trades(text, self.user_id, account_id).to_dict()

    def import_csv_confirm(self, account_id: str, text: str) -> dict[str, Any]:
        """Parse again and insert every row in one transaction."""
        self._store.require_account(self.user_id, account_id)
        preview = import_trades(text, self.user_id, account_id)
        count = self._store.add_trades(preview.trades)
        logger.info("trades_imported", count=count, account_id=account_id,
                    warnings=len(preview.warnings), source=TradeSource.CSV.value)
        return {"imported": count, "warnings": [w.to_dict() for w in preview.warnings]}

    # ─── Analytics ───────────────────────────────────────────────

    def _scope(self, account_id: str = "") -> tuple[list[Trade], list[TradingAccount]]:
        """Trades of one account, or of every active account when none is given."""
        if account_id:
            accounts = [self._store.require_account(self.user_id, account_id)]
        else:
            accounts = self._store.list_accounts(self.user_id, active_only=True)
        trades = self._store.query_trades(self.user_id, account_ids=[a.id for a in accounts],
                                          order_by="entry_date ASC")
        return trades, accounts

    @staticmethod
    def _currency_note(accounts: list[TradingAccount]) -> dict[str, Any]:
        currencies = sorted({a.currency for a in accounts})
        if len(currencies) > 1:
            logger.warning("mixed_currency_aggregation", currencies=currencies)
        return {"currencies": currencies, "mixed_currencies": len(currencies) > 1}

    def dashboard(self, account_id: str = "") -> dict[str, Any]:
        trades, accounts = self._scope(account_id)
        stats = metrics.summarize(trades)
        stats.update(self._currency_note(accounts))
        stats["total_equity"] = sum((self._equity(a) for a in accounts), 0.0)
        stats["accounts"] = len(accounts)
        stats["performance"] = metrics.performance_score(
            stats["win_rate"], stats["profit_factor"], metrics.average_risk_reward(trades))
        return stats

    def performance_score(self, account_id: str = "", strategy_id: str = "") -> dict[str, Any]:
        trades, accounts = self._scope(account_id)
        if strategy_id:
            self._store.require_strategy(self.user_id, strategy_id)
            trades = [t for t in trades if t.strategy_id == strategy_id]
        rr = metrics.average_risk_reward(trades)
        result = metrics.performance_score(metrics.win_rate(trades), metrics.profit_factor(trades), rr)
        result["avg_risk_reward"] = rr
        result["closed_trades"] = len(metrics.closed_only(trades))
        return result

    def compare_periods(self, from_date: str, to_date: str, granularity: str = "monthly",
                        account_id: str = "") -> dict[str, Any]:
        start = _parse_day(from_date, "from_date")
        end = _parse_day(to_date, "to_date")
        trades, accounts = self._scope(account_id)
        return {**reports.compare_periods(trades, start, end, granularity),
                **self._currency_note(accounts)}

    def compare_accounts(self, first_account_id: str, second_account_id: str) -> dict[str, Any]:
        first = self._store.require_account(self.user_id, first_account_id)
        second = self._store.require_account(self.user_id, second_account_id)
        result = reports.compare_accounts(
            self._store.query_trades(self.user_id, account_id=first.id),
            self._store.query_trades(self.user_id, account_id=second.id))
        result["accounts"] = {"first": first.name, "second": second.name}
        return {**result, **self._currency_note([first, second])}

    def calendar(self, year: Optional[int] = None, month: Optional[int] = None,
                 account_id: str = "") -> dict[str, Any]:
        _check_period(year, month)
        trades, accounts = self._scope(account_id)
        return {"days": reports.daily_pnl_calendar(trades, year, month), **self._currency_note(accounts)}

    def weekly_report(self, week_offset: int = 0, account_id: str = "",
                      today: Optional[date] = None) -> dict[str, Any]:
        trades, accounts = self._scope(account_id)
        return {**reports.weekly_report(trades, week_offset, today), **self._currency_note(accounts)}

    def monthly_report(self, year: Optional[int] = None, month: Optional[int] = None,
                       account_id: str = "") -> dict[str, Any]:
        _check_period(year, month)
        today = date.today()
        trades, accounts = self._scope(account_id)
        report = reports.monthly_report(trades, year or today.year, month or today.month)
        return {**report, **self._currency_note(accounts)}

    def strategy_analytics(self, account_id: str = "") -> dict[str, Any]:
        trades, accounts = self._scope(account_id)
        strategies = self._store.list_strategies(self.user_id)
        return {"strategies": reports.strategy_breakdown(trades, strategies),
                **self._currency_note(accounts)}

    def equity_curve(self, account_id: str) -> dict[str, Any]:
        account = self._store.require_account(self.user_id, account_id)
        trades = self._store.query_trades(self.user_id, account_id=account_id,
                                          status=TradeStatus.CLOSED.value)
        txs = self._store.list_transactions(self.user_id, account_id)
        frame = reports.equity_curve_frame(account, trades, txs)
        closed = metrics.sort_chronologically(metrics.closed_only(trades))
        return {
            "account_id": account_id,
            "initial_balance": account.initial_balance,
            "points": frame.to_dict(orient="records"),
            "max_drawdown": metrics.max_drawdown(closed, account.initial_balance),
            "max_drawdown_pct": metrics.max_drawdown_pct(closed, account.initial_balance),
        }

    # ─── Broker ──────────────────────────────────────────────────

    def _require_broker(self) -> BrokerClient:
        if self._broker is None:
            self._broker = BrokerClient()
        return self._broker

    async def connect_broker(self, account_id: str, account_number: str = "") -> dict[str, Any]:
        self._store.require_account(self.user_id, account_id)
        link = await self._require_broker().initiate_auth(account_id, account_number)
        return {"auth_url": link.auth_url, "state": link.state}

    async def broker_import(self, account_id: str, from_date: str = "", to_date: str = "") -> dict[str, Any]:
        self._store.require_account(self.user_id, account_id)
        start = _parse_datetime(from_date, "from_date")
        end = _parse_datetime(to_date, "to_date")
        count = await self._require_broker().import_trades(account_id, start, end)
        return {"imported": count}

    async def broker_sync(self, account_id: str, full_sync: bool = False) -> dict[str, Any]:
        account = self._store.require_account(self.user_id, account_id)
        result = await self._require_broker().sync(account_id, full_sync)
        if result.account_info is not None:
            account.current_balance = result.account_info.balance
            if result.account_info.currency:
                account.currency = result.account_info.currency
            self._store.update_account(account)
        return result.model_dump()


class JournalServiceManager:
    _instance: Optional[JournalServiceManager] = None

    def __init__(self, store: Optional[JournalStore] = None, broker: Optional[BrokerClient] = None) -> None:
        self._store = store or JournalStore(db_path=get_settings().db_path)
        self._broker = broker

    @classmethod
    def get_instance(cls) -> JournalServiceManager:
        if cls._instance is None:
            cls._instance = JournalServiceManager()
        return cls._instance

    @classmethod
    def reset(cls, manager: Optional[JournalServiceManager] = None) -> None:
        cls._instance = manager

    def get_service(self, user_id: str) -> JournalService:
        """A fresh per-request view; the store and broker client are shared."""
        if self._broker is None:
            self._broker = BrokerClient()
        return JournalService(user_id, self._store, self._broker)

    async def close(self) -> None:
        if self._broker is not None:
            await self._broker.close()
        self._store.close()
