"""
Journal Storage Engine — SQLite-backed trade record store
=========================================================

Tables:
  trading_accounts       — accounts (soft-deactivated or hard-deleted)
  trades                 — one row per trade / closed partial
  financial_transactions — deposits, withdrawals, payouts, fees
  strategies             — named rule sets
  confluence_items       — weighted checklist catalog
  trade_confluence       — trade ↔ confluence item, with a present flag
  notes                  — free-form journal notes

Every read and write is scoped by user_id. Multi-row mutations (bulk
CSV insert, partial close, account hard delete) run in one transaction.
"""

from __future__ import annotations
import json
import os
import sqlite3
import threading
import logging
from contextlib import contextmanager
from typing import Optional, List, Dict, Any, Iterator

from tradebook.journal.models import (
    Trade, TradingAccount, FinancialTransaction, Strategy,
    ConfluenceItem, Note, utc_now,
)
from tradebook.utils.exceptions import StoreError, NotFoundError

logger = logging.getLogger("journal_store")

# Columns holding JSON-encoded lists
_JSON_COLUMNS = {
    "trades": ("screenshots",),
    "notes": ("images", "tags"),
}

_MODELS = {
    "trades": Trade,
    "trading_accounts": TradingAccount,
    "financial_transactions": FinancialTransaction,
    "strategies": Strategy,
    "confluence_items": ConfluenceItem,
    "notes": Note,
}

_LABELS = {
    "trades": "Trade",
    "trading_accounts": "Trading account",
    "financial_transactions": "Transaction",
    "strategies": "Strategy",
    "confluence_items": "Confluence item",
    "notes": "Note",
}


class JournalStore:
    """
    SQLite journal store.
    Thread-safe (one connection per thread), WAL mode.
    """

    def __init__(self, db_path: str = "data/tradebook.db"):
        self._db_path = db_path
        if db_path != ":memory:":
            os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
        self._local = threading.local()
        self._init_db()
        logger.info("JournalStore initialized: %s", db_path)

    def _get_conn(self) -> sqlite3.Connection:
        if not hasattr(self._local, "conn") or self._local.conn is None:
            self._local.conn = sqlite3.connect(self._db_path, timeout=10)
            self._local.conn.row_factory = sqlite3.Row
            self._local.conn.execute("PRAGMA journal_mode=WAL")
            self._local.conn.execute("PRAGMA synchronous=NORMAL")
        return self._local.conn

    def close(self):
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
            self._local.conn = None

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Commit on success, roll back everything on any failure."""
        conn = self._get_conn()
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            logger.error("Journal store transaction failed: %s", e)
            raise StoreError(f"Database error: {e}") from e
        except Exception:
            conn.rollback()
            raise

    def _init_db(self):
        conn = self._get_conn()
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS trading_accounts (
                id                  TEXT PRIMARY KEY,
                user_id             TEXT NOT NULL,
                name                TEXT NOT NULL,
                broker              TEXT DEFAULT 'manual',
                currency            TEXT DEFAULT 'USD',
                initial_balance     REAL DEFAULT 0,
                current_balance     REAL DEFAULT 0,
                equity_goal         REAL,
                is_active           INTEGER DEFAULT 1,
                is_prop_firm        INTEGER DEFAULT 0,
                max_loss_limit      REAL,
                max_drawdown_reached INTEGER DEFAULT 0,
                breach_reason       TEXT DEFAULT '',
                breach_date         TEXT DEFAULT '',
                current_drawdown    REAL DEFAULT 0,
                created_at          TEXT DEFAULT '',
                updated_at          TEXT DEFAULT ''
            );

            CREATE TABLE IF NOT EXISTS trades (
                id                  TEXT PRIMARY KEY,
                user_id             TEXT NOT NULL,
                trading_account_id  TEXT NOT NULL,
                symbol              TEXT NOT NULL,
                trade_type          TEXT NOT NULL CHECK (trade_type IN ('long', 'short')),
                entry_price         REAL NOT NULL,
                quantity            REAL NOT NULL,
                entry_date          TEXT NOT NULL,
                exit_price          REAL,
                exit_date           TEXT,
                stop_loss           REAL,
                take_profit         REAL,
                risk_amount         REAL,
                risk_reward_ratio   REAL,
                status              TEXT DEFAULT 'open' CHECK (status IN ('open', 'closed')),
                pnl                 REAL,
                commission          REAL DEFAULT 0,
                swap                REAL DEFAULT 0,
                notes               TEXT DEFAULT '',
                emotions            TEXT DEFAULT '',
                screenshots         TEXT DEFAULT '[]',
                strategy_id         TEXT,
                source              TEXT DEFAULT 'manual',
                order_type          TEXT DEFAULT '',
                order_id            TEXT DEFAULT '',
                position_id         TEXT DEFAULT '',
                created_at          TEXT DEFAULT '',
                updated_at          TEXT DEFAULT ''
            );

            CREATE TABLE IF NOT EXISTS financial_transactions (
                id                  TEXT PRIMARY KEY,
                user_id             TEXT NOT NULL,
                trading_account_id  TEXT NOT NULL,
                transaction_type    TEXT NOT NULL,
                amount              REAL NOT NULL CHECK (amount > 0),
                transaction_date    TEXT DEFAULT '',
                description         TEXT DEFAULT '',
                created_at          TEXT DEFAULT ''
            );

            CREATE TABLE IF NOT EXISTS strategies (
                id                  TEXT PRIMARY KEY,
                user_id             TEXT NOT NULL,
                name                TEXT NOT NULL,
                description         TEXT DEFAULT '',
                entry_rules         TEXT DEFAULT '',
                exit_rules          TEXT DEFAULT '',
                partial_rules       TEXT DEFAULT '',
                break_even_rules    TEXT DEFAULT '',
                min_risk_reward     REAL,
                max_risk_reward     REAL,
                risk_per_trade      REAL,
                is_active           INTEGER DEFAULT 1,
                created_at          TEXT DEFAULT '',
                updated_at          TEXT DEFAULT ''
            );

            CREATE TABLE IF NOT EXISTS confluence_items (
                id                  TEXT PRIMARY KEY,
                user_id             TEXT NOT NULL,
                name                TEXT NOT NULL,
                category            TEXT,
                description         TEXT DEFAULT '',
                weight              REAL DEFAULT 1.0 CHECK (weight > 0 AND weight <= 10),
                is_active           INTEGER DEFAULT 1,
                created_at          TEXT DEFAULT '',
                updated_at          TEXT DEFAULT ''
            );

            CREATE TABLE IF NOT EXISTS trade_confluence (
                user_id             TEXT NOT NULL,
                trade_id            TEXT NOT NULL,
                confluence_item_id  TEXT NOT NULL,
                is_present          INTEGER DEFAULT 0,
                created_at          TEXT DEFAULT '',
                PRIMARY KEY (trade_id, confluence_item_id)
            );

            CREATE TABLE IF NOT EXISTS notes (
                id                  TEXT PRIMARY KEY,
                user_id             TEXT NOT NULL,
                title               TEXT NOT NULL,
                content             TEXT DEFAULT '',
                note_date           TEXT DEFAULT '',
                images              TEXT DEFAULT '[]',
                tags                TEXT DEFAULT '[]',
                created_at          TEXT DEFAULT '',
                updated_at          TEXT DEFAULT ''
            );

            -- Indexes for fast queries
            CREATE INDEX IF NOT EXISTS idx_ta_user ON trading_accounts(user_id);
            CREATE INDEX IF NOT EXISTS idx_tr_user ON trades(user_id);
            CREATE INDEX IF NOT EXISTS idx_tr_account ON trades(trading_account_id);
            CREATE INDEX IF NOT EXISTS idx_tr_entry_date ON trades(entry_date);
            CREATE INDEX IF NOT EXISTS idx_tr_exit_date ON trades(exit_date);
            CREATE INDEX IF NOT EXISTS idx_tr_status ON trades(status);
            CREATE INDEX IF NOT EXISTS idx_tr_strategy ON trades(strategy_id);
            CREATE INDEX IF NOT EXISTS idx_ft_account ON financial_transactions(trading_account_id);
            CREATE INDEX IF NOT EXISTS idx_st_user ON strategies(user_id);
            CREATE INDEX IF NOT EXISTS idx_ci_user ON confluence_items(user_id);
            CREATE INDEX IF NOT EXISTS idx_tc_trade ON trade_confluence(trade_id);
            CREATE INDEX IF NOT EXISTS idx_nt_user ON notes(user_id);
        """)
        conn.commit()

    # ─── ROW HELPERS ─────────────────────────────────────────────

    @staticmethod
    def _encode(table: str, d: Dict[str, Any]) -> Dict[str, Any]:
        out = dict(d)
        for col in _JSON_COLUMNS.get(table, ()):
            out[col] = json.dumps(out.get(col) or [])
        for key, value in out.items():
            if isinstance(value, bool):
                out[key] = 1 if value else 0
        return out

    @staticmethod
    def _decode(table: str, row: sqlite3.Row):
        d = dict(row)
        for col in _JSON_COLUMNS.get(table, ()):
            try:
                d[col] = json.loads(d.get(col) or "[]")
            except (TypeError, ValueError) as e:
                logger.error("Bad JSON in %s.%s: %s", table, col, e)
                d[col] = []
        return _MODELS[table].from_dict(d)

    def _insert(self, conn: sqlite3.Connection, table: str, record) -> None:
        d = self._encode(table, record.to_dict())
        cols = ", ".join(d)
        marks = ", ".join("?" for _ in d)
        conn.execute(f"INSERT INTO {table} ({cols}) VALUES ({marks})", list(d.values()))

    def _update(self, conn: sqlite3.Connection, table: str, record) -> int:
        if hasattr(record, "updated_at"):
            record.updated_at = utc_now()
        d = self._encode(table, record.to_dict())
        rec_id, user_id = d.pop("id"), d.pop("user_id")
        d.pop("created_at", None)
        assignments = ", ".join(f"{c} = ?" for c in d)
        cur = conn.execute(
            f"UPDATE {table} SET {assignments} WHERE id = ? AND user_id = ?",
            list(d.values()) + [rec_id, user_id])
        return cur.rowcount

    def _get(self, table: str, user_id: str, rec_id: str):
        row = self._get_conn().execute(
            f"SELECT * FROM {table} WHERE id = ? AND user_id = ?", (rec_id, user_id)).fetchone()
        return self._decode(table, row) if row else None

    def _require(self, table: str, user_id: str, rec_id: str):
        record = self._get(table, user_id, rec_id)
        if record is None:
            raise NotFoundError(f"{_LABELS[table]} {rec_id} not found")
        return record

    def _save(self, table: str, record):
        with self._transaction() as conn:
            self._insert(conn, table, record)
        return record

    def _replace(self, table: str, record):
        with self._transaction() as conn:
            if self._update(conn, table, record) == 0:
                raise NotFoundError(f"{_LABELS[table]} {record.id} not found")
        return record

    def _list(self, table: str, user_id: str, conditions: List[str] = None,
              params: list = None, order_by: str = "created_at DESC") -> list:
        conditions = ["user_id = ?"] + (conditions or [])
        params = [user_id] + (params or [])
        where = " AND ".join(conditions)
        rows = self._get_conn().execute(
            f"SELECT * FROM {table} WHERE {where} ORDER BY {order_by}", params).fetchall()
        return [self._decode(table, r) for r in rows]

    # ─── ACCOUNTS ────────────────────────────────────────────────

    def add_account(self, account: TradingAccount) -> TradingAccount:
        return self._save("trading_accounts", account)

    def get_account(self, user_id: str, account_id: str) -> Optional[TradingAccount]:
        return self._get("trading_accounts", user_id, account_id)

    def require_account(self, user_id: str, account_id: str) -> TradingAccount:
        return self._require("trading_accounts", user_id, account_id)

    def list_accounts(self, user_id: str, active_only: bool = False) -> List[TradingAccount]:
        conditions = ["is_active = 1"] if active_only else []
        return self._list("trading_accounts", user_id, conditions, order_by="created_at ASC")

    def update_account(self, account: TradingAccount) -> TradingAccount:
        return self._replace("trading_accounts", account)

    def deactivate_account(self, user_id: str, account_id: str) -> TradingAccount:
        account = self.require_account(user_id, account_id)
        account.is_active = False
        return self.update_account(account)

    def delete_account(self, user_id: str, account_id: str) -> int:
        """Hard delete: the account, its trades, their confluence rows and its transactions."""
        self.require_account(user_id, account_id)
        with self._transaction() as conn:
            conn.execute("""
                DELETE FROM trade_confluence WHERE user_id = ? AND trade_id IN
                    (SELECT id FROM trades WHERE user_id = ? AND trading_account_id = ?)
            """, (user_id, user_id, account_id))
            removed = conn.execute(
                "DELETE FROM trades WHERE user_id = ? AND trading_account_id = ?",
                (user_id, account_id)).rowcount
            conn.execute(
                "DELETE FROM financial_transactions WHERE user_id = ? AND trading_account_id = ?",
                (user_id, account_id))
            conn.execute("DELETE FROM trading_accounts WHERE user_id = ? AND id = ?",
                         (user_id, account_id))
        logger.info("Account %s deleted with %d trades", account_id, removed)
        return removed

    # ─── TRADES ──────────────────────────────────────────────────

    def add_trade(self, trade: Trade) -> Trade:
        return self._save("trades", trade)

    def add_trades(self, trades: List[Trade]) -> int:
        """Bulk insert in one transaction: all rows land or none do."""
        with self._transaction() as conn:
            for trade in trades:
                self._insert(conn, "trades", trade)
        logger.info("Inserted %d trades", len(trades))
        return len(trades)

    def get_trade(self, user_id: str, trade_id: str) -> Optional[Trade]:
        return self._get("trades", user_id, trade_id)

    def require_trade(self, user_id: str, trade_id: str) -> Trade:
        return self._require("trades", user_id, trade_id)

    def update_trade(self, trade: Trade) -> Trade:
        return self._replace("trades", trade)

    def delete_trade(self, user_id: str, trade_id: str) -> Trade:
        """Remove a trade and its confluence rows; returns the removed record for undo."""
        trade = self.require_trade(user_id, trade_id)
        with self._transaction() as conn:
            conn.execute("DELETE FROM trade_confluence WHERE user_id = ? AND trade_id = ?",
                         (user_id, trade_id))
            conn.execute("DELETE FROM trades WHERE user_id = ? AND id = ?", (user_id, trade_id))
        return trade

    def partial_close(self, closed_part: Trade, remainder: Trade) -> None:
        """Insert the closed part and shrink the remainder atomically."""
        with self._transaction() as conn:
            self._insert(conn, "trades", closed_part)
            if self._update(conn, "trades", remainder) == 0:
                raise NotFoundError(f"Trade {remainder.id} not found")
        logger.info("Partial close of %s: %s closed, %s remaining",
                    remainder.id, closed_part.quantity, remainder.quantity)

    @staticmethod
    def _trade_filters(account_id: str = "", account_ids: List[str] = None,
                       status: str = "", strategy_id: str = "", symbol: str = "",
                       source: str = "", trade_type: str = "",
                       from_date: str = "", to_date: str = "",
                       date_field: str = "entry_date") -> tuple:
        conditions, params = [], []
        if account_id:
            conditions.append("trading_account_id = ?"); params.append(account_id)
        if account_ids is not None:
            if not account_ids:
                conditions.append("0 = 1")
            else:
                conditions.append(f"trading_account_id IN ({', '.join('?' for _ in account_ids)})")
                params.extend(account_ids)
        if status:
            conditions.append("status = ?"); params.append(status)
        if strategy_id:
            conditions.append("strategy_id = ?"); params.append(strategy_id)
        if symbol:
            conditions.append("UPPER(symbol) LIKE ?"); params.append(f"%{symbol.upper()}%")
        if source:
            conditions.append("source = ?"); params.append(source)
        if trade_type:
            conditions.append("trade_type = ?"); params.append(trade_type)
        if date_field not in ("entry_date", "exit_date"):
            date_field = "entry_date"
        if from_date:
            conditions.append(f"{date_field} >= ?"); params.append(from_date)
        if to_date:
            if len(to_date) == 10:
                # bare date: the whole end day is included
                conditions.append(f"substr({date_field}, 1, 10) <= ?")
            else:
                conditions.append(f"{date_field} <= ?")
            params.append(to_date)
        return conditions, params

    def query_trades(
        self,
        user_id: str,
        account_id: str = "",
        account_ids: List[str] = None,
        status: str = "",
        strategy_id: str = "",
        symbol: str = "",
        source: str = "",
        trade_type: str = "",
        from_date: str = "",
        to_date: str = "",
        date_field: str = "entry_date",
        limit: Optional[int] = None,
        offset: int = 0,
        order_by: str = "entry_date DESC",
    ) -> List[Trade]:
        """Filtered, sorted trade query; paginated only when `limit` is given."""
        conn = self._get_conn()
        conditions, params = self._trade_filters(
            account_id, account_ids, status, strategy_id, symbol, source,
            trade_type, from_date, to_date, date_field)
        conditions.insert(0, "user_id = ?")
        params.insert(0, user_id)
        where = " AND ".join(conditions)
        # Whitelist order_by columns
        allowed_order = {"entry_date DESC", "entry_date ASC", "exit_date DESC",
                         "exit_date ASC", "pnl DESC", "pnl ASC", "created_at DESC"}
        if order_by not in allowed_order:
            order_by = "entry_date DESC"

        sql = f"SELECT * FROM trades WHERE {where} ORDER BY {order_by}"
        if limit is not None:
            sql += " LIMIT ? OFFSET ?"
            params.extend([limit, offset])
        return [self._decode("trades", r) for r in conn.execute(sql, params).fetchall()]

    def count_trades(self, user_id: str, **filters) -> int:
        """Row count for the same filters query_trades accepts."""
        conditions, params = self._trade_filters(**filters)
        conditions.insert(0, "user_id = ?")
        params.insert(0, user_id)
        where = " AND ".join(conditions)
        row = self._get_conn().execute(
            f"SELECT COUNT(*) as cnt FROM trades WHERE {where}", params).fetchone()
        return row["cnt"] if row else 0

    def get_symbols(self, user_id: str) -> List[str]:
        rows = self._get_conn().execute(
            "SELECT DISTINCT symbol FROM trades WHERE user_id = ? ORDER BY symbol",
            (user_id,)).fetchall()
        return [r["symbol"] for r in rows if r["symbol"]]

    # ─── FINANCIAL TRANSACTIONS ──────────────────────────────────

    def add_transaction(self, tx: FinancialTransaction) -> FinancialTransaction:
        return self._save("financial_transactions", tx)

    def list_transactions(self, user_id: str, account_id: str = "") -> List[FinancialTransaction]:
        conditions, params = [], []
        if account_id:
            conditions.append("trading_account_id = ?"); params.append(account_id)
        return self._list("financial_transactions", user_id, conditions, params,
                          order_by="transaction_date DESC")

    def delete_transaction(self, user_id: str, tx_id: str) -> None:
        self._require("financial_transactions", user_id, tx_id)
        with self._transaction() as conn:
            conn.execute("DELETE FROM financial_transactions WHERE user_id = ? AND id = ?",
                         (user_id, tx_id))

    # ─── STRATEGIES ──────────────────────────────────────────────

    def add_strategy(self, strategy: Strategy) -> Strategy:
        return self._save("strategies", strategy)

    def get_strategy(self, user_id: str, strategy_id: str) -> Optional[Strategy]:
        return self._get("strategies", user_id, strategy_id)

    def require_strategy(self, user_id: str, strategy_id: str) -> Strategy:
        return self._require("strategies", user_id, strategy_id)

    def list_strategies(self, user_id: str, active_only: bool = False) -> List[Strategy]:
        conditions = ["is_active = 1"] if active_only else []
        return self._list("strategies", user_id, conditions)

    def update_strategy(self, strategy: Strategy) -> Strategy:
        return self._replace("strategies", strategy)

    def delete_strategy(self, user_id: str, strategy_id: str) -> None:
        """Trades keep their rows; their strategy reference is cleared."""
        self._require("strategies", user_id, strategy_id)
        with self._transaction() as conn:
            conn.execute("UPDATE trades SET strategy_id = NULL WHERE user_id = ? AND strategy_id = ?",
                         (user_id, strategy_id))
            conn.execute("DELETE FROM strategies WHERE user_id = ? AND id = ?",
                         (user_id, strategy_id))

    # ─── CONFLUENCE ──────────────────────────────────────────────

    def add_confluence_item(self, item: ConfluenceItem) -> ConfluenceItem:
        return self._save("confluence_items", item)

    def get_confluence_item(self, user_id: str, item_id: str) -> Optional[ConfluenceItem]:
        return self._get("confluence_items", user_id, item_id)

    def require_confluence_item(self, user_id: str, item_id: str) -> ConfluenceItem:
        return self._require("confluence_items", user_id, item_id)

    def list_confluence_items(self, user_id: str, active_only: bool = False) -> List[ConfluenceItem]:
        conditions = ["is_active = 1"] if active_only else []
        return self._list("confluence_items", user_id, conditions,
                          order_by="category ASC, name ASC")

    def update_confluence_item(self, item: ConfluenceItem) -> ConfluenceItem:
        return self._replace("confluence_items", item)

    def delete_confluence_item(self, user_id: str, item_id: str) -> None:
        self._require("confluence_items", user_id, item_id)
        with self._transaction() as conn:
            conn.execute("DELETE FROM trade_confluence WHERE user_id = ? AND confluence_item_id = ?",
                         (user_id, item_id))
            conn.execute("DELETE FROM confluence_items WHERE user_id = ? AND id = ?",
                         (user_id, item_id))

    def save_trade_confluence(self, user_id: str, trade_id: str,
                              selections: Dict[str, bool]) -> None:
        """Replace a trade's checklist rows with `selections` (item id → present)."""
        now = utc_now()
        with self._transaction() as conn:
            conn.execute("DELETE FROM trade_confluence WHERE user_id = ? AND trade_id = ?",
                         (user_id, trade_id))
            conn.executemany("""
                INSERT INTO trade_confluence (user_id, trade_id, confluence_item_id, is_present, created_at)
                VALUES (?, ?, ?, ?, ?)
            """, [(user_id, trade_id, item_id, 1 if present else 0, now)
                  for item_id, present in selections.items()])

    def get_trade_confluence(self, user_id: str, trade_id: str) -> Dict[str, bool]:
        rows = self._get_conn().execute(
            "SELECT confluence_item_id, is_present FROM trade_confluence WHERE user_id = ? AND trade_id = ?",
            (user_id, trade_id)).fetchall()
        return {r["confluence_item_id"]: bool(r["is_present"]) for r in rows}

    def trade_confluence_scores(self, user_id: str) -> Dict[str, float]:
        """trade id → Σ weight of present items."""
        rows = self._get_conn().execute("""
            SELECT tc.trade_id, SUM(ci.weight) as score
            FROM trade_confluence tc
            JOIN confluence_items ci ON ci.id = tc.confluence_item_id
            WHERE tc.user_id = ? AND tc.is_present = 1
            GROUP BY tc.trade_id
        """, (user_id,)).fetchall()
        return {r["trade_id"]: r["score"] or 0.0 for r in rows}

    # ─── NOTES ───────────────────────────────────────────────────

    def add_note(self, note: Note) -> Note:
        return self._save("notes", note)

    def get_note(self, user_id: str, note_id: str) -> Optional[Note]:
        return self._get("notes", user_id, note_id)

    def require_note(self, user_id: str, note_id: str) -> Note:
        return self._require("notes", user_id, note_id)

    def list_notes(self, user_id: str, tag: str = "") -> List[Note]:
        notes = self._list("notes", user_id, order_by="note_date DESC")
        if tag:
            notes = [n for n in notes if tag in n.tags]
        return notes

    def update_note(self, note: Note) -> Note:
        return self._replace("notes", note)

    def delete_note(self, user_id: str, note_id: str) -> None:
        self._require("notes", user_id, note_id)
        with self._transaction() as conn:
            conn.execute("DELETE FROM notes WHERE user_id = ? AND id = ?", (user_id, note_id))
