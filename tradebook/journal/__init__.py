"""
Trade Journal Core
==================

Records → derived numbers. The store persists, everything else is pure.

Architecture:
  models.py         — Trade, TradingAccount, FinancialTransaction, ConfluenceItem, Strategy, Note
  metrics.py        — Metrics Engine (P&L, win rate, profit factor, drawdown, equity, performance score)
  lifecycle.py      — close / partial close / copy transitions
  csv_transcoder.py — CSV export and import preview
  confluence.py     — Confluence Scorer and checklist sessions
  reports.py        — calendar, weekly/monthly reports, strategy breakdown, comparisons, equity curve
  store.py          — SQLite-backed record store
"""

from tradebook.journal.models import (
    Trade,
    TradingAccount,
    FinancialTransaction,
    ConfluenceItem,
    Strategy,
    Note,
    TradeType,
    TradeStatus,
    TradeSource,
    TransactionType,
)
from tradebook.journal.confluence import ConfluenceSession, GATE_THRESHOLD
from tradebook.journal.csv_transcoder import ImportPreview
from tradebook.journal.metrics import INFINITE
from tradebook.journal.store import JournalStore

__all__ = [
    # Models
    "Trade", "TradingAccount", "FinancialTransaction", "ConfluenceItem",
    "Strategy", "Note",
    "TradeType", "TradeStatus", "TradeSource", "TransactionType",
    # Engines
    "ConfluenceSession", "GATE_THRESHOLD", "ImportPreview", "INFINITE",
    "JournalStore",
]
