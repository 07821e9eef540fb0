"""
Journal Data Models
===================

Trade          — one logged position (open → closed, partial closes split it)
TradingAccount — container of trades with a currency and balance baseline
FinancialTransaction — deposits / withdrawals / payouts against an account
ConfluenceItem — weighted checklist factor
Strategy       — named rule set trades are grouped under
Note           — free-form journal note

All models are dataclasses with to_dict()/from_dict() for SQLite storage.
Timestamps are ISO-8601 strings.
"""

from __future__ import annotations
import math
import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, Any, List

from tradebook.utils.exceptions import ValidationError


MAX_SCREENSHOTS = 5
MIN_CONFLUENCE_WEIGHT = 0.0    # exclusive
MAX_CONFLUENCE_WEIGHT = 10.0   # inclusive


def new_id() -> str:
    return str(uuid.uuid4())


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """ISO-8601 string → aware UTC datetime (naive values are taken as UTC)."""
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except (ValueError, TypeError):
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


# ── Enums ────────────────────────────────────────────────────

class TradeType(str, Enum):
    LONG = "long"
    SHORT = "short"


class TradeStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class TradeSource(str, Enum):
    MANUAL = "manual"
    CSV = "csv"
    CTRADER = "ctrader"
    COPIED = "copied"


class TransactionType(str, Enum):
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    PAYOUT = "payout"
    EVALUATION_FEE = "evaluation_fee"
    COMMISSION = "commission"
    OTHER = "other"


# Transaction types that move equity; the rest are kept for reference only.
EQUITY_INFLOWS = {TransactionType.DEPOSIT.value, TransactionType.PAYOUT.value}
EQUITY_OUTFLOWS = {TransactionType.WITHDRAWAL.value}


def normalize_trade_type(token: str) -> str:
    """buy/long → long, sell/short → short, anything else lowercased as-is."""
    lowered = (token or "").strip().lower()
    if lowered in ("buy", "long"):
        return TradeType.LONG.value
    if lowered in ("sell", "short"):
        return TradeType.SHORT.value
    return lowered


def infer_status(exit_price: Optional[float], exit_date: Optional[str],
                 pnl: Optional[float]) -> str:
    """Closed only with an exit price plus an exit date or a P&L."""
    if exit_price is not None and (exit_date or pnl is not None):
        return TradeStatus.CLOSED.value
    return TradeStatus.OPEN.value


def infer_import_status(exit_price: Optional[float], exit_date: Optional[str],
                        pnl: Optional[float]) -> str:
    """CSV rows: closed as soon as any exit-related column is filled."""
    if exit_price is not None or exit_date or pnl is not None:
        return TradeStatus.CLOSED.value
    return TradeStatus.OPEN.value


def _is_missing_number(value: Any) -> bool:
    return value is None or (isinstance(value, float) and math.isnan(value))


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# TRADES
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

@dataclass
class Trade:
    """One logged position."""
    # ── Identity ──
    id: str = field(default_factory=new_id)
    user_id: str = ""
    trading_account_id: str = ""

    # ── Instrument ──
    symbol: str = ""
    trade_type: str = ""             # TradeType value (CSV import may pass other tokens)

    # ── Execution ──
    entry_price: float = 0.0
    quantity: float = 0.0
    entry_date: str = ""             # ISO-8601
    exit_price: Optional[float] = None
    exit_date: Optional[str] = None

    # ── Risk ──
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    risk_amount: Optional[float] = None
    risk_reward_ratio: Optional[float] = None

    # ── Outcome ──
    status: str = TradeStatus.OPEN.value
    pnl: Optional[float] = None
    commission: float = 0.0
    swap: float = 0.0

    # ── Annotation ──
    notes: str = ""
    emotions: str = ""
    screenshots: List[str] = field(default_factory=list)
    strategy_id: Optional[str] = None

    # ── Origin ──
    source: str = TradeSource.MANUAL.value
    order_type: str = ""
    order_id: str = ""
    position_id: str = ""
    created_at: str = field(default_factory=utc_now)
    updated_at: str = ""

    @property
    def is_closed(self) -> bool:
        return self.status == TradeStatus.CLOSED.value

    def validate(self) -> None:
        """Field-level checks for manually entered trades."""
        if not self.symbol or not self.symbol.strip():
            raise ValidationError("Symbol is required", field="symbol")
        if self.trade_type not in (TradeType.LONG.value, TradeType.SHORT.value):
            raise ValidationError("Trade type must be 'long' or 'short'", field="trade_type")
        if _is_missing_number(self.entry_price):
            raise ValidationError("Entry price is required", field="entry_price")
        if _is_missing_number(self.quantity):
            raise ValidationError("Quantity is required", field="quantity")
        if not self.entry_date:
            raise ValidationError("Entry date is required", field="entry_date")
        if not self.trading_account_id:
            raise ValidationError("Trading account is required", field="trading_account_id")
        if len(self.screenshots) > MAX_SCREENSHOTS:
            raise ValidationError(
                f"You can attach a maximum of {MAX_SCREENSHOTS} screenshots", field="screenshots")
        if self.status not in (TradeStatus.OPEN.value, TradeStatus.CLOSED.value):
            raise ValidationError("Status must be 'open' or 'closed'", field="status")

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> "Trade":
        valid = {k: v for k, v in d.items() if k in cls.__dataclass_fields__}
        if valid.get("screenshots") is None:
            valid["screenshots"] = []
        for key in ("commission", "swap"):
            if valid.get(key) is None:
                valid.pop(key, None)
        return cls(**valid)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# ACCOUNTS & LEDGER
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

@dataclass
class TradingAccount:
    id: str = field(default_factory=new_id)
    user_id: str = ""
    name: str = ""
    broker: str = "manual"           # "manual" / "ctrader"
    currency: str = "USD"
    initial_balance: float = 0.0
    current_balance: float = 0.0     # informational; equity is recomputed on read
    equity_goal: Optional[float] = None
    is_active: bool = True

    # ── Prop firm ──
    is_prop_firm: bool = False
    max_loss_limit: Optional[float] = None
    max_drawdown_reached: bool = False
    breach_reason: str = ""
    breach_date: str = ""
    current_drawdown: float = 0.0

    created_at: str = field(default_factory=utc_now)
    updated_at: str = ""

    def validate(self) -> None:
        if not self.name or not self.name.strip():
            raise ValidationError("Account name is required", field="name")
        if not self.currency:
            raise ValidationError("Currency is required", field="currency")
        if _is_missing_number(self.initial_balance):
            raise ValidationError("Initial balance must be a number", field="initial_balance")

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> "TradingAccount":
        valid = {k: v for k, v in d.items() if k in cls.__dataclass_fields__}
        for key in ("is_active", "is_prop_firm", "max_drawdown_reached"):
            if key in valid and valid[key] is not None:
                valid[key] = bool(valid[key])
        return cls(**valid)


@dataclass
class FinancialTransaction:
    id: str = field(default_factory=new_id)
    user_id: str = ""
    trading_account_id: str = ""
    transaction_type: str = TransactionType.DEPOSIT.value
    amount: float = 0.0              # always positive; direction comes from the type
    transaction_date: str = field(default_factory=utc_now)
    description: str = ""
    created_at: str = field(default_factory=utc_now)

    @property
    def equity_effect(self) -> float:
        if self.transaction_type in EQUITY_INFLOWS:
            return self.amount
        if self.transaction_type in EQUITY_OUTFLOWS:
            return -self.amount
        return 0.0

    def validate(self) -> None:
        if self.transaction_type not in {t.value for t in TransactionType}:
            raise ValidationError(
                f"Unknown transaction type '{self.transaction_type}'", field="transaction_type")
        if _is_missing_number(self.amount) or self.amount <= 0:
            raise ValidationError("Amount must be greater than 0", field="amount")
        if not self.trading_account_id:
            raise ValidationError("Trading account is required", field="trading_account_id")

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> "FinancialTransaction":
        return cls(**{k: v for k, v in d.items() if k in cls.__dataclass_fields__})


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# CONFLUENCE, STRATEGIES, NOTES
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

@dataclass
class ConfluenceItem:
    """Weighted checklist factor. weight ∈ (0, 10]."""
    id: str = field(default_factory=new_id)
    user_id: str = ""
    name: str = ""
    category: Optional[str] = None
    description: str = ""
    weight: float = 1.0
    is_active: bool = True
    created_at: str = field(default_factory=utc_now)
    updated_at: str = ""

    def validate(self) -> None:
        if not self.name or not self.name.strip():
            raise ValidationError("Name is required", field="name")
        if _is_missing_number(self.weight) or not (
                MIN_CONFLUENCE_WEIGHT < self.weight <= MAX_CONFLUENCE_WEIGHT):
            raise ValidationError("Weight must be greater than 0 and at most 10", field="weight")

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> "ConfluenceItem":
        valid = {k: v for k, v in d.items() if k in cls.__dataclass_fields__}
        if "is_active" in valid and valid["is_active"] is not None:
            valid["is_active"] = bool(valid["is_active"])
        return cls(**valid)


@dataclass
class Strategy:
    id: str = field(default_factory=new_id)
    user_id: str = ""
    name: str = ""
    description: str = ""
    entry_rules: str = ""
    exit_rules: str = ""
    partial_rules: str = ""
    break_even_rules: str = ""
    min_risk_reward: Optional[float] = None
    max_risk_reward: Optional[float] = None   # min ≤ max expected, not enforced
    risk_per_trade: Optional[float] = None
    is_active: bool = True
    created_at: str = field(default_factory=utc_now)
    updated_at: str = ""

    def validate(self) -> None:
        if not self.name or not self.name.strip():
            raise ValidationError("Strategy name is required", field="name")

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> "Strategy":
        valid = {k: v for k, v in d.items() if k in cls.__dataclass_fields__}
        if "is_active" in valid and valid["is_active"] is not None:
            valid["is_active"] = bool(valid["is_active"])
        return cls(**valid)


@dataclass
class Note:
    id: str = field(default_factory=new_id)
    user_id: str = ""
    title: str = ""
    content: str = ""
    note_date: str = field(default_factory=utc_now)
    images: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    created_at: str = field(default_factory=utc_now)
    updated_at: str = ""

    def validate(self) -> None:
        if not self.title or not self.title.strip():
            raise ValidationError("Title is required", field="title")

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> "Note":
        valid = {k: v for k, v in d.items() if k in cls.__dataclass_fields__}
        for key in ("images", "tags"):
            if valid.get(key) is None:
                valid[key] = []
        return cls(**valid)


def to_payload(d: Dict[str, Any], model: type) -> Dict[str, Any]:
    """Drop keys the model doesn't know (request bodies carry UI-only fields)."""
    return {k: v for k, v in d.items() if k in model.__dataclass_fields__}
