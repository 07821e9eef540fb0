"""
CSV Transcoder — trades ⇄ comma-separated text
==============================================

Export writes a fixed column order (or a caller-selected subset of the
extended catalog, always including the required fields). Import accepts
any column order: headers are matched case-insensitively by substring
against the canonical names.

Import never persists. It returns an ImportPreview (the parsed trades
plus per-row warnings for values that were accepted but look wrong)
and the caller confirms the insert.

Quoting is the csv module's default dialect on both sides: quotes are
doubled and fields containing commas, quotes or newlines are quoted.
"""

from __future__ import annotations
import csv
import io
import math
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Optional, List, Dict, Any, Iterable, Sequence

import pandas as pd

from tradebook.journal.models import (
    Trade, TradeSource, TradeStatus, TradeType,
    normalize_trade_type, infer_import_status,
)
from tradebook.utils.exceptions import CsvParseError, CsvRowError
from tradebook.utils.logger import get_logger

logger = get_logger(__name__)


# ── Column catalog ───────────────────────────────────────────
# header → (Trade attribute, kind)

NUMBER, TEXT, DATE, SCORE = "number", "text", "date", "score"

COLUMN_CATALOG: Dict[str, tuple] = {
    "Symbol": ("symbol", TEXT),
    "Trade Type": ("trade_type", TEXT),
    "Entry Price": ("entry_price", NUMBER),
    "Exit Price": ("exit_price", NUMBER),
    "Quantity": ("quantity", NUMBER),
    "Entry Date": ("entry_date", DATE),
    "Exit Date": ("exit_date", DATE),
    "Stop Loss": ("stop_loss", NUMBER),
    "Take Profit": ("take_profit", NUMBER),
    "PnL": ("pnl", NUMBER),
    "Status": ("status", TEXT),
    "Commission": ("commission", NUMBER),
    "Swap": ("swap", NUMBER),
    "Risk Amount": ("risk_amount", NUMBER),
    "Risk Reward Ratio": ("risk_reward_ratio", NUMBER),
    "Notes": ("notes", TEXT),
    "Emotions": ("emotions", TEXT),
    "Order Type": ("order_type", TEXT),
    "Order ID": ("order_id", TEXT),
    "Position ID": ("position_id", TEXT),
    "Confluence Score": ("confluence_score", SCORE),
    "Created At": ("created_at", DATE),
    "Updated At": ("updated_at", DATE),
}

EXPORT_COLUMNS: List[str] = [
    "Symbol", "Trade Type", "Entry Price", "Exit Price", "Quantity",
    "Entry Date", "Exit Date", "Stop Loss", "Take Profit", "PnL", "Status",
    "Commission", "Swap", "Risk Amount", "Risk Reward Ratio", "Notes",
]

REQUIRED_COLUMNS: List[str] = ["Symbol", "Trade Type", "Entry Price", "Quantity", "Entry Date"]

# Exported as 0 instead of blank when missing
ZERO_DEFAULT_COLUMNS = {"Commission", "Swap"}

# Columns read back on import
IMPORT_COLUMNS: List[str] = [c for c in COLUMN_CATALOG
                             if COLUMN_CATALOG[c][1] != SCORE
                             and c not in ("Created At", "Updated At")]


@dataclass
class RowWarning:
    line_number: int
    column: str
    message: str

    def to_dict(self) -> dict:
        return {"line_number": self.line_number, "column": self.column, "message": self.message}


@dataclass
class ImportPreview:
    """Parsed trades awaiting confirmation, with the warnings raised per row."""
    trades: List[Trade] = field(default_factory=list)
    warnings: List[RowWarning] = field(default_factory=list)

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)

    def to_dict(self) -> dict:
        return {
            "count": len(self.trades),
            "trades": [t.to_dict() for t in self.trades],
            "warnings": [w.to_dict() for w in self.warnings],
        }


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# VALUE FORMATTING
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

def parse_date(value: Any) -> Optional[pd.Timestamp]:
    """Lenient date/datetime parse → UTC Timestamp, None when unparseable."""
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    try:
        ts = pd.to_datetime(text, utc=True)
    except (ValueError, TypeError, OverflowError):
        return None
    if pd.isna(ts):
        return None
    return ts


def format_date(value: Optional[str]) -> str:
    """ISO timestamp → YYYY-MM-DD (UTC date component)."""
    ts = parse_date(value)
    if ts is None:
        return ""
    return ts.date().isoformat()


def format_number(value: Optional[float]) -> str:
    if value is None:
        return ""
    if isinstance(value, float):
        if math.isnan(value):
            return ""
        if value.is_integer():
            return str(int(value))
    return str(value)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# EXPORT
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

def select_columns(columns: Optional[Iterable[str]] = None) -> List[str]:
    """
    Resolve a caller's column choice into catalog order.
    None → the standard export columns. Required fields are always included.
    """
    if columns is None:
        return list(EXPORT_COLUMNS)
    wanted = set(columns)
    unknown = wanted - set(COLUMN_CATALOG)
    if unknown:
        raise CsvParseError(f"Unknown export columns: {', '.join(sorted(unknown))}")
    wanted.update(REQUIRED_COLUMNS)
    return [c for c in COLUMN_CATALOG if c in wanted]


def _export_value(trade: Trade, column: str,
                  confluence_scores: Optional[Dict[str, float]]) -> str:
    attr, kind = COLUMN_CATALOG[column]
    if kind == SCORE:
        score = (confluence_scores or {}).get(trade.id)
        return format_number(float(score)) if score is not None else ""
    value = getattr(trade, attr)
    if kind == DATE:
        return format_date(value)
    if kind == NUMBER:
        if value is None and column in ZERO_DEFAULT_COLUMNS:
            return "0"
        return format_number(value)
    return "" if value is None else str(value)


def export_trades(trades: Sequence[Trade], columns: Optional[Iterable[str]] = None,
                  confluence_scores: Optional[Dict[str, float]] = None) -> str:
    """Trades → CSV text with a header row."""
    selected = select_columns(columns)
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(selected)
    for trade in trades:
        writer.writerow([_export_value(trade, c, confluence_scores) for c in selected])
    logger.info("csv_exported", trades=len(trades), columns=len(selected))
    return buf.getvalue()


def export_filename(account_name: str, today: Optional[date] = None) -> str:
    """<account name, non-alphanumerics → _>_trades_<YYYY-MM-DD>.csv"""
    today = today or date.today()
    safe = re.sub(r"[^a-z0-9]", "_", account_name or "", flags=re.IGNORECASE)
    return f"{safe}_trades_{today.isoformat()}.csv"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# IMPORT
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

def match_headers(headers: Sequence[str]) -> Dict[int, str]:
    """
    Map header positions → canonical column names.
    Exact (case-insensitive) names win; otherwise the longest canonical
    name contained in the header is used. Each canonical column binds once.
    """
    by_length = sorted(IMPORT_COLUMNS, key=len, reverse=True)
    mapping: Dict[int, str] = {}
    bound = set()
    for idx, raw in enumerate(headers):
        lowered = raw.strip().strip('"').lower()
        for name in IMPORT_COLUMNS:
            if lowered == name.lower() and name not in bound:
                mapping[idx] = name
                bound.add(name)
                break
    for idx, raw in enumerate(headers):
        if idx in mapping:
            continue
        lowered = raw.strip().strip('"').lower()
        for name in by_length:
            if name.lower() in lowered and name not in bound:
                mapping[idx] = name
                bound.add(name)
                break
    return mapping


def missing_required(mapping: Dict[int, str]) -> List[str]:
    present = set(mapping.values())
    return [c for c in REQUIRED_COLUMNS if c not in present]


def _read_rows(text: str) -> List[tuple]:
    """(line_number, cells) for every non-blank record."""
    reader = csv.reader(io.StringIO(text.lstrip("﻿")))
    rows = []
    for cells in reader:
        if not any(c.strip() for c in cells):
            continue
        rows.append((reader.line_num, cells))
    return rows


def _parse_row(line_number: int, cells: List[str], mapping: Dict[int, str],
               user_id: str, account_id: str, warnings: List[RowWarning]) -> Trade:
    raw_row = ",".join(cells)
    values: Dict[str, str] = {}
    for idx, column in mapping.items():
        values[column] = cells[idx].strip() if idx < len(cells) else ""

    def warn(column: str, message: str) -> None:
        warnings.append(RowWarning(line_number, column, message))

    for column in REQUIRED_COLUMNS:
        if not values.get(column):
            raise CsvRowError(raw_row, line_number)

    try:
        entry_price = float(values["Entry Price"])
        quantity = float(values["Quantity"])
    except ValueError:
        raise CsvRowError(raw_row, line_number)
    if not (math.isfinite(entry_price) and math.isfinite(quantity)):
        raise CsvRowError(raw_row, line_number)

    entry_ts = parse_date(values["Entry Date"])
    if entry_ts is None:
        raise CsvRowError(raw_row, line_number)

    trade_type = normalize_trade_type(values["Trade Type"])
    if trade_type not in (TradeType.LONG.value, TradeType.SHORT.value):
        warn("Trade Type", f"Unknown trade type '{values['Trade Type']}'")
    if entry_price <= 0:
        warn("Entry Price", f"Entry price is {format_number(entry_price)}")
    if quantity <= 0:
        warn("Quantity", f"Quantity is {format_number(quantity)}")

    numbers: Dict[str, Optional[float]] = {}
    for column in ("Exit Price", "Stop Loss", "Take Profit", "PnL",
                   "Commission", "Swap", "Risk Amount", "Risk Reward Ratio"):
        text = values.get(column, "")
        if not text:
            numbers[column] = None
            continue
        try:
            number = float(text)
        except ValueError:
            number = math.nan
        # nan / inf parse as floats but are not usable amounts
        if math.isfinite(number):
            numbers[column] = number
        else:
            numbers[column] = None
            warn(column, f"Could not read '{text}' as a number; left empty")

    exit_date = None
    if values.get("Exit Date"):
        exit_ts = parse_date(values["Exit Date"])
        if exit_ts is None:
            warn("Exit Date", f"Could not read '{values['Exit Date']}' as a date; left empty")
        else:
            exit_date = exit_ts.isoformat()

    exit_price, pnl = numbers["Exit Price"], numbers["PnL"]
    status = values.get("Status", "").lower()
    if status:
        if status not in (TradeStatus.OPEN.value, TradeStatus.CLOSED.value):
            warn("Status", f"Unknown status '{values['Status']}'")
    else:
        status = infer_import_status(exit_price, exit_date, pnl)

    return Trade(
        user_id=user_id,
        trading_account_id=account_id,
        symbol=values["Symbol"],
        trade_type=trade_type,
        entry_price=entry_price,
        quantity=quantity,
        entry_date=entry_ts.isoformat(),
        exit_price=exit_price,
        exit_date=exit_date,
        stop_loss=numbers["Stop Loss"],
        take_profit=numbers["Take Profit"],
        risk_amount=numbers["Risk Amount"],
        risk_reward_ratio=numbers["Risk Reward Ratio"],
        status=status,
        pnl=pnl,
        commission=numbers["Commission"] or 0.0,
        swap=numbers["Swap"] or 0.0,
        notes=values.get("Notes", ""),
        emotions=values.get("Emotions", ""),
        order_type=values.get("Order Type", ""),
        order_id=values.get("Order ID", ""),
        position_id=values.get("Position ID", ""),
        source=TradeSource.CSV.value,
    )


def import_trades(text: str, user_id: str, account_id: str) -> ImportPreview:
    """
    CSV text → ImportPreview.

    Raises CsvParseError for a missing header/data row or missing required
    columns, and CsvRowError (aborting the whole import) for a row without a
    required value or with an unreadable entry price, quantity or entry date.
    """
    rows = _read_rows(text or "")
    if len(rows) < 2:
        raise CsvParseError("CSV file must have headers and at least one trade row")

    _, headers = rows[0]
    mapping = match_headers(headers)
    missing = missing_required(mapping)
    if missing:
        raise CsvParseError(f"Missing required columns: {', '.join(missing)}")

    preview = ImportPreview()
    for line_number, cells in rows[1:]:
        preview.trades.append(
            _parse_row(line_number, cells, mapping, user_id, account_id, preview.warnings))

    logger.info("csv_import_parsed", trades=len(preview.trades),
                warnings=len(preview.warnings), account_id=account_id)
    return preview
