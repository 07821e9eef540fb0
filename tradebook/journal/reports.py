"""
Journal Reports — period and strategy views over closed trades
==============================================================

  daily_pnl_calendar   — P&L and trade count per exit day
  weekly_report        — Monday-start week (selected by entry date)
  monthly_report       — calendar month (selected by exit date), daily + weekly totals
  strategy_breakdown   — per-strategy stat blocks
  compare_periods      — earlier vs later half of the periods in a date range
  compare_accounts     — two trade sets side by side, with monthly P&L
  equity_curve_frame   — balance / peak / drawdown after every equity event
  drawdown_status      — prop-firm max-loss check

Stat blocks come from the Metrics Engine so every view agrees on the
same conventions (signed average loss, INFINITE profit factor).
"""

from __future__ import annotations
from datetime import date, timedelta
from typing import Dict, Any, Iterable, List, Optional, Sequence
import calendar

import numpy as np
import pandas as pd

from tradebook.journal import metrics
from tradebook.journal.models import (
    Trade, TradingAccount, FinancialTransaction, Strategy, utc_now,
)
from tradebook.utils.exceptions import ValidationError

BREACH_REASON = "Max drawdown exceeded"

_FRAME_COLUMNS = ["id", "pnl", "entry_day", "exit_day", "strategy_id", "risk_reward_ratio"]


def _to_utc(values: Iterable[Any]) -> pd.Series:
    return pd.to_datetime(pd.Series(list(values), dtype=object), utc=True,
                          errors="coerce", format="mixed")


def trades_frame(trades: Iterable[Trade]) -> pd.DataFrame:
    """Closed trades with a P&L as a DataFrame keyed by UTC entry/exit day."""
    closed = metrics.closed_only(trades)
    if not closed:
        return pd.DataFrame(columns=_FRAME_COLUMNS)
    df = pd.DataFrame({
        "id": [t.id for t in closed],
        "pnl": [float(t.pnl) for t in closed],
        "strategy_id": [t.strategy_id for t in closed],
        "risk_reward_ratio": [t.risk_reward_ratio for t in closed],
    })
    df["entry_day"] = _to_utc(t.entry_date for t in closed).dt.date
    df["exit_day"] = _to_utc(t.exit_date for t in closed).dt.date
    return df[_FRAME_COLUMNS]


def _select(trades: Sequence[Trade], ids: Iterable[str]) -> List[Trade]:
    wanted = set(ids)
    return [t for t in trades if t.id in wanted]


def _stat_block(trades: Sequence[Trade], daily_pnl: pd.Series) -> Dict[str, Any]:
    stats = metrics.summarize(trades)
    stats["profitable_days"] = int((daily_pnl > 0).sum())
    stats["trading_days"] = int(len(daily_pnl))
    return stats


def _zero_filled(df: pd.DataFrame, day_column: str, start: date, end: date) -> pd.DataFrame:
    days = pd.date_range(start, end, freq="D").date
    grouped = df.groupby(day_column)["pnl"].agg(["sum", "count"])
    grouped = grouped.reindex(days, fill_value=0)
    grouped.columns = ["pnl", "trades"]
    return grouped


def _daily_records(frame: pd.DataFrame) -> List[Dict[str, Any]]:
    return [
        {"date": day.isoformat(), "pnl": float(row.pnl), "trades": int(row.trades)}
        for day, row in frame.iterrows()
    ]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# CALENDAR & PERIOD REPORTS
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

def daily_pnl_calendar(trades: Iterable[Trade], year: Optional[int] = None,
                       month: Optional[int] = None) -> List[Dict[str, Any]]:
    """Per exit day: summed P&L and trade count, oldest first."""
    df = trades_frame(trades).dropna(subset=["exit_day"])
    if df.empty:
        return []
    if year is not None:
        df = df[df["exit_day"].map(lambda d: d.year == year).astype(bool)]
    if month is not None:
        df = df[df["exit_day"].map(lambda d: d.month == month).astype(bool)]
    if df.empty:
        return []
    grouped = df.groupby("exit_day")["pnl"].agg(["sum", "count"]).sort_index()
    return [
        {"date": day.isoformat(), "pnl": float(row["sum"]), "trades": int(row["count"])}
        for day, row in grouped.iterrows()
    ]


def week_bounds(week_offset: int = 0, today: Optional[date] = None) -> tuple:
    today = today or date.today()
    start = today - timedelta(days=today.weekday()) - timedelta(weeks=week_offset)
    return start, start + timedelta(days=6)


def weekly_report(trades: Sequence[Trade], week_offset: int = 0,
                  today: Optional[date] = None) -> Dict[str, Any]:
    """Closed trades entered during the Monday-start week `week_offset` weeks ago."""
    trades = list(trades)
    start, end = week_bounds(week_offset, today)
    df = trades_frame(trades).dropna(subset=["entry_day"])
    df = df[(df["entry_day"] >= start) & (df["entry_day"] <= end)]
    daily = _zero_filled(df, "entry_day", start, end)
    week_trades = _select(trades, df["id"])

    return {
        "week_start": start.isoformat(),
        "week_end": end.isoformat(),
        "stats": _stat_block(week_trades, df.groupby("entry_day")["pnl"].sum()),
        "daily": _daily_records(daily),
    }


def monthly_report(trades: Sequence[Trade], year: int, month: int) -> Dict[str, Any]:
    """Closed trades exited during the month: stats, zero-filled days, per-week totals."""
    trades = list(trades)
    start = date(year, month, 1)
    end = date(year, month, calendar.monthrange(year, month)[1])
    df = trades_frame(trades).dropna(subset=["exit_day"])
    df = df[(df["exit_day"] >= start) & (df["exit_day"] <= end)]
    daily = _zero_filled(df, "exit_day", start, end)
    month_trades = _select(trades, df["id"])

    weeks = []
    if not df.empty:
        week_start = df["exit_day"].map(lambda d: d - timedelta(days=d.weekday()))
        by_week = df.groupby(week_start)["pnl"].agg(["sum", "count"]).sort_index()
        weeks = [
            {"week_start": wk.isoformat(), "pnl": float(row["sum"]), "trades": int(row["count"])}
            for wk, row in by_week.iterrows()
        ]

    return {
        "month": f"{year:04d}-{month:02d}",
        "month_start": start.isoformat(),
        "month_end": end.isoformat(),
        "stats": _stat_block(month_trades, df.groupby("exit_day")["pnl"].sum()),
        "daily": _daily_records(daily),
        "weekly": weeks,
    }


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# STRATEGIES
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

def strategy_breakdown(trades: Sequence[Trade],
                       strategies: Iterable[Strategy]) -> List[Dict[str, Any]]:
    trades = list(trades)
    rows = []
    for strategy in strategies:
        mine = [t for t in trades if t.strategy_id == strategy.id]
        closed = metrics.closed_only(mine)
        stats = metrics.summarize(mine)
        stats.update({
            "strategy_id": strategy.id,
            "name": strategy.name,
            "is_active": strategy.is_active,
            "avg_risk_reward": metrics.average_risk_reward(closed),
            "cumulative_pnl": [
                {"date": p["date"], "pnl": p["balance"], "trade_pnl": p["pnl"]}
                for p in metrics.equity_curve(closed)
            ],
        })
        rows.append(stats)
    rows.sort(key=lambda r: r["total_pnl"], reverse=True)
    return rows


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# COMPARISON
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

GRANULARITIES = {"daily": "%Y-%m-%d", "monthly": "%Y-%m", "yearly": "%Y"}


def _period_keys(df: pd.DataFrame, fmt: str) -> pd.Series:
    if df.empty:
        return pd.Series([], dtype=object, index=df.index)
    return pd.to_datetime(df["exit_day"]).dt.strftime(fmt)


def compare_periods(trades: Sequence[Trade], from_day: date, to_day: date,
                    granularity: str = "monthly") -> Dict[str, Any]:
    """
    Split the closed trades exited between from_day and to_day (inclusive)
    into periods of the given granularity, then compare the earlier half of
    those periods with the later half. An odd period count puts the extra
    period in the first half.
    """
    if granularity not in GRANULARITIES:
        raise ValidationError(
            f"Granularity must be one of: {', '.join(GRANULARITIES)}", field="granularity")
    if from_day > to_day:
        raise ValidationError("From date must not be after to date", field="from_date")

    trades = list(trades)
    df = trades_frame(trades).dropna(subset=["exit_day"])
    df = df[(df["exit_day"] >= from_day) & (df["exit_day"] <= to_day)]
    df = df.assign(period=_period_keys(df, GRANULARITIES[granularity]))

    periods = sorted(df["period"].unique()) if not df.empty else []
    mid = -(-len(periods) // 2)
    halves = {"first": periods[:mid], "second": periods[mid:]}

    by_period = df.groupby("period")["pnl"].agg(["sum", "count"]) if not df.empty else None
    series = []
    for side, keys in halves.items():
        for key in keys:
            row = by_period.loc[key]
            series.append({"period": key, "side": side,
                           "pnl": float(row["sum"]), "trades": int(row["count"])})

    result: Dict[str, Any] = {
        "granularity": granularity,
        "from_date": from_day.isoformat(),
        "to_date": to_day.isoformat(),
        "series": series,
    }
    for side, keys in halves.items():
        ids = df.loc[df["period"].isin(keys), "id"]
        result[side] = {"periods": list(keys),
                        "stats": metrics.comparison_block(_select(trades, ids))}
    return result


def compare_accounts(first: Sequence[Trade], second: Sequence[Trade]) -> Dict[str, Any]:
    """Side-by-side stat blocks plus P&L per exit month for both trade sets."""
    fmt = GRANULARITIES["monthly"]
    monthly = []
    for side, trades in (("first", first), ("second", second)):
        df = trades_frame(trades).dropna(subset=["exit_day"])
        if df.empty:
            continue
        sums = df.groupby(_period_keys(df, fmt))["pnl"].sum().rename(side)
        monthly.append(sums)
    if monthly:
        joined = pd.concat(monthly, axis=1).fillna(0.0).sort_index()
        for side in ("first", "second"):
            if side not in joined:
                joined[side] = 0.0
        months = [{"month": m, "first": float(r["first"]), "second": float(r["second"])}
                  for m, r in joined.iterrows()]
    else:
        months = []
    return {
        "first": metrics.comparison_block(first),
        "second": metrics.comparison_block(second),
        "monthly": months,
    }


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# EQUITY & DRAWDOWN
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

def equity_curve_frame(account: TradingAccount, trades: Iterable[Trade],
                       transactions: Iterable[FinancialTransaction] = ()) -> pd.DataFrame:
    """
    One row per equity event (closed trade or deposit/withdrawal/payout),
    oldest first: amount, balance, running peak and drawdown from it.
    The last balance equals metrics.equity() for the same inputs.
    """
    events = [
        {"date": t.exit_date or t.entry_date, "kind": "trade", "ref_id": t.id, "amount": float(t.pnl)}
        for t in metrics.closed_only(trades)
    ]
    events += [
        {"date": tx.transaction_date, "kind": tx.transaction_type, "ref_id": tx.id,
         "amount": tx.equity_effect}
        for tx in transactions if tx.equity_effect != 0
    ]
    columns = ["date", "kind", "ref_id", "amount", "balance", "peak", "drawdown"]
    if not events:
        return pd.DataFrame(columns=columns)

    df = pd.DataFrame(events)
    df["ts"] = _to_utc(df["date"])
    df = df.sort_values("ts", kind="stable").reset_index(drop=True)
    balance = account.initial_balance + np.cumsum(df["amount"].to_numpy(dtype=float))
    peak = np.maximum.accumulate(np.maximum(balance, account.initial_balance))
    df["balance"] = balance
    df["peak"] = peak
    df["drawdown"] = peak - balance
    return df[columns]


def drawdown_status(account: TradingAccount, current_equity: float) -> Dict[str, Any]:
    """
    Prop-firm max-loss check: drawdown = initial balance − equity (floored at 0),
    breached once it reaches max_loss_limit. Non-prop accounts never breach.
    """
    drawdown = max(0.0, account.initial_balance - current_equity)
    limit = account.max_loss_limit
    monitored = bool(account.is_prop_firm and limit)
    breached = monitored and drawdown >= limit
    return {
        "account_id": account.id,
        "equity": current_equity,
        "current_drawdown": drawdown,
        "max_loss_limit": limit,
        "monitored": monitored,
        "breached": breached,
        "remaining": max(0.0, limit - drawdown) if monitored else None,
        "usage_pct": (drawdown / limit * 100) if monitored else 0.0,
        "breach_reason": BREACH_REASON if breached else "",
        "breach_date": utc_now() if breached else "",
    }
