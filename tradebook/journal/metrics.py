"""
Metrics Engine — derived numbers over a batch of trade records
==============================================================

Pure functions; callers fetch and filter the trades (one account / one
currency) before calling. Aggregates only look at closed trades with a P&L:

  - Total P&L, win rate, average win / loss, best / worst trade
  - Profit factor (with an INFINITE sentinel when there are no losses)
  - Expectancy, max drawdown (chronological input required)
  - Account equity from initial balance + realized P&L + ledger
  - Risk:reward ratio and live auto-P&L for the trade form
  - Composite performance score and comparison stat blocks

No validation layer: NaN in, NaN out.
"""

from __future__ import annotations
from datetime import datetime, timezone
from typing import Iterable, List, Dict, Any, Optional, Sequence

from tradebook.journal.models import (
    Trade, TradingAccount, FinancialTransaction,
    TradeStatus, TradeType, parse_timestamp,
)

INFINITE = float("inf")
INFINITE_DISPLAY = "∞"
PNL_EPSILON = 0.001

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# FILTERS
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

def closed_only(trades: Iterable[Trade]) -> List[Trade]:
    return [t for t in trades
            if t.status == TradeStatus.CLOSED.value and t.pnl is not None]


def open_only(trades: Iterable[Trade]) -> List[Trade]:
    return [t for t in trades if t.status == TradeStatus.OPEN.value]


def open_count(trades: Iterable[Trade]) -> int:
    return len(open_only(trades))


def trade_time(trade: Trade) -> datetime:
    """Exit time for closed trades, entry time otherwise."""
    return parse_timestamp(trade.exit_date) or parse_timestamp(trade.entry_date) or _EPOCH


def sort_chronologically(trades: Iterable[Trade]) -> List[Trade]:
    return sorted(trades, key=trade_time)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# CORE P&L METRICS
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

def _pnls(trades: Iterable[Trade]) -> List[float]:
    return [t.pnl for t in closed_only(trades)]


def total_pnl(trades: Iterable[Trade]) -> float:
    # No currency conversion: mixing accounts in different currencies gives a raw sum.
    return sum(_pnls(trades), 0.0)


def win_rate(trades: Iterable[Trade]) -> float:
    pnls = _pnls(trades)
    if not pnls:
        return 0.0
    return sum(1 for p in pnls if p > 0) / len(pnls) * 100


def average_win(trades: Iterable[Trade]) -> float:
    wins = [p for p in _pnls(trades) if p > 0]
    return sum(wins) / len(wins) if wins else 0.0


def average_loss(trades: Iterable[Trade]) -> float:
    """Signed mean of losing trades (a negative number, 0 when there are none)."""
    losses = [p for p in _pnls(trades) if p < 0]
    return sum(losses) / len(losses) if losses else 0.0


def gross_profit(trades: Iterable[Trade]) -> float:
    return sum((p for p in _pnls(trades) if p > 0), 0.0)


def gross_loss(trades: Iterable[Trade]) -> float:
    """Absolute value of the summed losing P&L."""
    return abs(sum((p for p in _pnls(trades) if p < 0), 0.0))


def profit_factor(trades: Iterable[Trade]) -> float:
    trades = list(trades)
    profit = gross_profit(trades)
    loss = gross_loss(trades)
    if loss == 0:
        return INFINITE if profit > 0 else 0.0
    return profit / loss


def best_trade(trades: Iterable[Trade]) -> float:
    pnls = _pnls(trades)
    return max(pnls) if pnls else 0.0


def worst_trade(trades: Iterable[Trade]) -> float:
    pnls = _pnls(trades)
    return min(pnls) if pnls else 0.0


def expectancy(trades: Iterable[Trade]) -> float:
    pnls = _pnls(trades)
    return sum(pnls) / len(pnls) if pnls else 0.0


def max_drawdown(trades: Iterable[Trade], initial_balance: float = 0.0) -> float:
    """
    Largest peak-to-trough decline of the running balance.
    Trades are processed in the order given; call sort_chronologically() first.
    """
    running = initial_balance
    peak = initial_balance
    max_dd = 0.0
    for p in _pnls(trades):
        running += p
        peak = max(peak, running)
        max_dd = max(max_dd, peak - running)
    return max_dd


def max_drawdown_pct(trades: Iterable[Trade], initial_balance: float) -> float:
    """Max drawdown as a percentage of the final peak balance."""
    running = initial_balance
    peak = initial_balance
    max_dd = 0.0
    for p in _pnls(trades):
        running += p
        peak = max(peak, running)
        max_dd = max(max_dd, peak - running)
    return (max_dd / peak) * 100 if peak > 0 else 0.0


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# ACCOUNT EQUITY
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

def net_transactions(transactions: Iterable[FinancialTransaction]) -> float:
    return sum((tx.equity_effect for tx in transactions), 0.0)


def equity(account: TradingAccount, trades: Iterable[Trade],
           transactions: Iterable[FinancialTransaction] = ()) -> float:
    """initial balance + realized P&L + deposits/payouts − withdrawals."""
    return account.initial_balance + total_pnl(trades) + net_transactions(transactions)


def equity_curve(trades: Iterable[Trade], initial_balance: float = 0.0) -> List[Dict[str, Any]]:
    """Running balance after each closed trade, in chronological order."""
    points = []
    balance = initial_balance
    for t in sort_chronologically(closed_only(trades)):
        balance += t.pnl
        points.append({
            "date": t.exit_date or t.entry_date,
            "trade_id": t.id,
            "pnl": t.pnl,
            "balance": balance,
        })
    return points


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# TRADE FORM CALCULATIONS
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

def risk_reward_ratio(entry: Optional[float], stop_loss: Optional[float],
                      take_profit: Optional[float]) -> float:
    """
    |take_profit − entry| / |entry − stop_loss|.
    0 means "unset": a missing input or a zero distance on either side.
    """
    if entry is None or stop_loss is None or take_profit is None:
        return 0.0
    risk = abs(entry - stop_loss)
    reward = abs(take_profit - entry)
    if risk == 0 or reward == 0:
        return 0.0
    return reward / risk


def gross_pnl(entry: float, exit_price: float, quantity: float, direction: str) -> float:
    if direction == TradeType.SHORT.value:
        return (entry - exit_price) * quantity
    return (exit_price - entry) * quantity


def auto_pnl(entry: float, exit_price: float, quantity: float, direction: str,
             commission: float = 0.0, swap: float = 0.0) -> float:
    """Net P&L = gross − commission − swap."""
    return gross_pnl(entry, exit_price, quantity, direction) - (commission or 0.0) - (swap or 0.0)


def should_update_pnl(current: Optional[float], computed: float,
                      epsilon: float = PNL_EPSILON) -> bool:
    """Live recomputation only replaces the shown value when it moved by more than epsilon."""
    if current is None:
        return True
    return abs(computed - current) > epsilon


def position_size(account_balance: float, risk_pct: float,
                  entry: float, stop_loss: float) -> float:
    """Units such that hitting the stop loses risk_pct of the balance."""
    risk_per_unit = abs(entry - stop_loss)
    if risk_per_unit == 0:
        return 0.0
    return account_balance * (risk_pct / 100) / risk_per_unit


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# DASHBOARD
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

def summarize(trades: Sequence[Trade]) -> Dict[str, Any]:
    """Stat block shown on the dashboard and in reports."""
    trades = list(trades)
    closed = closed_only(trades)
    return {
        "total_trades": len(trades),
        "closed_trades": len(closed),
        "active_trades": open_count(trades),
        "winning_trades": sum(1 for t in closed if t.pnl > 0),
        "losing_trades": sum(1 for t in closed if t.pnl < 0),
        "total_pnl": total_pnl(closed),
        "win_rate": win_rate(closed),
        "avg_win": average_win(closed),
        "avg_loss": average_loss(closed),
        "profit_factor": profit_factor(closed),
        "expectancy": expectancy(closed),
        "best_trade": best_trade(closed),
        "worst_trade": worst_trade(closed),
        "max_drawdown": max_drawdown(sort_chronologically(closed)),
    }


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# PERFORMANCE SCORE & COMPARISON
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

# (minimum score, label), best first
SCORE_BANDS = [(80, "Excellent"), (60, "Good"), (40, "Average"), (0, "Needs Improvement")]


def average_risk_reward(trades: Iterable[Trade]) -> float:
    """Mean risk:reward over closed trades that recorded one (0 if none did)."""
    ratios = [t.risk_reward_ratio for t in closed_only(trades) if t.risk_reward_ratio]
    return sum(ratios) / len(ratios) if ratios else 0.0


def performance_score(win_rate_pct: float, profit_factor_value: float,
                      risk_reward: float) -> Dict[str, Any]:
    """
    Weighted 0-100 score:
      win rate (capped at 100)            × 0.40
      profit factor, 3.0 counts as 100    × 0.35
      risk:reward, 3:1 counts as 100      × 0.25
    """
    win_part = min(win_rate_pct, 100.0)
    pf_part = min(profit_factor_value / 3 * 100, 100.0)
    rr_part = min(risk_reward / 3 * 100, 100.0)
    score = round(win_part * 0.4 + pf_part * 0.35 + rr_part * 0.25)
    label = next(name for floor, name in SCORE_BANDS if score >= floor)
    return {
        "score": score,
        "label": label,
        "win_rate": win_part,
        "profit_factor": pf_part,
        "risk_reward": rr_part,
    }


def streaks(trades: Sequence[Trade]) -> Dict[str, int]:
    """Longest and current winning / losing runs; break-even resets both."""
    wins = losses = max_wins = max_losses = 0
    for p in _pnls(trades):
        if p > 0:
            wins, losses = wins + 1, 0
            max_wins = max(max_wins, wins)
        elif p < 0:
            wins, losses = 0, losses + 1
            max_losses = max(max_losses, losses)
        else:
            wins = losses = 0
    return {
        "consecutive_wins": wins,
        "consecutive_losses": losses,
        "max_consecutive_wins": max_wins,
        "max_consecutive_losses": max_losses,
    }


def recovery_factor(trades: Sequence[Trade]) -> float:
    """Total P&L over max drawdown from a zero baseline; 0 without a drawdown."""
    dd = max_drawdown(trades)
    return total_pnl(trades) / dd if dd > 0 else 0.0


def comparison_block(trades: Sequence[Trade]) -> Dict[str, Any]:
    """Stat block for one side of a period or account comparison."""
    closed = sort_chronologically(closed_only(trades))
    block = summarize(closed)
    block.update(streaks(closed))
    block["recovery_factor"] = recovery_factor(closed)
    block["total_commissions"] = sum((t.commission or 0.0 for t in closed), 0.0)
    block["avg_risk_reward"] = average_risk_reward(closed)
    block["performance"] = performance_score(
        block["win_rate"], block["profit_factor"], block["avg_risk_reward"])
    return block


def display_number(value: Any) -> Any:
    """JSON-safe rendering: INFINITE → "∞", everything else untouched."""
    if isinstance(value, float) and value == INFINITE:
        return INFINITE_DISPLAY
    if isinstance(value, dict):
        return {k: display_number(v) for k, v in value.items()}
    if isinstance(value, list):
        return [display_number(v) for v in value]
    return value
