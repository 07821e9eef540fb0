"""
Trade lifecycle transitions
===========================

open ──close──▶ closed
open ──partial close──▶ closed part (new record) + open remainder (same id)

These helpers only build the new records; the store persists them
(partial close inside a single transaction).
"""

from __future__ import annotations
import dataclasses
from typing import Optional, Tuple

from tradebook.journal.metrics import auto_pnl
from tradebook.journal.models import (
    Trade, TradeSource, TradeStatus, infer_status, new_id, utc_now,
)
from tradebook.utils.exceptions import ValidationError


def close_trade(trade: Trade, exit_price: float, exit_date: str,
                pnl: Optional[float] = None,
                commission: Optional[float] = None,
                swap: Optional[float] = None) -> Trade:
    """Return a closed copy of `trade`. P&L is computed from the fills when not given."""
    if trade.is_closed:
        raise ValidationError("Trade is already closed", field="status")
    commission = trade.commission if commission is None else commission
    swap = trade.swap if swap is None else swap
    if pnl is None:
        pnl = auto_pnl(trade.entry_price, exit_price, trade.quantity,
                       trade.trade_type, commission, swap)
    return dataclasses.replace(
        trade,
        exit_price=exit_price,
        exit_date=exit_date,
        pnl=pnl,
        commission=commission,
        swap=swap,
        status=infer_status(exit_price, exit_date, pnl),
        updated_at=utc_now(),
    )


def split_partial_close(trade: Trade, close_quantity: float, exit_price: float,
                        exit_date: str, pnl: Optional[float] = None,
                        commission: float = 0.0, swap: float = 0.0) -> Tuple[Trade, Trade]:
    """
    Split an open trade in two.

    Returns (closed_part, remainder): the closed part is a new record with
    close_quantity units; the remainder keeps the original id and the
    leftover quantity, still open.
    """
    if trade.is_closed:
        raise ValidationError("Only open trades can be partially closed", field="status")
    if not (0 < close_quantity < trade.quantity):
        raise ValidationError(
            "Partial close quantity must be greater than 0 and less than the open quantity",
            field="quantity")

    if pnl is None:
        pnl = auto_pnl(trade.entry_price, exit_price, close_quantity,
                       trade.trade_type, commission, swap)

    now = utc_now()
    closed_part = dataclasses.replace(
        trade,
        id=new_id(),
        quantity=close_quantity,
        exit_price=exit_price,
        exit_date=exit_date,
        pnl=pnl,
        commission=commission,
        swap=swap,
        status=TradeStatus.CLOSED.value,
        screenshots=list(trade.screenshots),
        created_at=now,
        updated_at=now,
    )
    remainder = dataclasses.replace(
        trade,
        quantity=trade.quantity - close_quantity,
        screenshots=list(trade.screenshots),
        updated_at=now,
    )
    return closed_part, remainder


def copy_trade(trade: Trade, target_account_id: str, include_exit: bool = False) -> Trade:
    """Duplicate a trade into another account (source 'copied')."""
    now = utc_now()
    copied = dataclasses.replace(
        trade,
        id=new_id(),
        trading_account_id=target_account_id,
        source=TradeSource.COPIED.value,
        screenshots=list(trade.screenshots),
        order_id="",
        position_id="",
        created_at=now,
        updated_at=now,
    )
    if not include_exit:
        copied = dataclasses.replace(
            copied, exit_price=None, exit_date=None, pnl=None,
            status=TradeStatus.OPEN.value,
        )
    return copied
