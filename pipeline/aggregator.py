"""Fold canonical trades into summary statistics."""
import logging
from datetime import datetime
from enum import Enum
from typing import Callable, Iterable, Optional

from shared.schemas import Statistics, Trade, TradeResult, TradeType
from shared.time_utils import now_utc, parse_timestamp, to_epoch_ms

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    WIN = "WIN"
    LOSS = "LOSS"
    NEITHER = "NEITHER"


def _pnl_or_zero(trade: Trade) -> float:
    pnl = trade.pnl
    return pnl if pnl is not None else 0.0


# Upstream tagging is not always consistent, so several signals can mark a
# trade as a win or a loss. Rules are checked in this order; first match wins.
OUTCOME_RULES: list[tuple[str, Callable[[Trade], bool], Outcome]] = [
    ("pnl_positive", lambda t: _pnl_or_zero(t) > 0, Outcome.WIN),
    ("result_won", lambda t: t.result == TradeResult.WON, Outcome.WIN),
    ("type_sell_profit", lambda t: t.type == TradeType.SELL_PROFIT, Outcome.WIN),
    ("pnl_negative", lambda t: _pnl_or_zero(t) < 0, Outcome.LOSS),
    ("result_lost", lambda t: t.result == TradeResult.LOST, Outcome.LOSS),
    ("type_sell_stop_loss", lambda t: t.type == TradeType.SELL_STOP_LOSS, Outcome.LOSS),
]


def classify_outcome(trade: Trade) -> Outcome:
    """Apply OUTCOME_RULES to a closed trade."""
    for _name, predicate, outcome in OUTCOME_RULES:
        if predicate(trade):
            return outcome
    return Outcome.NEITHER


def is_closed(trade: Trade) -> bool:
    """Closed-trade predicate shared by the aggregator and the bucketizer."""
    return trade.is_closed


def format_win_rate(wins: int, total: int) -> str:
    if total <= 0:
        return "0%"
    return f"{wins / total * 100:.1f}%"


def aggregate(trades: Iterable[Trade], now: Optional[datetime] = None) -> Statistics:
    """Compute Statistics over the full trade set.

    Win/loss counts and P&L cover closed trades only. Volume and the
    start/last timestamps cover every trade, open ones included.
    """
    trades = list(trades)
    now = now or now_utc()

    total = profitable = losing = 0
    total_profit = total_loss = volume = 0.0

    for trade in trades:
        cost = trade.cost
        if cost is not None:
            volume += cost

        if not is_closed(trade):
            continue
        total += 1
        outcome = classify_outcome(trade)
        if outcome == Outcome.WIN:
            profitable += 1
            total_profit += abs(_pnl_or_zero(trade))
        elif outcome == Outcome.LOSS:
            losing += 1
            total_loss += abs(_pnl_or_zero(trade))

    timestamps = sorted(
        ts for ts in (parse_timestamp(t.timestamp) for t in trades) if ts is not None
    )
    if timestamps:
        start, last = timestamps[0], timestamps[-1]
    else:
        start = last = now
    uptime_hours = (last - start).total_seconds() / 3600

    total_profit = round(total_profit, 2)
    total_loss = round(total_loss, 2)
    logger.debug(
        "Statistics computed",
        extra={"trades": len(trades), "closed": total, "wins": profitable, "losses": losing},
    )

    return Statistics(
        total_trades=total,
        profitable_trades=profitable,
        losing_trades=losing,
        total_profit_usdc=total_profit,
        total_loss_usdc=total_loss,
        net_profit_usdc=round(total_profit - total_loss, 2),
        total_volume_usdc=round(volume, 2),
        win_rate=format_win_rate(profitable, total),
        uptime_hours=f"{uptime_hours:.1f}",
        start_time=to_epoch_ms(start),
        last_updated=to_epoch_ms(last),
    )
