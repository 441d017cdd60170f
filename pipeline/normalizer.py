"""Normalize raw Limitless trade records into canonical Trade objects.

The portfolio API has changed shape over time: amounts arrive as fixed-point
integers scaled by the market collateral's decimals, the same concept shows
up under several field names, and older records carry no strategy label at
all (only the market's winning outcome). Every field here has a fallback, so
``normalize_trade`` never raises for a record that is merely incomplete.
"""
import logging
from datetime import datetime
from decimal import Decimal, DecimalException, InvalidOperation, ROUND_HALF_UP
from typing import Any, Iterable, Optional

from shared.schemas import Trade, TradeResult, TradeType, UNKNOWN_MARKET, to_int
from shared.time_utils import now_utc, parse_timestamp, to_iso

logger = logging.getLogger(__name__)

DEFAULT_DECIMALS = 6
MAX_DECIMALS = 36

_CENT = Decimal("0.01")
_HUNDRED = Decimal(100)

# Ordered aliases, most current API shape first
TIMESTAMP_FIELDS = ("blockTimestamp", "timestamp", "createdAt", "created_at")
OUTCOME_INDEX_FIELDS = ("outcomeIndex", "outcome_index")
COST_FIELDS = ("outcomeTokenNetCost", "cost", "investment")
RECEIVED_FIELDS = ("collateralAmount", "collateral_amount")
TOKEN_AMOUNT_FIELDS = ("outcomeTokenAmount", "outcome_token_amount")
PRICE_FIELDS = ("outcomeTokenPrice", "outcome_token_price", "price")
TX_HASH_FIELDS = ("transactionHash", "txHash", "transaction_hash")
MARKET_ID_FIELDS = ("id", "address")
MARKET_TITLE_FIELDS = ("title", "marketTitle", "market_title")
WINNING_INDEX_FIELDS = ("winningOutcomeIndex", "winning_outcome_index")


def first_present(record: Any, *keys: str, default: Any = None) -> Any:
    """Return the value of the first key in ``record`` that is not None."""
    if not isinstance(record, dict):
        return default
    for key in keys:
        value = record.get(key)
        if value is not None:
            return value
    return default


def _to_decimal(value: Any) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    return parsed if parsed.is_finite() else None


def _cents(amount: Decimal) -> Optional[Decimal]:
    """Round to cents, or None when that needs more digits than the context holds."""
    try:
        rounded = amount.quantize(_CENT, rounding=ROUND_HALF_UP)
    except DecimalException:
        return None
    # Avoid emitting "-0.00"
    return rounded if rounded != 0 else abs(rounded)


def _pnl_percent(pnl: Decimal, cost: Decimal) -> Optional[str]:
    if cost == 0:
        return "0.00"
    try:
        percent = _cents(pnl / cost * _HUNDRED)
    except DecimalException:
        return None
    return str(percent) if percent is not None else None


def _decimals(market: dict) -> int:
    collateral = market.get("collateral") if isinstance(market.get("collateral"), dict) else {}
    decimals = to_int(first_present(collateral, "decimals"))
    if decimals is None or not 0 <= decimals <= MAX_DECIMALS:
        return DEFAULT_DECIMALS
    return decimals


def _scaled(raw: dict, fields: tuple, scale: Decimal) -> Optional[Decimal]:
    amount = _to_decimal(first_present(raw, *fields))
    if amount is None:
        return None
    try:
        return _cents(amount / scale)
    except DecimalException:
        return None


def normalize_trade(raw: dict, now: Optional[datetime] = None) -> Trade:
    """Convert one raw trade record into a canonical Trade."""
    raw = raw if isinstance(raw, dict) else {}
    market = raw.get("market") if isinstance(raw.get("market"), dict) else {}

    parsed_ts = parse_timestamp(first_present(raw, *TIMESTAMP_FIELDS))
    if parsed_ts is None:
        parsed_ts = now or now_utc()
        logger.debug(
            "Unparseable trade timestamp, using current time",
            extra={"tx_hash": first_present(raw, *TX_HASH_FIELDS, default="")},
        )

    scale = Decimal(10) ** _decimals(market)
    cost = _scaled(raw, COST_FIELDS, scale)
    received = _scaled(raw, RECEIVED_FIELDS, scale)

    strategy = str(first_present(raw, "strategy", default=""))
    outcome = to_int(first_present(raw, *OUTCOME_INDEX_FIELDS))
    winning_index = to_int(first_present(
        market, *WINNING_INDEX_FIELDS,
        default=first_present(raw, *WINNING_INDEX_FIELDS),
    ))

    price = first_present(raw, *PRICE_FIELDS)
    trade = Trade(
        timestamp=to_iso(parsed_ts),
        market_address=str(
            first_present(market, *MARKET_ID_FIELDS)
            or first_present(raw, "marketAddress", "market_address", default="")
        ),
        market_title=str(
            first_present(market, *MARKET_TITLE_FIELDS)
            or first_present(raw, *MARKET_TITLE_FIELDS, default=UNKNOWN_MARKET)
        ),
        outcome=outcome,
        outcome_price=str(price) if price is not None else None,
        cost_usdc=str(cost) if cost is not None else None,
        strategy=strategy or None,
        tx_hash=str(first_present(raw, *TX_HASH_FIELDS, default="")),
    )

    is_redeem = "Redeem" in strategy
    is_sell = "Sell" in strategy and not is_redeem

    if is_redeem or is_sell:
        pnl = _cents(received - cost) if cost is not None and received is not None else None
        if pnl is None:
            logger.debug(
                "Realized trade amounts missing or out of range, keeping as open",
                extra={"tx_hash": trade.tx_hash, "strategy": strategy},
            )
            return trade
        trade.return_usdc = str(received)
        trade.pnl_usdc = str(pnl)
        trade.pnl_percent = _pnl_percent(pnl, cost)
        trade.result = TradeResult.WON if pnl >= 0 else TradeResult.LOST
        if is_redeem:
            trade.type = TradeType.REDEEM
        else:
            trade.type = TradeType.SELL_PROFIT if pnl > 0 else TradeType.SELL_STOP_LOSS
        return trade

    if strategy == "Buy":
        trade.investment_usdc = trade.cost_usdc
        return trade

    if winning_index is not None:
        return _settle_legacy(trade, raw, cost, scale, won=winning_index == outcome)

    return trade


def _settle_legacy(
    trade: Trade, raw: dict, cost: Optional[Decimal], scale: Decimal, won: bool
) -> Trade:
    """Resolve a pre-strategy-label trade against its market's winning outcome."""
    if cost is None:
        return trade
    if won:
        payout = _scaled(raw, TOKEN_AMOUNT_FIELDS, scale)
        pnl = _cents(payout - cost) if payout is not None else None
        if pnl is None:
            return trade
        trade.return_usdc = str(payout)
        trade.pnl_usdc = str(pnl)
        trade.pnl_percent = _pnl_percent(pnl, cost)
        trade.type = TradeType.SELL_PROFIT if pnl > 0 else TradeType.SELL_STOP_LOSS
        trade.result = TradeResult.WON
    else:
        trade.return_usdc = "0.00"
        trade.pnl_usdc = str(_cents(-cost))
        trade.pnl_percent = _pnl_percent(-cost, cost)
        trade.type = TradeType.SELL_STOP_LOSS
        trade.result = TradeResult.LOST
    return trade


def normalize_trades(raws: Iterable[Any], now: Optional[datetime] = None) -> list[Trade]:
    """Normalize every record; entries that are not objects at all are skipped."""
    trades = []
    skipped = 0
    for raw in raws:
        if not isinstance(raw, dict):
            skipped += 1
            continue
        trades.append(normalize_trade(raw, now=now))
    if skipped:
        logger.warning("Skipped non-object trade records", extra={"skipped": skipped})
    return trades
