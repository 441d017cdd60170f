"""Test helpers shared across test files."""
from datetime import datetime, timezone
from typing import Any, Optional

from shared.schemas import Trade, TradeResult, TradeType


def raw_trade(
    ts="1700000000",
    strategy="Buy",
    cost="5000000",
    received="10000000",
    amount="10000000",
    outcome=0,
    winning=None,
    decimals=6,
    tx="0xdead",
    **overrides,
) -> dict:
    """Build a raw portfolio trade in the current API shape."""
    market = {
        "id": "0xA",
        "title": "Will X happen?",
        "collateral": {"symbol": "USDC", "decimals": decimals},
    }
    if winning is not None:
        market["winningOutcomeIndex"] = winning
        market["closed"] = True
    record = {
        "blockTimestamp": ts,
        "market": market,
        "outcomeIndex": outcome,
        "outcomeTokenNetCost": cost,
        "outcomeTokenAmount": amount,
        "collateralAmount": received,
        "outcomeTokenPrice": "0.5",
        "strategy": strategy,
        "transactionHash": tx,
    }
    record.update(overrides)
    return record


def closed_trade(pnl: float, ts="2024-03-05T12:00:00.000Z", cost=10.0, **kw) -> Trade:
    """A canonical realized trade with the given P&L."""
    ret = cost + pnl
    kw.setdefault("type", TradeType.SELL_PROFIT if pnl > 0 else TradeType.SELL_STOP_LOSS)
    kw.setdefault("result", TradeResult.WON if pnl >= 0 else TradeResult.LOST)
    return Trade(
        timestamp=ts,
        cost_usdc=f"{cost:.2f}",
        return_usdc=f"{ret:.2f}",
        pnl_usdc=f"{pnl:.2f}",
        pnl_percent=f"{pnl / cost * 100:.2f}" if cost else "0.00",
        **kw,
    )


def open_trade(cost=10.0, ts="2024-03-05T12:00:00.000Z") -> Trade:
    return Trade(
        timestamp=ts,
        type=TradeType.BUY,
        cost_usdc=f"{cost:.2f}",
        investment_usdc=f"{cost:.2f}",
        strategy="Buy",
    )


def fixed_clock(year=2024, month=3, day=5, hour=15):
    instant = datetime(year, month, day, hour, 0, 0, tzinfo=timezone.utc)
    return lambda: instant


class MemoryBlobStore:
    """Dict-backed blob store that can be told to fail."""

    def __init__(self, initial: Optional[dict] = None):
        self.blobs: dict[str, bytes] = dict(initial or {})
        self.fail_get: set[str] = set()
        self.fail_put = False
        self.puts: list[str] = []

    async def get(self, key: str) -> Optional[bytes]:
        if key in self.fail_get:
            raise OSError(f"cannot read {key}")
        return self.blobs.get(key)

    async def put(self, key: str, data: bytes) -> None:
        if self.fail_put:
            raise OSError(f"cannot write {key}")
        self.puts.append(key)
        self.blobs[key] = data


class FakeSource:
    """Trade source returning canned payloads; set *_error to make a fetch raise."""

    def __init__(self):
        self.trades: Any = []
        self.positions: Any = []
        self.points: Any = None
        self.volume: Any = None
        self.trades_error: Optional[Exception] = None
        self.positions_error: Optional[Exception] = None
        self.points_error: Optional[Exception] = None
        self.volume_error: Optional[Exception] = None

    async def fetch_trades(self):
        if self.trades_error:
            raise self.trades_error
        return self.trades

    async def fetch_positions(self):
        if self.positions_error:
            raise self.positions_error
        return self.positions

    async def fetch_points(self):
        if self.points_error:
            raise self.points_error
        return self.points

    async def fetch_volume(self):
        if self.volume_error:
            raise self.volume_error
        return self.volume
