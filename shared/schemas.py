"""Pydantic models for all data flowing through the pipeline.

Attributes are snake_case; the JSON files read by the dashboard use the
camelCase aliases, so serialize with ``by_alias=True``.
"""
from enum import Enum
from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, Field

UNKNOWN_MARKET = "Unknown Market"


def to_float(value: Any) -> Optional[float]:
    """Parse a numeric field, returning None when it is absent or garbage."""
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    if parsed != parsed or parsed in (float("inf"), float("-inf")):
        return None
    return parsed


def to_int(value: Any) -> Optional[int]:
    """Parse an integer field (int or numeric string); bools and garbage give None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


class TradeType(str, Enum):
    BUY = "BUY"
    SELL_PROFIT = "SELL_PROFIT"
    SELL_STOP_LOSS = "SELL_STOP_LOSS"
    REDEEM = "REDEEM"


CLOSED_TRADE_TYPES = frozenset(
    {TradeType.SELL_PROFIT, TradeType.SELL_STOP_LOSS, TradeType.REDEEM}
)


class TradeResult(str, Enum):
    WON = "WON"
    LOST = "LOST"


class Trade(BaseModel):
    """Canonical trade record written to trades.jsonl."""
    model_config = ConfigDict(populate_by_name=True)

    timestamp: str
    type: TradeType = TradeType.BUY
    wallet: str = ""
    market_address: str = Field("", alias="marketAddress")
    market_title: str = Field(UNKNOWN_MARKET, alias="marketTitle")
    outcome: Optional[int] = None
    outcome_price: Optional[str] = Field(None, alias="outcomePrice")
    investment_usdc: Optional[str] = Field(None, alias="investmentUSDC")
    cost_usdc: Optional[str] = Field(None, alias="costUSDC")
    return_usdc: Optional[str] = Field(None, alias="returnUSDC")
    pnl_usdc: Optional[str] = Field(None, alias="pnlUSDC")
    pnl_percent: Optional[str] = Field(None, alias="pnlPercent")
    strategy: Optional[str] = None
    tx_hash: str = Field("", alias="txHash")
    result: Optional[TradeResult] = None

    @property
    def pnl(self) -> Optional[float]:
        return to_float(self.pnl_usdc)

    @property
    def cost(self) -> Optional[float]:
        return to_float(self.cost_usdc)

    @property
    def is_closed(self) -> bool:
        return self.result is not None or self.type in CLOSED_TRADE_TYPES

    def to_json_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Statistics(BaseModel):
    """Aggregate over a trade collection, written to stats.json."""
    model_config = ConfigDict(populate_by_name=True)

    total_trades: int = Field(0, alias="totalTrades")
    profitable_trades: int = Field(0, alias="profitableTrades")
    losing_trades: int = Field(0, alias="losingTrades")
    total_profit_usdc: float = Field(0.0, alias="totalProfitUSDC")
    total_loss_usdc: float = Field(0.0, alias="totalLossUSDC")
    net_profit_usdc: float = Field(0.0, alias="netProfitUSDC")
    total_volume_usdc: float = Field(0.0, alias="totalVolumeUSDC")
    win_rate: str = Field("0%", alias="winRate")
    uptime_hours: str = Field("0.0", alias="uptimeHours")
    start_time: int = Field(0, alias="startTime")  # epoch ms
    last_updated: int = Field(0, alias="lastUpdated")  # epoch ms
    points: Optional[Any] = None
    traded_volume: Optional[Any] = Field(None, alias="tradedVolume")


class DailyBucket(BaseModel):
    """Rollup of all trades sharing a bucket key (a day or a week)."""
    model_config = ConfigDict(populate_by_name=True)

    date: str
    trades: int = 0
    wins: int = 0
    losses: int = 0
    profit_usdc: float = Field(0.0, alias="profitUSDC")
    loss_usdc: float = Field(0.0, alias="lossUSDC")
    net_profit_usdc: float = Field(0.0, alias="netProfitUSDC")
    volume_usdc: float = Field(0.0, alias="volumeUSDC")


class HistoryEntry(BaseModel):
    """One day's snapshot in a persisted time series.

    Unknown fields from older files are kept so a rewrite never drops data.
    """
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    date: str


class PointsHistoryEntry(HistoryEntry):
    season1: float = 0.0
    season2: float = 0.0
    current_month: float = Field(0.0, alias="currentMonth")
    volume: Optional[float] = None
    last_updated: str = Field("", alias="lastUpdated")


class VolumeHistoryEntry(HistoryEntry):
    volume: float = 0.0
    last_updated: str = Field("", alias="lastUpdated")


class Holding(BaseModel):
    """An open position as shown in state.json."""
    model_config = ConfigDict(populate_by_name=True)

    market_address: str = Field("", alias="marketAddress")
    market_title: str = Field(UNKNOWN_MARKET, alias="marketTitle")
    outcome_index: Optional[int] = Field(None, alias="outcomeIndex")
    token_id: Optional[str] = Field(None, alias="tokenId")
    amount: Optional[str] = "0"
    cost: Optional[str] = "0"
    strategy: str = "unknown"
    entry_price: Optional[str] = Field("0", alias="entryPrice")
    buy_timestamp: Optional[str] = Field(None, alias="buyTimestamp")
    market_deadline: Optional[Any] = Field(None, alias="marketDeadline")
    buy_tx_hash: str = Field("", alias="buyTxHash")


class RunStatus(str, Enum):
    OK = "ok"
    ERROR = "error"


class RunResult(BaseModel):
    """Outcome of one pipeline run."""
    model_config = ConfigDict(populate_by_name=True)

    status: RunStatus
    status_code: int = Field(200, alias="statusCode")
    message: str = ""
    trades: int = 0
    positions: int = 0
    stats: Optional[Statistics] = None
    error: Optional[str] = None
    finished_at: str = Field("", alias="finishedAt")

    @property
    def ok(self) -> bool:
        return self.status == RunStatus.OK
