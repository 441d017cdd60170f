"""One pipeline run: fetch, normalize, aggregate, bucketize, merge history, write."""
import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Protocol

from pipeline.aggregator import aggregate
from pipeline.bucketizer import bucket_rows, bucketize, daily_key, weekly_key
from pipeline.history import (
    dump_history,
    extract_volume,
    load_history,
    merge_history,
    points_entry,
    volume_entry,
)
from pipeline.normalizer import first_present, normalize_trades
from shared.schemas import (
    Holding,
    PointsHistoryEntry,
    RunResult,
    RunStatus,
    Statistics,
    Trade,
    UNKNOWN_MARKET,
    VolumeHistoryEntry,
    to_int,
)
from shared.time_utils import now_utc, parse_timestamp, resolve_timezone, to_iso
from storage.blob_store import BlobStore

logger = logging.getLogger(__name__)

TRADES_KEY = "trades.jsonl"
STATS_KEY = "stats.json"
STATE_KEY = "state.json"
POINTS_HIST_KEY = "points_hist.json"
POINTS_HISTORY_KEY = "points-history.json"
VOLUME_HISTORY_KEY = "volume-history.json"
WEEKLY_SUMMARY_KEY = "weekly_summary.json"
DAILY_SUMMARY_KEY = "daily_summary.json"

OUTPUT_KEYS = (
    TRADES_KEY, STATS_KEY, STATE_KEY, POINTS_HIST_KEY, POINTS_HISTORY_KEY,
    VOLUME_HISTORY_KEY, WEEKLY_SUMMARY_KEY, DAILY_SUMMARY_KEY,
)


class TradeSource(Protocol):
    """Raw data collaborator. Only fetch_trades is required to succeed."""

    async def fetch_positions(self) -> list[dict]: ...

    async def fetch_trades(self) -> list[dict]: ...

    async def fetch_points(self) -> Optional[dict]: ...

    async def fetch_volume(self) -> Optional[Any]: ...


def format_trades_jsonl(trades: list[Trade]) -> str:
    return "\n".join(json.dumps(t.to_json_dict()) for t in trades)


def format_state(positions: list[dict]) -> dict:
    """Shape open positions as {"wallet1": {"holdings": [...]}}, or {} if none."""
    holdings = []
    for p in positions:
        if not isinstance(p, dict):
            continue
        outcome_index = first_present(p, "outcomeIndex", "outcome_index")
        token_id = first_present(p, "tokenId", "token_id")
        holding = Holding(
            market_address=str(first_present(p, "marketAddress", "market_address", default="")),
            market_title=str(first_present(
                p, "marketTitle", "market_title", "title", default=UNKNOWN_MARKET
            )),
            outcome_index=to_int(outcome_index),
            token_id=str(token_id) if token_id is not None else None,
            amount=str(first_present(p, "amount", "balance", default="0")),
            cost=str(first_present(p, "cost", "investment", default="0")),
            strategy=str(first_present(p, "strategy", default="unknown")),
            entry_price=str(first_present(p, "entryPrice", "entry_price", "price", default="0")),
            buy_timestamp=str(first_present(
                p, "buyTimestamp", "created_at", default=to_iso(now_utc())
            )),
            market_deadline=first_present(p, "marketDeadline", "deadline"),
            buy_tx_hash=str(first_present(p, "txHash", "transaction_hash", default="")),
        )
        holdings.append(holding.model_dump(mode="json", by_alias=True))
    if not holdings:
        return {}
    return {"wallet1": {"holdings": holdings}}


def _sort_newest_first(trades: list[Trade]) -> list[Trade]:
    floor = datetime.min.replace(tzinfo=timezone.utc)
    return sorted(
        trades,
        key=lambda t: parse_timestamp(t.timestamp) or floor,
        reverse=True,
    )


class PipelineOrchestrator:
    """Runs the pipeline against an injected data source and blob store."""

    def __init__(
        self,
        source: TradeSource,
        store: BlobStore,
        history_max_days: int = 90,
        report_timezone: str = "UTC",
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.source = source
        self.store = store
        self.history_max_days = history_max_days
        self.tz = resolve_timezone(report_timezone)
        self.clock = clock or now_utc

    async def _optional(self, name: str, fetch: Callable[[], Awaitable[Any]], fallback: Any):
        try:
            return await fetch()
        except Exception as e:
            logger.warning(
                f"Optional fetch failed, continuing without it: {e}",
                extra={"fetch": name},
            )
            return fallback

    async def _read_history(self, key: str, entry_type):
        try:
            blob = await self.store.get(key)
        except Exception as e:
            logger.warning(f"Could not read history, starting fresh: {e}", extra={"key": key})
            return []
        if blob is None:
            logger.info("No existing history found, starting fresh", extra={"key": key})
        return load_history(blob, entry_type)

    def _error(self, message: str, error: Exception) -> RunResult:
        return RunResult(
            status=RunStatus.ERROR,
            status_code=500,
            message=message,
            error=str(error) or type(error).__name__,
            finished_at=to_iso(self.clock()),
        )

    async def run(self) -> RunResult:
        logger.info("Starting trade file generation")
        try:
            raw_trades = await self.source.fetch_trades()
        except Exception as e:
            logger.error(f"Trade fetch failed, aborting run: {e}")
            return self._error("Error generating trade files", e)
        if not isinstance(raw_trades, list):
            return self._error(
                "Error generating trade files",
                TypeError(f"fetch_trades returned {type(raw_trades).__name__}"),
            )

        positions, points, volume = await asyncio.gather(
            self._optional("positions", self.source.fetch_positions, []),
            self._optional("points", self.source.fetch_points, None),
            self._optional("volume", self.source.fetch_volume, None),
        )
        if not isinstance(positions, list):
            positions = []

        try:
            trades, stats, outputs = await self._build_outputs(raw_trades, positions, points, volume)
        except Exception as e:
            logger.exception(f"Building output files failed, aborting run: {e}")
            return self._error("Error generating trade files", e)

        try:
            await asyncio.gather(*(
                self.store.put(key, content.encode("utf-8"))
                for key, content in outputs.items()
            ))
        except Exception as e:
            logger.error(f"Writing output files failed: {e}")
            return self._error("Error writing trade files", e)

        logger.info(
            "Successfully wrote all files",
            extra={
                "trades": len(trades),
                "positions": len(positions),
                "closed": stats.total_trades,
                "win_rate": stats.win_rate,
            },
        )
        return RunResult(
            status=RunStatus.OK,
            status_code=200,
            message="Trade files generated successfully",
            trades=len(trades),
            positions=len(positions),
            stats=stats,
            finished_at=to_iso(self.clock()),
        )

    async def _build_outputs(self, raw_trades: list, positions: list, points: Any,
                             volume: Any) -> tuple[list[Trade], Statistics, dict[str, str]]:
        """Compute every output file's content; nothing is written here."""
        now = self.clock()
        today = now.astimezone(self.tz).date().isoformat()

        trades = _sort_newest_first(normalize_trades(raw_trades, now=now))
        stats = self._build_stats(trades, points, volume, now)
        state = format_state(positions)
        daily = bucketize(trades, daily_key, tz=self.tz)
        weekly = bucketize(trades, weekly_key, tz=self.tz)

        total_volume = _total_volume(volume, stats)
        # Without a points payload, keep whatever today's entry already holds
        have_points = points is not None
        points_hist = merge_history(
            await self._read_history(POINTS_HIST_KEY, PointsHistoryEntry),
            points_entry(points, today, now, volume=total_volume) if have_points else None,
        )
        points_history = merge_history(
            await self._read_history(POINTS_HISTORY_KEY, PointsHistoryEntry),
            points_entry(points, today, now) if have_points else None,
            descending=True,
            max_entries=self.history_max_days,
        )
        volume_history = merge_history(
            await self._read_history(VOLUME_HISTORY_KEY, VolumeHistoryEntry),
            volume_entry(total_volume, today, now),
            descending=True,
            max_entries=self.history_max_days,
        )

        outputs = {
            TRADES_KEY: format_trades_jsonl(trades),
            STATS_KEY: json.dumps(stats.model_dump(mode="json", by_alias=True), indent=2),
            STATE_KEY: json.dumps(state, indent=2),
            POINTS_HIST_KEY: dump_history(points_hist),
            POINTS_HISTORY_KEY: dump_history(points_history),
            VOLUME_HISTORY_KEY: dump_history(volume_history),
            WEEKLY_SUMMARY_KEY: json.dumps(bucket_rows(weekly, key_name="weekStart"), indent=2),
            DAILY_SUMMARY_KEY: json.dumps(bucket_rows(daily), indent=2),
        }
        return trades, stats, outputs

    def _build_stats(self, trades: list[Trade], points: Any, volume: Any,
                     now: datetime) -> Statistics:
        stats = aggregate(trades, now=now)
        stats.points = points
        stats.traded_volume = volume if volume is not None else {"total": stats.total_volume_usdc}
        return stats


def _total_volume(volume: Any, stats: Statistics) -> float:
    """Traded volume for the history files: the API total, else the trade-derived one."""
    if volume is None:
        return stats.total_volume_usdc
    return extract_volume(volume)
