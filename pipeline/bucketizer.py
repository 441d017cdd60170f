"""Group canonical trades into per-day or per-week rollups."""
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Callable, Iterable, Optional

from pipeline.aggregator import Outcome, classify_outcome, is_closed
from shared.schemas import DailyBucket, Trade, to_float
from shared.time_utils import parse_timestamp

INVALID_DATE = "Invalid Date"

MONTH_ABBR = (
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
)

KeyFn = Callable[[datetime], str]


def daily_key(ts: datetime) -> str:
    """Short day label, e.g. "Nov 14"."""
    return f"{MONTH_ABBR[ts.month - 1]} {ts.day}"


def weekly_key(ts: datetime) -> str:
    """ISO date of the Monday starting the trade's week."""
    return (ts.date() - timedelta(days=ts.weekday())).isoformat()


def _volume(trade: Trade) -> float:
    cost = trade.cost
    if cost is None:
        cost = to_float(trade.investment_usdc)
    returned = to_float(trade.return_usdc)
    return max(cost or 0.0, returned or 0.0)


def bucketize(
    trades: Iterable[Trade],
    key_fn: KeyFn,
    tz: tzinfo = timezone.utc,
) -> list[DailyBucket]:
    """Roll trades up by ``key_fn`` and return buckets, most recent first.

    ``key_fn`` receives each trade's timestamp converted to ``tz``. Trades
    whose timestamp does not parse land in an "Invalid Date" bucket, sorted
    last. Every trade counts toward volume; only closed trades count toward
    trades, wins, losses and P&L.
    """
    buckets: dict[str, DailyBucket] = {}
    latest: dict[str, Optional[datetime]] = {}

    for trade in trades:
        ts = parse_timestamp(trade.timestamp)
        key = key_fn(ts.astimezone(tz)) if ts is not None else INVALID_DATE

        bucket = buckets.get(key)
        if bucket is None:
            bucket = buckets[key] = DailyBucket(date=key)
            latest[key] = ts
        elif ts is not None and (latest[key] is None or ts > latest[key]):
            latest[key] = ts

        bucket.volume_usdc += _volume(trade)

        if not is_closed(trade):
            continue
        bucket.trades += 1
        pnl = abs(trade.pnl or 0.0)
        outcome = classify_outcome(trade)
        if outcome == Outcome.WIN:
            bucket.wins += 1
            bucket.profit_usdc += pnl
        elif outcome == Outcome.LOSS:
            bucket.losses += 1
            bucket.loss_usdc += pnl

    for bucket in buckets.values():
        bucket.profit_usdc = round(bucket.profit_usdc, 2)
        bucket.loss_usdc = round(bucket.loss_usdc, 2)
        bucket.net_profit_usdc = round(bucket.profit_usdc - bucket.loss_usdc, 2)
        bucket.volume_usdc = round(bucket.volume_usdc, 2)

    def sort_key(key: str) -> float:
        ts = latest[key]
        return ts.timestamp() if ts is not None else float("-inf")

    return [buckets[key] for key in sorted(buckets, key=sort_key, reverse=True)]


def bucket_rows(buckets: list[DailyBucket], key_name: str = "date") -> list[dict]:
    """Serialize buckets, renaming the label field (weekly files use weekStart)."""
    rows = []
    for bucket in buckets:
        data = bucket.model_dump(by_alias=True)
        row = {key_name: data.pop("date")}
        row.update(data)
        rows.append(row)
    return rows
