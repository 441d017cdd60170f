"""Merge today's snapshot into a persisted daily time series.

A history file holds at most one entry per calendar date. Each run
overwrites today's entry (or appends it), re-sorts, and optionally caps the
series, so repeating a run on the same day with the same metrics leaves the
file unchanged.
"""
import json
import logging
from datetime import datetime
from typing import Any, Optional, Sequence, TypeVar, Union

from pydantic import ValidationError

from shared.schemas import HistoryEntry, PointsHistoryEntry, VolumeHistoryEntry, to_float
from shared.time_utils import to_iso

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=HistoryEntry)


def load_history(blob: Optional[Union[bytes, str]], entry_type: type[E]) -> list[E]:
    """Parse a stored history blob, treating missing or corrupt data as empty."""
    if blob is None:
        return []
    try:
        data = json.loads(blob)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.warning(f"Corrupt history blob, starting fresh: {e}")
        return []
    if not isinstance(data, list):
        logger.warning(
            "History blob is not a list, starting fresh",
            extra={"found": type(data).__name__},
        )
        return []

    entries = []
    for item in data:
        if not isinstance(item, dict) or not isinstance(item.get("date"), str):
            continue
        try:
            entries.append(entry_type.model_validate(item))
        except ValidationError as e:
            logger.warning(
                "Dropping invalid history entry",
                extra={"date": item.get("date"), "errors": e.error_count()},
            )
    return entries


def merge_history(
    existing: Sequence[E],
    today_entry: Optional[E],
    descending: bool = False,
    max_entries: Optional[int] = None,
) -> list[E]:
    """Replace or append ``today_entry`` by date, sort, and optionally cap.

    Duplicate dates already present in ``existing`` collapse to their last
    occurrence. The cap keeps the most recent ``max_entries`` dates. With no
    ``today_entry`` the existing series is only deduplicated, sorted and capped.
    """
    by_date: dict[str, E] = {}
    for entry in existing:
        by_date[entry.date] = entry
    if today_entry is not None:
        by_date[today_entry.date] = today_entry

    merged = [by_date[d] for d in sorted(by_date)]
    if max_entries is not None and max_entries >= 0:
        merged = merged[-max_entries:] if max_entries else []
    if descending:
        merged.reverse()
    return merged


def dump_history(entries: Sequence[HistoryEntry]) -> str:
    return json.dumps(
        [e.model_dump(mode="json", by_alias=True, exclude_none=True) for e in entries],
        indent=2,
    )


def _nested(payload: Any, key: str) -> Any:
    """Look up ``key`` at the top level of a payload, then under ``data``."""
    if not isinstance(payload, dict):
        return None
    if payload.get(key) is not None:
        return payload[key]
    data = payload.get("data")
    if isinstance(data, dict):
        return data.get(key)
    return None


def extract_points(payload: Any) -> tuple[float, float, float]:
    """Return (season1, season2, currentMonth) from a points payload."""
    return tuple(
        to_float(_nested(payload, key)) or 0.0
        for key in ("season1", "season2", "currentMonth")
    )


def extract_volume(payload: Any) -> float:
    """Pull a total traded volume out of the shapes the volume endpoint has used."""
    direct = to_float(payload)
    if direct is not None:
        return direct
    if not isinstance(payload, dict):
        return 0.0
    for key in ("total", "totalVolume", "volume", "data"):
        value = payload.get(key)
        if value is None:
            continue
        nested = to_float(value)
        if nested is not None:
            return nested
        if isinstance(value, dict):
            return extract_volume(value)
    return 0.0


def points_entry(
    payload: Any,
    today: str,
    now: datetime,
    volume: Optional[float] = None,
) -> PointsHistoryEntry:
    season1, season2, current_month = extract_points(payload)
    return PointsHistoryEntry(
        date=today,
        season1=season1,
        season2=season2,
        current_month=current_month,
        volume=volume,
        last_updated=to_iso(now),
    )


def volume_entry(payload: Any, today: str, now: datetime) -> VolumeHistoryEntry:
    return VolumeHistoryEntry(
        date=today,
        volume=extract_volume(payload),
        last_updated=to_iso(now),
    )
