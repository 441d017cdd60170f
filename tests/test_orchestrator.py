"""Tests for pipeline.orchestrator."""
import json

import pytest
from unittest.mock import patch
from helpers import fixed_clock, raw_trade

from pipeline.orchestrator import (
    DAILY_SUMMARY_KEY,
    OUTPUT_KEYS,
    POINTS_HIST_KEY,
    POINTS_HISTORY_KEY,
    STATE_KEY,
    STATS_KEY,
    TRADES_KEY,
    VOLUME_HISTORY_KEY,
    WEEKLY_SUMMARY_KEY,
    PipelineOrchestrator,
    format_state,
)
from shared.schemas import RunStatus


def _orchestrator(source, store, **kw):
    return PipelineOrchestrator(source, store, clock=fixed_clock(), **kw)


def _json(store, key):
    return json.loads(store.blobs[key])


def _sample_trades():
    return [
        raw_trade(ts="1709550000", strategy="Buy", cost="5000000", tx="0x1"),
        raw_trade(ts="1709636400", strategy="Redeem", cost="5000000", received="10000000", tx="0x2"),
        raw_trade(ts="1709640000", strategy="Sell", cost="5000000", received="4000000", tx="0x3"),
    ]


@pytest.mark.asyncio
async def test_run_writes_all_outputs(source, store):
    source.trades = _sample_trades()
    source.points = {"season1": 100, "season2": 20, "currentMonth": 5}
    source.volume = {"total": 250}

    result = await _orchestrator(source, store).run()

    assert result.status == RunStatus.OK
    assert result.status_code == 200
    assert result.message == "Trade files generated successfully"
    assert result.trades == 3
    assert set(store.blobs) == set(OUTPUT_KEYS)

    stats = _json(store, STATS_KEY)
    assert stats["totalTrades"] == 2
    assert stats["profitableTrades"] == 1
    assert stats["losingTrades"] == 1
    assert stats["netProfitUSDC"] == pytest.approx(4.0)
    assert stats["winRate"] == "50.0%"
    assert stats["points"] == source.points
    assert stats["tradedVolume"] == {"total": 250}


@pytest.mark.asyncio
async def test_trades_jsonl_newest_first(source, store):
    source.trades = _sample_trades()
    await _orchestrator(source, store).run()

    lines = store.blobs[TRADES_KEY].decode().split("\n")
    records = [json.loads(line) for line in lines]
    assert [r["txHash"] for r in records] == ["0x3", "0x2", "0x1"]
    assert records[1]["type"] == "REDEEM"
    assert records[1]["pnlUSDC"] == "5.00"
    assert "pnlUSDC" not in records[2]


@pytest.mark.asyncio
async def test_trade_fetch_failure_writes_nothing(source, store):
    source.trades_error = RuntimeError("upstream down")

    result = await _orchestrator(source, store).run()

    assert result.status == RunStatus.ERROR
    assert result.status_code == 500
    assert result.error == "upstream down"
    assert store.puts == []


@pytest.mark.asyncio
async def test_non_list_trades_is_an_error(source, store):
    source.trades = {"oops": True}
    result = await _orchestrator(source, store).run()
    assert not result.ok
    assert store.puts == []


@pytest.mark.asyncio
async def test_optional_fetch_failures_degrade(source, store):
    source.trades = _sample_trades()
    source.positions_error = RuntimeError("positions down")
    source.points_error = RuntimeError("points down")
    source.volume_error = RuntimeError("volume down")

    result = await _orchestrator(source, store).run()

    assert result.ok
    assert set(store.blobs) == set(OUTPUT_KEYS)
    assert _json(store, STATE_KEY) == {}
    stats = _json(store, STATS_KEY)
    assert stats["points"] is None
    # 3 trades at 5.00 each
    assert stats["tradedVolume"] == {"total": 15.0}
    assert _json(store, POINTS_HIST_KEY) == []
    volume = _json(store, VOLUME_HISTORY_KEY)
    assert volume[0]["date"] == "2024-03-05"
    assert volume[0]["volume"] == 15.0


@pytest.mark.asyncio
async def test_write_failure_reported(source, store):
    source.trades = _sample_trades()
    store.fail_put = True
    result = await _orchestrator(source, store).run()
    assert result.status_code == 500
    assert result.message == "Error writing trade files"


@pytest.mark.asyncio
async def test_history_rerun_is_idempotent(source, store):
    source.trades = _sample_trades()
    source.points = {"season1": 1, "season2": 2, "currentMonth": 3}
    source.volume = 42

    orchestrator = _orchestrator(source, store)
    await orchestrator.run()
    first = {k: store.blobs[k] for k in (POINTS_HIST_KEY, POINTS_HISTORY_KEY, VOLUME_HISTORY_KEY)}
    await orchestrator.run()
    for key, blob in first.items():
        assert store.blobs[key] == blob

    points_hist = _json(store, POINTS_HIST_KEY)
    assert points_hist == [{
        "date": "2024-03-05",
        "season1": 1.0,
        "season2": 2.0,
        "currentMonth": 3.0,
        "volume": 42.0,
        "lastUpdated": "2024-03-05T15:00:00.000Z",
    }]


@pytest.mark.asyncio
async def test_history_keeps_previous_days(source, store):
    store.blobs[POINTS_HISTORY_KEY] = json.dumps([
        {"date": "2024-03-03", "season1": 1, "season2": 0, "currentMonth": 0, "lastUpdated": "a"},
        {"date": "2024-03-04", "season1": 2, "season2": 0, "currentMonth": 0, "lastUpdated": "b"},
    ]).encode()
    store.blobs[VOLUME_HISTORY_KEY] = b"not json"
    source.points = {"season1": 3}

    await _orchestrator(source, store).run()

    points = _json(store, POINTS_HISTORY_KEY)
    assert [p["date"] for p in points] == ["2024-03-05", "2024-03-04", "2024-03-03"]
    assert [v["date"] for v in _json(store, VOLUME_HISTORY_KEY)] == ["2024-03-05"]


@pytest.mark.asyncio
async def test_missing_points_keeps_todays_entry(source, store):
    existing = [{"date": "2024-03-05", "season1": 7.0, "season2": 0.0,
                 "currentMonth": 0.0, "lastUpdated": "earlier"}]
    store.blobs[POINTS_HIST_KEY] = json.dumps(existing).encode()
    source.points_error = RuntimeError("points down")

    await _orchestrator(source, store).run()

    assert _json(store, POINTS_HIST_KEY) == existing


@pytest.mark.asyncio
async def test_unreadable_history_starts_fresh(source, store):
    store.fail_get.add(VOLUME_HISTORY_KEY)
    result = await _orchestrator(source, store).run()
    assert result.ok
    assert len(_json(store, VOLUME_HISTORY_KEY)) == 1


@pytest.mark.asyncio
async def test_summaries(source, store):
    source.trades = _sample_trades()
    await _orchestrator(source, store).run()

    weekly = _json(store, WEEKLY_SUMMARY_KEY)
    assert [w["weekStart"] for w in weekly] == ["2024-03-04"]
    assert weekly[0]["trades"] == 2
    daily = _json(store, DAILY_SUMMARY_KEY)
    assert [d["date"] for d in daily] == ["Mar 5", "Mar 4"]
    assert daily[0]["wins"] == 1 and daily[0]["losses"] == 1


@pytest.mark.asyncio
async def test_empty_trade_list(source, store):
    result = await _orchestrator(source, store).run()
    assert result.ok
    assert store.blobs[TRADES_KEY] == b""
    assert _json(store, STATS_KEY)["winRate"] == "0%"
    assert _json(store, WEEKLY_SUMMARY_KEY) == []


def test_format_state():
    assert format_state([]) == {}
    state = format_state([{
        "marketAddress": "0xM",
        "title": "Market",
        "outcomeIndex": 1,
        "tokenId": 123,
        "amount": "10",
        "cost": "4.5",
        "strategy": "Buy",
        "buyTimestamp": "2024-03-01T00:00:00.000Z",
    }, "junk"])
    holdings = state["wallet1"]["holdings"]
    assert len(holdings) == 1
    assert holdings[0]["marketAddress"] == "0xM"
    assert holdings[0]["marketTitle"] == "Market"
    assert holdings[0]["tokenId"] == "123"
    assert holdings[0]["outcomeIndex"] == 1


@pytest.mark.asyncio
async def test_compute_failure_returns_error_and_writes_nothing(source, store):
    source.trades = _sample_trades()
    with patch("pipeline.orchestrator.normalize_trades", side_effect=ValueError("bad record")):
        result = await _orchestrator(source, store).run()

    assert result.status == RunStatus.ERROR
    assert result.status_code == 500
    assert result.message == "Error generating trade files"
    assert result.error == "bad record"
    assert store.puts == []


@pytest.mark.asyncio
async def test_out_of_range_amounts_do_not_abort_run(source, store):
    source.trades = [
        {"strategy": "Buy", "outcomeTokenNetCost": "1e40"},
        {"strategy": "Sell", "outcomeTokenNetCost": "1e40", "collateralAmount": "1"},
        raw_trade(strategy="Redeem", decimals=1000000),
    ]
    result = await _orchestrator(source, store).run()

    assert result.ok
    assert result.trades == 3
    assert _json(store, STATS_KEY)["totalTrades"] == 1


def test_format_state_coerces_outcome_index():
    state = format_state([
        {"marketAddress": "0x1", "outcomeIndex": "1"},
        {"marketAddress": "0x2", "outcome_index": True},
        {"marketAddress": "0x3", "outcomeIndex": "yes"},
    ])
    holdings = state["wallet1"]["holdings"]
    assert [h["outcomeIndex"] for h in holdings] == [1, None, None]
