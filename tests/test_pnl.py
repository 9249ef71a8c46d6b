"""Tests for swaprunner.analytics — realized PnL from the trade log."""

import pytest

from swaprunner.analytics.pnl import pair_round_trips, round_trip_pnl, summarize_pnl
from swaprunner.models.position import PendingKind, TradeLogEntry


def _e(t: int, kind: str, price: float | None) -> TradeLogEntry:
    return TradeLogEntry(t, PendingKind(kind), f"0x{t}", price)


def test_round_trip_pnl_profit():
    # 100 base buys 1 target at 100, sold at 110
    assert round_trip_pnl(100.0, 100.0, 110.0) == pytest.approx(10.0)


def test_round_trip_pnl_loss():
    assert round_trip_pnl(50.0, 100.0, 98.0) == pytest.approx(-1.0)


def test_pairs_entries_with_next_exit():
    trips = pair_round_trips(
        [_e(1, "ENTRY", 100.0), _e(2, "EXIT", 102.0), _e(3, "ENTRY", 99.0)],
        amount_in=50.0,
    )
    assert len(trips) == 2
    assert trips[0].pnl_base == pytest.approx(1.0)
    assert trips[1].exit is None


def test_orphan_exit_is_ignored():
    trips = pair_round_trips([_e(1, "EXIT", 100.0), _e(2, "ENTRY", 100.0)], 10.0)
    assert len(trips) == 1
    assert trips[0].entry.t_ms == 2


def test_summary_counts_and_usd():
    entries = [
        _e(1, "ENTRY", 100.0), _e(2, "EXIT", 102.0),
        _e(3, "ENTRY", 100.0), _e(4, "EXIT", 98.0),
        _e(5, "ENTRY", 100.0), _e(6, "EXIT", 104.0),
    ]
    summary = summarize_pnl(entries, amount_in=50.0, base_usd=1.0)
    assert summary["round_trips"] == 3
    assert summary["winning"] == 2
    assert summary["losing"] == 1
    assert summary["win_rate"] == pytest.approx(0.6667)
    assert summary["realized_base"] == pytest.approx(2.0)
    assert summary["realized_usd"] == pytest.approx(2.0)
    assert summary["open_position"] is None


def test_summary_reports_open_position():
    summary = summarize_pnl([_e(1, "ENTRY", 100.0)], amount_in=50.0)
    assert summary["round_trips"] == 0
    assert summary["win_rate"] == 0.0
    assert summary["realized_usd"] is None
    assert summary["open_position"]["entry_price"] == 100.0


def test_unpriced_round_trip_is_not_counted():
    summary = summarize_pnl([_e(1, "ENTRY", None), _e(2, "EXIT", 101.0)], amount_in=50.0)
    assert summary["round_trips"] == 0
