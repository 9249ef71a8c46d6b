"""Realized PnL — pure functions over the trade log.

Round trips are formed by pairing each ENTRY with the next EXIT in
chronological order.  Entries without a recorded price cannot be valued
and are skipped.
"""

from dataclasses import dataclass
from typing import Optional

from swaprunner.models.position import PendingKind, TradeLogEntry


@dataclass(frozen=True)
class RoundTrip:
    """One ENTRY → EXIT pair."""

    entry: TradeLogEntry
    exit: Optional[TradeLogEntry]
    pnl_base: Optional[float]  # None while the round trip is still open


def round_trip_pnl(amount_in: float, entry_rate: float, exit_rate: float) -> float:
    """Base-asset P&L of buying with *amount_in* and selling it all back."""
    if entry_rate <= 0:
        raise ValueError(f"entry_rate must be positive, got {entry_rate}")
    return (amount_in / entry_rate) * exit_rate - amount_in


def pair_round_trips(entries: list[TradeLogEntry], amount_in: float) -> list[RoundTrip]:
    """Pair ENTRY/EXIT events; a trailing ENTRY becomes an open round trip.

    An EXIT with no preceding ENTRY (log truncated by the cap) is ignored,
    as is a second ENTRY before an EXIT (the earlier one is superseded).
    """
    trips: list[RoundTrip] = []
    open_entry: Optional[TradeLogEntry] = None

    for e in sorted(entries, key=lambda x: x.t_ms):
        if e.kind == PendingKind.ENTRY:
            open_entry = e
            continue
        if open_entry is None:
            continue
        pnl = None
        if open_entry.price_base_per_target and e.price_base_per_target:
            pnl = round_trip_pnl(
                amount_in,
                open_entry.price_base_per_target,
                e.price_base_per_target,
            )
        trips.append(RoundTrip(entry=open_entry, exit=e, pnl_base=pnl))
        open_entry = None

    if open_entry is not None:
        trips.append(RoundTrip(entry=open_entry, exit=None, pnl_base=None))
    return trips


def summarize_pnl(
    entries: list[TradeLogEntry],
    amount_in: float,
    base_usd: Optional[float] = None,
) -> dict:
    """Compute realized PnL statistics from a trade log.

    Args:
        entries: Trade log, any order.
        amount_in: Base amount spent per entry.
        base_usd: Current USD price of the base asset (``1.0`` for the
            stable reference); ``None`` leaves the USD figure unset.

    Returns:
        Dict with ``round_trips``, ``winning``, ``losing``, ``win_rate``,
        ``realized_base``, ``realized_usd`` and ``open_position``.
    """
    trips = pair_round_trips(entries, amount_in)
    closed = [t.pnl_base for t in trips if t.exit is not None and t.pnl_base is not None]
    open_trip = next((t for t in trips if t.exit is None), None)

    winners = [p for p in closed if p > 0]
    realized = sum(closed)
    return {
        "round_trips": len(closed),
        "winning": len(winners),
        "losing": len(closed) - len(winners),
        "win_rate": round(len(winners) / len(closed), 4) if closed else 0.0,
        "realized_base": realized,
        "realized_usd": realized * base_usd if base_usd else None,
        "open_position": (
            {
                "entry_t": open_trip.entry.t_ms,
                "entry_price": open_trip.entry.price_base_per_target,
                "tx_hash": open_trip.entry.tx_hash,
            }
            if open_trip
            else None
        ),
    }
