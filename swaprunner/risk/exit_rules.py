"""Entry / exit decision rules — pure math, no I/O.

All thresholds are percentages (e.g. ``2.0`` for 2 %).  Timestamps are
epoch milliseconds.
"""

from typing import Optional

DUST_THRESHOLD = 0.000001
ACTION_COOLDOWN_MS = 30_000
PENDING_TIMEOUT_MS = 300_000

# Tolerance, in percentage points, of every threshold comparison below.
PCT_EPSILON = 1e-9


def is_dust(balance: float, threshold: float = DUST_THRESHOLD) -> bool:
    """``True`` when *balance* is small enough to count as no holding."""
    return balance <= threshold


def profit_pct(rate: float, entry_price: float) -> float:
    """Unrealised profit of a long target position, in percent.

    Profit means the target became more expensive in base terms.
    """
    if entry_price <= 0:
        raise ValueError(f"entry_price must be positive, got {entry_price}")
    return (rate - entry_price) / entry_price * 100.0


def exit_reason(
    rate: float,
    entry_price: float,
    take_profit_pct: float,
    stop_loss_pct: float,
) -> Optional[str]:
    """Return ``"take_profit"``, ``"stop_loss"`` or ``None``.

    The stop-loss magnitude is used regardless of its sign.  Thresholds
    are inclusive within ``PCT_EPSILON``.
    """
    pct = profit_pct(rate, entry_price)
    if pct >= take_profit_pct - PCT_EPSILON:
        return "take_profit"
    if pct <= -abs(stop_loss_pct) + PCT_EPSILON:
        return "stop_loss"
    return None


def reentry_permitted(
    rate: float,
    last_exit_price: Optional[float],
    reentry_drop_pct: float,
) -> bool:
    """Entry gate: first entry always passes, later ones need a discount.

    Re-entry requires ``rate <= last_exit_price * (1 - drop/100)``, i.e. a
    drop of at least ``reentry_drop_pct`` within ``PCT_EPSILON``.
    """
    if not last_exit_price:
        return True
    drop = (last_exit_price - rate) / last_exit_price * 100.0
    return drop >= reentry_drop_pct - PCT_EPSILON


def in_cooldown(
    last_action_ms: Optional[int],
    now_ms: int,
    cooldown_ms: int = ACTION_COOLDOWN_MS,
) -> bool:
    """``True`` while the most recent submission is younger than the cooldown."""
    if last_action_ms is None:
        return False
    return now_ms - last_action_ms < cooldown_ms


def pending_expired(
    pending_since_ms: Optional[int],
    now_ms: int,
    timeout_ms: int = PENDING_TIMEOUT_MS,
) -> bool:
    """``True`` once a pending submission has waited past the timeout.

    A pending record without a timestamp (legacy / hand-edited state) is
    treated as expired so it cannot block the cycle forever.
    """
    if pending_since_ms is None:
        return True
    return now_ms - pending_since_ms > timeout_ms
