"""Internal API routers — /status, /trades, /pnl, /state/reset, /stop endpoints.

No business logic, no DB access. Delegates to repos, the runner handle, and
shared state.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Query

from swaprunner.analytics.pnl import summarize_pnl
from swaprunner.chain.models import resolve_asset
from swaprunner.chain.networks import get_network

logger = logging.getLogger("swaprunner")
router = APIRouter()

# ── Shared state (set during app startup) ────────────────────────────────

_DEFAULT_STATUS: dict = {
    "mode": "idle",
    "running": False,
    "phase": "IDLE",
    "strategy": None,
    "last_price": None,
    "entry_price": None,
    "last_exit_price": None,
    "last_tx_hash": None,
    "message": None,
    "price_source": None,
    "updated_at": None,
}

_runner_status: dict = {**_DEFAULT_STATUS}
_error_history: list = []  # Recent runner errors (max 20 entries)

_handle = None            # Set via configure_routers()
_trade_log = None         # Set via configure_routers()
_state_repo = None        # Set via configure_routers()
_strategy = None          # Set via configure_routers()
_reference_prices = None  # Set via configure_routers()


def configure_routers(
    trade_log=None,
    state_repo=None,
    handle=None,
    strategy=None,
    reference_prices=None,
    status: Optional[dict] = None,
) -> None:
    """Inject dependencies from the application startup.

    Args:
        trade_log: A ``TradeLogRepo`` (or duck-type for tests).
        state_repo: A ``PositionStateRepo`` (or duck-type).
        handle: The ``RunnerHandle`` for control actions.
        strategy: The running ``Strategy``.
        reference_prices: A ``ReferencePriceService`` for USD PnL.
        status: Optional fields merged into the status dict.
    """
    global _handle, _trade_log, _state_repo, _strategy, _reference_prices  # noqa: PLW0603
    if handle is not None:
        trade_log = trade_log or handle.trade_log
        state_repo = state_repo or handle.state_repo
        strategy = strategy or handle.strategy
        reference_prices = reference_prices or handle.reference_prices
    _handle = handle
    _trade_log = trade_log
    _state_repo = state_repo
    _strategy = strategy
    _reference_prices = reference_prices
    _runner_status.clear()
    _runner_status.update(_DEFAULT_STATUS)
    _error_history.clear()
    if strategy is not None:
        _runner_status["strategy"] = strategy.key
    if status:
        _runner_status.update(status)


def update_runner_status(status: Optional[dict] = None, **fields) -> None:
    """Merge a runner status report into the shared status dict.

    Usable directly as ``RunnerCallbacks.on_status``.
    """
    if status:
        _runner_status.update(status)
    _runner_status.update(fields)
    _runner_status["updated_at"] = datetime.now(timezone.utc).isoformat()


def record_runner_error(error: dict) -> None:
    """Append a runner error to the ring buffer (max 20).

    Usable directly as ``RunnerCallbacks.on_error``.
    """
    _error_history.append({
        "message": error.get("message"),
        "details": error.get("details"),
        "at": datetime.now(timezone.utc).isoformat(),
    })
    if len(_error_history) > 20:
        del _error_history[0]


# ── Endpoints ────────────────────────────────────────────────────────────


@router.get("/status")
async def get_status():
    """Return the last reported runner status and recent errors."""
    return {
        **_runner_status,
        "last_error": _error_history[-1] if _error_history else None,
        "error_count": len(_error_history),
    }


@router.get("/errors")
async def get_errors(limit: int = Query(default=20, ge=1, le=20)):
    """Return recent runner errors, newest first."""
    recent = _error_history[-limit:]
    recent.reverse()
    return {"errors": recent}


@router.get("/trades")
async def get_trades(limit: int = Query(default=20, ge=1, le=500)):
    """Return recent trade log entries, newest first."""
    if _trade_log is None:
        return {"trades": [], "total": 0}
    return _trade_log.get_trades(limit=limit)


@router.delete("/trades")
async def clear_trades():
    """Drop the whole trade log."""
    if _trade_log is None:
        return {"cleared": False}
    _trade_log.clear()
    logger.info("Trade log cleared via API.")
    return {"cleared": True}


@router.get("/pnl")
async def get_pnl():
    """Return realized PnL from the trade log, in base units and USD."""
    if _trade_log is None or _strategy is None:
        return {"pnl": None}

    base_usd = None
    if _reference_prices is not None:
        network = get_network(_strategy.network)
        base = resolve_asset(network, _strategy.base_asset, _strategy.base_symbol)
        base_usd = await _reference_prices.get_usd_price(network, base)

    summary = summarize_pnl(
        _trade_log.read(),
        float(_strategy.amount_in_decimal),
        base_usd=base_usd,
    )
    return {"pnl": summary, "base_usd": base_usd}


@router.post("/state/reset")
async def reset_state():
    """Delete the persisted position record; refused while running."""
    if _state_repo is None:
        return {"reset": False, "error": "No state configured"}
    if _handle is not None and _handle.running:
        return {"reset": False, "error": "Stop the runner before resetting state"}
    _state_repo.reset()
    logger.warning("Position state reset via API.")
    update_runner_status(phase="IDLE", entry_price=None, last_exit_price=None,
                         last_tx_hash=None, message="State reset")
    return {"reset": True}


@router.post("/stop")
async def stop_runner():
    """Signal the runner to stop after its current tick."""
    if _handle is None:
        return {"stopped": False, "error": "No runner configured"}
    _handle.stop()
    return {"stopped": True}
