"""SwapRunner — position engine (state machine + polling loop).

Each tick reads the persisted position record, observes the target balance,
resolves a price when a decision needs one, and evaluates exactly one phase
transition.  The persisted record is the only source of truth; the status
dict reported to the host is rebuilt from it every tick.
"""

import asyncio
import logging
import traceback
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from swaprunner.chain.models import SwapDirection, TxHandle, resolve_asset
from swaprunner.chain.networks import get_network
from swaprunner.errors import PendingTimeout, PersistenceError, SubmissionError
from swaprunner.models.position import (
    PendingKind,
    PersistedPositionState,
    Phase,
    RunnerCallbacks,
    RunnerStatus,
    TradeLogEntry,
)
from swaprunner.models.strategy import Strategy
from swaprunner.pricing.oracle import PriceQuote
from swaprunner.repos.state_repo import PositionStateRepo
from swaprunner.repos.trade_log_repo import TradeLogRepo
from swaprunner.risk.exit_rules import (
    exit_reason,
    in_cooldown,
    is_dust,
    pending_expired,
    profit_pct,
    reentry_permitted,
)

logger = logging.getLogger("swaprunner")

_ERROR_SAVE_ATTEMPTS = 3


class RunnerEngine:
    """Drives one strategy through WAIT_ENTRY → ENTERING → HOLDING → EXITING.

    Args:
        strategy: Immutable trading parameters.
        rpc: A ``JsonRpcClient`` (or duck-type exposing ``get_token_balance``).
        oracle: A ``PriceOracle`` (or duck-type).
        executor: A ``SwapExecutor``; its ``owner_address`` is observed.
        state_repo: Persisted position record for this strategy.
        trade_log: Confirmed trade history for this strategy.
        callbacks: Host hooks; ``None`` for headless use.
    """

    def __init__(
        self,
        strategy: Strategy,
        rpc,
        oracle,
        executor,
        state_repo: PositionStateRepo,
        trade_log: TradeLogRepo,
        callbacks: Optional[RunnerCallbacks] = None,
    ) -> None:
        self._strategy = strategy
        self._rpc = rpc
        self._oracle = oracle
        self._executor = executor
        self._state_repo = state_repo
        self._trade_log = trade_log
        self._callbacks = callbacks

        network = get_network(strategy.network)
        self._base = resolve_asset(network, strategy.base_asset, strategy.base_symbol)
        self._target = resolve_asset(network, strategy.target_asset, strategy.target_symbol)

        self._status = RunnerStatus(running=False)
        self._last_saved: Optional[PersistedPositionState] = None
        self._tick_lock = asyncio.Lock()
        self._running: bool = False
        self._stopped: bool = False
        self._cycle_count: int = 0

    @property
    def strategy(self) -> Strategy:
        return self._strategy

    @property
    def state_repo(self) -> PositionStateRepo:
        return self._state_repo

    @property
    def trade_log(self) -> TradeLogRepo:
        return self._trade_log

    @property
    def running(self) -> bool:
        return self._running

    @property
    def cycle_count(self) -> int:
        return self._cycle_count

    @property
    def status(self) -> dict:
        """Snapshot of the last reported status."""
        return self._status.to_dict()

    # ── Lifecycle ────────────────────────────────────────────────────────

    async def initialize(self) -> None:
        """Load the persisted record and report the initial status."""
        try:
            state = self._state_repo.load()
            self._sync_status(state)
            self._status.message = "Runner started"
        except PersistenceError as exc:
            logger.error("Failed to read persisted state on start: %s", exc)
            self._status.message = f"State unreadable: {exc}"
        self._running = True
        self._status.running = True
        self._emit_status()

    def stop(self) -> None:
        """Stop after the current tick and report IDLE immediately.

        An in-flight tick is allowed to finish so a submitted transaction's
        hash always reaches the persisted record; its status reports are
        suppressed.
        """
        self._running = False
        self._stopped = True
        self._status = RunnerStatus(running=False, phase=Phase.IDLE, message="Stopped")
        if self._callbacks is not None:
            self._safe_callback(self._callbacks.on_status, self._status.to_dict())

    # ── Polling loop ─────────────────────────────────────────────────────

    async def run(
        self,
        poll_interval: int | None = None,
        max_cycles: int = 0,
    ) -> list[dict]:
        """Run ticks until stopped.

        The next tick is scheduled ``poll_interval`` seconds after the
        previous one *finishes*, so ticks never overlap and an overrunning
        tick delays the schedule instead of queueing catch-up ticks.

        Args:
            poll_interval: Seconds between ticks. Defaults to the strategy's.
            max_cycles: Stop after this many ticks (0 = unlimited).

        Returns:
            List of per-tick result dicts.
        """
        if poll_interval is None:
            poll_interval = self._strategy.poll_seconds
        if not self._running and not self._stopped:
            await self.initialize()

        results: list[dict] = []
        cycle = 0

        while self._running:
            cycle += 1
            result = await self.tick()
            results.append(result)
            logger.info("Tick %d: %s", cycle, result.get("action", "unknown"))

            if max_cycles > 0 and cycle >= max_cycles:
                break

            # Interruptible sleep, checks _running every second
            for _ in range(poll_interval):
                if not self._running:
                    break
                await asyncio.sleep(1)

        return results

    # ── Single tick ──────────────────────────────────────────────────────

    async def tick(self, utc_now: Optional[datetime] = None) -> dict:
        """Evaluate one transition; never raises for ordinary faults.

        Returns a dict describing what happened, e.g.
        ``{"action": "entry_submitted", ...}``, ``{"action": "holding", ...}``
        or ``{"action": "error", "reason": "..."}``.

        Args:
            utc_now: Current UTC datetime.  Defaults to ``datetime.now(UTC)``.
        """
        if self._tick_lock.locked():
            logger.warning("Tick requested while another is in flight — skipped")
            return {"action": "skipped", "reason": "tick_in_flight"}

        async with self._tick_lock:
            if utc_now is None:
                utc_now = datetime.now(timezone.utc)
            now_ms = int(utc_now.timestamp() * 1000)
            self._cycle_count += 1
            self._last_saved = None
            try:
                state = self._state_repo.load()
                self._last_saved = state
                self._sync_status(state)
                return await self._evaluate(state, now_ms)
            except Exception as exc:
                return self._handle_fault(exc)

    async def _evaluate(self, state: PersistedPositionState, now_ms: int) -> dict:
        balance = await self._rpc.get_token_balance(
            self._target, self._executor.owner_address,
        )
        holding = not is_dust(float(balance))
        phase = state.effective_phase

        # Pending phases are decided by balance alone.
        if phase == Phase.ENTERING:
            return self._on_entering(state, holding, now_ms)
        if phase == Phase.EXITING:
            return self._on_exiting(state, holding, now_ms)

        quote: PriceQuote = await self._oracle.price_base_per_target(self._strategy)
        self._status.last_price = quote.rate
        self._status.price_source = quote.source

        if phase == Phase.HOLDING:
            return await self._on_holding(state, holding, balance, quote, now_ms)
        return await self._on_wait_entry(state, holding, quote, now_ms)

    # ── Phase handlers ───────────────────────────────────────────────────

    async def _on_wait_entry(
        self,
        state: PersistedPositionState,
        holding: bool,
        quote: PriceQuote,
        now_ms: int,
    ) -> dict:
        rate = quote.rate
        if holding:
            # Target already held without a matching phase: adopt it.
            entry = state.entry_price or rate
            self._commit(
                state.cleared_pending(phase=Phase.HOLDING, entry_price=entry),
                "Existing target balance adopted as position",
            )
            return {"action": "adopted", "entry_price": entry}

        idle = state.cleared_pending(phase=Phase.WAIT_ENTRY, entry_price=None)
        s = self._strategy
        if not reentry_permitted(rate, state.last_exit_price, s.reentry_drop_pct):
            threshold = state.last_exit_price * (1 - s.reentry_drop_pct / 100.0)
            self._commit(idle, f"Waiting for cheaper price (≤ {threshold:.10g})")
            return {"action": "waiting", "reason": "reentry_discount", "price": rate}

        if in_cooldown(state.last_action_ms, now_ms):
            self._commit(idle, "Entry condition met — cooling down")
            return {"action": "skipped", "reason": "cooldown", "price": rate}

        # Cooldown marker first: a crash mid-submission still blocks a
        # second submission on restart.
        marked = replace(idle, last_action_ms=now_ms)
        self._save(marked)
        handle = await self._submit(SwapDirection.BUY, s.amount_in_decimal)

        self._commit_submission(
            replace(
                marked,
                phase=Phase.ENTERING,
                entry_price=rate,
                last_tx_hash=handle.hash,
                pending_since_ms=now_ms,
                pending_kind=PendingKind.ENTRY,
                pending_tx_hash=handle.hash,
                pending_price_at_submission=rate,
            ),
            self._with_source("Entry submitted", quote),
        )
        return {"action": "entry_submitted", "tx_hash": handle.hash, "price": rate}

    def _on_entering(
        self,
        state: PersistedPositionState,
        holding: bool,
        now_ms: int,
    ) -> dict:
        if holding:
            entry_price = state.pending_price_at_submission or state.entry_price
            logged = self._record_trade(
                TradeLogEntry(now_ms, PendingKind.ENTRY, state.pending_tx_hash, entry_price)
            )
            self._commit(
                state.cleared_pending(phase=Phase.HOLDING, entry_price=entry_price),
                "Entry confirmed",
                trade=logged,
            )
            return {"action": "entry_confirmed", "tx_hash": state.pending_tx_hash}

        try:
            self._check_pending(state, now_ms)
        except PendingTimeout as exc:
            logger.warning("Entry reverted to WAIT_ENTRY: %s", exc)
            self._commit(
                state.cleared_pending(phase=Phase.WAIT_ENTRY, entry_price=None),
                f"Entry not confirmed in time — reconcile tx {state.pending_tx_hash}",
            )
            return {"action": "entry_timeout", "tx_hash": state.pending_tx_hash}

        self._commit(
            replace(state, phase=Phase.ENTERING, resume_phase=None),
            "Waiting for entry confirmation",
        )
        return {"action": "waiting", "reason": "entry_unconfirmed"}

    async def _on_holding(
        self,
        state: PersistedPositionState,
        holding: bool,
        balance: Decimal,
        quote: PriceQuote,
        now_ms: int,
    ) -> dict:
        if not holding:
            # Sold outside the runner: no confirmed exit of ours to log.
            self._commit(
                state.cleared_pending(phase=Phase.WAIT_ENTRY, entry_price=None),
                "Target balance gone — position closed externally",
            )
            return {"action": "position_lost"}

        rate = quote.rate
        held = replace(state, phase=Phase.HOLDING, resume_phase=None)
        if held.entry_price is None:
            held = replace(held, entry_price=rate)
        s = self._strategy
        pct = profit_pct(rate, held.entry_price)
        reason = exit_reason(rate, held.entry_price, s.take_profit_pct, s.stop_loss_pct)
        pnl_msg = self._with_source(f"P&L: {pct:+.2f}%", quote)

        if reason is None:
            self._commit(held, pnl_msg)
            return {"action": "holding", "profit_pct": pct, "price": rate}

        if in_cooldown(held.last_action_ms, now_ms):
            self._commit(held, f"{pnl_msg} — {reason} due, cooling down")
            return {"action": "skipped", "reason": "cooldown", "profit_pct": pct}

        marked = replace(held, last_action_ms=now_ms)
        self._save(marked)
        # Sell the whole observed balance, not the original entry amount.
        handle = await self._submit(SwapDirection.SELL, balance)

        label = "Take profit" if reason == "take_profit" else "Stop loss"
        self._commit_submission(
            replace(
                marked,
                phase=Phase.EXITING,
                last_tx_hash=handle.hash,
                pending_since_ms=now_ms,
                pending_kind=PendingKind.EXIT,
                pending_tx_hash=handle.hash,
                pending_price_at_submission=rate,
            ),
            f"{label} submitted ({pct:+.2f}%)",
        )
        return {
            "action": "exit_submitted",
            "reason": reason,
            "tx_hash": handle.hash,
            "price": rate,
            "amount": str(balance),
        }

    def _on_exiting(
        self,
        state: PersistedPositionState,
        holding: bool,
        now_ms: int,
    ) -> dict:
        if not holding:
            exit_price = state.pending_price_at_submission
            logged = self._record_trade(
                TradeLogEntry(now_ms, PendingKind.EXIT, state.pending_tx_hash, exit_price)
            )
            self._commit(
                state.cleared_pending(
                    phase=Phase.WAIT_ENTRY,
                    entry_price=None,
                    last_exit_price=exit_price,
                ),
                "Exit confirmed",
                trade=logged,
            )
            return {"action": "exit_confirmed", "tx_hash": state.pending_tx_hash}

        try:
            self._check_pending(state, now_ms)
        except PendingTimeout as exc:
            logger.warning("Exit reverted to HOLDING: %s", exc)
            self._commit(
                state.cleared_pending(phase=Phase.HOLDING),
                f"Exit not confirmed in time — reconcile tx {state.pending_tx_hash}",
            )
            return {"action": "exit_timeout", "tx_hash": state.pending_tx_hash}

        self._commit(
            replace(state, phase=Phase.EXITING, resume_phase=None),
            "Waiting for exit confirmation",
        )
        return {"action": "waiting", "reason": "exit_unconfirmed"}

    # ── Helpers ──────────────────────────────────────────────────────────

    @staticmethod
    def _check_pending(state: PersistedPositionState, now_ms: int) -> None:
        if pending_expired(state.pending_since_ms, now_ms):
            age = now_ms - (state.pending_since_ms or now_ms)
            raise PendingTimeout(
                state.pending_kind.value if state.pending_kind else "?",
                state.pending_tx_hash,
                age,
            )

    @staticmethod
    def _with_source(message: str, quote: PriceQuote) -> str:
        if quote.is_fallback:
            return f"{message} (USD reference price, low confidence)"
        return message

    async def _submit(self, direction: SwapDirection, amount: Decimal) -> TxHandle:
        if direction == SwapDirection.BUY:
            from_asset, to_asset = self._base, self._target
        else:
            from_asset, to_asset = self._target, self._base
        try:
            handle = await self._executor.submit_swap(from_asset, to_asset, amount, direction)
        except SubmissionError:
            raise
        except Exception as exc:
            raise SubmissionError(f"{direction.value} swap failed: {exc}") from exc
        if not handle or not handle.hash:
            raise SubmissionError(f"{direction.value} swap returned no transaction hash")
        logger.info("%s swap submitted: %s %s", direction.value, amount, handle.hash)
        return handle

    def _record_trade(self, entry: TradeLogEntry) -> Optional[TradeLogEntry]:
        """Append to the trade log once; returns the entry if it was new."""
        if self._trade_log.append_once(entry):
            logger.info(
                "Trade logged: %s tx=%s price=%s",
                entry.kind.value, entry.tx_hash, entry.price_base_per_target,
            )
            return entry
        logger.info("Trade %s %s already logged", entry.kind.value, entry.tx_hash)
        return None

    def _save(self, state: PersistedPositionState) -> None:
        self._state_repo.save(state)
        self._last_saved = state

    def _commit(
        self,
        state: PersistedPositionState,
        message: str,
        trade: Optional[TradeLogEntry] = None,
    ) -> None:
        """Persist *state*, then report status (and the trade, if any)."""
        self._save(state)
        self._sync_status(state)
        self._status.message = message
        self._emit_status()
        if trade is not None and self._callbacks and self._callbacks.on_trade:
            if not self._stopped:
                self._safe_callback(self._callbacks.on_trade, trade)

    def _commit_submission(self, state: PersistedPositionState, message: str) -> None:
        """Persist the pending record of a swap that was just submitted.

        The record is the fault base even if this write fails, so the ERROR
        record written by ``_handle_fault`` still carries the pending hash.
        """
        self._last_saved = state
        self._commit(state, message)

    def _handle_fault(self, exc: Exception) -> dict:
        details = traceback.format_exc()
        logger.error("Tick failed: %s", exc)
        logger.debug(details)

        base = self._last_saved
        if base is not None:
            if base.pending_kind and base.pending_tx_hash:
                details += f"\nPending {base.pending_kind.value} tx: {base.pending_tx_hash}"
            err_state = replace(
                base, phase=Phase.ERROR, resume_phase=base.effective_phase,
            )
            for attempt in range(1, _ERROR_SAVE_ATTEMPTS + 1):
                try:
                    self._save(err_state)
                    break
                except PersistenceError as perr:
                    logger.error(
                        "Could not persist ERROR phase (attempt %d/%d): %s",
                        attempt, _ERROR_SAVE_ATTEMPTS, perr,
                    )

        self._status.phase = Phase.ERROR
        self._status.message = str(exc) or type(exc).__name__
        self._emit_status()
        if self._callbacks is not None and not self._stopped:
            self._safe_callback(
                self._callbacks.on_error,
                {"message": f"Runner tick failed: {exc}", "details": details},
            )
        return {"action": "error", "reason": str(exc), "error_type": type(exc).__name__}

    def _sync_status(self, state: PersistedPositionState) -> None:
        self._status.running = self._running
        self._status.phase = state.phase
        self._status.entry_price = state.entry_price
        self._status.last_exit_price = state.last_exit_price
        self._status.last_tx_hash = state.last_tx_hash

    def _emit_status(self) -> None:
        if self._callbacks is None or self._stopped:
            return
        self._safe_callback(self._callbacks.on_status, self._status.to_dict())

    @staticmethod
    def _safe_callback(fn, payload) -> None:
        try:
            fn(payload)
        except Exception:
            logger.exception("Host callback %r raised", fn)
