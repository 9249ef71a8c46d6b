"""Position state repository — JSON codec for ``PersistedPositionState``."""

from typing import Optional

from swaprunner.errors import PersistenceError
from swaprunner.models.position import Phase, PendingKind, PersistedPositionState
from swaprunner.repos.db import KeyValueStore

STATE_KEY_SUFFIX = "position_state"


def encode_state(state: PersistedPositionState) -> dict:
    """Serialise a state record to a JSON-safe dict."""
    return {
        "phase": state.phase.value,
        "entry_price": state.entry_price,
        "last_exit_price": state.last_exit_price,
        "last_tx_hash": state.last_tx_hash,
        "pending_since_ms": state.pending_since_ms,
        "pending_kind": state.pending_kind.value if state.pending_kind else None,
        "pending_tx_hash": state.pending_tx_hash,
        "pending_price_at_submission": state.pending_price_at_submission,
        "last_action_ms": state.last_action_ms,
        "resume_phase": state.resume_phase.value if state.resume_phase else None,
    }


def decode_state(raw: Optional[dict]) -> PersistedPositionState:
    """Parse a stored dict; a missing record is a fresh ``WAIT_ENTRY``.

    Raises ``PersistenceError`` if the record is malformed or breaks a
    state invariant.
    """
    if raw is None:
        return PersistedPositionState()
    if not isinstance(raw, dict):
        raise PersistenceError(f"Position state must be an object, got {type(raw).__name__}")
    try:
        state = PersistedPositionState(
            phase=Phase(raw.get("phase") or Phase.WAIT_ENTRY.value),
            entry_price=_opt_float(raw.get("entry_price")),
            last_exit_price=_opt_float(raw.get("last_exit_price")),
            last_tx_hash=raw.get("last_tx_hash"),
            pending_since_ms=_opt_int(raw.get("pending_since_ms")),
            pending_kind=PendingKind(raw["pending_kind"]) if raw.get("pending_kind") else None,
            pending_tx_hash=raw.get("pending_tx_hash"),
            pending_price_at_submission=_opt_float(raw.get("pending_price_at_submission")),
            last_action_ms=_opt_int(raw.get("last_action_ms")),
            resume_phase=Phase(raw["resume_phase"]) if raw.get("resume_phase") else None,
        )
        state.validate()
    except (TypeError, ValueError) as exc:
        raise PersistenceError(f"Invalid position state {raw!r}: {exc}") from exc
    return state


def _opt_float(v) -> Optional[float]:
    return None if v is None else float(v)


def _opt_int(v) -> Optional[int]:
    return None if v is None else int(v)


class PositionStateRepo:
    """Data access for the single position record of one strategy.

    Args:
        store: The shared ``KeyValueStore``.
        namespace: ``Strategy.key`` of the owning strategy.
    """

    def __init__(self, store: KeyValueStore, namespace: str) -> None:
        self._store = store
        self._key = f"{namespace}:{STATE_KEY_SUFFIX}"

    def load(self) -> PersistedPositionState:
        return decode_state(self._store.get(self._key))

    def save(self, state: PersistedPositionState) -> None:
        """Validate and overwrite the stored record."""
        try:
            state.validate()
        except ValueError as exc:
            raise PersistenceError(f"Refusing to persist invalid state: {exc}") from exc
        self._store.set(self._key, encode_state(state))

    def reset(self) -> None:
        """Explicit reset — the only way the record is ever deleted."""
        self._store.delete(self._key)
