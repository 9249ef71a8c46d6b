"""Position data models — persisted state, trade log entries, runtime status."""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Optional


class Phase(str, Enum):
    IDLE = "IDLE"  # runtime status only, never persisted
    WAIT_ENTRY = "WAIT_ENTRY"
    ENTERING = "ENTERING"
    HOLDING = "HOLDING"
    EXITING = "EXITING"
    ERROR = "ERROR"


class PendingKind(str, Enum):
    ENTRY = "ENTRY"
    EXIT = "EXIT"


PENDING_PHASES = (Phase.ENTERING, Phase.EXITING)
POSITION_PHASES = (Phase.ENTERING, Phase.HOLDING, Phase.EXITING)


@dataclass(frozen=True)
class PersistedPositionState:
    """The single durable record describing where the trading cycle is.

    ``resume_phase`` is only set while ``phase`` is ``ERROR`` and names the
    phase the failed tick started from.
    """

    phase: Phase = Phase.WAIT_ENTRY
    entry_price: Optional[float] = None
    last_exit_price: Optional[float] = None
    last_tx_hash: Optional[str] = None
    pending_since_ms: Optional[int] = None
    pending_kind: Optional[PendingKind] = None
    pending_tx_hash: Optional[str] = None
    pending_price_at_submission: Optional[float] = None
    last_action_ms: Optional[int] = None
    resume_phase: Optional[Phase] = None

    @property
    def effective_phase(self) -> Phase:
        """Phase the next tick evaluates (ERROR resumes where it failed)."""
        if self.phase == Phase.ERROR:
            return self.resume_phase or Phase.WAIT_ENTRY
        return self.phase

    def validate(self) -> None:
        """Raise ``ValueError`` if the record breaks a state invariant."""
        if self.phase == Phase.IDLE:
            raise ValueError("IDLE is not a persistable phase")
        if self.phase != Phase.ERROR and self.resume_phase is not None:
            raise ValueError("resume_phase is only valid in ERROR")
        if self.resume_phase in (Phase.ERROR, Phase.IDLE):
            raise ValueError(f"invalid resume_phase {self.resume_phase}")

        phase = self.effective_phase
        pending = phase in PENDING_PHASES
        if pending != (self.pending_kind is not None):
            raise ValueError(
                f"pending_kind={self.pending_kind} inconsistent with phase {phase.value}"
            )
        if phase == Phase.ENTERING and self.pending_kind != PendingKind.ENTRY:
            raise ValueError("ENTERING requires pending_kind=ENTRY")
        if phase == Phase.EXITING and self.pending_kind != PendingKind.EXIT:
            raise ValueError("EXITING requires pending_kind=EXIT")
        if (phase in POSITION_PHASES) != (self.entry_price is not None):
            raise ValueError(
                f"entry_price={self.entry_price} inconsistent with phase {phase.value}"
            )

    def cleared_pending(self, **changes) -> "PersistedPositionState":
        """Copy with the pending snapshot removed and *changes* applied."""
        return replace(
            self,
            pending_since_ms=None,
            pending_kind=None,
            pending_tx_hash=None,
            pending_price_at_submission=None,
            resume_phase=None,
            **changes,
        )


@dataclass(frozen=True)
class TradeLogEntry:
    """A confirmed ENTRY or EXIT — immutable once written."""

    t_ms: int
    kind: PendingKind
    tx_hash: Optional[str]
    price_base_per_target: Optional[float]


@dataclass
class RunnerStatus:
    """Derived, rebuildable view reported to the host after every tick."""

    running: bool = True
    phase: Phase = Phase.WAIT_ENTRY
    last_price: Optional[float] = None
    entry_price: Optional[float] = None
    last_exit_price: Optional[float] = None
    last_tx_hash: Optional[str] = None
    message: Optional[str] = None
    price_source: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "running": self.running,
            "phase": self.phase.value,
            "last_price": self.last_price,
            "entry_price": self.entry_price,
            "last_exit_price": self.last_exit_price,
            "last_tx_hash": self.last_tx_hash,
            "message": self.message,
            "price_source": self.price_source,
        }


@dataclass
class RunnerCallbacks:
    """Host hooks: status after every tick, errors, confirmed trades."""

    on_status: Callable[[dict], None]
    on_error: Callable[[dict], None]
    on_trade: Optional[Callable[[TradeLogEntry], None]] = field(default=None)
