"""Trade log repository — capped, append-only history of confirmed trades."""

from typing import Optional

from swaprunner.errors import PersistenceError
from swaprunner.models.position import PendingKind, TradeLogEntry
from swaprunner.repos.db import KeyValueStore

TRADE_LOG_KEY_SUFFIX = "trade_log"
TRADE_LOG_CAP = 500


def encode_entry(entry: TradeLogEntry) -> dict:
    return {
        "t": entry.t_ms,
        "kind": entry.kind.value,
        "tx_hash": entry.tx_hash,
        "price_base_per_target": entry.price_base_per_target,
    }


def decode_entry(raw: dict) -> TradeLogEntry:
    try:
        price = raw.get("price_base_per_target")
        return TradeLogEntry(
            t_ms=int(raw["t"]),
            kind=PendingKind(raw["kind"]),
            tx_hash=raw.get("tx_hash"),
            price_base_per_target=None if price is None else float(price),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise PersistenceError(f"Invalid trade log entry {raw!r}: {exc}") from exc


class TradeLogRepo:
    """Data access layer for one strategy's trade log.

    Args:
        store: The shared ``KeyValueStore``.
        namespace: ``Strategy.key`` of the owning strategy.
        cap: Maximum number of entries kept (oldest dropped first).
    """

    def __init__(
        self,
        store: KeyValueStore,
        namespace: str,
        cap: int = TRADE_LOG_CAP,
    ) -> None:
        self._store = store
        self._key = f"{namespace}:{TRADE_LOG_KEY_SUFFIX}"
        self._cap = cap

    # ── Write ────────────────────────────────────────────────────────────

    def append_once(self, entry: TradeLogEntry) -> bool:
        """Append *entry* unless the same (kind, tx_hash) is already logged.

        Returns ``True`` if the entry was written.  The check and the write
        happen in one transaction.
        """
        appended = False

        def _apply(current: Optional[list]) -> list:
            nonlocal appended
            existing = list(current or [])
            if entry.tx_hash is not None and any(
                e.get("tx_hash") == entry.tx_hash and e.get("kind") == entry.kind.value
                for e in existing
            ):
                return existing
            appended = True
            existing.append(encode_entry(entry))
            return existing[-self._cap:]

        self._store.update(self._key, _apply)
        return appended

    def clear(self) -> None:
        """Explicit user action — drop the whole log."""
        self._store.delete(self._key)

    # ── Read ─────────────────────────────────────────────────────────────

    def read(self, limit: Optional[int] = None) -> list[TradeLogEntry]:
        """Return entries oldest-first (the newest *limit* if given)."""
        raw = self._store.get(self._key) or []
        if not isinstance(raw, list):
            raise PersistenceError("Trade log must be a list")
        entries = [decode_entry(r) for r in raw]
        if limit is not None:
            entries = entries[-limit:] if limit > 0 else []
        return entries

    def get_trades(self, limit: int = 20) -> dict:
        """Return recent entries newest-first, in API shape.

        Returns:
            ``{"trades": [...], "total": int}``
        """
        entries = self.read()
        window = entries[-limit:] if limit > 0 else []
        recent = [encode_entry(e) for e in reversed(window)]
        return {"trades": recent, "total": len(entries)}
