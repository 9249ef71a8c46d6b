"""Tests for swaprunner.repos — key-value store, position state and trade log."""

import sqlite3

import pytest

from swaprunner.errors import PersistenceError
from swaprunner.models.position import PendingKind, PersistedPositionState, Phase, TradeLogEntry
from swaprunner.repos.db import KeyValueStore, get_connection, init_db
from swaprunner.repos.state_repo import PositionStateRepo, decode_state, encode_state
from swaprunner.repos.trade_log_repo import TradeLogRepo


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "data" / "runner.db")
    init_db(path)
    return path


@pytest.fixture
def store(db_path):
    return KeyValueStore(db_path)


def _entry(t: int, kind: PendingKind = PendingKind.ENTRY, tx: str | None = None,
           price: float | None = 100.0) -> TradeLogEntry:
    return TradeLogEntry(t_ms=t, kind=kind, tx_hash=tx or f"0x{t:x}", price_base_per_target=price)


# ── KeyValueStore ────────────────────────────────────────────────────────


class TestKeyValueStore:
    def test_init_creates_folder_and_table(self, db_path):
        conn = get_connection(db_path)
        try:
            row = conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name='kv_store'"
            ).fetchone()
        finally:
            conn.close()
        assert row is not None

    def test_get_missing_returns_none(self, store):
        assert store.get("nope") is None

    def test_set_then_get(self, store):
        store.set("a", {"x": 1, "y": [1, 2]})
        assert store.get("a") == {"x": 1, "y": [1, 2]}

    def test_set_overwrites(self, store):
        store.set("a", 1)
        store.set("a", 2)
        assert store.get("a") == 2

    def test_update_passes_current_value(self, store):
        store.set("n", 41)
        assert store.update("n", lambda v: v + 1) == 42
        assert store.get("n") == 42

    def test_update_rolls_back_on_error(self, store):
        store.set("n", 1)

        def _fail(_v):
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            store.update("n", _fail)
        assert store.get("n") == 1

    def test_delete(self, store):
        store.set("a", 1)
        store.delete("a")
        store.delete("a")
        assert store.get("a") is None

    def test_corrupt_value_raises_persistence_error(self, store, db_path):
        conn = sqlite3.connect(db_path)
        try:
            with conn:
                conn.execute(
                    "INSERT INTO kv_store (key, value_json, updated_at) VALUES (?, ?, ?)",
                    ("bad", "{not json", "2026-01-01T00:00:00+00:00"),
                )
        finally:
            conn.close()
        with pytest.raises(PersistenceError):
            store.get("bad")


# ── Position state ───────────────────────────────────────────────────────


class TestPositionStateRepo:
    def test_missing_record_is_fresh_wait_entry(self, store):
        repo = PositionStateRepo(store, "base:usdc:0xabc")
        state = repo.load()
        assert state.phase == Phase.WAIT_ENTRY
        assert state.entry_price is None
        assert state.last_exit_price is None

    def test_save_and_load_pending_state(self, store):
        repo = PositionStateRepo(store, "k")
        state = PersistedPositionState(
            phase=Phase.ENTERING,
            entry_price=100.0,
            last_tx_hash="0xabc",
            pending_since_ms=1_700_000_000_000,
            pending_kind=PendingKind.ENTRY,
            pending_tx_hash="0xabc",
            pending_price_at_submission=100.0,
            last_action_ms=1_700_000_000_000,
        )
        repo.save(state)
        assert repo.load() == state

    def test_error_state_keeps_resume_phase(self, store):
        repo = PositionStateRepo(store, "k")
        state = PersistedPositionState(
            phase=Phase.ERROR, entry_price=100.0, resume_phase=Phase.HOLDING,
        )
        repo.save(state)
        loaded = repo.load()
        assert loaded.phase == Phase.ERROR
        assert loaded.effective_phase == Phase.HOLDING

    def test_refuses_invalid_state(self, store):
        repo = PositionStateRepo(store, "k")
        with pytest.raises(PersistenceError):
            repo.save(PersistedPositionState(phase=Phase.HOLDING))
        with pytest.raises(PersistenceError):
            repo.save(PersistedPositionState(
                phase=Phase.ENTERING, entry_price=1.0, pending_kind=PendingKind.EXIT,
            ))
        with pytest.raises(PersistenceError):
            repo.save(PersistedPositionState(phase=Phase.IDLE))

    def test_reset_deletes_record(self, store):
        repo = PositionStateRepo(store, "k")
        repo.save(PersistedPositionState(last_exit_price=99.0))
        repo.reset()
        assert repo.load() == PersistedPositionState()

    def test_namespaces_are_isolated(self, store):
        a = PositionStateRepo(store, "a")
        b = PositionStateRepo(store, "b")
        a.save(PersistedPositionState(last_exit_price=1.0))
        assert b.load().last_exit_price is None

    def test_decode_rejects_unknown_phase(self):
        with pytest.raises(PersistenceError):
            decode_state({"phase": "SLEEPING"})

    def test_decode_rejects_non_object(self):
        with pytest.raises(PersistenceError):
            decode_state(["WAIT_ENTRY"])

    def test_encode_uses_plain_values(self):
        raw = encode_state(PersistedPositionState(phase=Phase.HOLDING, entry_price=2.5))
        assert raw["phase"] == "HOLDING"
        assert raw["pending_kind"] is None
        assert raw["entry_price"] == 2.5


# ── Trade log ────────────────────────────────────────────────────────────


class TestTradeLogRepo:
    def test_append_and_read_oldest_first(self, store):
        log = TradeLogRepo(store, "k")
        assert log.append_once(_entry(1))
        assert log.append_once(_entry(2, PendingKind.EXIT))
        assert [e.t_ms for e in log.read()] == [1, 2]

    def test_duplicate_kind_and_hash_is_ignored(self, store):
        log = TradeLogRepo(store, "k")
        assert log.append_once(_entry(1, tx="0xaa"))
        assert not log.append_once(_entry(5, tx="0xaa"))
        assert len(log.read()) == 1

    def test_same_hash_different_kind_is_kept(self, store):
        log = TradeLogRepo(store, "k")
        log.append_once(_entry(1, PendingKind.ENTRY, tx="0xaa"))
        assert log.append_once(_entry(2, PendingKind.EXIT, tx="0xaa"))

    def test_cap_drops_oldest(self, store):
        log = TradeLogRepo(store, "k", cap=3)
        for t in range(1, 6):
            log.append_once(_entry(t))
        assert [e.t_ms for e in log.read()] == [3, 4, 5]

    def test_get_trades_newest_first(self, store):
        log = TradeLogRepo(store, "k")
        for t in range(1, 4):
            log.append_once(_entry(t))
        result = log.get_trades(limit=2)
        assert result["total"] == 3
        assert [r["t"] for r in result["trades"]] == [3, 2]
        assert result["trades"][0]["kind"] == "ENTRY"

    def test_get_trades_zero_limit_is_empty(self, store):
        log = TradeLogRepo(store, "k")
        log.append_once(_entry(1))
        assert log.get_trades(limit=0) == {"trades": [], "total": 1}

    def test_read_limit(self, store):
        log = TradeLogRepo(store, "k")
        for t in range(1, 4):
            log.append_once(_entry(t))
        assert [e.t_ms for e in log.read(limit=1)] == [3]
        assert log.read(limit=0) == []

    def test_clear(self, store):
        log = TradeLogRepo(store, "k")
        log.append_once(_entry(1))
        log.clear()
        assert log.read() == []

    def test_missing_price_round_trips_as_none(self, store):
        log = TradeLogRepo(store, "k")
        log.append_once(_entry(1, price=None))
        assert log.read()[0].price_base_per_target is None
