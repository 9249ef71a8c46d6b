"""Database initialization, connection management and the key-value store.

The runner persists everything as JSON values under string keys.  Each
write runs in its own transaction, so readers never see a partial value.
"""

import json
import os
import sqlite3
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from swaprunner.errors import PersistenceError

_SCHEMA = """
CREATE TABLE IF NOT EXISTS kv_store (
    key        TEXT PRIMARY KEY,
    value_json TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""


def init_db(db_path: str) -> None:
    """Create the database file and schema if they do not exist yet.

    Args:
        db_path: Path to the SQLite database file.
    """
    folder = os.path.dirname(db_path)
    if folder:
        os.makedirs(folder, exist_ok=True)
    conn = sqlite3.connect(db_path)
    try:
        conn.executescript(_SCHEMA)
        conn.commit()
    finally:
        conn.close()


def get_connection(db_path: str) -> sqlite3.Connection:
    """Return a new SQLite connection with row-factory enabled.

    Callers are responsible for closing the connection.
    """
    conn = sqlite3.connect(db_path, timeout=30)
    conn.row_factory = sqlite3.Row
    return conn


class KeyValueStore:
    """Durable JSON key-value store with atomic per-key writes.

    Args:
        db_path: Path to the SQLite database file.  ``init_db`` is run on
                 construction.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        try:
            init_db(db_path)
        except sqlite3.Error as exc:
            raise PersistenceError(f"Cannot open store at {db_path}: {exc}") from exc

    # ── Read ─────────────────────────────────────────────────────────────

    def get(self, key: str) -> Optional[Any]:
        """Return the decoded value for *key*, or ``None``."""
        try:
            conn = get_connection(self._db_path)
            try:
                row = conn.execute(
                    "SELECT value_json FROM kv_store WHERE key = ?", (key,)
                ).fetchone()
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Read of '{key}' failed: {exc}") from exc
        if row is None:
            return None
        try:
            return json.loads(row["value_json"])
        except ValueError as exc:
            raise PersistenceError(f"Corrupt value under '{key}': {exc}") from exc

    # ── Write ────────────────────────────────────────────────────────────

    def set(self, key: str, value: Any) -> None:
        """Overwrite *key* with *value* in a single transaction."""
        payload = json.dumps(value, separators=(",", ":"))
        try:
            conn = get_connection(self._db_path)
            try:
                with conn:
                    conn.execute(
                        """
                        INSERT INTO kv_store (key, value_json, updated_at)
                        VALUES (?, ?, ?)
                        ON CONFLICT(key) DO UPDATE SET
                            value_json = excluded.value_json,
                            updated_at = excluded.updated_at
                        """,
                        (key, payload, _utc_now_iso()),
                    )
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Write of '{key}' failed: {exc}") from exc

    def update(self, key: str, fn: Callable[[Optional[Any]], Any]) -> Any:
        """Read-modify-write *key* under an exclusive write lock.

        *fn* receives the current decoded value (or ``None``) and returns
        the new value, which is stored and returned.
        """
        try:
            conn = get_connection(self._db_path)
            conn.isolation_level = None
            try:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    row = conn.execute(
                        "SELECT value_json FROM kv_store WHERE key = ?", (key,)
                    ).fetchone()
                    current = json.loads(row["value_json"]) if row else None
                    new_value = fn(current)
                    conn.execute(
                        """
                        INSERT INTO kv_store (key, value_json, updated_at)
                        VALUES (?, ?, ?)
                        ON CONFLICT(key) DO UPDATE SET
                            value_json = excluded.value_json,
                            updated_at = excluded.updated_at
                        """,
                        (key, json.dumps(new_value, separators=(",", ":")), _utc_now_iso()),
                    )
                    conn.execute("COMMIT")
                except BaseException:
                    conn.execute("ROLLBACK")
                    raise
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Update of '{key}' failed: {exc}") from exc
        except ValueError as exc:
            raise PersistenceError(f"Corrupt value under '{key}': {exc}") from exc
        return new_value

    def delete(self, key: str) -> None:
        """Remove *key* (no-op if absent)."""
        try:
            conn = get_connection(self._db_path)
            try:
                with conn:
                    conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Delete of '{key}' failed: {exc}") from exc


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
