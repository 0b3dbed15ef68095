from __future__ import annotations

import sqlite3
from datetime import UTC, datetime

from yetify.domain.errors import StorageError
from yetify.persistence.sqlite.sqlite_connection import sqlite_transaction


class SqliteSessionStore:
    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def get(self, key: str) -> str | None:
        try:
            with sqlite_transaction(self._db_path, read_only=True) as conn:
                row = conn.execute("SELECT value FROM session_kv WHERE key = ?", (key,)).fetchone()
        except sqlite3.Error as exc:
            raise StorageError(str(exc), operation="get", target=key) from exc
        return str(row["value"]) if row is not None else None

    def set(self, key: str, value: str) -> None:
        try:
            with sqlite_transaction(self._db_path) as conn:
                conn.execute(
                    """
                    INSERT INTO session_kv(key, value, updated_at) VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value=excluded.value,
                        updated_at=excluded.updated_at
                    """,
                    (key, value, datetime.now(UTC).isoformat()),
                )
        except sqlite3.Error as exc:
            raise StorageError(str(exc), operation="set", target=key) from exc

    def delete(self, key: str) -> None:
        try:
            with sqlite_transaction(self._db_path) as conn:
                conn.execute("DELETE FROM session_kv WHERE key = ?", (key,))
        except sqlite3.Error as exc:
            raise StorageError(str(exc), operation="delete", target=key) from exc

    def keys(self, prefix: str = "") -> list[str]:
        try:
            with sqlite_transaction(self._db_path, read_only=True) as conn:
                rows = conn.execute("SELECT key FROM session_kv ORDER BY key").fetchall()
        except sqlite3.Error as exc:
            raise StorageError(str(exc), operation="keys", target=prefix) from exc
        return [str(row["key"]) for row in rows if str(row["key"]).startswith(prefix)]
