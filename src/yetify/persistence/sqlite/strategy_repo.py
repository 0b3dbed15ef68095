from __future__ import annotations

import logging
import sqlite3
from datetime import UTC, datetime

from yetify.domain.errors import StorageError
from yetify.persistence.interfaces.strategy_repo import STRATEGY_COLLECTION
from yetify.persistence.sqlite.sqlite_connection import sqlite_transaction

logger = logging.getLogger(__name__)


class SqliteStrategyRepo:
    def __init__(self, db_path: str, *, collection: str = STRATEGY_COLLECTION) -> None:
        self._db_path = db_path
        self._collection = collection

    def load_document(self) -> str | None:
        try:
            with sqlite_transaction(self._db_path, read_only=True) as conn:
                row = conn.execute(
                    "SELECT body FROM documents WHERE name = ?", (self._collection,)
                ).fetchone()
        except sqlite3.Error as exc:
            raise StorageError(str(exc), operation="load", target=self._db_path) from exc
        return str(row["body"]) if row is not None else None

    def save_document(self, body: str) -> None:
        try:
            with sqlite_transaction(self._db_path) as conn:
                conn.execute(
                    """
                    INSERT INTO documents(name, body, updated_at) VALUES (?, ?, ?)
                    ON CONFLICT(name) DO UPDATE SET
                        body=excluded.body,
                        updated_at=excluded.updated_at
                    """,
                    (self._collection, body, datetime.now(UTC).isoformat()),
                )
        except sqlite3.Error as exc:
            raise StorageError(str(exc), operation="save", target=self._db_path) from exc
        logger.debug(
            "strategy_document_saved",
            extra={"extra": {"collection": self._collection, "bytes": len(body)}},
        )
