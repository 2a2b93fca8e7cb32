"""SQLite access layer for session-scoped storage and indexed content vectors."""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class AdvisorDB:
    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        return conn

    def _init_schema(self) -> None:
        with self._connect() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS session_storage (
                    scope_id TEXT NOT NULL,
                    storage_key TEXT NOT NULL,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (scope_id, storage_key)
                );

                CREATE TABLE IF NOT EXISTS content_vectors (
                    id TEXT PRIMARY KEY,
                    content_type TEXT NOT NULL,
                    dim INTEGER NOT NULL,
                    vector BLOB NOT NULL,
                    metadata TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_content_vectors_type ON content_vectors(content_type);
                """
            )

    # ------------------------------------------------------------------
    # Session-scoped key/value storage
    # ------------------------------------------------------------------

    def get_item(self, scope_id: str, key: str) -> str | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT value FROM session_storage WHERE scope_id = ? AND storage_key = ?",
                (scope_id, key),
            ).fetchone()
        return str(row["value"]) if row else None

    def set_item(self, scope_id: str, key: str, value: str) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO session_storage (scope_id, storage_key, value, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(scope_id, storage_key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                (scope_id, key, value, _utc_now()),
            )

    def update_item(self, scope_id: str, key: str, update: Callable[[str | None], str]) -> str:
        """Read, transform and write one value inside a single write transaction."""
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT value FROM session_storage WHERE scope_id = ? AND storage_key = ?",
                (scope_id, key),
            ).fetchone()
            value = update(str(row["value"]) if row else None)
            conn.execute(
                """
                INSERT INTO session_storage (scope_id, storage_key, value, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(scope_id, storage_key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                (scope_id, key, value, _utc_now()),
            )
        return value

    def remove_item(self, scope_id: str, key: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "DELETE FROM session_storage WHERE scope_id = ? AND storage_key = ?",
                (scope_id, key),
            )

    # ------------------------------------------------------------------
    # Content vectors
    # ------------------------------------------------------------------

    def upsert_vectors(self, rows: list[tuple[str, str, int, bytes, dict[str, Any]]]) -> None:
        timestamp = _utc_now()
        payload = [
            (vector_id, content_type, dim, blob, json.dumps(metadata), timestamp)
            for vector_id, content_type, dim, blob, metadata in rows
        ]
        with self._connect() as conn:
            conn.executemany(
                """
                INSERT INTO content_vectors (id, content_type, dim, vector, metadata, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    content_type = excluded.content_type,
                    dim = excluded.dim,
                    vector = excluded.vector,
                    metadata = excluded.metadata,
                    updated_at = excluded.updated_at
                """,
                payload,
            )

    def list_vectors(self, content_type: str | None = None) -> list[dict[str, Any]]:
        query = "SELECT id, content_type, dim, vector, metadata FROM content_vectors"
        params: tuple[Any, ...] = ()
        if content_type is not None:
            query += " WHERE content_type = ?"
            params = (content_type,)
        query += " ORDER BY id"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [
            {
                "id": str(row["id"]),
                "content_type": str(row["content_type"]),
                "dim": int(row["dim"]),
                "vector": bytes(row["vector"]),
                "metadata": json.loads(row["metadata"]),
            }
            for row in rows
        ]

    def vector_counts(self) -> dict[str, int]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT content_type, COUNT(*) AS n FROM content_vectors GROUP BY content_type"
            ).fetchall()
        return {str(row["content_type"]): int(row["n"]) for row in rows}

    def vector_dimensions(self) -> list[int]:
        with self._connect() as conn:
            rows = conn.execute("SELECT DISTINCT dim FROM content_vectors ORDER BY dim").fetchall()
        return [int(row["dim"]) for row in rows]
