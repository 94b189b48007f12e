"""SQLite backend for the interactive selection cache."""

from __future__ import annotations

import sqlite3

from db.migrations import ensure_pending_selections_table
from engine.json_utils import safe_json_dumps, safe_json_loads
from engine.selection_cache import PendingSelection


class PendingSelectionStore:
    """Same interface as the in-memory store; entries survive restarts."""

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False, timeout=30)
        conn.row_factory = sqlite3.Row
        ensure_pending_selections_table(conn)
        return conn

    def ensure_schema(self) -> None:
        conn = self._connect()
        conn.close()

    def get(self, task_id: str) -> PendingSelection | None:
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                SELECT task_id, query, context_json, candidates_json, created_at, expires_at
                FROM pending_selections
                WHERE task_id=?
                """,
                (task_id,),
            )
            row = cur.fetchone()
        finally:
            conn.close()
        if not row:
            return None
        return PendingSelection.from_record(
            {
                "task_id": row["task_id"],
                "query": row["query"],
                "context": safe_json_loads(row["context_json"], {}),
                "candidates": safe_json_loads(row["candidates_json"], []),
                "created_at": row["created_at"],
                "expires_at": row["expires_at"],
            }
        )

    def put(self, entry: PendingSelection) -> None:
        record = entry.to_record()
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO pending_selections (task_id, query, context_json, candidates_json, created_at, expires_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(task_id) DO UPDATE SET
                    query=excluded.query,
                    context_json=excluded.context_json,
                    candidates_json=excluded.candidates_json,
                    created_at=excluded.created_at,
                    expires_at=excluded.expires_at
                """,
                (
                    record["task_id"],
                    record["query"],
                    safe_json_dumps(record["context"], sort_keys=True),
                    safe_json_dumps(record["candidates"]),
                    record["created_at"],
                    record["expires_at"],
                ),
            )
            conn.commit()
        finally:
            conn.close()

    def delete(self, task_id: str) -> bool:
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute("DELETE FROM pending_selections WHERE task_id=?", (task_id,))
            conn.commit()
            return cur.rowcount > 0
        finally:
            conn.close()

    def task_ids(self) -> list[str]:
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute("SELECT task_id FROM pending_selections ORDER BY created_at ASC")
            return [row["task_id"] for row in cur.fetchall()]
        finally:
            conn.close()
