"""Persistence for per-uploader reputation records."""

from __future__ import annotations

import sqlite3
import uuid
from dataclasses import dataclass, fields, replace
from datetime import datetime, timezone
from typing import Callable, Iterable

from db.migrations import ensure_slskd_users_table
from engine.types import USER_STATUSES


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def normalize_username(username: str | None) -> str:
    return str(username or "").strip().lower()


@dataclass(frozen=True)
class ReputationRecord:
    id: str
    username: str
    status: str = "neutral"
    success_count: int = 0
    failure_count: int = 0
    average_speed: int = 0
    total_bytes: int = 0
    quality_score: int = 0
    notes: str | None = None
    last_seen_at: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ReputationRecord":
        return cls(**{f.name: row[f.name] for f in fields(cls)})

    def to_dict(self) -> dict:
        return {f.name: getattr(self, f.name) for f in fields(self)}


_MUTABLE_COLUMNS = (
    "status",
    "success_count",
    "failure_count",
    "average_speed",
    "total_bytes",
    "quality_score",
    "notes",
    "last_seen_at",
)


class SlskdUserStore:
    """SQLite-backed store for ``slskd_users`` rows.

    Usernames are stored lowercased; every lookup normalises its argument so
    identity is case-insensitive.
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False, timeout=30)
        conn.row_factory = sqlite3.Row
        ensure_slskd_users_table(conn)
        return conn

    def ensure_schema(self) -> None:
        conn = self._connect()
        conn.close()

    def _insert(self, cur: sqlite3.Cursor, username: str, status: str = "neutral") -> ReputationRecord:
        now = _utc_now()
        record = ReputationRecord(
            id=str(uuid.uuid4()),
            username=username,
            status=status,
            last_seen_at=now,
            created_at=now,
            updated_at=now,
        )
        cur.execute(
            """
            INSERT INTO slskd_users (id, username, status, last_seen_at, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (record.id, record.username, record.status, now, now, now),
        )
        return record

    def _write(self, cur: sqlite3.Cursor, record: ReputationRecord) -> ReputationRecord:
        record = replace(record, updated_at=_utc_now())
        assignments = ", ".join(f"{col}=?" for col in _MUTABLE_COLUMNS)
        cur.execute(
            f"UPDATE slskd_users SET {assignments}, updated_at=? WHERE id=?",
            (*[getattr(record, col) for col in _MUTABLE_COLUMNS], record.updated_at, record.id),
        )
        return record

    def get_by_id(self, user_id: str) -> ReputationRecord | None:
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute("SELECT * FROM slskd_users WHERE id=?", (user_id,))
            row = cur.fetchone()
            return ReputationRecord.from_row(row) if row else None
        finally:
            conn.close()

    def get_by_username(self, username: str) -> ReputationRecord | None:
        name = normalize_username(username)
        if not name:
            return None
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute("SELECT * FROM slskd_users WHERE username=?", (name,))
            row = cur.fetchone()
            return ReputationRecord.from_row(row) if row else None
        finally:
            conn.close()

    def find_or_create(self, username: str) -> ReputationRecord:
        return self.mutate(username, lambda record: record)

    def mutate(
        self,
        username: str,
        change: Callable[[ReputationRecord], ReputationRecord],
    ) -> ReputationRecord:
        """Create the record if needed and apply ``change`` in one write transaction."""
        name = normalize_username(username)
        if not name:
            raise ValueError("username is required")
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute("BEGIN IMMEDIATE")
            cur.execute("SELECT * FROM slskd_users WHERE username=?", (name,))
            row = cur.fetchone()
            current = ReputationRecord.from_row(row) if row else self._insert(cur, name)
            updated = change(current)
            if updated != current:
                updated = self._write(cur, updated)
            conn.commit()
            return updated
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def create(self, username: str, status: str = "neutral") -> ReputationRecord:
        name = normalize_username(username)
        if not name:
            raise ValueError("username is required")
        conn = self._connect()
        try:
            cur = conn.cursor()
            record = self._insert(cur, name, status)
            conn.commit()
            return record
        finally:
            conn.close()

    def update(self, user_id: str, **changes) -> ReputationRecord | None:
        unknown = set(changes) - set(_MUTABLE_COLUMNS)
        if unknown:
            raise ValueError(f"unknown columns: {', '.join(sorted(unknown))}")
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute("BEGIN IMMEDIATE")
            cur.execute("SELECT * FROM slskd_users WHERE id=?", (user_id,))
            row = cur.fetchone()
            if not row:
                conn.commit()
                return None
            record = self._write(cur, replace(ReputationRecord.from_row(row), **changes))
            conn.commit()
            return record
        finally:
            conn.close()

    def delete(self, user_id: str) -> bool:
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute("DELETE FROM slskd_users WHERE id=?", (user_id,))
            conn.commit()
            return cur.rowcount > 0
        finally:
            conn.close()

    def usernames_with_status(self, status: str) -> list[str]:
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute("SELECT username FROM slskd_users WHERE status=? ORDER BY username", (status,))
            return [row["username"] for row in cur.fetchall()]
        finally:
            conn.close()

    def list_users(
        self,
        *,
        status: str | None = None,
        search: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[ReputationRecord], int]:
        clauses = []
        params: list = []
        if status:
            clauses.append("status=?")
            params.append(status)
        if search:
            clauses.append("username LIKE ?")
            params.append(f"%{search.strip().lower()}%")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute(f"SELECT COUNT(*) AS n FROM slskd_users {where}", params)
            total = int(cur.fetchone()["n"])
            cur.execute(
                f"SELECT * FROM slskd_users {where} ORDER BY last_seen_at DESC, username ASC LIMIT ? OFFSET ?",
                (*params, int(limit), int(offset)),
            )
            return [ReputationRecord.from_row(row) for row in cur.fetchall()], total
        finally:
            conn.close()

    def count_by_status(self) -> dict[str, int]:
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute("SELECT status, COUNT(*) AS n FROM slskd_users GROUP BY status")
            counts = {status: 0 for status in USER_STATUSES}
            for row in cur.fetchall():
                counts[row["status"]] = int(row["n"])
            return counts
        finally:
            conn.close()

    def bulk_update_status(self, user_ids: Iterable[str], status: str) -> int:
        ids = [str(i) for i in user_ids if i]
        if not ids:
            return 0
        placeholders = ", ".join("?" for _ in ids)
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute(
                f"UPDATE slskd_users SET status=?, updated_at=? WHERE id IN ({placeholders})",
                (status, _utc_now(), *ids),
            )
            conn.commit()
            return cur.rowcount
        finally:
            conn.close()
