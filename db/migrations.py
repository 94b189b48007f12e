"""SQLite migrations for uploader reputation and pending selection storage."""

from __future__ import annotations

import sqlite3


def ensure_slskd_users_table(conn: sqlite3.Connection) -> None:
    """Ensure the uploader reputation table and indexes exist."""
    cur = conn.cursor()
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS slskd_users (
            id TEXT PRIMARY KEY,
            username TEXT NOT NULL UNIQUE,
            status TEXT NOT NULL DEFAULT 'neutral',
            success_count INTEGER NOT NULL DEFAULT 0,
            failure_count INTEGER NOT NULL DEFAULT 0,
            average_speed INTEGER NOT NULL DEFAULT 0,
            total_bytes INTEGER NOT NULL DEFAULT 0,
            quality_score INTEGER NOT NULL DEFAULT 0,
            notes TEXT,
            last_seen_at TEXT NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    cur.execute("CREATE INDEX IF NOT EXISTS idx_slskd_users_status ON slskd_users (status)")
    cur.execute("CREATE INDEX IF NOT EXISTS idx_slskd_users_last_seen ON slskd_users (last_seen_at DESC)")
    conn.commit()


def ensure_pending_selections_table(conn: sqlite3.Connection) -> None:
    """Ensure the interactive selection table exists."""
    cur = conn.cursor()
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS pending_selections (
            task_id TEXT PRIMARY KEY,
            query TEXT,
            context_json TEXT NOT NULL,
            candidates_json TEXT NOT NULL,
            created_at REAL NOT NULL,
            expires_at REAL
        )
        """
    )
    cur.execute(
        "CREATE INDEX IF NOT EXISTS idx_pending_selections_expires_at "
        "ON pending_selections (expires_at)"
    )
    conn.commit()
