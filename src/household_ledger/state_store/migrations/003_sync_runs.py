"""
Migration 003: Add the sync_runs table.

One row per provider account sync, used to report the last sync time and
to skip accounts synced too recently unless a sync is forced.
"""

import sqlite3

VERSION = 3
NAME = "sync_runs"


def upgrade(conn: sqlite3.Connection) -> None:
    """Create the sync_runs table."""
    cursor = conn.cursor()

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS sync_runs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            account_id TEXT NOT NULL,
            date_from TEXT NOT NULL,
            date_to TEXT NOT NULL,
            created_count INTEGER NOT NULL DEFAULT 0,
            updated_count INTEGER NOT NULL DEFAULT 0,
            error_count INTEGER NOT NULL DEFAULT 0,
            finished_at TEXT NOT NULL
        )
    """)

    cursor.execute("""
        CREATE INDEX IF NOT EXISTS idx_sync_runs_account
        ON sync_runs (account_id, finished_at DESC)
    """)

    conn.commit()
