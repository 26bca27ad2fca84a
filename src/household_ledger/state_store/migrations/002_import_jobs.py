"""
Migration 002: Add the import_jobs table.

Holds the state of asynchronous bulk imports so that progress can be polled
by job id and survives a process restart.

Status: pending -> processing -> completed | failed
"""

import sqlite3

VERSION = 2
NAME = "import_jobs"


def upgrade(conn: sqlite3.Connection) -> None:
    """Create the import_jobs table."""
    cursor = conn.cursor()

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS import_jobs (
            id TEXT PRIMARY KEY,
            source_label TEXT NOT NULL,
            record_kind TEXT NOT NULL,

            -- pending, processing, completed, failed
            status TEXT NOT NULL DEFAULT 'pending',

            -- Counters
            total_records INTEGER NOT NULL DEFAULT 0,
            processed_records INTEGER NOT NULL DEFAULT 0,
            failed_records INTEGER NOT NULL DEFAULT 0,

            -- JSON list of {recordIndex, message}
            error_report TEXT NOT NULL DEFAULT '[]',
            -- Job-level fatal cause
            error_message TEXT,

            created_at TEXT NOT NULL,
            started_at TEXT,
            completed_at TEXT
        )
    """)

    cursor.execute("""
        CREATE INDEX IF NOT EXISTS idx_import_jobs_status
        ON import_jobs (status, started_at)
    """)

    conn.commit()
