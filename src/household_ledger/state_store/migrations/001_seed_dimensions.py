"""
Migration 001: Seed the pre-provisioned dimension rows.

Every flow gets an "Unknown" category so that categorization can always
fall back to a valid reference, and the default origin exists before the
first provider sync.
"""

import sqlite3
from datetime import datetime, timezone

VERSION = 1
NAME = "seed_dimensions"

UNKNOWN_CATEGORIES = [
    ("INFLOW", "EXTRA_INCOME", "Unknown", "Unknown"),
    ("OUTFLOW", "VARIABLE_COSTS", "Unknown", "Unknown"),
]

DEFAULT_ORIGIN = "Shared"


def upgrade(conn: sqlite3.Connection) -> None:
    """Insert the Unknown categories and the default origin."""
    now = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
    cursor = conn.cursor()

    for flow, major, category, sub_category in UNKNOWN_CATEGORIES:
        cursor.execute(
            """
            INSERT INTO categories (flow, major_category, category, sub_category, created_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT (flow, major_category, category, sub_category) DO NOTHING
        """,
            (flow, major, category, sub_category, now),
        )

    cursor.execute(
        "INSERT INTO origins (name, created_at) VALUES (?, ?) ON CONFLICT (name) DO NOTHING",
        (DEFAULT_ORIGIN, now),
    )

    conn.commit()
