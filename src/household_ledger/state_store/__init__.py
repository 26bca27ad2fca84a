"""
Ledger store (SQLite-based).

Persistent storage for:
- Dimension entities (origins, banks, categories)
- Ledger transactions
- Import jobs
- Provider sync runs

Enforces uniqueness on dimension natural keys and on transaction external_id.
"""

from .sqlite_store import DIMENSIONS, LedgerStore

__all__ = ["LedgerStore", "DIMENSIONS"]
