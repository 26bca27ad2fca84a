"""
CLI runner module.

Provides commands:
- import: Import a CSV/XLSX file (origins, banks, categories, transactions); --dry-run only checks it
- status: Ledger statistics or one import job's progress
- sync: Pull provider transactions into the ledger
- accounts: List linked provider accounts
- watchdog: Fail import jobs stuck in processing
- serve: Run the JSON web API
"""

from .main import create_cli, main

__all__ = [
    "create_cli",
    "main",
]
