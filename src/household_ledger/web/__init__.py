"""
JSON web API for imports and provider syncs.

Run with: household-ledger serve
"""
