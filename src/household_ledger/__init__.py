"""
Household ledger: transaction ingestion and reconciliation.

Merges transactions from bulk spreadsheet uploads and a bank-data
synchronization provider into one canonical ledger, without duplication,
while tracking asynchronous import jobs and tolerating per-record failure.
"""

__version__ = "0.1.0"
