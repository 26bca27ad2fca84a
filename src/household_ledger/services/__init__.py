"""Ingestion services: dimension resolution, categorization, upsert, imports and sync."""

from household_ledger.services.api import IngestionAPI
from household_ledger.services.bank_sync import BankSyncService, SyncAllResult, SyncError, SyncResult
from household_ledger.services.categorizer import Categorizer
from household_ledger.services.dimension_resolver import DimensionResolver
from household_ledger.services.import_jobs import ImportJobTracker
from household_ledger.services.pipeline import IngestionPipeline
from household_ledger.services.upsert_engine import DimensionRefs, TransactionUpsertEngine

__all__ = [
    "BankSyncService",
    "Categorizer",
    "DimensionRefs",
    "DimensionResolver",
    "ImportJobTracker",
    "IngestionAPI",
    "IngestionPipeline",
    "SyncAllResult",
    "SyncError",
    "SyncResult",
    "TransactionUpsertEngine",
]
