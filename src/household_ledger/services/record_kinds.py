"""
Record-kind strategies for bulk imports.

Each RecordKind maps to a handler that turns one raw spreadsheet row into a
ledger write, and to a checker that only parses the row. Both raise
record-scoped errors (ValidationError, NotFoundError, ConflictError); the job
tracker counts them.
"""

from collections.abc import Callable
from typing import Any

from ..schemas.normalizer import normalize, parse_category_key, parse_name
from ..schemas.records import RecordKind, SourceKind
from .pipeline import IngestionPipeline

RecordHandler = Callable[[IngestionPipeline, dict[str, Any]], int]
RecordChecker = Callable[[dict[str, Any]], Any]


def import_origin(pipeline: IngestionPipeline, row: dict[str, Any]) -> int:
    return pipeline.resolver.resolve_origin(parse_name(row))


def import_bank(pipeline: IngestionPipeline, row: dict[str, Any]) -> int:
    return pipeline.resolver.resolve_bank(parse_name(row))


def import_category(pipeline: IngestionPipeline, row: dict[str, Any]) -> int:
    return pipeline.resolver.resolve_category(parse_category_key(row))


def import_transaction(pipeline: IngestionPipeline, row: dict[str, Any]) -> int:
    draft = normalize(row, SourceKind.SPREADSHEET)
    transaction_id, _ = pipeline.ingest(draft)
    return transaction_id


def check_transaction(row: dict[str, Any]) -> Any:
    return normalize(row, SourceKind.SPREADSHEET)


RECORD_KIND_HANDLERS: dict[RecordKind, RecordHandler] = {
    RecordKind.ORIGINS: import_origin,
    RecordKind.BANKS: import_bank,
    RecordKind.CATEGORIES: import_category,
    RecordKind.TRANSACTIONS: import_transaction,
}

# Parse-only counterparts used for dry runs; nothing is written
RECORD_KIND_CHECKERS: dict[RecordKind, RecordChecker] = {
    RecordKind.ORIGINS: parse_name,
    RecordKind.BANKS: parse_name,
    RecordKind.CATEGORIES: parse_category_key,
    RecordKind.TRANSACTIONS: check_transaction,
}


def get_handler(kind: RecordKind) -> RecordHandler:
    return RECORD_KIND_HANDLERS[kind]


def get_checker(kind: RecordKind) -> RecordChecker:
    return RECORD_KIND_CHECKERS[kind]
