"""
SSOT (Single Source of Truth) schemas for the ingestion pipeline.

These canonical records are the ONLY models used across all modules.
"""

from .normalizer import (
    GENERIC_DESCRIPTION,
    describe,
    get_field,
    normalize,
    parse_amount,
    parse_category_key,
    parse_date,
    parse_name,
)
from .records import (
    MONTH_NAMES,
    UNKNOWN_CATEGORY_NAME,
    CategoryAssignment,
    CategoryKey,
    DraftTransaction,
    Flow,
    ImportJob,
    JobStatus,
    MajorCategory,
    RecordKind,
    SourceKind,
    TransactionRecord,
    UpsertOutcome,
)

__all__ = [
    # Records
    "CategoryAssignment",
    "CategoryKey",
    "DraftTransaction",
    "Flow",
    "ImportJob",
    "JobStatus",
    "MajorCategory",
    "RecordKind",
    "SourceKind",
    "TransactionRecord",
    "UpsertOutcome",
    "MONTH_NAMES",
    "UNKNOWN_CATEGORY_NAME",
    # Normalizer
    "normalize",
    "describe",
    "get_field",
    "parse_amount",
    "parse_category_key",
    "parse_date",
    "parse_name",
    "GENERIC_DESCRIPTION",
]
