"""
Canonical ledger records (SSOT).

Everything that flows through the ingestion pipeline maps into these
types: the draft produced by the normalizer, the category key used by the
categorizer and the dimension resolver, the stored transaction and the
import job snapshot.
"""

import json
import sqlite3
import unicodedata
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any

MONTH_NAMES = [
    "JANUARY",
    "FEBRUARY",
    "MARCH",
    "APRIL",
    "MAY",
    "JUNE",
    "JULY",
    "AUGUST",
    "SEPTEMBER",
    "OCTOBER",
    "NOVEMBER",
    "DECEMBER",
]

UNKNOWN_CATEGORY_NAME = "Unknown"


def _fold(value: str) -> str:
    """Upper-case and strip accents so SAÍDA and SAIDA compare equal."""
    decomposed = unicodedata.normalize("NFKD", value.strip().upper())
    return "".join(c for c in decomposed if not unicodedata.combining(c)).replace(" ", "_")


class Flow(str, Enum):
    """Direction of money relative to the household."""

    INFLOW = "INFLOW"
    OUTFLOW = "OUTFLOW"

    @classmethod
    def parse(cls, value: Any) -> "Flow":
        """Parse a flow label, accepting the spreadsheet aliases.

        Raises:
            ValueError: If the label is not a known flow.
        """
        if isinstance(value, Flow):
            return value
        folded = _fold(str(value or ""))
        flow = _FLOW_ALIASES.get(folded)
        if flow is None:
            raise ValueError(f"Unknown flow {value!r}")
        return flow

    @classmethod
    def from_amount(cls, amount: Decimal) -> "Flow":
        """Zero and positive amounts are inflows."""
        return cls.INFLOW if amount >= 0 else cls.OUTFLOW


_FLOW_ALIASES = {
    "INFLOW": Flow.INFLOW,
    "INCOME": Flow.INFLOW,
    "ENTRADA": Flow.INFLOW,
    "OUTFLOW": Flow.OUTFLOW,
    "EXPENSE": Flow.OUTFLOW,
    "SAIDA": Flow.OUTFLOW,
}


class MajorCategory(str, Enum):
    """Fixed top level of the category hierarchy."""

    INCOME = "INCOME"
    EXTRA_INCOME = "EXTRA_INCOME"
    SAVINGS_INVESTMENTS = "SAVINGS_INVESTMENTS"
    FIXED_COSTS = "FIXED_COSTS"
    VARIABLE_COSTS = "VARIABLE_COSTS"
    GUILT_FREE_SPENDING = "GUILT_FREE_SPENDING"

    @classmethod
    def parse(cls, value: Any) -> "MajorCategory":
        if isinstance(value, MajorCategory):
            return value
        folded = _fold(str(value or ""))
        if folded in cls.__members__:
            return cls[folded]
        major = _MAJOR_ALIASES.get(folded)
        if major is None:
            raise ValueError(f"Unknown major category {value!r}")
        return major


_MAJOR_ALIASES = {
    "RENDIMENTO": MajorCategory.INCOME,
    "RENDIMENTO_EXTRA": MajorCategory.EXTRA_INCOME,
    "ECONOMIA_INVESTIMENTOS": MajorCategory.SAVINGS_INVESTMENTS,
    "ECONOMIA_E_INVESTIMENTOS": MajorCategory.SAVINGS_INVESTMENTS,
    "ECONOMIAS": MajorCategory.SAVINGS_INVESTMENTS,
    "INVESTIMENTOS": MajorCategory.SAVINGS_INVESTMENTS,
    "SAVINGS": MajorCategory.SAVINGS_INVESTMENTS,
    "CUSTOS_FIXOS": MajorCategory.FIXED_COSTS,
    "CUSTOS_VARIAVEIS": MajorCategory.VARIABLE_COSTS,
    "GASTOS_SEM_CULPA": MajorCategory.GUILT_FREE_SPENDING,
}


class RecordKind(str, Enum):
    """What a bulk import file contains."""

    ORIGINS = "origins"
    BANKS = "banks"
    CATEGORIES = "categories"
    TRANSACTIONS = "transactions"


class SourceKind(str, Enum):
    """Where a raw record came from."""

    SPREADSHEET = "spreadsheet"
    PROVIDER_SYNC = "provider_sync"


class JobStatus(str, Enum):
    """Status of an import job."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class UpsertOutcome(str, Enum):
    """Result of writing one transaction."""

    CREATED = "created"
    UPDATED = "updated"


@dataclass(frozen=True)
class CategoryKey:
    """Natural key of a category: (flow, major, category, sub-category)."""

    flow: Flow
    major_category: MajorCategory
    category: str
    sub_category: str

    @classmethod
    def unknown(cls, flow: Flow) -> "CategoryKey":
        """The pre-provisioned fallback category for a flow."""
        major = MajorCategory.EXTRA_INCOME if flow == Flow.INFLOW else MajorCategory.VARIABLE_COSTS
        return cls(flow, major, UNKNOWN_CATEGORY_NAME, UNKNOWN_CATEGORY_NAME)

    def as_tuple(self) -> tuple[str, str, str, str]:
        return (self.flow.value, self.major_category.value, self.category, self.sub_category)

    def __str__(self) -> str:
        return " / ".join(self.as_tuple())


@dataclass
class DraftTransaction:
    """
    A normalized record ready for categorization and upsert.

    amount is always the non-negative magnitude; flow carries the direction.
    """

    date: date
    flow: Flow
    amount: Decimal
    description: str
    origin: str
    bank: str
    source_kind: SourceKind
    category: CategoryKey | None = None
    notes: str | None = None
    external_id: str | None = None
    account_id: str | None = None
    raw_payload: dict[str, Any] = field(default_factory=dict)

    @property
    def month(self) -> str:
        return MONTH_NAMES[self.date.month - 1]

    @property
    def year(self) -> int:
        return self.date.year

    @property
    def income_amount(self) -> Decimal | None:
        return self.amount if self.flow == Flow.INFLOW else None

    @property
    def outgoing_amount(self) -> Decimal | None:
        return self.amount if self.flow == Flow.OUTFLOW else None


@dataclass
class CategoryAssignment:
    """Outcome of categorization for one draft."""

    category_id: int
    key: CategoryKey
    confidence: float
    is_machine_categorized: bool
    is_human_validated: bool = False

    @property
    def is_unknown(self) -> bool:
        return self.key.category == UNKNOWN_CATEGORY_NAME


@dataclass
class TransactionRecord:
    """A stored ledger transaction."""

    id: int
    date: str
    month: str
    year: int
    flow: Flow
    income_amount: Decimal | None
    outgoing_amount: Decimal | None
    description: str
    notes: str | None
    origin_id: int
    bank_id: int
    category_id: int
    external_id: str | None
    account_id: str | None
    source_kind: SourceKind
    categorization_confidence: float
    is_machine_categorized: bool
    is_human_validated: bool
    raw_payload: dict[str, Any]
    created_at: str
    updated_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "TransactionRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            date=row["date"],
            month=row["month"],
            year=row["year"],
            flow=Flow(row["flow"]),
            income_amount=Decimal(row["income_amount"]) if row["income_amount"] else None,
            outgoing_amount=Decimal(row["outgoing_amount"]) if row["outgoing_amount"] else None,
            description=row["description"],
            notes=row["notes"],
            origin_id=row["origin_id"],
            bank_id=row["bank_id"],
            category_id=row["category_id"],
            external_id=row["external_id"],
            account_id=row["account_id"],
            source_kind=SourceKind(row["source_kind"]),
            categorization_confidence=row["categorization_confidence"],
            is_machine_categorized=bool(row["is_machine_categorized"]),
            is_human_validated=bool(row["is_human_validated"]),
            raw_payload=json.loads(row["raw_payload"]) if row["raw_payload"] else {},
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@dataclass
class ImportJob:
    """An asynchronous bulk import job."""

    id: str
    source_label: str
    record_kind: RecordKind
    status: JobStatus
    total_records: int = 0
    processed_records: int = 0
    failed_records: int = 0
    error_report: list[dict[str, Any]] = field(default_factory=list)
    error_message: str | None = None
    created_at: str = ""
    started_at: str | None = None
    completed_at: str | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ImportJob":
        """Create from database row."""
        return cls(
            id=row["id"],
            source_label=row["source_label"],
            record_kind=RecordKind(row["record_kind"]),
            status=JobStatus(row["status"]),
            total_records=row["total_records"],
            processed_records=row["processed_records"],
            failed_records=row["failed_records"],
            error_report=json.loads(row["error_report"]) if row["error_report"] else [],
            error_message=row["error_message"],
            created_at=row["created_at"],
            started_at=row["started_at"],
            completed_at=row["completed_at"],
        )

    @property
    def percentage(self) -> float:
        """Share of records processed successfully, in percent."""
        if self.total_records == 0:
            return 100.0 if self.status.is_terminal else 0.0
        return round(self.processed_records * 100.0 / self.total_records, 1)

    def to_progress(self) -> dict[str, Any]:
        """Progress snapshot returned to pollers."""
        return {
            "jobId": self.id,
            "status": self.status.value,
            "sourceLabel": self.source_label,
            "recordKind": self.record_kind.value,
            "totalRecords": self.total_records,
            "processedRecords": self.processed_records,
            "failedRecords": self.failed_records,
            "percentage": self.percentage,
            "errorReport": list(self.error_report),
            "errorMessage": self.error_message,
            "createdAt": self.created_at,
            "completedAt": self.completed_at,
        }
