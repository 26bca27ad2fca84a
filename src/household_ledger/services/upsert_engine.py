"""
Dedup/upsert engine.

Provider transactions carry an external_id and are written with
insert-or-update semantics, so overlapping sync windows never duplicate a
ledger row and a re-synced transaction keeps its id. Spreadsheet rows have
no stable key and are always inserted.
"""

import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from ..schemas.records import CategoryAssignment, DraftTransaction, UpsertOutcome

if TYPE_CHECKING:
    from ..state_store import LedgerStore

logger = logging.getLogger(__name__)


@dataclass
class DimensionRefs:
    """Resolved dimension ids for one transaction."""

    origin_id: int
    bank_id: int


def _money(value) -> str | None:
    return None if value is None else f"{value:.2f}"


class TransactionUpsertEngine:
    """Writes categorized drafts to the ledger."""

    def __init__(self, store: "LedgerStore"):
        self.store = store

    @staticmethod
    def build_values(
        draft: DraftTransaction, refs: DimensionRefs, assignment: CategoryAssignment
    ) -> dict[str, Any]:
        """Column values for a ledger row."""
        return {
            "date": draft.date.isoformat(),
            "month": draft.month,
            "year": draft.year,
            "flow": draft.flow.value,
            "income_amount": _money(draft.income_amount),
            "outgoing_amount": _money(draft.outgoing_amount),
            "description": draft.description,
            "notes": draft.notes,
            "origin_id": refs.origin_id,
            "bank_id": refs.bank_id,
            "category_id": assignment.category_id,
            "external_id": draft.external_id,
            "account_id": draft.account_id,
            "source_kind": draft.source_kind.value,
            "categorization_confidence": assignment.confidence,
            "is_machine_categorized": int(assignment.is_machine_categorized),
            "is_human_validated": int(assignment.is_human_validated),
            "raw_payload": json.dumps(draft.raw_payload, default=str),
        }

    def upsert(
        self, draft: DraftTransaction, refs: DimensionRefs, assignment: CategoryAssignment
    ) -> tuple[int, UpsertOutcome]:
        """
        Write one transaction.

        Returns:
            Tuple of (transaction id, CREATED or UPDATED)

        Raises:
            NotFoundError: If a dimension reference does not exist
        """
        values = self.build_values(draft, refs, assignment)

        if draft.external_id:
            transaction_id, outcome = self.store.upsert_transaction_by_external_id(values)
            logger.debug(
                "%s transaction %d (external_id=%s)",
                outcome.value.capitalize(),
                transaction_id,
                draft.external_id,
            )
            return transaction_id, outcome

        transaction_id = self.store.insert_transaction(values)
        return transaction_id, UpsertOutcome.CREATED
