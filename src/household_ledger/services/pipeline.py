"""
Ingestion pipeline: categorize, resolve dimensions, upsert.

Shared by bulk transaction imports and provider syncs. One pipeline is built
per unit of work (an import job or a sync run) so the resolver cache does not
outlive it.
"""

import logging
from typing import TYPE_CHECKING

from ..schemas.records import DraftTransaction, UpsertOutcome
from .categorizer import Categorizer
from .dimension_resolver import DimensionResolver
from .upsert_engine import DimensionRefs, TransactionUpsertEngine

if TYPE_CHECKING:
    from ..config import Config
    from ..scoring import CategoryScorer
    from ..state_store import LedgerStore

logger = logging.getLogger(__name__)


class IngestionPipeline:
    """Runs a normalized draft through categorization and upsert."""

    def __init__(self, store: "LedgerStore", scorer: "CategoryScorer", config: "Config"):
        self.store = store
        self.resolver = DimensionResolver(store)
        self.categorizer = Categorizer(self.resolver, scorer, config.categorization)
        self.engine = TransactionUpsertEngine(store)

    def ingest(self, draft: DraftTransaction) -> tuple[int, UpsertOutcome]:
        """
        Write one draft to the ledger.

        Raises:
            ValidationError: If a dimension natural key is empty
            NotFoundError: If a dimension reference cannot be resolved
        """
        assignment = self.categorizer.categorize(draft)
        refs = DimensionRefs(
            origin_id=self.resolver.resolve_origin(draft.origin),
            bank_id=self.resolver.resolve_bank(draft.bank),
        )
        return self.engine.upsert(draft, refs, assignment)
