"""
Categorizer.

Every transaction leaves here with a valid category reference:
- an explicit category from the source row is resolved and used as-is
- otherwise the scorer's suggestion is used when it is confident enough and
  names an existing category
- otherwise the flow's Unknown category is assigned with a sentinel confidence
"""

import logging
from typing import TYPE_CHECKING

from ..errors import NotFoundError
from ..schemas.records import CategoryAssignment, CategoryKey, DraftTransaction

if TYPE_CHECKING:
    from ..config import CategorizationConfig
    from ..scoring import CategoryScorer
    from .dimension_resolver import DimensionResolver

logger = logging.getLogger(__name__)


class Categorizer:
    """Assigns a category to a draft transaction."""

    def __init__(
        self,
        resolver: "DimensionResolver",
        scorer: "CategoryScorer",
        config: "CategorizationConfig",
    ):
        self.resolver = resolver
        self.scorer = scorer
        self.min_confidence = config.min_confidence
        self.unknown_confidence = config.unknown_confidence

    def categorize(self, draft: DraftTransaction) -> CategoryAssignment:
        """
        Categorize one draft.

        Returns:
            CategoryAssignment with a resolved category id

        Raises:
            NotFoundError: If the Unknown category for the flow is missing
        """
        if draft.category is not None:
            # Categories given by a person in the spreadsheet
            return CategoryAssignment(
                category_id=self.resolver.resolve_category(draft.category),
                key=draft.category,
                confidence=1.0,
                is_machine_categorized=False,
                is_human_validated=True,
            )

        try:
            suggestion = self.scorer.score(draft)
        except Exception as e:
            logger.warning("Scorer %s failed for %r: %s", self.scorer.name, draft.description, e)
            suggestion = None

        if suggestion is not None and suggestion.confidence >= self.min_confidence:
            if suggestion.key.flow == draft.flow:
                category_id = self.resolver.find_category(suggestion.key)
                if category_id is not None:
                    return CategoryAssignment(
                        category_id=category_id,
                        key=suggestion.key,
                        confidence=suggestion.confidence,
                        is_machine_categorized=True,
                    )
            logger.debug("Suggested category %s is not usable for %s", suggestion.key, draft.flow.value)

        return self.unknown(draft)

    def unknown(self, draft: DraftTransaction) -> CategoryAssignment:
        """The Unknown fallback for the draft's flow."""
        key = CategoryKey.unknown(draft.flow)
        category_id = self.resolver.find_category(key)
        if category_id is None:
            raise NotFoundError("category", key.as_tuple())
        return CategoryAssignment(
            category_id=category_id,
            key=key,
            confidence=self.unknown_confidence,
            is_machine_categorized=False,
        )
