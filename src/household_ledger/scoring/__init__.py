"""Category scoring collaborators (keyword rules or a remote scoring service)."""

from .service import (
    CategoryScorer,
    CategorySuggestion,
    KeywordScorer,
    NullScorer,
    RemoteCategoryScorer,
    create_scorer,
)

__all__ = [
    "CategoryScorer",
    "CategorySuggestion",
    "KeywordScorer",
    "NullScorer",
    "RemoteCategoryScorer",
    "create_scorer",
]
