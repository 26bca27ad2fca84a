"""
Dimension resolver.

Maps natural keys (origin name, bank name, category tuple) to dimension row
ids, creating rows that do not exist yet. Resolution is idempotent: the same
natural key always yields the same id, also when several import jobs race to
create it.
"""

import logging
from typing import TYPE_CHECKING

from ..errors import ConflictError, NotFoundError, ValidationError
from ..schemas.records import CategoryKey

if TYPE_CHECKING:
    from ..state_store import LedgerStore

logger = logging.getLogger(__name__)

# Attempts before a lost insert race is treated as a real failure
MAX_RESOLVE_ATTEMPTS = 3


class DimensionResolver:
    """
    Resolves dimension natural keys to ids.

    Caches resolved keys for the lifetime of the resolver (one import job or
    one sync run) to avoid a round trip per record.
    """

    def __init__(self, store: "LedgerStore"):
        """
        Initialize the resolver.

        Args:
            store: LedgerStore holding the dimension tables
        """
        self.store = store
        self._cache: dict[tuple[str, tuple[str, ...]], int] = {}

    @staticmethod
    def _clean(entity: str, key: tuple[str, ...]) -> tuple[str, ...]:
        cleaned = tuple(str(part).strip() if part is not None else "" for part in key)
        if any(not part for part in cleaned):
            raise ValidationError(f"Empty natural key for {entity}: {key!r}", field=entity)
        return cleaned

    def resolve(self, entity: str, key: tuple[str, ...]) -> int:
        """
        Get or create the dimension row for a natural key.

        Args:
            entity: "origin", "bank" or "category"
            key: Natural key components

        Returns:
            Dimension row id

        Raises:
            ValidationError: If a key component is empty
            NotFoundError: If the row could not be created or fetched
        """
        key = self._clean(entity, key)
        cache_key = (entity, key)
        if cache_key in self._cache:
            return self._cache[cache_key]

        for attempt in range(1, MAX_RESOLVE_ATTEMPTS + 1):
            try:
                row_id = self.store.insert_or_fetch_dimension(entity, key)
                break
            except ConflictError:
                # Another writer got there first; re-fetch
                logger.debug("Insert race on %s %r (attempt %d)", entity, key, attempt)
                row_id = self.store.find_dimension(entity, key)
                if row_id is not None:
                    break
        else:
            raise NotFoundError(entity, key)

        self._cache[cache_key] = row_id
        return row_id

    def find(self, entity: str, key: tuple[str, ...]) -> int | None:
        """Look up a dimension row without creating it."""
        key = self._clean(entity, key)
        cache_key = (entity, key)
        if cache_key in self._cache:
            return self._cache[cache_key]
        row_id = self.store.find_dimension(entity, key)
        if row_id is not None:
            self._cache[cache_key] = row_id
        return row_id

    def resolve_origin(self, name: str) -> int:
        return self.resolve("origin", (name,))

    def resolve_bank(self, name: str) -> int:
        return self.resolve("bank", (name,))

    def resolve_category(self, key: CategoryKey) -> int:
        return self.resolve("category", key.as_tuple())

    def find_category(self, key: CategoryKey) -> int | None:
        return self.find("category", key.as_tuple())

    def clear_cache(self) -> None:
        self._cache.clear()
