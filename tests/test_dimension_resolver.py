"""Tests for the dimension resolver."""

import threading
from unittest.mock import MagicMock

import pytest

from household_ledger.errors import ConflictError, NotFoundError, ValidationError
from household_ledger.schemas import CategoryKey, Flow, MajorCategory
from household_ledger.services import DimensionResolver


class TestDimensionResolver:
    @pytest.fixture
    def resolver(self, store) -> DimensionResolver:
        return DimensionResolver(store)

    def test_resolve_creates_once(self, resolver, store):
        first = resolver.resolve_bank("Main Bank")
        resolver.clear_cache()
        second = resolver.resolve_bank("Main Bank")

        assert first == second
        assert store.count_dimension("bank") == 1

    def test_resolve_strips_whitespace(self, resolver):
        assert resolver.resolve_origin("  Ana ") == resolver.resolve_origin("Ana")

    def test_two_resolvers_converge(self, store):
        key = CategoryKey(Flow.OUTFLOW, MajorCategory.FIXED_COSTS, "Home", "Rent")

        a = DimensionResolver(store).resolve_category(key)
        b = DimensionResolver(store).resolve_category(key)

        assert a == b

    def test_concurrent_resolvers_create_one_row(self, store):
        """Threads racing on the same new bank all get the same id."""
        workers = 8
        barrier = threading.Barrier(workers)
        ids: list[int] = []
        failures: list[BaseException] = []
        lock = threading.Lock()

        def resolve():
            resolver = DimensionResolver(store)
            barrier.wait()
            try:
                bank_id = resolver.resolve_bank("Brand New Bank")
            except Exception as e:
                with lock:
                    failures.append(e)
                return
            with lock:
                ids.append(bank_id)

        threads = [threading.Thread(target=resolve) for _ in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        assert failures == []
        assert len(ids) == workers
        assert len(set(ids)) == 1
        assert store.count_dimension("bank") == 1

    def test_resolves_seeded_unknown(self, resolver, store):
        key = CategoryKey.unknown(Flow.INFLOW)
        assert resolver.resolve_category(key) == store.find_dimension("category", key.as_tuple())

    @pytest.mark.parametrize("name", ["", "   ", None])
    def test_empty_key(self, resolver, name):
        with pytest.raises(ValidationError):
            resolver.resolve_bank(name)

    def test_find_does_not_create(self, resolver, store):
        assert resolver.find("bank", ("Nowhere",)) is None
        assert store.count_dimension("bank") == 0

    def test_lost_race_refetches(self):
        store = MagicMock()
        store.insert_or_fetch_dimension.side_effect = ConflictError("bank", ("Main Bank",))
        store.find_dimension.return_value = 42

        assert DimensionResolver(store).resolve_bank("Main Bank") == 42
        store.insert_or_fetch_dimension.assert_called_once()

    def test_persistent_conflict(self):
        store = MagicMock()
        store.insert_or_fetch_dimension.side_effect = ConflictError("bank", ("Main Bank",))
        store.find_dimension.return_value = None

        with pytest.raises(NotFoundError):
            DimensionResolver(store).resolve_bank("Main Bank")
        assert store.insert_or_fetch_dimension.call_count == 3

    def test_cache_avoids_round_trip(self):
        store = MagicMock()
        store.insert_or_fetch_dimension.return_value = 7
        resolver = DimensionResolver(store)

        resolver.resolve_bank("B")
        resolver.resolve_bank("B")

        store.insert_or_fetch_dimension.assert_called_once()
