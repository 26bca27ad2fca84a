"""Tests for the provider synchronization service."""

from __future__ import annotations

import sqlite3
from datetime import date, timedelta
from decimal import Decimal

import pytest
import responses

from household_ledger.bankdata_client import BankDataClient, ProviderAPIError, ProviderConnectionError
from household_ledger.errors import ValidationError
from household_ledger.schemas import Flow
from household_ledger.scoring import KeywordScorer
from household_ledger.services import BankSyncService, IngestionAPI
from household_ledger.state_store import LedgerStore

from conftest import ACCOUNT_ID, provider_transaction


@pytest.fixture
def service(bank_client, store, config) -> BankSyncService:
    return BankSyncService(bank_client, store, config, scorer=KeywordScorer(config.scoring.rules))


class TestSyncAccount:
    """Single-account sync."""

    def test_flow_and_amount_from_sign(self, service, bank_client, store: LedgerStore) -> None:
        bank_client.get_transactions.return_value = [
            provider_transaction("tx-out", "-50.00", remittance="Card payment"),
            provider_transaction("tx-in", "1000.00", remittance="Transfer"),
        ]

        result = service.sync_account(ACCOUNT_ID)

        assert result.created == 2
        assert result.updated == 0
        assert result.errors == []

        outgoing = store.get_transaction_by_external_id("tx-out")
        assert outgoing.flow == Flow.OUTFLOW
        assert outgoing.outgoing_amount == Decimal("50.00")
        assert outgoing.income_amount is None

        income = store.get_transaction_by_external_id("tx-in")
        assert income.flow == Flow.INFLOW
        assert income.income_amount == Decimal("1000.00")
        assert income.outgoing_amount is None
        assert income.account_id == ACCOUNT_ID

    def test_second_sync_is_idempotent(self, service, bank_client, store: LedgerStore) -> None:
        bank_client.get_transactions.return_value = [
            provider_transaction(f"tx-{i}", f"-{i}.00") for i in range(1, 4)
        ]

        first = service.sync_account(ACCOUNT_ID)
        second = service.sync_account(ACCOUNT_ID)

        assert (first.created, first.updated) == (3, 0)
        assert (second.created, second.updated) == (0, 3)
        assert store.count_transactions() == 3

    def test_resync_updates_in_place(self, service, bank_client, store: LedgerStore) -> None:
        bank_client.get_transactions.return_value = [provider_transaction("tx-1", "-20.00", remittance="Pending text")]
        service.sync_account(ACCOUNT_ID)
        original = store.get_transaction_by_external_id("tx-1")

        bank_client.get_transactions.return_value = [provider_transaction("tx-1", "-20.00", remittance="Final text")]
        result = service.sync_account(ACCOUNT_ID)

        assert result.updated == 1
        assert result.created == 0
        updated = store.get_transaction_by_external_id("tx-1")
        assert updated.id == original.id
        assert updated.description == "Final text"

    def test_dimensions_from_account(self, service, bank_client, store: LedgerStore) -> None:
        bank_client.get_transactions.return_value = [provider_transaction("tx-1", "-1.00")]

        service.sync_account(ACCOUNT_ID)

        record = store.get_transaction_by_external_id("tx-1")
        assert record.origin_id == store.find_dimension("origin", ("Ana Silva",))
        assert record.bank_id == store.find_dimension("bank", ("Sandbox Finance",))

    def test_origin_defaults_when_owner_unknown(
        self, service, bank_client, provider_account, store: LedgerStore
    ) -> None:
        provider_account.owner_name = None
        bank_client.get_transactions.return_value = [provider_transaction("tx-1", "-1.00")]

        service.sync_account(ACCOUNT_ID)

        record = store.get_transaction_by_external_id("tx-1")
        assert record.origin_id == store.find_dimension("origin", ("Shared",))

    def test_keyword_categorization(self, service, bank_client, store: LedgerStore) -> None:
        groceries = store.insert_or_fetch_dimension("category", ("OUTFLOW", "VARIABLE_COSTS", "Food", "Groceries"))
        bank_client.get_transactions.return_value = [
            provider_transaction("tx-1", "-35.10", remittance="SUPERMARKET LISBOA"),
            provider_transaction("tx-2", "-9.99", remittance="Streaming service"),
        ]

        service.sync_account(ACCOUNT_ID)

        matched = store.get_transaction_by_external_id("tx-1")
        assert matched.category_id == groceries
        assert matched.is_machine_categorized is True
        assert matched.categorization_confidence == 0.8

        unmatched = store.get_transaction_by_external_id("tx-2")
        assert unmatched.category_id == store.find_dimension(
            "category", ("OUTFLOW", "VARIABLE_COSTS", "Unknown", "Unknown")
        )
        assert unmatched.categorization_confidence == 0.1
        assert unmatched.is_machine_categorized is False

    def test_bad_transaction_does_not_stop_account(self, service, bank_client, store: LedgerStore) -> None:
        broken = provider_transaction("tx-bad", "not-a-number")
        bank_client.get_transactions.return_value = [
            provider_transaction("tx-1", "-1.00"),
            broken,
            provider_transaction("tx-2", "-2.00"),
        ]

        result = service.sync_account(ACCOUNT_ID)

        assert result.created == 2
        assert len(result.errors) == 1
        assert result.errors[0].transaction_id == "tx-bad"
        assert result.success is False

    def test_default_window(self, service, bank_client) -> None:
        result = service.sync_account(ACCOUNT_ID)

        today = date.today()
        bank_client.get_transactions.assert_called_once_with(ACCOUNT_ID, today - timedelta(days=30), today)
        assert result.date_from == today - timedelta(days=30)
        assert result.date_to == today

    def test_explicit_window(self, service, bank_client) -> None:
        service.sync_account(ACCOUNT_ID, date(2024, 1, 1), date(2024, 1, 31))

        bank_client.get_transactions.assert_called_once_with(ACCOUNT_ID, date(2024, 1, 1), date(2024, 1, 31))

    def test_inverted_window(self, service) -> None:
        with pytest.raises(ValidationError):
            service.sync_account(ACCOUNT_ID, date(2024, 2, 1), date(2024, 1, 1))

    def test_provider_failure_becomes_error(self, service, bank_client) -> None:
        bank_client.get_transactions.side_effect = ProviderAPIError(500, "Internal error")

        result = service.sync_account(ACCOUNT_ID)

        assert result.created == 0
        assert len(result.errors) == 1
        assert result.errors[0].account_id == ACCOUNT_ID

    def test_recent_sync_is_skipped_unless_forced(self, service, bank_client, config, store) -> None:
        config.sync.min_interval_minutes = 60
        store.record_sync_run(ACCOUNT_ID, "2024-01-01", "2024-01-31", 0, 0, 0)

        skipped = service.sync_account(ACCOUNT_ID)
        forced = service.sync_account(ACCOUNT_ID, force=True)

        assert skipped.skipped is True
        assert forced.skipped is False
        bank_client.get_transactions.assert_called_once()

    def test_unexpected_account_failure_becomes_error(self, service, bank_client) -> None:
        bank_client.get_account.side_effect = KeyError("access")

        result = service.sync_account(ACCOUNT_ID)

        assert result.created == 0
        assert len(result.errors) == 1
        assert result.errors[0].account_id == ACCOUNT_ID
        assert result.errors[0].message.startswith("KeyError")

    def test_store_failure_after_ingest_keeps_counts(self, service, bank_client, store, monkeypatch) -> None:
        bank_client.get_transactions.return_value = [provider_transaction("tx-1", "-1.00")]

        def broken_record(*args, **kwargs):
            raise sqlite3.OperationalError("disk I/O error")

        monkeypatch.setattr(store, "record_sync_run", broken_record)

        result = service.sync_account(ACCOUNT_ID)

        assert result.created == 1
        assert len(result.errors) == 1
        assert "disk I/O error" in result.errors[0].message

    def test_balance_without_amount(self, service, bank_client) -> None:
        bank_client.get_balances.return_value = [{"balanceType": "closingBooked", "balanceAmount": None}]

        (summary,) = service.list_accounts()

        assert summary["balance"] == {"amount": None, "currency": None, "type": "closingBooked"}

    def test_sync_run_recorded(self, service, bank_client, store) -> None:
        bank_client.get_transactions.return_value = [provider_transaction("tx-1", "-1.00")]

        service.sync_account(ACCOUNT_ID, date(2024, 1, 1), date(2024, 1, 31))

        run = store.get_last_sync_run(ACCOUNT_ID)
        assert run["created_count"] == 1
        assert run["date_from"] == "2024-01-01"


class TestSyncAllAccounts:
    """Multi-account sync."""

    def test_failures_are_isolated_per_account(self, service, bank_client, provider_account, store) -> None:
        bank_client.list_linked_account_ids.return_value = ["acc-broken", ACCOUNT_ID]

        def get_account(account_id):
            if account_id == "acc-broken":
                raise ProviderConnectionError("connection reset")
            return provider_account

        bank_client.get_account.side_effect = get_account
        bank_client.get_transactions.return_value = [provider_transaction("tx-1", "-5.00")]

        total = service.sync_all_accounts()

        assert total.accounts_processed == 2
        assert total.created == 1
        assert len(total.errors) == 1
        assert total.errors[0].account_id == "acc-broken"
        assert store.count_transactions() == 1

    def test_unexpected_exception_is_isolated(self, service, bank_client, provider_account) -> None:
        bank_client.list_linked_account_ids.return_value = ["acc-a", "acc-b"]
        bank_client.get_account.side_effect = [RuntimeError("boom"), provider_account]
        bank_client.get_transactions.return_value = [provider_transaction("tx-1", "-5.00")]

        total = service.sync_all_accounts()

        assert total.created == 1
        assert [e.account_id for e in total.errors] == ["acc-a"]

    def test_totals_are_summed(self, service, bank_client) -> None:
        bank_client.list_linked_account_ids.return_value = ["acc-a", "acc-b"]
        bank_client.get_transactions.side_effect = lambda account_id, *_: [
            provider_transaction(f"{account_id}-1", "-1.00"),
            provider_transaction(f"{account_id}-2", "2.00"),
        ]

        total = service.sync_all_accounts()

        assert total.created == 4
        assert total.updated == 0
        assert total.to_dict()["accountsProcessed"] == 2

    def test_account_enumeration_failure(self, service, bank_client) -> None:
        bank_client.list_linked_account_ids.side_effect = ProviderConnectionError("DNS failure")

        total = service.sync_all_accounts()

        assert total.accounts_processed == 0
        assert len(total.errors) == 1
        assert total.errors[0].account_id is None


class TestListAccounts:
    def test_summary(self, service, bank_client, store) -> None:
        bank_client.get_balances.return_value = [
            {"balanceType": "closingBooked", "balanceAmount": {"amount": "100.00", "currency": "EUR"}},
            {"balanceType": "interimAvailable", "balanceAmount": {"amount": "90.00", "currency": "EUR"}},
        ]
        bank_client.get_transactions.return_value = [
            provider_transaction("tx-1", "-1.00", booking_date="2024-03-01"),
            provider_transaction("tx-2", "-1.00", booking_date="2024-03-07"),
        ]

        (summary,) = service.list_accounts()

        assert summary["id"] == ACCOUNT_ID
        assert summary["institution"] == "Sandbox Finance"
        assert summary["balance"] == {"amount": "90.00", "currency": "EUR", "type": "interimAvailable"}
        assert summary["recentTransactionCount"] == 2
        assert summary["lastTransactionDate"] == "2024-03-07"
        assert summary["lastSyncedAt"] is None
        assert store.count_transactions() == 0


class TestTriggerSyncWithProviderOutage:
    BASE_URL = "http://bankdata.test/api/v2"

    @responses.activate
    def test_html_response_is_reported_not_raised(self, store, config) -> None:
        responses.add(
            responses.POST,
            f"{self.BASE_URL}/token/new/",
            json={"access": "a", "access_expires": 86400, "refresh": "r", "refresh_expires": 2592000},
        )
        responses.add(
            responses.GET,
            f"{self.BASE_URL}/accounts/acc-1/",
            body="<html>Bad gateway</html>",
            status=200,
            content_type="text/html",
        )
        client = BankDataClient(self.BASE_URL, "secret-id", "secret-key", max_retries=0)
        api = IngestionAPI(store, config, client=client, scorer=KeywordScorer(config.scoring.rules))

        response = api.trigger_sync(account_id="acc-1")

        assert response["success"] is True
        data = response["data"]
        assert data["created"] == 0
        assert len(data["errors"]) == 1
        assert data["errors"][0]["accountId"] == "acc-1"
        assert "Invalid JSON" in data["errors"][0]["message"]
