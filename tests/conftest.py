"""Test fixtures and utilities."""

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from household_ledger.bankdata_client import BankDataClient, ProviderAccount
from household_ledger.config import Config, KeywordRule
from household_ledger.state_store import LedgerStore

ACCOUNT_ID = "7e944232-bda9-40bc-b784-660c7ab5fe78"


def provider_transaction(
    transaction_id: str,
    amount: str,
    booking_date: str = "2024-03-05",
    remittance: str | None = "Card payment",
    **extra,
) -> dict:
    """A booked transaction as the provider returns it."""
    txn = {
        "transactionId": transaction_id,
        "bookingDate": booking_date,
        "valueDate": booking_date,
        "transactionAmount": {"amount": amount, "currency": "EUR"},
    }
    if remittance is not None:
        txn["remittanceInformationUnstructured"] = remittance
    txn.update(extra)
    return txn


def csv_bytes(*lines: str) -> bytes:
    return ("\n".join(lines) + "\n").encode("utf-8")


@pytest.fixture
def temp_db(tmp_path) -> Path:
    """Path to a temporary ledger database."""
    return tmp_path / "test_ledger.db"


@pytest.fixture
def store(temp_db) -> LedgerStore:
    """Fresh ledger store with migrations applied."""
    return LedgerStore(temp_db)


@pytest.fixture
def config(temp_db) -> Config:
    """Config with deterministic keyword scoring."""
    config = Config(state_db_path=temp_db)
    config.bankdata.secret_id = "test-id"
    config.bankdata.secret_key = "test-key"
    config.scoring.rules = [
        KeywordRule(
            keywords=["salary"],
            flow="INFLOW",
            major_category="INCOME",
            category="Salary",
            sub_category="Net Salary",
            priority=10,
        ),
        KeywordRule(
            keywords=["supermarket"],
            flow="OUTFLOW",
            major_category="VARIABLE_COSTS",
            category="Food",
            sub_category="Groceries",
            priority=8,
        ),
    ]
    return config


@pytest.fixture
def provider_account() -> ProviderAccount:
    return ProviderAccount(
        id=ACCOUNT_ID,
        iban="PT50000201231234567890154",
        name="Main account",
        owner_name="Ana Silva",
        currency="EUR",
        status="READY",
        institution_id="SANDBOXFINANCE_SFIN0000",
        institution_name="Sandbox Finance",
    )


@pytest.fixture
def bank_client(provider_account) -> MagicMock:
    """Provider client mock with one linked account and no transactions."""
    client = MagicMock(spec=BankDataClient)
    client.list_linked_account_ids.return_value = [ACCOUNT_ID]
    client.get_account.return_value = provider_account
    client.get_transactions.return_value = []
    client.get_balances.return_value = []
    return client
