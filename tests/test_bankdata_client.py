"""
Tests for the bank-data provider client.

These tests use responses library to mock HTTP requests,
validating client behavior without making real API calls.
"""

from datetime import date

import pytest
import requests
import responses

from household_ledger.bankdata_client import (
    BankDataClient,
    ProviderAPIError,
    ProviderAuthError,
    ProviderConnectionError,
    ProviderRateLimitError,
)

BASE_URL = "http://bankdata.test/api/v2"


def add_token(access: str = "access-1", access_expires: int = 86400, refresh_expires: int = 2592000) -> None:
    responses.add(
        responses.POST,
        f"{BASE_URL}/token/new/",
        json={
            "access": access,
            "access_expires": access_expires,
            "refresh": "refresh-1",
            "refresh_expires": refresh_expires,
        },
        status=200,
    )


def make_client(**kwargs) -> BankDataClient:
    return BankDataClient(BASE_URL, "secret-id", "secret-key", max_retries=0, **kwargs)


def token_calls(endpoint: str = "/token/new/") -> int:
    return sum(1 for call in responses.calls if call.request.url.endswith(endpoint))


class TestTokens:
    @responses.activate
    def test_token_is_reused(self):
        add_token()
        client = make_client()

        assert client.get_access_token() == "access-1"
        assert client.get_access_token() == "access-1"
        assert token_calls() == 1

    @responses.activate
    def test_expiring_token_is_refreshed(self):
        # Expires inside the renewal buffer
        add_token(access_expires=60)
        responses.add(
            responses.POST,
            f"{BASE_URL}/token/refresh/",
            json={"access": "access-2", "access_expires": 86400},
            status=200,
        )
        client = make_client()

        client.get_access_token()
        assert client.get_access_token() == "access-2"
        assert token_calls("/token/refresh/") == 1

    @responses.activate
    def test_rejected_credentials(self):
        responses.add(responses.POST, f"{BASE_URL}/token/new/", json={"detail": "Invalid"}, status=401)

        with pytest.raises(ProviderAuthError):
            make_client().get_access_token()

    def test_missing_credentials(self):
        client = BankDataClient(BASE_URL, "", "", max_retries=0)
        with pytest.raises(ProviderAuthError):
            client.get_access_token()

    @responses.activate
    def test_test_connection(self):
        add_token()
        assert make_client().test_connection() is True

    @responses.activate
    def test_test_connection_failure(self):
        responses.add(
            responses.POST,
            f"{BASE_URL}/token/new/",
            body=requests.exceptions.ConnectionError("refused"),
        )
        assert make_client().test_connection() is False


class TestRequests:
    @responses.activate
    def test_bearer_header(self):
        add_token()
        responses.add(responses.GET, f"{BASE_URL}/accounts/acc-1/balances/", json={"balances": []})

        make_client().get_balances("acc-1")

        assert responses.calls[-1].request.headers["Authorization"] == "Bearer access-1"

    @responses.activate
    def test_401_reauthenticates_once(self):
        add_token()
        responses.add(responses.GET, f"{BASE_URL}/accounts/acc-1/balances/", json={"detail": "expired"}, status=401)
        responses.add(responses.GET, f"{BASE_URL}/accounts/acc-1/balances/", json={"balances": [{"balanceType": "x"}]})

        balances = make_client().get_balances("acc-1")

        assert balances == [{"balanceType": "x"}]
        assert token_calls() == 2

    @responses.activate
    def test_api_error(self):
        add_token()
        responses.add(
            responses.GET,
            f"{BASE_URL}/accounts/acc-1/balances/",
            json={"summary": "Not found", "detail": "Account acc-1 not found"},
            status=404,
        )

        with pytest.raises(ProviderAPIError) as exc_info:
            make_client().get_balances("acc-1")
        assert exc_info.value.status_code == 404
        assert exc_info.value.message == "Account acc-1 not found"

    @responses.activate
    def test_rate_limit(self):
        add_token()
        responses.add(
            responses.GET,
            f"{BASE_URL}/accounts/acc-1/transactions/",
            json={"detail": "Rate limit exceeded"},
            status=429,
            headers={"Retry-After": "120"},
        )

        with pytest.raises(ProviderRateLimitError) as exc_info:
            make_client().get_transactions("acc-1")
        assert exc_info.value.status_code == 429
        assert exc_info.value.retry_after == 120

    @responses.activate
    def test_connection_error(self):
        add_token()
        responses.add(
            responses.GET,
            f"{BASE_URL}/accounts/acc-1/balances/",
            body=requests.exceptions.ConnectionError("reset"),
        )

        with pytest.raises(ProviderConnectionError):
            make_client().get_balances("acc-1")


class TestAccounts:
    @responses.activate
    def test_linked_accounts_follow_pagination(self):
        add_token()
        responses.add(
            responses.GET,
            f"{BASE_URL}/requisitions/",
            json={
                "count": 3,
                "next": f"{BASE_URL}/requisitions/?limit=100&offset=2",
                "results": [
                    {"id": "req-1", "status": "LN", "accounts": ["acc-1", "acc-2"]},
                    {"id": "req-2", "status": "EX", "accounts": ["acc-3"]},
                ],
            },
        )
        responses.add(
            responses.GET,
            f"{BASE_URL}/requisitions/",
            json={
                "count": 3,
                "next": None,
                "results": [{"id": "req-3", "status": "LN", "accounts": ["acc-2", "acc-4"]}],
            },
        )

        assert make_client().list_linked_account_ids() == ["acc-1", "acc-2", "acc-4"]

    @responses.activate
    def test_get_account_merges_details(self):
        add_token()
        responses.add(
            responses.GET,
            f"{BASE_URL}/accounts/acc-1/",
            json={
                "id": "acc-1",
                "iban": "PT50000201231234567890154",
                "institution_id": "SANDBOXFINANCE_SFIN0000",
                "status": "READY",
                "owner_name": "Ana Silva",
            },
        )
        responses.add(
            responses.GET,
            f"{BASE_URL}/accounts/acc-1/details/",
            json={"account": {"currency": "EUR", "name": "Main account"}},
        )
        responses.add(
            responses.GET,
            f"{BASE_URL}/institutions/SANDBOXFINANCE_SFIN0000/",
            json={"id": "SANDBOXFINANCE_SFIN0000", "name": "Sandbox Finance"},
        )

        account = make_client().get_account("acc-1")

        assert account.iban == "PT50000201231234567890154"
        assert account.owner_name == "Ana Silva"
        assert account.currency == "EUR"
        assert account.name == "Main account"
        assert account.bank_name == "Sandbox Finance"

    @responses.activate
    def test_get_account_without_details(self):
        add_token()
        responses.add(responses.GET, f"{BASE_URL}/accounts/acc-1/", json={"id": "acc-1", "institution_id": "BANK_X"})
        responses.add(responses.GET, f"{BASE_URL}/accounts/acc-1/details/", json={"detail": "Forbidden"}, status=403)
        responses.add(responses.GET, f"{BASE_URL}/institutions/BANK_X/", json={"detail": "Not found"}, status=404)

        account = make_client().get_account("acc-1")

        assert account.id == "acc-1"
        assert account.owner_name is None
        assert account.bank_name == "BANK_X"

    @responses.activate
    def test_transactions_returns_booked_only(self):
        add_token()
        responses.add(
            responses.GET,
            f"{BASE_URL}/accounts/acc-1/transactions/",
            json={
                "transactions": {
                    "booked": [{"transactionId": "tx-1"}, {"transactionId": "tx-2"}],
                    "pending": [{"transactionAmount": {"amount": "-3.00", "currency": "EUR"}}],
                }
            },
        )

        booked = make_client().get_transactions("acc-1", date(2024, 1, 1), date(2024, 1, 31))

        assert [t["transactionId"] for t in booked] == ["tx-1", "tx-2"]
        url = responses.calls[-1].request.url
        assert "date_from=2024-01-01" in url
        assert "date_to=2024-01-31" in url


class TestMalformedResponses:
    @responses.activate
    def test_non_json_body_is_api_error(self):
        add_token()
        responses.add(
            responses.GET,
            f"{BASE_URL}/accounts/acc-1/transactions/",
            body="<html><body>Maintenance</body></html>",
            status=200,
            content_type="text/html",
        )

        with pytest.raises(ProviderAPIError) as exc_info:
            make_client().get_transactions("acc-1")
        assert exc_info.value.status_code == 200
        assert "Invalid JSON" in exc_info.value.message

    @responses.activate
    def test_json_array_body_is_api_error(self):
        add_token()
        responses.add(responses.GET, f"{BASE_URL}/accounts/acc-1/balances/", json=["unexpected"])

        with pytest.raises(ProviderAPIError):
            make_client().get_balances("acc-1")

    @responses.activate
    def test_token_without_access_is_auth_error(self):
        responses.add(
            responses.POST,
            f"{BASE_URL}/token/new/",
            json={"refresh": "refresh-1", "refresh_expires": 2592000},
            status=200,
        )

        with pytest.raises(ProviderAuthError):
            make_client().get_access_token()

    @responses.activate
    def test_error_body_that_is_not_an_object(self):
        add_token()
        responses.add(responses.GET, f"{BASE_URL}/accounts/acc-1/balances/", json=["boom"], status=500)

        with pytest.raises(ProviderAPIError) as exc_info:
            make_client().get_balances("acc-1")
        assert exc_info.value.status_code == 500
