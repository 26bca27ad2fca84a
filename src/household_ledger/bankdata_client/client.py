"""
Bank-data provider API client implementation.

Talks to an account information API (GoCardless Bank Account Data style):
- POST /token/new/, /token/refresh/ for short-lived JWT access tokens
- GET /requisitions/ for bank links; status "LN" means linked
- GET /accounts/{id}/, /details/, /balances/, /transactions/
- GET /institutions/{id}/
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import date
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..errors import ProviderError

logger = logging.getLogger(__name__)

# Tokens are renewed this many seconds before they expire
TOKEN_EXPIRY_BUFFER = 300

LINKED_REQUISITION_STATUS = "LN"


class ProviderAuthError(ProviderError):
    """Credentials rejected or token could not be obtained."""

    pass


class ProviderConnectionError(ProviderError):
    """Failed to reach the provider."""

    pass


class ProviderAPIError(ProviderError):
    """API returned an error response."""

    def __init__(self, status_code: int, message: str, response_body: str | None = None):
        self.status_code = status_code
        self.message = message
        self.response_body = response_body
        super().__init__(f"Provider API error {status_code}: {message}")


class ProviderRateLimitError(ProviderAPIError):
    """Rate limit still exceeded after retries."""

    def __init__(self, message: str, retry_after: int | None = None, response_body: str | None = None):
        self.retry_after = retry_after
        super().__init__(429, message, response_body)


def _json_body(response: requests.Response, endpoint: str) -> dict:
    """Decode a successful response, which must be a JSON object."""
    try:
        data = response.json()
    except ValueError:
        raise ProviderAPIError(
            response.status_code,
            f"Invalid JSON from {endpoint}",
            response_body=response.text[:500],
        ) from None
    if not isinstance(data, dict):
        raise ProviderAPIError(
            response.status_code,
            f"Expected a JSON object from {endpoint}, got {type(data).__name__}",
            response_body=response.text[:500],
        )
    return data


@dataclass
class ProviderAccount:
    """A linked bank account as reported by the provider."""

    id: str
    iban: str | None = None
    name: str | None = None
    owner_name: str | None = None
    currency: str | None = None
    status: str | None = None
    institution_id: str | None = None
    institution_name: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def bank_name(self) -> str | None:
        """Institution display name, falling back to its id."""
        return self.institution_name or self.institution_id


@dataclass
class _Token:
    access: str
    access_expires_at: float
    refresh: str | None = None
    refresh_expires_at: float = 0.0

    def access_valid(self, now: float) -> bool:
        return bool(self.access) and self.access_expires_at > now + TOKEN_EXPIRY_BUFFER

    def refresh_valid(self, now: float) -> bool:
        return bool(self.refresh) and self.refresh_expires_at > now + TOKEN_EXPIRY_BUFFER


class BankDataClient:
    """
    Client for the bank-data provider API.

    Features:
    - Access token management (new, refresh, re-auth on 401)
    - Linked account enumeration
    - Booked transactions for a date window
    - Automatic retry with backoff on 429/5xx
    """

    DEFAULT_TIMEOUT = 30

    def __init__(
        self,
        base_url: str,
        secret_id: str,
        secret_key: str,
        timeout: int = DEFAULT_TIMEOUT,
        max_retries: int = 3,
        backoff_factor: float = 0.5,
    ):
        """
        Initialize the provider client.

        Args:
            base_url: API root (e.g., "https://bankaccountdata.gocardless.com/api/v2")
            secret_id: Provider secret id
            secret_key: Provider secret key
            timeout: Request timeout in seconds
            max_retries: Maximum retry attempts
            backoff_factor: Backoff factor for retries
        """
        self.base_url = base_url.rstrip("/")
        self.secret_id = secret_id
        self.secret_key = secret_key
        self.timeout = timeout
        self._token: _Token | None = None
        self._token_lock = threading.Lock()
        self._institution_names: dict[str, str] = {}

        self.session = requests.Session()
        self.session.headers.update(
            {
                "Accept": "application/json",
                "Content-Type": "application/json",
            }
        )

        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=backoff_factor,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET", "POST"],
            respect_retry_after_header=True,
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    @classmethod
    def from_config(cls, bankdata_config) -> "BankDataClient":
        return cls(
            base_url=bankdata_config.base_url,
            secret_id=bankdata_config.secret_id,
            secret_key=bankdata_config.secret_key,
            timeout=bankdata_config.timeout_seconds,
            max_retries=bankdata_config.max_retries,
        )

    # Token handling

    def _post_token(self, endpoint: str, body: dict) -> dict:
        url = f"{self.base_url}{endpoint}"
        try:
            response = self.session.post(url, json=body, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise ProviderConnectionError(f"Failed to reach provider at {self.base_url}: {e}") from e
        if not response.ok:
            raise ProviderAuthError(
                f"Token request {endpoint} failed: {response.status_code} {response.reason}"
            )
        data = _json_body(response, endpoint)
        if not data.get("access"):
            raise ProviderAuthError(f"Token response from {endpoint} has no access token")
        return data

    def _new_token(self) -> _Token:
        if not self.secret_id or not self.secret_key:
            raise ProviderAuthError("Provider credentials are not configured")
        data = self._post_token(
            "/token/new/", {"secret_id": self.secret_id, "secret_key": self.secret_key}
        )
        now = time.time()
        logger.debug("Obtained new provider access token")
        return _Token(
            access=data["access"],
            access_expires_at=now + float(data.get("access_expires", 0)),
            refresh=data.get("refresh"),
            refresh_expires_at=now + float(data.get("refresh_expires", 0)),
        )

    def _refresh_token(self, token: _Token) -> _Token:
        try:
            data = self._post_token("/token/refresh/", {"refresh": token.refresh})
        except ProviderAuthError:
            logger.warning("Refresh token rejected, requesting a new access token")
            return self._new_token()
        logger.debug("Refreshed provider access token")
        return _Token(
            access=data["access"],
            access_expires_at=time.time() + float(data.get("access_expires", 0)),
            refresh=token.refresh,
            refresh_expires_at=token.refresh_expires_at,
        )

    def get_access_token(self) -> str:
        """Return a valid access token, refreshing or renewing as needed."""
        with self._token_lock:
            now = time.time()
            token = self._token
            if token is not None and token.access_valid(now):
                return token.access
            if token is not None and token.refresh_valid(now):
                self._token = self._refresh_token(token)
            else:
                self._token = self._new_token()
            return self._token.access

    def _invalidate_token(self) -> None:
        with self._token_lock:
            self._token = None

    # Requests

    def _request(self, method: str, endpoint: str, params: dict | None = None) -> requests.Response:
        """Make an authenticated API request with error handling."""
        url = f"{self.base_url}{endpoint}"

        for attempt in (1, 2):
            headers = {"Authorization": f"Bearer {self.get_access_token()}"}
            logger.debug("API Request: %s %s %s", method, url, params or "")
            try:
                response = self.session.request(
                    method=method, url=url, params=params, headers=headers, timeout=self.timeout
                )
            except requests.exceptions.ConnectionError as e:
                logger.error("Connection error to %s: %s", url, e)
                raise ProviderConnectionError(f"Failed to connect to provider at {self.base_url}: {e}") from e
            except requests.exceptions.Timeout as e:
                logger.error("Timeout for %s: %s", url, e)
                raise ProviderConnectionError(f"Request to provider timed out: {e}") from e
            except requests.exceptions.RequestException as e:
                logger.error("Request error for %s: %s", url, e)
                raise ProviderError(f"Request failed: {e}") from e

            # Access token revoked or expired early; re-authenticate once
            if response.status_code == 401 and attempt == 1:
                logger.warning("Provider returned 401, re-authenticating")
                self._invalidate_token()
                continue
            break

        if response.ok:
            return response

        body = response.text
        try:
            error_json = response.json()
        except ValueError:
            error_json = None
        if isinstance(error_json, dict):
            message = error_json.get("detail") or error_json.get("summary") or response.reason
        else:
            message = response.reason

        logger.error("Provider API error %d on %s: %s", response.status_code, endpoint, message)
        if response.status_code == 401:
            raise ProviderAuthError(f"Provider rejected credentials: {message}")
        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            raise ProviderRateLimitError(
                message,
                retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
                response_body=body,
            )
        raise ProviderAPIError(response.status_code, message, response_body=body)

    def _get(self, endpoint: str, params: dict | None = None) -> dict:
        return _json_body(self._request("GET", endpoint, params=params), endpoint)

    def test_connection(self) -> bool:
        """Check that credentials are accepted."""
        try:
            self.get_access_token()
            return True
        except ProviderError:
            return False

    # Accounts

    def list_requisitions(self, max_pages: int = 20) -> list[dict]:
        """All requisitions (bank links), following pagination."""
        requisitions: list[dict] = []
        params: dict | None = {"limit": 100, "offset": 0}
        for _ in range(max_pages):
            data = self._get("/requisitions/", params=params)
            requisitions.extend(data.get("results", []))
            if not data.get("next"):
                break
            params = {"limit": 100, "offset": len(requisitions)}
        return requisitions

    def list_linked_account_ids(self) -> list[str]:
        """Account ids of every linked requisition, without duplicates."""
        account_ids: list[str] = []
        for requisition in self.list_requisitions():
            if requisition.get("status") != LINKED_REQUISITION_STATUS:
                continue
            for account_id in requisition.get("accounts") or []:
                if account_id not in account_ids:
                    account_ids.append(account_id)
        return account_ids

    def get_institution_name(self, institution_id: str) -> str | None:
        """Institution display name (cached); None if the lookup fails."""
        if institution_id in self._institution_names:
            return self._institution_names[institution_id]
        try:
            name = self._get(f"/institutions/{institution_id}/").get("name")
        except ProviderAPIError as e:
            logger.warning("Could not look up institution %s: %s", institution_id, e)
            return None
        if name:
            self._institution_names[institution_id] = name
        return name

    def get_account(self, account_id: str) -> ProviderAccount:
        """Account metadata merged from /accounts/{id}/ and /details/."""
        meta = self._get(f"/accounts/{account_id}/")
        try:
            details = self._get(f"/accounts/{account_id}/details/").get("account", {})
        except ProviderAPIError as e:
            # Some institutions do not expose details
            logger.debug("No details for account %s: %s", account_id, e)
            details = {}

        institution_id = meta.get("institution_id")
        return ProviderAccount(
            id=meta.get("id", account_id),
            iban=meta.get("iban") or details.get("iban"),
            name=details.get("name") or details.get("product") or meta.get("name"),
            owner_name=meta.get("owner_name") or details.get("ownerName"),
            currency=details.get("currency"),
            status=meta.get("status"),
            institution_id=institution_id,
            institution_name=self.get_institution_name(institution_id) if institution_id else None,
            raw={"account": meta, "details": details},
        )

    def get_balances(self, account_id: str) -> list[dict]:
        return self._get(f"/accounts/{account_id}/balances/").get("balances", [])

    def get_transactions(
        self,
        account_id: str,
        date_from: date | None = None,
        date_to: date | None = None,
    ) -> list[dict]:
        """
        Booked transactions of an account.

        Pending transactions are ignored: their identifiers are not stable.
        """
        params = {}
        if date_from:
            params["date_from"] = date_from.isoformat()
        if date_to:
            params["date_to"] = date_to.isoformat()
        data = self._get(f"/accounts/{account_id}/transactions/", params=params or None)
        booked = data.get("transactions", {}).get("booked", [])
        logger.debug("Fetched %d booked transactions for account %s", len(booked), account_id)
        return booked

    def close(self) -> None:
        self.session.close()
