"""
Bank-data provider API client.

Provides:
- Access token management
- Linked account enumeration and account metadata
- Booked transactions for a date window
- Balances

Treats provider errors as loud failures (ProviderError subclasses).
"""

from .client import (
    BankDataClient,
    ProviderAccount,
    ProviderAPIError,
    ProviderAuthError,
    ProviderConnectionError,
    ProviderRateLimitError,
)

__all__ = [
    "BankDataClient",
    "ProviderAccount",
    "ProviderAPIError",
    "ProviderAuthError",
    "ProviderConnectionError",
    "ProviderRateLimitError",
]
