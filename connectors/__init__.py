"""Bank Connectors - Pluggable bank API integrations.

This package contains the abstract bank interface and concrete
implementations for specific bank API standards (Berlin Group PSD2, ...).

The banking domain is bank-neutral. This package handles:
- Bank API authentication (OAuth2 client credentials, mTLS)
- Wire format translation (Berlin Group JSON -> normalized refs)
- API communication, pagination and retries
- Mapping HTTP failures to BankApiError subclasses

Key Design Principle:
- The banking services and API routes depend ONLY on the BankConnector interface
- All methods return NORMALIZED types (AccountRef, TransactionRef, ...)
- No Berlin Group wire types leak through the interface

To add a new bank API:
1. Create a new folder (e.g., stet/)
2. Implement BankConnector interface
3. Register using @register_connector decorator
"""

from connectors.bank_base import (
    # Core interface
    BankConnector,
    BankConfig,
    BankConsentStatus,

    # Transport errors
    BankApiError,
    BankUnauthorizedError,
    BankNotFoundError,
    BankRateLimitError,
    BankValidationError,

    # Normalized reference types
    ConsentPayload,
    ConsentRef,
    AccountRef,
    BalanceRef,
    TransactionRef,
    PaymentPayload,
    PaymentRef,

    # Factory functions
    create_connector,
    register_connector,
    list_available_connectors,
)

__all__ = [
    # Core interface
    "BankConnector",
    "BankConfig",
    "BankConsentStatus",

    # Transport errors
    "BankApiError",
    "BankUnauthorizedError",
    "BankNotFoundError",
    "BankRateLimitError",
    "BankValidationError",

    # Normalized reference types
    "ConsentPayload",
    "ConsentRef",
    "AccountRef",
    "BalanceRef",
    "TransactionRef",
    "PaymentPayload",
    "PaymentRef",

    # Factory
    "create_connector",
    "register_connector",
    "list_available_connectors",
]
