"""Abstract Bank Connector Interface.

This module defines the interface that all bank connectors must implement.
It is intentionally vendor-agnostic - no Berlin Group, STET or UK Open
Banking specifics here.

Connectors implement this interface to:
1. Submit and track PSD2 consents
2. List accounts, balances and transactions under a consent
3. Initiate payments

Key Design Principles:
- All methods return NORMALIZED objects (AccountRef, TransactionRef, etc.)
- The banking services and the sweep workflow depend ONLY on this interface
- Vendor-specific implementations live in connector subfolders
- Transport failures are raised as BankApiError subclasses; the banking
  services translate them into domain errors
"""

from abc import ABC, abstractmethod
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# Transport Errors
# =============================================================================

class BankApiError(Exception):
    """Base exception for bank API errors."""
    def __init__(self, message: str, status_code: int = 0, response_body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class BankUnauthorizedError(BankApiError):
    """The bank rejected the consent (401, or CONSENT_INVALID/CONSENT_EXPIRED)."""
    pass


class BankNotFoundError(BankApiError):
    """Resource not found (404)."""
    pass


class BankRateLimitError(BankApiError):
    """Access frequency exceeded on the bank side (429 / ACCESS_EXCEEDED)."""
    def __init__(self, message: str, retry_after: int = 60):
        super().__init__(message, 429)
        self.retry_after = retry_after


class BankValidationError(BankApiError):
    """Request rejected as malformed (400)."""
    pass


# =============================================================================
# Enums
# =============================================================================

class BankConsentStatus(str, Enum):
    """Consent status as reported by the bank."""
    RECEIVED = "received"
    PARTIALLY_AUTHORISED = "partiallyAuthorised"
    VALID = "valid"
    REJECTED = "rejected"
    REVOKED = "revoked"
    REVOKED_BY_PSU = "revokedByPsu"
    EXPIRED = "expired"
    TERMINATED_BY_TPP = "terminatedByTpp"

    @property
    def is_awaiting_sca(self) -> bool:
        return self in (BankConsentStatus.RECEIVED, BankConsentStatus.PARTIALLY_AUTHORISED)

    @property
    def is_revoked(self) -> bool:
        return self in (
            BankConsentStatus.REJECTED,
            BankConsentStatus.REVOKED,
            BankConsentStatus.REVOKED_BY_PSU,
            BankConsentStatus.TERMINATED_BY_TPP,
        )


# =============================================================================
# Normalized Models (vendor-agnostic)
# =============================================================================

class ConsentPayload(BaseModel):
    """Consent request as submitted to a bank."""
    access: Dict[str, Any] = Field(..., description="Access scope in Berlin Group shape")
    valid_until: date
    recurring_indicator: bool = True
    frequency_per_day: int = 4
    combined_service_indicator: bool = False


class ConsentRef(BaseModel):
    """Bank-issued consent."""
    consent_id: str
    status: BankConsentStatus
    sca_redirect_url: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)


class AccountRef(BaseModel):
    """Account visible under a consent."""
    resource_id: str = Field(..., description="Bank-side account identifier for API calls")
    iban: Optional[str] = None
    currency: str = "EUR"
    name: Optional[str] = None
    owner_name: Optional[str] = None
    cash_account_type: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class BalanceRef(BaseModel):
    """Balance snapshot of one account."""
    balance: Optional[Decimal] = Field(default=None, description="Booked balance")
    available_balance: Optional[Decimal] = Field(default=None, description="Available balance")
    currency: str = "EUR"
    reference_date: Optional[date] = None
    last_change: Optional[datetime] = None

    model_config = ConfigDict(frozen=True)


class TransactionRef(BaseModel):
    """Transaction as reported by the bank. Amount is signed (negative = debit)."""
    external_id: Optional[str] = Field(default=None, description="Stable bank identifier when provided")
    amount: Decimal
    currency: str = "EUR"
    booking_date: Optional[date] = None
    value_date: Optional[date] = None
    description: str = ""
    reference: str = ""
    counterparty_name: Optional[str] = None
    counterparty_account: Optional[str] = None
    creditor_name: Optional[str] = None
    pending: bool = False

    model_config = ConfigDict(frozen=True)

    @property
    def transaction_date(self) -> Optional[date]:
        if self.pending:
            return self.value_date or self.booking_date
        return self.booking_date or self.value_date


class PaymentPayload(BaseModel):
    """SEPA credit transfer to initiate."""
    debtor_iban: str
    creditor_name: str
    creditor_iban: str
    amount: Decimal
    currency: str = "EUR"
    description: str = ""


class PaymentRef(BaseModel):
    """Payment initiation accepted by the bank."""
    payment_id: str
    status: str
    sca_redirect_url: Optional[str] = None

    model_config = ConfigDict(frozen=True)


# =============================================================================
# Connector Configuration
# =============================================================================

class BankConfig(BaseModel):
    """Connector configuration."""
    connector_type: str = Field(..., description="Registered connector type, e.g. 'psd2'")
    api_url: str
    client_id: str
    client_secret: str
    redirect_uri: str = ""
    certificate_path: Optional[str] = None
    key_path: Optional[str] = None
    timeout_seconds: int = 30
    max_retries: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 30.0


# =============================================================================
# Connector Interface
# =============================================================================

class BankConnector(ABC):
    """Interface every bank connector implements."""

    def __init__(self, config: BankConfig, on_retry: Optional[Callable[[], None]] = None):
        self.config = config
        self.on_retry = on_retry

    # -------------------------------------------------------------------------
    # Consents
    # -------------------------------------------------------------------------

    @abstractmethod
    async def create_consent(self, payload: ConsentPayload) -> ConsentRef:
        """Submit a consent request; the result carries the SCA redirect link."""
        pass

    @abstractmethod
    async def get_consent_status(self, consent_id: str) -> BankConsentStatus:
        """Query the bank for the current consent status."""
        pass

    @abstractmethod
    async def delete_consent(self, consent_id: str) -> None:
        """Terminate a consent at the bank."""
        pass

    # -------------------------------------------------------------------------
    # Account information
    # -------------------------------------------------------------------------

    @abstractmethod
    async def list_accounts(self, consent_id: str) -> List[AccountRef]:
        """List accounts accessible under the consent."""
        pass

    @abstractmethod
    async def get_balances(self, consent_id: str, resource_id: str) -> BalanceRef:
        """Get the current balances for one account."""
        pass

    @abstractmethod
    async def get_transactions(
        self,
        consent_id: str,
        resource_id: str,
        date_from: date,
        date_to: Optional[date] = None,
    ) -> List[TransactionRef]:
        """Get every booked and pending transaction in the window (all pages)."""
        pass

    # -------------------------------------------------------------------------
    # Payments
    # -------------------------------------------------------------------------

    @abstractmethod
    async def initiate_payment(self, consent_id: str, payload: PaymentPayload) -> PaymentRef:
        """Initiate a SEPA credit transfer."""
        pass

    async def close(self) -> None:
        """Release network resources."""
        pass

    def get_connector_name(self) -> str:
        return self.config.connector_type


# =============================================================================
# Connector Factory
# =============================================================================

_connector_registry: Dict[str, type] = {}


def register_connector(connector_type: str):
    """Decorator to register a connector implementation."""
    def decorator(cls):
        _connector_registry[connector_type] = cls
        return cls
    return decorator


def create_connector(config: BankConfig, **kwargs) -> BankConnector:
    """Create a connector instance from configuration.

    Extra keyword arguments (e.g. on_retry) are passed to the connector.

    Raises:
        ValueError: If connector_type is not registered
    """
    connector_type = config.connector_type.lower()

    if connector_type not in _connector_registry:
        available = list(_connector_registry.keys())
        raise ValueError(
            f"Unknown connector type: {connector_type}. "
            f"Available: {available}"
        )

    return _connector_registry[connector_type](config, **kwargs)


def list_available_connectors() -> List[str]:
    """List all registered connector types."""
    return list(_connector_registry.keys())
