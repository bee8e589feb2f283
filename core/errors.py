"""Banking error taxonomy.

Every error raised across a component boundary (state machine, sync engine,
categorization, linker) is a ``BankingError``. Each class carries a stable
machine-readable ``code`` and the HTTP status the API maps it to, so route
handlers never have to translate exceptions themselves.
"""

from datetime import datetime
from typing import Any, Dict, Optional


class BankingError(Exception):
    """Base class for all banking domain errors."""

    code: str = "BANKING_ERROR"
    http_status: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        """Error body in the API envelope format."""
        return {"code": self.code, "message": self.message}


class InvalidScopeError(BankingError):
    """Consent access scope declares no populated subset."""

    code = "INVALID_SCOPE"
    http_status = 400


class InvalidConsentRequestError(BankingError):
    """Consent request fails validation (validity window, frequency)."""

    code = "INVALID_CONSENT_REQUEST"
    http_status = 400


class InvalidPatternError(BankingError):
    """Category rule pattern cannot be compiled."""

    code = "INVALID_PATTERN"
    http_status = 400

    def __init__(self, message: str, rule_id: Optional[int] = None):
        super().__init__(message)
        self.rule_id = rule_id


class ConsentNotYetAuthorizedError(BankingError):
    """The bank reports the SCA flow for the consent as incomplete."""

    code = "CONSENT_NOT_AUTHORIZED"
    http_status = 409


class ConsentExpiredError(BankingError):
    """The consent is no longer valid; the connection has been expired."""

    code = "CONSENT_EXPIRED"
    http_status = 409

    def __init__(self, message: str, connection_id: Optional[int] = None):
        super().__init__(message)
        self.connection_id = connection_id


class ConnectionStateError(BankingError):
    """Operation not allowed in the connection's current status."""

    code = "INVALID_CONNECTION_STATE"
    http_status = 409


class RateLimitedError(BankingError):
    """Daily access frequency exhausted (locally or reported by the bank).

    Not a fault: schedulers retry after ``retry_after``.
    """

    code = "RATE_LIMITED"
    http_status = 429

    def __init__(self, message: str, retry_after: Optional[datetime] = None):
        super().__init__(message)
        self.retry_after = retry_after

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.retry_after:
            data["retryAfter"] = self.retry_after.isoformat()
        return data


class SyncFailedError(BankingError):
    """Bank API failed after the retry budget was exhausted."""

    code = "SYNC_FAILED"
    http_status = 502


class SyncInProgressError(BankingError):
    """Another process holds the connection's sync lease."""

    code = "SYNC_IN_PROGRESS"
    http_status = 409


class InvalidDateRangeError(BankingError):
    """Sync or query window has dateFrom after dateTo."""

    code = "INVALID_DATE_RANGE"
    http_status = 400


class InvalidPaymentError(BankingError):
    """Payment initiation request is incomplete or malformed."""

    code = "INVALID_PAYMENT"
    http_status = 400


class NotFoundError(BankingError):
    """Unknown connection, account, transaction, rule, consent or invoice."""

    code = "NOT_FOUND"
    http_status = 404


class ProviderNotConfiguredError(BankingError):
    """No PSD2 provider credentials are available."""

    code = "PROVIDER_NOT_CONFIGURED"
    http_status = 503


def connection_not_found(connection_id: int) -> NotFoundError:
    return NotFoundError(f"Bank connection {connection_id} not found")


def account_not_found(account_id: int) -> NotFoundError:
    return NotFoundError(f"Bank account {account_id} not found")


def transaction_not_found(transaction_id: int) -> NotFoundError:
    return NotFoundError(f"Transaction {transaction_id} not found")


def rule_not_found(rule_id: int) -> NotFoundError:
    return NotFoundError(f"Category rule {rule_id} not found")
