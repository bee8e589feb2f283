"""
Consent Store

Durable record of PSD2 consent requests. No network calls happen here; the
connection state machine submits stored requests to the bank.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Callable, Optional

from core.errors import InvalidConsentRequestError, InvalidScopeError, NotFoundError
from core.observability.logging import get_logger

from .db import BankingStore
from .models import ConsentRequest

logger = get_logger(__name__)

MIN_FREQUENCY_PER_DAY = 1
MAX_FREQUENCY_PER_DAY = 100


class ConsentStore:
    """
    Stores and validates consent requests.

    Usage:
        consents = ConsentStore(store)
        consent_id = consents.create(request)
        consents.is_valid(consent_id, datetime.now(timezone.utc))
    """

    def __init__(self, store: BankingStore, clock: Optional[Callable[[], datetime]] = None):
        self._store = store
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def create(self, request: ConsentRequest) -> int:
        """
        Validate and persist a consent request.

        Raises:
            InvalidScopeError: The access scope grants nothing
            InvalidConsentRequestError: validUntil not in the future, or
                frequencyPerDay outside 1-100
        """
        if request.access.is_empty:
            raise InvalidScopeError(
                "Consent access must include accounts, balances, transactions, "
                "availableAccounts or allPsd2"
            )

        today = self._clock().astimezone(timezone.utc).date()
        if request.valid_until <= today:
            raise InvalidConsentRequestError(
                f"validUntil must be in the future (got {request.valid_until.isoformat()})"
            )

        if not MIN_FREQUENCY_PER_DAY <= request.frequency_per_day <= MAX_FREQUENCY_PER_DAY:
            raise InvalidConsentRequestError(
                f"frequencyPerDay must be between {MIN_FREQUENCY_PER_DAY} and {MAX_FREQUENCY_PER_DAY}"
            )

        stored = self._store.insert_consent(request)
        logger.info(
            "Consent request stored",
            extra_fields={
                "consent_request_id": stored.id,
                "company_id": stored.company_id,
                "valid_until": stored.valid_until.isoformat(),
                "frequency_per_day": stored.frequency_per_day,
            },
        )
        return stored.id

    def get(self, consent_id: int) -> ConsentRequest:
        """
        Raises:
            NotFoundError: Unknown consent
        """
        request = self._store.get_consent(consent_id)
        if request is None:
            raise NotFoundError(f"Consent request {consent_id} not found")
        return request

    def is_valid(self, consent_id: int, at_time: Optional[datetime] = None) -> bool:
        """True iff at_time is on or before validUntil and the consent is not revoked."""
        return self.get(consent_id).is_valid_at(at_time or self._clock())

    def revoke(self, consent_id: int) -> None:
        """Mark the consent revoked. Revoking twice keeps the first timestamp."""
        self.get(consent_id)
        self._store.revoke_consent(consent_id, self._clock())
        logger.info("Consent request revoked", extra_fields={"consent_request_id": consent_id})


def default_valid_until(today: date, days: int = 90) -> date:
    """Validity used when a request does not specify one."""
    return today + timedelta(days=days)
