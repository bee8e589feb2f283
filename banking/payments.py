"""
Payment Initiation

Submits SEPA credit transfers through the connection's consent. The bank
answers with a payment id and usually an SCA link; nothing is stored locally.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional

from connectors.bank_base import (
    BankApiError,
    BankConnector,
    BankRateLimitError,
    BankUnauthorizedError,
    BankValidationError,
    PaymentPayload,
    PaymentRef,
)
from core.errors import (
    ConnectionStateError,
    ConsentExpiredError,
    InvalidPaymentError,
    SyncFailedError,
    account_not_found,
)
from core.observability.logging import get_logger, with_correlation

from .connections import BankConnectionStateMachine
from .consents import ConsentStore
from .db import BankingStore
from .models import ConnectionStatus
from .ratelimit import rate_limited_from_bank

logger = get_logger(__name__)


class PaymentInitiator:
    """Initiates payments from a synced account."""

    def __init__(
        self,
        store: BankingStore,
        consents: ConsentStore,
        state_machine: BankConnectionStateMachine,
        connector_provider: Callable[[], BankConnector],
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._store = store
        self._consents = consents
        self._state_machine = state_machine
        self._connector_provider = connector_provider
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def initiate_payment(
        self,
        account_id: int,
        creditor_name: str,
        creditor_iban: str,
        amount: Decimal,
        currency: str = "EUR",
        description: str = "",
    ) -> PaymentRef:
        """
        Raises:
            NotFoundError: Unknown account
            InvalidPaymentError: Non-positive amount, missing creditor or debtor IBAN
            ConnectionStateError: Connection not active
            ConsentExpiredError: Consent lapsed or rejected by the bank
        """
        account = self._store.get_account(account_id)
        if account is None:
            raise account_not_found(account_id)
        if amount <= 0:
            raise InvalidPaymentError("Payment amount must be positive")
        if not creditor_name.strip() or not creditor_iban.strip():
            raise InvalidPaymentError("Creditor name and IBAN are required")
        if not account.iban:
            raise InvalidPaymentError(f"Account {account_id} has no IBAN to debit")

        connection = self._state_machine.get(account.connection_id)
        with with_correlation(company_id=connection.company_id, connection_id=connection.id, account_id=account_id):
            if connection.status != ConnectionStatus.ACTIVE:
                raise ConnectionStateError(f"Connection {connection.id} is {connection.status.value}")
            if not self._consents.is_valid(connection.consent_request_id, self._clock()):
                self._state_machine.mark_expired(connection.id)
                raise ConsentExpiredError(f"Consent for connection {connection.id} expired",
                                          connection_id=connection.id)

            payload = PaymentPayload(
                debtor_iban=account.iban,
                creditor_name=creditor_name.strip(),
                creditor_iban=creditor_iban.replace(" ", "").upper(),
                amount=amount,
                currency=currency,
                description=description,
            )
            connector = self._connector_provider()
            try:
                payment = await connector.initiate_payment(connection.consent_id, payload)
            except BankUnauthorizedError as e:
                self._state_machine.mark_expired(connection.id)
                raise ConsentExpiredError(f"Bank rejected the consent: {e}", connection_id=connection.id)
            except BankValidationError as e:
                raise InvalidPaymentError(f"Bank rejected the payment: {e}")
            except BankRateLimitError as e:
                raise rate_limited_from_bank(e, self._clock())
            except BankApiError as e:
                raise SyncFailedError(f"Payment initiation failed: {e}")

            logger.info(
                "Payment initiated",
                extra_fields={"payment_id": payment.payment_id, "status": payment.status, "amount": str(amount)},
            )
            return payment
