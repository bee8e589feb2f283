"""
Bank Connection State Machine

Lifecycle of a bank connection:

    pending --valid--> active --lapse/401--> expired
       |                  |
       +------------------+--revoke/rejected--> revoked
       |
       +--lapse before SCA--> expired

expired and revoked are terminal. Every status write goes through
``_transition``, which checks ALLOWED_TRANSITIONS and compare-and-sets the
stored row.
"""

from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional

from connectors.bank_base import (
    BankApiError,
    BankConnector,
    BankConsentStatus,
    BankNotFoundError,
    BankRateLimitError,
    BankUnauthorizedError,
    BankValidationError,
    ConsentPayload,
)
from core.errors import (
    BankingError,
    ConnectionStateError,
    ConsentNotYetAuthorizedError,
    InvalidConsentRequestError,
    SyncFailedError,
    connection_not_found,
)
from core.observability.logging import get_logger, with_correlation
from core.observability.metrics import SyncMetrics

from .consents import ConsentStore
from .db import BankingStore
from .models import ALLOWED_TRANSITIONS, BankConnection, ConnectionStatus, ConsentRequest
from .ratelimit import rate_limited_from_bank

logger = get_logger(__name__)

ActivationHook = Callable[[BankConnection], Awaitable[None]]


class BankConnectionStateMachine:
    """
    Owns every bank connection status change.

    Args:
        store: Banking persistence
        consents: Consent request store
        connector_provider: Returns the configured BankConnector
            (raises ProviderNotConfiguredError when there is none)
        on_activated: Awaited after a connection becomes active; BankingError
            raised by it is logged and does not undo the activation
        clock: Current time source (UTC)
    """

    def __init__(
        self,
        store: BankingStore,
        consents: ConsentStore,
        connector_provider: Callable[[], BankConnector],
        on_activated: Optional[ActivationHook] = None,
        metrics: Optional[SyncMetrics] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._store = store
        self._consents = consents
        self._connector_provider = connector_provider
        self._on_activated = on_activated
        self._metrics = metrics
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def set_activation_hook(self, hook: Optional[ActivationHook]) -> None:
        self._on_activated = hook

    # =========================================================================
    # Queries
    # =========================================================================

    def get(self, connection_id: int) -> BankConnection:
        """
        Raises:
            NotFoundError: Unknown connection
        """
        connection = self._store.get_connection(connection_id)
        if connection is None:
            raise connection_not_found(connection_id)
        return connection

    def list_for_company(self, company_id: int) -> List[BankConnection]:
        return self._store.list_connections(company_id)

    # =========================================================================
    # Operations
    # =========================================================================

    async def create_connection(
        self,
        company_id: int,
        request: ConsentRequest,
        name: str,
        provider: str = "psd2",
    ) -> BankConnection:
        """
        Store the consent request, submit it to the bank and record a pending connection.

        Raises:
            InvalidScopeError / InvalidConsentRequestError: Request rejected locally or by the bank
            ProviderNotConfiguredError: No PSD2 provider credentials
            RateLimitedError / SyncFailedError: Bank unavailable
        """
        request.company_id = company_id
        connector = self._connector_provider()
        consent_request_id = self._consents.create(request)

        payload = ConsentPayload(
            access=request.access.to_dict(),
            valid_until=request.valid_until,
            recurring_indicator=request.recurring_indicator,
            frequency_per_day=request.frequency_per_day,
            combined_service_indicator=request.combined_service_indicator,
        )

        try:
            consent = await connector.create_consent(payload)
        except BankApiError as e:
            # The request never reached a bank-side consent; do not leave it usable
            self._consents.revoke(consent_request_id)
            if isinstance(e, BankValidationError):
                raise InvalidConsentRequestError(f"Bank rejected consent request: {e}")
            if isinstance(e, BankRateLimitError):
                raise rate_limited_from_bank(e, self._clock())
            raise SyncFailedError(f"Consent submission failed: {e}")

        connection = self._store.insert_connection(BankConnection(
            company_id=company_id,
            name=name,
            provider=provider,
            consent_id=consent.consent_id,
            consent_request_id=consent_request_id,
            valid_until=request.valid_until,
            status=ConnectionStatus.PENDING,
            sca_redirect_url=consent.sca_redirect_url,
        ))

        with with_correlation(company_id=company_id, connection_id=connection.id):
            logger.info(
                "Bank connection created",
                extra_fields={"consent_id": consent.consent_id, "bank_status": consent.status.value},
            )
        return connection

    async def refresh_status(self, connection_id: int) -> BankConnection:
        """
        Re-query the bank and apply the resulting transition.

        Terminal connections are returned unchanged without contacting the bank.

        Raises:
            ConsentNotYetAuthorizedError: Still pending SCA at the bank
            NotFoundError: Unknown connection
            RateLimitedError / SyncFailedError: Bank unavailable
        """
        connection = self.get(connection_id)
        if connection.status.is_terminal:
            return connection

        with with_correlation(company_id=connection.company_id, connection_id=connection.id):
            if not self._consents.is_valid(connection.consent_request_id, self._clock()):
                return self._transition(connection, ConnectionStatus.EXPIRED, reason="validity lapsed")

            connector = self._connector_provider()
            try:
                bank_status = await connector.get_consent_status(connection.consent_id)
            except BankUnauthorizedError:
                return self._transition(connection, ConnectionStatus.EXPIRED, reason="bank rejected consent")
            except BankNotFoundError:
                return self._transition(connection, ConnectionStatus.REVOKED, reason="consent unknown to bank")
            except BankRateLimitError as e:
                raise rate_limited_from_bank(e, self._clock())
            except BankApiError as e:
                raise SyncFailedError(f"Consent status query failed: {e}")

            logger.debug("Bank consent status", extra_fields={"bank_status": bank_status.value})

            if bank_status.is_awaiting_sca:
                if connection.status == ConnectionStatus.PENDING:
                    raise ConsentNotYetAuthorizedError(
                        f"Consent for connection {connection.id} is awaiting authorisation ({bank_status.value})"
                    )
                return connection

            if bank_status == BankConsentStatus.VALID:
                if connection.status == ConnectionStatus.ACTIVE:
                    return connection
                activated = self._transition(connection, ConnectionStatus.ACTIVE, reason="bank reports valid")
                await self._run_activation_hook(activated)
                return self.get(connection_id)

            if bank_status.is_revoked:
                return self._transition(connection, ConnectionStatus.REVOKED, reason=f"bank status {bank_status.value}")

            return self._transition(connection, ConnectionStatus.EXPIRED, reason="bank reports expired")

    async def revoke(self, connection_id: int) -> BankConnection:
        """
        Delete the consent at the bank, then revoke locally.

        A bank 401/404 means the consent is already gone and is not an error.
        Revoking a revoked connection is a no-op.

        Raises:
            ConnectionStateError: Connection already expired
            SyncFailedError: Bank unavailable (nothing changes locally)
        """
        connection = self.get(connection_id)
        if connection.status == ConnectionStatus.REVOKED:
            return connection
        if connection.status == ConnectionStatus.EXPIRED:
            raise ConnectionStateError(f"Connection {connection_id} is expired and cannot be revoked")

        with with_correlation(company_id=connection.company_id, connection_id=connection.id):
            connector = self._connector_provider()
            try:
                await connector.delete_consent(connection.consent_id)
            except (BankUnauthorizedError, BankNotFoundError):
                logger.info("Consent already gone at bank")
            except BankApiError as e:
                raise SyncFailedError(f"Consent deletion failed: {e}")

            return self._transition(connection, ConnectionStatus.REVOKED, reason="revoked by user")

    def mark_expired(self, connection_id: int) -> BankConnection:
        """Expire a pending or active connection; terminal connections are returned unchanged."""
        connection = self.get(connection_id)
        if connection.status.is_terminal:
            return connection
        with with_correlation(company_id=connection.company_id, connection_id=connection.id):
            return self._transition(connection, ConnectionStatus.EXPIRED, reason="consent expired")

    def expire_stale(self, now: Optional[datetime] = None) -> List[BankConnection]:
        """Expire every pending/active connection whose consent is no longer valid."""
        now = now or self._clock()
        expired = []
        for connection in self._store.list_connections_by_status(
            [ConnectionStatus.PENDING, ConnectionStatus.ACTIVE]
        ):
            if self._consents.is_valid(connection.consent_request_id, now):
                continue
            with with_correlation(company_id=connection.company_id, connection_id=connection.id):
                expired.append(self._transition(connection, ConnectionStatus.EXPIRED, reason="validity lapsed"))
        return expired

    # =========================================================================
    # Internals
    # =========================================================================

    def _transition(self, connection: BankConnection, target: ConnectionStatus, reason: str) -> BankConnection:
        """
        Apply one allowed status change.

        Raises:
            ConnectionStateError: Transition not allowed, or the row changed concurrently
        """
        if target not in ALLOWED_TRANSITIONS[connection.status]:
            raise ConnectionStateError(
                f"Connection {connection.id} cannot move from {connection.status.value} to {target.value}"
            )

        updated = self._store.update_connection_status(
            connection.id,
            expected=connection.status,
            status=target,
            updated_at=self._clock(),
            deactivate_accounts=target == ConnectionStatus.REVOKED,
        )
        if not updated:
            current = self.get(connection.id)
            if current.status == target:
                return current
            raise ConnectionStateError(
                f"Connection {connection.id} changed to {current.status.value} concurrently"
            )

        if target == ConnectionStatus.REVOKED:
            self._consents.revoke(connection.consent_request_id)
        if target == ConnectionStatus.EXPIRED and self._metrics:
            self._metrics.record_consent_expired()

        logger.info(
            "Connection status changed",
            extra_fields={"from": connection.status.value, "to": target.value, "reason": reason},
        )
        return self.get(connection.id)

    async def _run_activation_hook(self, connection: BankConnection) -> None:
        if self._on_activated is None:
            return
        try:
            await self._on_activated(connection)
        except BankingError as e:
            logger.warning(
                "Initial sync after activation failed",
                extra_fields={"error_code": e.code, "error": e.message},
            )
