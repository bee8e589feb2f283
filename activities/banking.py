"""Banking activities for the scheduled sync sweep.

Activities are methods of ``BankingActivities`` so they share the services
container the worker builds at startup.

Deferrals are results, not failures: a rate-limited sync, an expired consent
or a consent still awaiting SCA is reported in the outcome and the workflow
moves on. Only bank outages (SyncFailedError) are raised for Temporal to retry.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from temporalio import activity
from temporalio.exceptions import ApplicationError

from banking.models import ConnectionStatus
from banking.services import BankingServices
from core.errors import (
    ConnectionStateError,
    ConsentExpiredError,
    ConsentNotYetAuthorizedError,
    NotFoundError,
    ProviderNotConfiguredError,
    RateLimitedError,
    SyncInProgressError,
)
from core.observability.logging import get_logger, with_correlation

logger = get_logger(__name__)


class SweepOutcome:
    """Outcome values reported per connection."""
    SYNCED = "synced"
    ACTIVATED = "activated"
    UNCHANGED = "unchanged"
    PENDING = "pending"
    DEFERRED = "deferred"
    EXPIRED = "expired"
    REVOKED = "revoked"
    SKIPPED = "skipped"


@dataclass
class ExpireStaleOutput:
    expired_ids: List[int] = field(default_factory=list)


@dataclass
class ConnectionsToRefresh:
    pending_ids: List[int] = field(default_factory=list)
    active_ids: List[int] = field(default_factory=list)


@dataclass
class ConnectionInput:
    connection_id: int


@dataclass
class ConnectionOutcome:
    """
    Attributes:
        connection_id: Connection the outcome refers to
        outcome: One of the SweepOutcome values
        status: Connection status after the activity
        inserted: New transactions stored (sync only)
        retry_after: ISO timestamp when a deferred sync may run again
        detail: Error code or message behind a non-success outcome
    """
    connection_id: int
    outcome: str
    status: Optional[str] = None
    inserted: int = 0
    retry_after: Optional[str] = None
    detail: Optional[str] = None


def _provider_missing(e: ProviderNotConfiguredError) -> ApplicationError:
    return ApplicationError(e.message, type="ProviderNotConfiguredError", non_retryable=True)


class BankingActivities:
    """
    Usage:
        activities = BankingActivities(services)
        Worker(client, task_queue=..., activities=activities.all())
    """

    def __init__(self, services: BankingServices):
        self._services = services

    def all(self) -> list:
        return [
            self.expire_stale_connections,
            self.list_connections_to_refresh,
            self.refresh_connection_status,
            self.sync_connection,
        ]

    @activity.defn
    async def expire_stale_connections(self) -> ExpireStaleOutput:
        """Expire pending/active connections whose consent validity lapsed."""
        with with_correlation(workflow_id=activity.info().workflow_id, activity_name="expire_stale_connections"):
            expired = self._services.connections.expire_stale()
            if expired:
                logger.info("Stale connections expired", extra_fields={"count": len(expired)})
            return ExpireStaleOutput(expired_ids=[c.id for c in expired])

    @activity.defn
    async def list_connections_to_refresh(self) -> ConnectionsToRefresh:
        store = self._services.store
        return ConnectionsToRefresh(
            pending_ids=[c.id for c in store.list_connections_by_status([ConnectionStatus.PENDING])],
            active_ids=[c.id for c in store.list_connections_by_status([ConnectionStatus.ACTIVE])],
        )

    @activity.defn
    async def refresh_connection_status(self, input: ConnectionInput) -> ConnectionOutcome:
        """Re-query the bank for one connection's consent status."""
        with with_correlation(
            workflow_id=activity.info().workflow_id,
            activity_name="refresh_connection_status",
            connection_id=input.connection_id,
        ):
            connections = self._services.connections
            try:
                before = connections.get(input.connection_id)
                after = await connections.refresh_status(input.connection_id)
            except ConsentNotYetAuthorizedError:
                return ConnectionOutcome(input.connection_id, SweepOutcome.PENDING,
                                         status=ConnectionStatus.PENDING.value)
            except RateLimitedError as e:
                return ConnectionOutcome(input.connection_id, SweepOutcome.DEFERRED,
                                         retry_after=e.retry_after.isoformat() if e.retry_after else None,
                                         detail=e.code)
            except NotFoundError as e:
                return ConnectionOutcome(input.connection_id, SweepOutcome.SKIPPED, detail=e.message)
            except ProviderNotConfiguredError as e:
                raise _provider_missing(e)

            if after.status == before.status:
                outcome = SweepOutcome.UNCHANGED
            elif after.status == ConnectionStatus.ACTIVE:
                outcome = SweepOutcome.ACTIVATED
            elif after.status == ConnectionStatus.EXPIRED:
                outcome = SweepOutcome.EXPIRED
            else:
                outcome = SweepOutcome.REVOKED
            return ConnectionOutcome(input.connection_id, outcome, status=after.status.value)

    @activity.defn
    async def sync_connection(self, input: ConnectionInput) -> ConnectionOutcome:
        """Sync one active connection. Bank outages raise so Temporal retries."""
        with with_correlation(
            workflow_id=activity.info().workflow_id,
            activity_name="sync_connection",
            connection_id=input.connection_id,
        ):
            try:
                result = await self._services.sync.sync_connection(input.connection_id)
            except RateLimitedError as e:
                logger.info("Sync deferred, access allowance exhausted")
                return ConnectionOutcome(input.connection_id, SweepOutcome.DEFERRED,
                                         retry_after=e.retry_after.isoformat() if e.retry_after else None,
                                         detail=e.code)
            except SyncInProgressError as e:
                logger.info("Sync deferred, connection busy in another process")
                return ConnectionOutcome(input.connection_id, SweepOutcome.DEFERRED, detail=e.code)
            except ConsentExpiredError as e:
                return ConnectionOutcome(input.connection_id, SweepOutcome.EXPIRED,
                                         status=ConnectionStatus.EXPIRED.value, detail=e.message)
            except (ConnectionStateError, NotFoundError) as e:
                return ConnectionOutcome(input.connection_id, SweepOutcome.SKIPPED, detail=e.message)
            except ProviderNotConfiguredError as e:
                raise _provider_missing(e)

            return ConnectionOutcome(
                input.connection_id,
                SweepOutcome.SYNCED,
                status=ConnectionStatus.ACTIVE.value,
                inserted=result.inserted,
            )
