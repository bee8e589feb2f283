"""
Banking Services Container

Builds every banking component once per process, wired to one store, one
metrics collector and one bank connector. The API keeps the container on
``app.state``; the Temporal worker hands it to the activity class.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

import connectors.psd2  # noqa: F401  registers the "psd2" connector
from categorization import CategorizationEngine, CategoryRuleStore
from connectors.bank_base import BankConfig, BankConnector, create_connector
from core.config import BankingSettings, Psd2ProviderSettings
from core.errors import ProviderNotConfiguredError
from core.observability.logging import get_logger
from core.observability.metrics import SyncMetrics
from core.security import ProviderCredentialStore, SecretEncryption, generate_encryption_key

from .connections import BankConnectionStateMachine
from .consents import ConsentStore
from .dashboard import BankingDashboardAggregator
from .db import BankingStore
from .linker import InvoiceDirectory, SqliteInvoiceDirectory, TransactionLinker
from .payments import PaymentInitiator
from .sync import AccountSyncEngine, ConnectionLocks

logger = get_logger(__name__)

PROVIDER_NAME = "psd2"

ConnectorFactory = Callable[[BankConfig], BankConnector]


class ConnectorProvider:
    """
    Lazily builds the bank connector from the current provider settings.

    Calling the provider returns the connector or raises
    ProviderNotConfiguredError.
    """

    def __init__(
        self,
        settings: BankingSettings,
        provider_settings: Optional[Psd2ProviderSettings],
        metrics: SyncMetrics,
        factory: Optional[ConnectorFactory] = None,
    ):
        self._settings = settings
        self._provider_settings = provider_settings
        self._metrics = metrics
        self._factory = factory or (lambda config: create_connector(config, on_retry=metrics.record_bank_retry))
        self._connector: Optional[BankConnector] = None

    @property
    def is_configured(self) -> bool:
        return self._provider_settings is not None and self._provider_settings.is_complete

    @property
    def provider_settings(self) -> Optional[Psd2ProviderSettings]:
        return self._provider_settings

    def __call__(self) -> BankConnector:
        if self._connector is None:
            if not self.is_configured:
                raise ProviderNotConfiguredError(
                    "PSD2 provider is not configured; POST /api/banking/config first"
                )
            self._connector = self._factory(self._bank_config())
        return self._connector

    async def reconfigure(self, provider_settings: Psd2ProviderSettings) -> None:
        await self.close()
        self._provider_settings = provider_settings

    async def close(self) -> None:
        if self._connector is not None:
            await self._connector.close()
            self._connector = None

    def _bank_config(self) -> BankConfig:
        provider = self._provider_settings
        return BankConfig(
            connector_type=PROVIDER_NAME,
            api_url=provider.api_url,
            client_id=provider.client_id,
            client_secret=provider.client_secret,
            redirect_uri=provider.redirect_uri,
            certificate_path=provider.certificate_path,
            key_path=provider.key_path,
            timeout_seconds=self._settings.request_timeout_seconds,
            max_retries=self._settings.max_retries,
            retry_base_delay=self._settings.retry_base_delay,
            retry_max_delay=self._settings.retry_max_delay,
        )


@dataclass
class BankingServices:
    settings: BankingSettings
    store: BankingStore
    metrics: SyncMetrics
    credentials: ProviderCredentialStore
    connectors: ConnectorProvider
    consents: ConsentStore
    connections: BankConnectionStateMachine
    sync: AccountSyncEngine
    categorization: CategorizationEngine
    linker: TransactionLinker
    dashboard: BankingDashboardAggregator
    payments: PaymentInitiator

    @classmethod
    def build(
        cls,
        settings: BankingSettings,
        connector_factory: Optional[ConnectorFactory] = None,
        invoice_directory: Optional[InvoiceDirectory] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> "BankingServices":
        """Create the schema and wire every component."""
        store = BankingStore(settings.db_path)
        store.init_schema()
        metrics = SyncMetrics()

        encryption_key = settings.encryption_key
        if not encryption_key:
            logger.warning(
                "BANKING_ENCRYPTION_KEY not set; using an ephemeral key. "
                "Stored provider credentials will not survive a restart."
            )
            encryption_key = generate_encryption_key()
        credentials = ProviderCredentialStore(settings.db_path, SecretEncryption(encryption_key))

        provider_settings = settings.provider
        try:
            stored = credentials.load(PROVIDER_NAME)
        except ValueError as e:
            logger.warning("Stored provider credentials unreadable, ignoring them", extra_fields={"error": str(e)})
            stored = None
        if stored is not None:
            provider_settings = stored

        connector_provider = ConnectorProvider(settings, provider_settings, metrics, factory=connector_factory)
        consents = ConsentStore(store, clock=clock)
        state_machine = BankConnectionStateMachine(
            store,
            consents,
            connector_provider,
            metrics=metrics,
            clock=clock,
        )
        categorization = CategorizationEngine(store, CategoryRuleStore(store))
        sync = AccountSyncEngine(
            store,
            consents,
            state_machine,
            connector_provider,
            categorization,
            locks=ConnectionLocks(
                store,
                clock=clock,
                lease_seconds=settings.sync_lease_seconds,
                wait_seconds=settings.sync_lease_wait_seconds,
            ),
            metrics=metrics,
            lookback_days=settings.sync_lookback_days,
            clock=clock,
        )
        state_machine.set_activation_hook(sync.on_connection_activated)

        return cls(
            settings=settings,
            store=store,
            metrics=metrics,
            credentials=credentials,
            connectors=connector_provider,
            consents=consents,
            connections=state_machine,
            sync=sync,
            categorization=categorization,
            linker=TransactionLinker(store, invoice_directory or SqliteInvoiceDirectory(store)),
            dashboard=BankingDashboardAggregator(
                store,
                recent_limit=settings.dashboard_recent_limit,
                months=settings.dashboard_months,
                clock=clock,
            ),
            payments=PaymentInitiator(store, consents, state_machine, connector_provider, clock=clock),
        )

    async def configure_provider(self, provider_settings: Psd2ProviderSettings) -> None:
        """Persist new provider credentials and rebuild the connector on next use."""
        self.credentials.save(PROVIDER_NAME, provider_settings)
        await self.connectors.reconfigure(provider_settings)
        logger.info(
            "PSD2 provider configured",
            extra_fields={"api_url": provider_settings.api_url, "client_id": provider_settings.client_id},
        )

    async def aclose(self) -> None:
        await self.connectors.close()
