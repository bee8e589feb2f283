"""
Banking Package

Consent, connection, sync, linking, dashboard and payment services for PSD2
open banking.

Usage:
    from banking import BankingServices
    from core.config import BankingSettings

    services = BankingServices.build(BankingSettings.from_env())
    connection = await services.connections.create_connection(1, request, "Santander")
"""

from .models import (
    UNCATEGORIZED_LABEL,
    AccessScope,
    AccountAccess,
    BankAccount,
    BankConnection,
    ConnectionStatus,
    ConsentRequest,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from .db import BankingStore
from .consents import ConsentStore
from .connections import BankConnectionStateMachine
from .sync import AccountSyncEngine, AccountSyncResult, SyncResult
from .linker import InvoiceDirectory, SqliteInvoiceDirectory, TransactionLinker
from .dashboard import BankingDashboardAggregator, DashboardSummary
from .payments import PaymentInitiator
from .services import BankingServices, ConnectorProvider

__all__ = [
    "UNCATEGORIZED_LABEL",
    "AccessScope",
    "AccountAccess",
    "BankAccount",
    "BankConnection",
    "ConnectionStatus",
    "ConsentRequest",
    "Transaction",
    "TransactionStatus",
    "TransactionType",
    "BankingStore",
    "ConsentStore",
    "BankConnectionStateMachine",
    "AccountSyncEngine",
    "AccountSyncResult",
    "SyncResult",
    "InvoiceDirectory",
    "SqliteInvoiceDirectory",
    "TransactionLinker",
    "BankingDashboardAggregator",
    "DashboardSummary",
    "PaymentInitiator",
    "BankingServices",
    "ConnectorProvider",
]
