"""
Transaction Linker

Manual association of bank transactions with invoices. Invoices belong to
another module; only an existence lookup is needed here.
"""

from abc import ABC, abstractmethod

from core.errors import NotFoundError, transaction_not_found
from core.observability.logging import get_logger

from .db import BankingStore
from .models import Transaction

logger = get_logger(__name__)


class InvoiceDirectory(ABC):
    """Lookup interface onto the invoicing module."""

    @abstractmethod
    def exists(self, invoice_id: int) -> bool:
        pass


class SqliteInvoiceDirectory(InvoiceDirectory):
    """Reads the invoices table shared in the banking database."""

    def __init__(self, store: BankingStore):
        self._store = store

    def exists(self, invoice_id: int) -> bool:
        return self._store.invoice_exists(invoice_id)


class TransactionLinker:
    """
    Links transactions to invoices.

    Linking is idempotent and relinking overwrites the previous invoice.
    """

    def __init__(self, store: BankingStore, invoices: InvoiceDirectory):
        self._store = store
        self._invoices = invoices

    def link(self, transaction_id: int, invoice_id: int) -> Transaction:
        """
        Raises:
            NotFoundError: Unknown transaction or invoice
        """
        transaction = self._store.get_transaction(transaction_id)
        if transaction is None:
            raise transaction_not_found(transaction_id)
        if not self._invoices.exists(invoice_id):
            raise NotFoundError(f"Invoice {invoice_id} not found")

        if transaction.invoice_id != invoice_id:
            self._store.set_transaction_invoice(transaction_id, invoice_id)
            logger.info(
                "Transaction linked to invoice",
                extra_fields={
                    "transaction_id": transaction_id,
                    "invoice_id": invoice_id,
                    "previous_invoice_id": transaction.invoice_id,
                },
            )
        return self._store.get_transaction(transaction_id)

    def unlink(self, transaction_id: int) -> Transaction:
        """
        Raises:
            NotFoundError: Unknown transaction
        """
        transaction = self._store.get_transaction(transaction_id)
        if transaction is None:
            raise transaction_not_found(transaction_id)
        if transaction.invoice_id is not None:
            self._store.set_transaction_invoice(transaction_id, None)
            logger.info("Transaction unlinked", extra_fields={"transaction_id": transaction_id})
        return self._store.get_transaction(transaction_id)
