"""
Account Sync Engine

Pulls balances and transactions for active connections:
1. Serialize per connection (asyncio.Lock in-process, a database lease across processes)
2. Check consent validity; expire the connection if it lapsed
3. Count one access against the consent's frequencyPerDay
4. Fetch balances / all transaction pages, as granted by the consent scope
5. De-duplicate, categorize, and commit each account atomically
"""

import asyncio
import sqlite3
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Awaitable, Callable, Dict, List, Optional, TypeVar

from categorization.engine import CategorizationEngine
from connectors.bank_base import (
    BankApiError,
    BankConnector,
    BankNotFoundError,
    BankRateLimitError,
    BankUnauthorizedError,
    TransactionRef,
)
from core.errors import (
    ConnectionStateError,
    ConsentExpiredError,
    InvalidDateRangeError,
    RateLimitedError,
    SyncFailedError,
    SyncInProgressError,
    account_not_found,
)
from core.observability.logging import get_logger, with_correlation
from core.observability.metrics import SyncMetrics

from .connections import BankConnectionStateMachine
from .consents import ConsentStore
from .db import BankingStore
from .models import (
    BankAccount,
    BankConnection,
    ConnectionStatus,
    ConsentRequest,
    Transaction,
    TransactionStatus,
    build_dedup_key,
    derive_transaction_type,
)
from .ratelimit import AccessFrequencyGuard, rate_limited_from_bank

logger = get_logger(__name__)

T = TypeVar("T")


# =============================================================================
# Results
# =============================================================================

@dataclass
class AccountSyncResult:
    account_id: int
    iban: Optional[str]
    date_from: date
    date_to: date
    fetched: int = 0
    inserted: int = 0
    duplicates: int = 0
    categorized: int = 0
    balances_fetched: bool = False
    transactions_fetched: bool = False
    balance: Optional[Decimal] = None
    available_balance: Optional[Decimal] = None


@dataclass
class SyncResult:
    connection_id: int
    sync_id: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    accesses_remaining: int = 0
    accounts: List[AccountSyncResult] = field(default_factory=list)

    @property
    def inserted(self) -> int:
        return sum(a.inserted for a in self.accounts)

    @property
    def duplicates(self) -> int:
        return sum(a.duplicates for a in self.accounts)


class ConnectionLocks:
    """
    Per-connection mutual exclusion.

    An asyncio.Lock serializes callers inside this process; a lease row in
    the database serializes processes sharing it. A lease left behind by a
    crashed holder is taken over once it expires.
    """

    def __init__(
        self,
        store: BankingStore,
        clock: Optional[Callable[[], datetime]] = None,
        lease_seconds: float = 300,
        wait_seconds: float = 60,
        poll_interval: float = 0.05,
    ):
        self._store = store
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lease_seconds = lease_seconds
        self._wait_seconds = wait_seconds
        self._poll_interval = poll_interval
        self._locks: Dict[int, asyncio.Lock] = {}

    def get(self, connection_id: int) -> asyncio.Lock:
        lock = self._locks.get(connection_id)
        if lock is None:
            lock = self._locks[connection_id] = asyncio.Lock()
        return lock

    @asynccontextmanager
    async def hold(self, connection_id: int):
        """
        Hold the connection exclusively for the duration of the block.

        Raises:
            SyncInProgressError: Another process kept the lease past wait_seconds
        """
        async with self.get(connection_id):
            holder = uuid.uuid4().hex
            deadline = time.monotonic() + self._wait_seconds
            while not self._store.acquire_sync_lease(connection_id, holder, self._clock(), self._lease_seconds):
                if time.monotonic() >= deadline:
                    raise SyncInProgressError(f"Connection {connection_id} is being synced by another process")
                await asyncio.sleep(self._poll_interval)
            try:
                yield
            finally:
                self._store.release_sync_lease(connection_id, holder)


# =============================================================================
# Engine
# =============================================================================

class AccountSyncEngine:
    """
    Synchronizes accounts of active connections.

    Usage:
        engine = AccountSyncEngine(store, consents, state_machine, connector_provider, categorizer)
        result = await engine.sync_connection(connection_id=7)
    """

    def __init__(
        self,
        store: BankingStore,
        consents: ConsentStore,
        state_machine: BankConnectionStateMachine,
        connector_provider: Callable[[], BankConnector],
        categorizer: CategorizationEngine,
        locks: Optional[ConnectionLocks] = None,
        metrics: Optional[SyncMetrics] = None,
        lookback_days: int = 90,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._store = store
        self._consents = consents
        self._state_machine = state_machine
        self._connector_provider = connector_provider
        self._categorizer = categorizer
        self._locks = locks or ConnectionLocks(store, clock=clock)
        self._metrics = metrics or SyncMetrics()
        self._lookback_days = lookback_days
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._guard = AccessFrequencyGuard(store)

    # =========================================================================
    # Public operations
    # =========================================================================

    async def discover_accounts(self, connection_id: int) -> List[BankAccount]:
        """
        List the connection's accounts at the bank and upsert them by resource id.

        Raises:
            ConnectionStateError: Connection is not active
            ConsentExpiredError: Consent lapsed or rejected by the bank
        """
        async with self._locks.hold(connection_id):
            connection = self._state_machine.get(connection_id)
            with with_correlation(company_id=connection.company_id, connection_id=connection_id):
                consent = self._require_active(connection)
                return await self._discover_locked(connection, consent, self._connector_provider())

    async def sync_connection(
        self,
        connection_id: int,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> SyncResult:
        """
        Sync every active account of a connection. Counts as one access.

        Raises:
            ConnectionStateError: Connection is not active
            ConsentExpiredError: Consent lapsed or rejected by the bank
            RateLimitedError: Daily allowance exhausted (no bank call made)
            SyncFailedError: Bank unavailable after retries, or the commit failed
            SyncInProgressError: Another process held the connection past the wait budget
        """
        async with self._locks.hold(connection_id):
            connection = self._state_machine.get(connection_id)
            return await self._run_sync(connection, None, date_from, date_to)

    async def sync_account(
        self,
        account_id: int,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> AccountSyncResult:
        """Sync a single account. Counts as one access of its connection."""
        account = self._get_account(account_id)
        async with self._locks.hold(account.connection_id):
            connection = self._state_machine.get(account.connection_id)
            result = await self._run_sync(connection, account_id, date_from, date_to)
        return result.accounts[0]

    async def balance_snapshot(self, account_id: int, max_age: timedelta) -> BankAccount:
        """
        Balances of an account, syncing only when the stored ones are older than max_age.

        When the daily allowance is spent the stored snapshot is returned if
        there is one.
        """
        account = self._get_account(account_id)
        now = self._clock()
        if account.last_sync_at and now - account.last_sync_at <= max_age:
            return account

        try:
            await self.sync_account(account_id)
        except RateLimitedError:
            if account.last_sync_at is None:
                raise
            logger.info("Serving stored balance, access allowance exhausted",
                        extra_fields={"account_id": account_id})
        return self._get_account(account_id)

    async def on_connection_activated(self, connection: BankConnection) -> None:
        """Initial pull after SCA completes: discover accounts, then sync them."""
        await self.sync_connection(connection.id)

    # =========================================================================
    # Sync pipeline
    # =========================================================================

    async def _run_sync(
        self,
        connection: BankConnection,
        account_id: Optional[int],
        date_from: Optional[date],
        date_to: Optional[date],
    ) -> SyncResult:
        sync_id = uuid.uuid4().hex
        started = time.monotonic()

        with with_correlation(company_id=connection.company_id, connection_id=connection.id, sync_id=sync_id):
            self._metrics.record_sync_started(connection.id)
            try:
                consent = self._require_active(connection)
                connector = self._connector_provider()
                now = self._clock()
                remaining = self._guard.acquire(connection.id, consent.frequency_per_day, now)

                if account_id is not None:
                    accounts = [self._get_account(account_id)]
                else:
                    accounts = self._store.list_accounts(connection.id, active_only=True)
                    if not accounts:
                        accounts = await self._discover_locked(connection, consent, connector)

                result = SyncResult(
                    connection_id=connection.id,
                    sync_id=sync_id,
                    started_at=now,
                    accesses_remaining=remaining,
                )
                for account in accounts:
                    with with_correlation(account_id=account.id):
                        result.accounts.append(
                            await self._sync_account_locked(connection, consent, account, connector,
                                                            date_from, date_to)
                        )
                result.completed_at = self._clock()
            except RateLimitedError:
                self._metrics.record_rate_limited()
                raise
            except (ConsentExpiredError, ConnectionStateError, SyncFailedError, InvalidDateRangeError):
                self._metrics.record_sync_failed(connection.id)
                raise

            duration_ms = (time.monotonic() - started) * 1000
            self._metrics.record_sync_completed(connection.id, duration_ms)
            logger.info(
                "Connection synced",
                extra_fields={
                    "accounts": len(result.accounts),
                    "inserted": result.inserted,
                    "duplicates": result.duplicates,
                    "duration_ms": round(duration_ms, 1),
                },
            )
            return result

    async def _sync_account_locked(
        self,
        connection: BankConnection,
        consent: ConsentRequest,
        account: BankAccount,
        connector: BankConnector,
        date_from: Optional[date],
        date_to: Optional[date],
    ) -> AccountSyncResult:
        today = self._clock().astimezone(timezone.utc).date()
        window_to = date_to or today
        if date_from:
            window_from = date_from
        elif account.last_sync_at:
            window_from = account.last_sync_at.astimezone(timezone.utc).date()
        else:
            window_from = today - timedelta(days=self._lookback_days)
        if window_from > window_to:
            raise InvalidDateRangeError(
                f"dateFrom {window_from.isoformat()} is after dateTo {window_to.isoformat()}"
            )

        result = AccountSyncResult(
            account_id=account.id,
            iban=account.iban,
            date_from=window_from,
            date_to=window_to,
        )
        # A window that leaves a gap before today must not move the sync cursor
        advance = window_to >= today and (
            account.last_sync_at is None
            or window_from <= account.last_sync_at.astimezone(timezone.utc).date()
        )

        # Fetch everything first; nothing is written until all pages arrived
        if consent.access.grants_balances(account.iban):
            balances = await self._bank_call(
                connection, lambda: connector.get_balances(connection.consent_id, account.resource_id)
            )
            result.balances_fetched = True
            result.balance = balances.balance
            result.available_balance = balances.available_balance

        new_transactions: List[Transaction] = []
        if consent.access.grants_transactions(account.iban):
            refs = await self._bank_call(
                connection,
                lambda: connector.get_transactions(
                    connection.consent_id, account.resource_id, window_from, window_to
                ),
            )
            result.transactions_fetched = True
            result.fetched = len(refs)
            new_transactions = self._build_transactions(account, refs, today)

            rules = self._categorizer.rules_for_company(account.company_id)
            new_transactions = self._categorizer.categorize_batch(new_transactions, rules)

        try:
            inserted, skipped = self._store.commit_account_sync(
                account.id,
                new_transactions,
                result.balance,
                result.available_balance,
                self._clock(),
                advance_last_sync=advance,
            )
        except sqlite3.Error as e:
            logger.error("Account sync rolled back", extra_fields={"error": str(e)})
            raise SyncFailedError(f"Could not store sync of account {account.id}: {e}")

        result.inserted = inserted
        # Duplicates within the fetched batch count as duplicates as well
        result.duplicates = skipped + (result.fetched - len(new_transactions))
        result.categorized = sum(1 for tx in new_transactions if tx.category)
        self._metrics.record_transactions(inserted, result.duplicates, min(result.categorized, inserted))

        logger.info(
            "Account synced",
            extra_fields={
                "date_from": window_from.isoformat(),
                "date_to": window_to.isoformat(),
                "fetched": result.fetched,
                "inserted": inserted,
            },
        )
        return result

    def _build_transactions(self, account: BankAccount, refs: List[TransactionRef], today: date) -> List[Transaction]:
        """Map bank refs to transactions, dropping repeats within the batch."""
        by_key: Dict[str, Transaction] = {}
        for ref in refs:
            tx_date = ref.transaction_date or today
            dedup_key = build_dedup_key(account.id, ref.external_id, ref.amount, tx_date, ref.description)
            if dedup_key in by_key:
                continue
            by_key[dedup_key] = Transaction(
                account_id=account.id,
                amount=ref.amount,
                currency=ref.currency,
                transaction_date=tx_date,
                value_date=ref.value_date,
                booking_date=ref.booking_date,
                description=ref.description,
                reference=ref.reference,
                counterparty_name=ref.counterparty_name,
                counterparty_account=ref.counterparty_account,
                type=derive_transaction_type(ref.amount, ref.creditor_name),
                status=TransactionStatus.PENDING if ref.pending else TransactionStatus.BOOKED,
                external_id=ref.external_id,
                dedup_key=dedup_key,
            )
        return list(by_key.values())

    async def _discover_locked(
        self,
        connection: BankConnection,
        consent: ConsentRequest,
        connector: BankConnector,
    ) -> List[BankAccount]:
        if not consent.access.grants_account_list():
            logger.warning("Consent does not grant account listing")
            return []

        refs = await self._bank_call(connection, lambda: connector.list_accounts(connection.consent_id))
        for ref in refs:
            self._store.upsert_account(BankAccount(
                connection_id=connection.id,
                company_id=connection.company_id,
                resource_id=ref.resource_id,
                iban=ref.iban,
                currency=ref.currency,
                name=ref.name,
            ))
        accounts = self._store.list_accounts(connection.id, active_only=True)
        logger.info("Accounts discovered", extra_fields={"count": len(accounts)})
        return accounts

    # =========================================================================
    # Guards & error mapping
    # =========================================================================

    def _require_active(self, connection: BankConnection) -> ConsentRequest:
        """Active connection with a valid consent, else expire/raise before any bank call."""
        if connection.status != ConnectionStatus.ACTIVE:
            if connection.status == ConnectionStatus.EXPIRED:
                raise ConsentExpiredError(f"Connection {connection.id} is expired", connection_id=connection.id)
            raise ConnectionStateError(
                f"Connection {connection.id} is {connection.status.value}; only active connections sync"
            )

        consent = self._consents.get(connection.consent_request_id)
        if not consent.is_valid_at(self._clock()):
            self._state_machine.mark_expired(connection.id)
            raise ConsentExpiredError(
                f"Consent for connection {connection.id} expired on {consent.valid_until.isoformat()}",
                connection_id=connection.id,
            )
        return consent

    async def _bank_call(self, connection: BankConnection, call: Callable[[], Awaitable[T]]) -> T:
        try:
            return await call()
        except BankUnauthorizedError as e:
            self._state_machine.mark_expired(connection.id)
            raise ConsentExpiredError(
                f"Bank rejected the consent of connection {connection.id}: {e}",
                connection_id=connection.id,
            )
        except BankRateLimitError as e:
            raise rate_limited_from_bank(e, self._clock())
        except BankNotFoundError as e:
            raise SyncFailedError(f"Bank resource not found: {e}")
        except BankApiError as e:
            raise SyncFailedError(f"Bank request failed: {e}")

    def _get_account(self, account_id: int) -> BankAccount:
        account = self._store.get_account(account_id)
        if account is None:
            raise account_not_found(account_id)
        return account
