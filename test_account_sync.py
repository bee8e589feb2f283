"""
Account Sync Engine Tests

Covers:
1. Inserting, de-duplicating and categorizing fetched transactions
2. The daily access allowance (frequencyPerDay)
3. Atomic commits when a write fails mid-batch
4. Consent expiry detected before and during a sync
5. Sync windows and balance snapshots
6. One sync at a time per connection, also across processes sharing the database
"""

import asyncio
import sqlite3
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from unittest.mock import patch

import pytest

from banking.models import AccessScope, AccountAccess, ConnectionStatus, TransactionStatus, TransactionType
from banking.services import BankingServices
from banking.sync import ConnectionLocks
from categorization import CategoryRule
from connectors.bank_base import BankApiError, BankUnauthorizedError, TransactionRef
from core.errors import (
    ConnectionStateError,
    ConsentExpiredError,
    InvalidDateRangeError,
    RateLimitedError,
    SyncFailedError,
    SyncInProgressError,
)

from conftest import COMPANY_ID, IBAN


def _bank_transactions():
    return [
        TransactionRef(
            external_id="tx-1",
            amount=Decimal("-84.20"),
            booking_date=date(2025, 3, 3),
            description="RECIBO ENDESA ELECTRICIDAD",
            creditor_name="Endesa",
        ),
        TransactionRef(
            external_id="tx-2",
            amount=Decimal("1200.00"),
            booking_date=date(2025, 3, 5),
            description="TRANSFERENCIA CLIENTE",
        ),
        TransactionRef(
            amount=Decimal("-12.50"),
            value_date=date(2025, 3, 9),
            description="CAFETERIA",
            pending=True,
        ),
    ]


def _sync(services, connection_id, **kwargs):
    return asyncio.run(services.sync.sync_connection(connection_id, **kwargs))


class TestSyncConnection:

    def test_first_sync_stores_accounts_transactions_and_balances(self, services, connector, make_connection):
        connection = make_connection()
        connector.get_transactions.return_value = _bank_transactions()

        result = _sync(services, connection.id)

        assert result.inserted == 3
        assert result.duplicates == 0
        assert result.accesses_remaining == 3

        [account] = services.store.list_accounts(connection.id)
        assert account.iban == IBAN
        assert account.balance == Decimal("1500.00")
        assert account.available_balance == Decimal("1450.00")
        assert account.last_sync_at is not None

        stored = services.store.list_transactions(account.id)
        assert [tx.amount for tx in stored] == [Decimal("-12.50"), Decimal("1200.00"), Decimal("-84.20")]
        pending = stored[0]
        assert pending.status == TransactionStatus.PENDING
        assert pending.type == TransactionType.WITHDRAWAL
        assert pending.transaction_date == date(2025, 3, 9)
        assert stored[2].type == TransactionType.PAYMENT
        assert stored[1].type == TransactionType.DEPOSIT

    def test_resync_skips_duplicates(self, services, connector, make_connection):
        connection = make_connection()
        connector.get_transactions.return_value = _bank_transactions()
        _sync(services, connection.id)

        again = _sync(services, connection.id)

        assert again.inserted == 0
        assert again.duplicates == 3
        [account] = services.store.list_accounts(connection.id)
        assert len(services.store.list_transactions(account.id)) == 3

    def test_repeats_within_one_batch_count_as_duplicates(self, services, connector, make_connection):
        connection = make_connection()
        refs = _bank_transactions()
        connector.get_transactions.return_value = refs + [refs[0], refs[2]]

        result = _sync(services, connection.id)

        assert result.accounts[0].fetched == 5
        assert result.inserted == 3
        assert result.duplicates == 2

    def test_new_transactions_are_categorized(self, services, connector, make_connection):
        services.categorization.create_rule(CategoryRule(
            company_id=COMPANY_ID, name="Luz", pattern="ELECTRICIDAD", category="Suministros",
        ))
        connection = make_connection()
        connector.get_transactions.return_value = _bank_transactions()

        result = _sync(services, connection.id)

        assert result.accounts[0].categorized == 1
        [account] = services.store.list_accounts(connection.id)
        categories = {tx.description: tx.category for tx in services.store.list_transactions(account.id)}
        assert categories["RECIBO ENDESA ELECTRICIDAD"] == "Suministros"
        assert categories["CAFETERIA"] is None

    def test_scope_limits_what_is_fetched(self, services, connector, make_connection):
        connection = make_connection(access=AccessScope(
            available_accounts=AccountAccess.ALL_ACCOUNTS,
            balances=[IBAN],
        ))

        result = _sync(services, connection.id)

        account_result = result.accounts[0]
        assert account_result.balances_fetched
        assert not account_result.transactions_fetched
        connector.get_transactions.assert_not_called()

    def test_pending_connection_cannot_sync(self, services, connector, make_connection):
        connection = make_connection(status=ConnectionStatus.PENDING)

        with pytest.raises(ConnectionStateError):
            _sync(services, connection.id)
        connector.list_accounts.assert_not_called()


class TestAccessFrequency:

    def test_sixth_access_is_rate_limited(self, services, connector, clock, make_connection):
        connection = make_connection(frequency_per_day=5)

        remaining = [_sync(services, connection.id).accesses_remaining for _ in range(5)]
        assert remaining == [4, 3, 2, 1, 0]

        with pytest.raises(RateLimitedError) as exc_info:
            _sync(services, connection.id)

        expected_reset = datetime.combine(clock.today() + timedelta(days=1), time.min, tzinfo=timezone.utc)
        assert exc_info.value.retry_after == expected_reset
        assert connector.get_balances.await_count == 5
        assert services.metrics.get_summary()["syncs"]["rate_limited"] == 1

    def test_allowance_resets_at_utc_midnight(self, services, clock, make_connection):
        connection = make_connection(frequency_per_day=1)
        _sync(services, connection.id)
        with pytest.raises(RateLimitedError):
            _sync(services, connection.id)

        clock.advance(days=1)

        assert _sync(services, connection.id).accesses_remaining == 0

    def test_allowance_is_per_connection(self, services, make_connection):
        first = make_connection(frequency_per_day=1)
        second = make_connection(frequency_per_day=1)
        _sync(services, first.id)

        assert _sync(services, second.id).accesses_remaining == 0


class TestAtomicCommit:

    def test_failure_mid_batch_rolls_back_everything(self, services, connector, make_connection):
        connection = make_connection()
        connector.get_transactions.return_value = [
            TransactionRef(
                external_id=f"tx-{n}",
                amount=Decimal(f"-{n}0.00"),
                booking_date=date(2025, 3, n),
                description=f"RECIBO {n}",
            )
            for n in range(1, 6)
        ]
        store = services.store

        with patch.object(store, "_insert_transaction", side_effect=[1, 1, sqlite3.OperationalError("disk I/O error")]):
            with pytest.raises(SyncFailedError):
                _sync(services, connection.id)

        [account] = store.list_accounts(connection.id)
        assert store.list_transactions(account.id) == []
        assert account.balance is None
        assert account.last_sync_at is None

        result = _sync(services, connection.id)

        assert result.inserted == 5
        assert len(store.list_transactions(account.id)) == 5
        assert store.get_account(account.id).last_sync_at is not None
        failed_window, retried_window = connector.get_transactions.call_args_list
        assert failed_window == retried_window

    def test_bank_outage_writes_nothing(self, services, connector, make_connection, make_account):
        connection = make_connection()
        account = make_account(connection)
        connector.get_transactions.side_effect = BankApiError("API error 503 after 3 retries", 503, "")

        with pytest.raises(SyncFailedError):
            _sync(services, connection.id)

        stored = services.store.get_account(account.id)
        assert stored.balance is None
        assert stored.last_sync_at is None


class TestConsentExpiry:

    def test_lapsed_consent_expires_before_any_bank_call(self, services, connector, clock, make_connection):
        connection = make_connection(valid_days=1)
        clock.advance(days=2)

        with pytest.raises(ConsentExpiredError) as exc_info:
            _sync(services, connection.id)

        assert exc_info.value.connection_id == connection.id
        assert services.connections.get(connection.id).status == ConnectionStatus.EXPIRED
        connector.list_accounts.assert_not_called()

    def test_bank_rejection_expires_connection(self, services, connector, make_connection, make_account):
        connection = make_connection()
        make_account(connection)
        connector.get_balances.side_effect = BankUnauthorizedError("CONSENT_EXPIRED", 401, "")

        with pytest.raises(ConsentExpiredError):
            _sync(services, connection.id)

        assert services.connections.get(connection.id).status == ConnectionStatus.EXPIRED

    def test_expired_connection_reports_consent_expired(self, services, make_connection):
        connection = make_connection(status=ConnectionStatus.EXPIRED)

        with pytest.raises(ConsentExpiredError):
            _sync(services, connection.id)


class TestSyncWindow:

    def test_first_sync_uses_lookback(self, services, connector, clock, make_connection):
        connection = make_connection()

        result = _sync(services, connection.id)

        assert result.accounts[0].date_from == clock.today() - timedelta(days=services.settings.sync_lookback_days)
        assert result.accounts[0].date_to == clock.today()

    def test_next_sync_starts_at_last_sync_date(self, services, connector, clock, make_connection):
        connection = make_connection()
        _sync(services, connection.id)
        clock.advance(days=3)

        result = _sync(services, connection.id)

        assert result.accounts[0].date_from == clock.today() - timedelta(days=3)

    def test_past_window_leaves_cursor_alone(self, services, clock, make_connection, make_account):
        connection = make_connection()
        account = make_account(connection)

        asyncio.run(services.sync.sync_account(
            account.id, date_from=date(2025, 1, 1), date_to=date(2025, 1, 31)
        ))

        assert services.store.get_account(account.id).last_sync_at is None

    def test_inverted_window_rejected(self, services, make_connection, make_account):
        connection = make_connection()
        account = make_account(connection)

        with pytest.raises(InvalidDateRangeError):
            asyncio.run(services.sync.sync_account(
                account.id, date_from=date(2025, 3, 5), date_to=date(2025, 3, 1)
            ))


class TestBalanceSnapshot:

    def test_recent_sync_is_reused(self, services, connector, clock, make_connection, make_account):
        connection = make_connection()
        account = make_account(connection)
        asyncio.run(services.sync.sync_account(account.id))
        clock.advance(minutes=5)

        snapshot = asyncio.run(services.sync.balance_snapshot(account.id, max_age=timedelta(minutes=15)))

        assert snapshot.balance == Decimal("1500.00")
        assert connector.get_balances.await_count == 1

    def test_stale_snapshot_triggers_sync(self, services, connector, clock, make_connection, make_account):
        connection = make_connection()
        account = make_account(connection)
        asyncio.run(services.sync.sync_account(account.id))
        clock.advance(hours=1)

        asyncio.run(services.sync.balance_snapshot(account.id, max_age=timedelta(minutes=15)))

        assert connector.get_balances.await_count == 2

    def test_rate_limited_falls_back_to_stored(self, services, connector, clock, make_connection, make_account):
        connection = make_connection(frequency_per_day=1)
        account = make_account(connection)
        asyncio.run(services.sync.sync_account(account.id))
        clock.advance(hours=1)

        snapshot = asyncio.run(services.sync.balance_snapshot(account.id, max_age=timedelta(minutes=15)))

        assert snapshot.balance == Decimal("1500.00")

    def test_rate_limited_without_snapshot_raises(self, services, make_connection, make_account):
        connection = make_connection(frequency_per_day=1)
        account = make_account(connection)
        other = make_account(connection, resource_id="acc-2", iban="ES7921000813610123456789")
        asyncio.run(services.sync.sync_account(other.id))

        with pytest.raises(RateLimitedError):
            asyncio.run(services.sync.balance_snapshot(account.id, max_age=timedelta(minutes=15)))


class TestConcurrentSyncs:

    @pytest.fixture
    def in_flight(self, connector):
        """Makes the bank slow and records how many fetches overlap."""
        state = {"current": 0, "max": 0}

        async def slow_fetch(*args, **kwargs):
            state["current"] += 1
            state["max"] = max(state["max"], state["current"])
            await asyncio.sleep(0.05)
            state["current"] -= 1
            return _bank_transactions()

        connector.get_transactions.side_effect = slow_fetch
        return state

    @pytest.fixture
    def other_services(self, settings, connector, clock):
        """A second container on the same database, as a second worker process would build."""
        return BankingServices.build(settings, connector_factory=lambda config: connector, clock=clock)

    @staticmethod
    def _access_rows(store, connection_id):
        conn = store.connect()
        try:
            return conn.execute(
                "SELECT COUNT(*) FROM connection_access_log WHERE connection_id = ?", (connection_id,)
            ).fetchone()[0]
        finally:
            conn.close()

    def test_syncs_in_one_process_are_serialized(self, services, in_flight, make_connection):
        connection = make_connection()

        async def both():
            return await asyncio.gather(
                services.sync.sync_connection(connection.id),
                services.sync.sync_connection(connection.id),
            )

        first, second = asyncio.run(both())

        assert in_flight["max"] == 1
        assert first.inserted + second.inserted == 3
        assert self._access_rows(services.store, connection.id) == 2

    def test_syncs_across_containers_are_serialized(self, services, other_services, in_flight, make_connection):
        connection = make_connection()

        async def both():
            return await asyncio.gather(
                services.sync.sync_connection(connection.id),
                other_services.sync.sync_connection(connection.id),
            )

        first, second = asyncio.run(both())

        assert in_flight["max"] == 1
        assert first.inserted + second.inserted == 3
        assert first.duplicates + second.duplicates == 3
        assert self._access_rows(services.store, connection.id) == 2

    def test_last_access_is_granted_once_across_containers(self, services, other_services, in_flight,
                                                          make_connection):
        connection = make_connection(frequency_per_day=1)

        async def both():
            return await asyncio.gather(
                services.sync.sync_connection(connection.id),
                other_services.sync.sync_connection(connection.id),
                return_exceptions=True,
            )

        outcomes = asyncio.run(both())

        assert sum(isinstance(o, RateLimitedError) for o in outcomes) == 1
        assert sum(not isinstance(o, BaseException) for o in outcomes) == 1
        assert self._access_rows(services.store, connection.id) == 1

    def test_access_cap_holds_without_the_lease(self, services):
        store = services.store
        now = datetime(2025, 3, 10, 9, 30, tzinfo=timezone.utc)

        outcomes = [store.try_record_access(42, now, 2) for _ in range(3)]

        assert outcomes == [(True, 1), (True, 2), (False, 2)]

    def test_busy_lease_raises_sync_in_progress(self, services, clock, make_connection):
        connection = make_connection()
        store = services.store
        assert store.acquire_sync_lease(connection.id, "other-worker", clock(), ttl_seconds=300)
        locks = ConnectionLocks(store, clock=clock, wait_seconds=0.1, poll_interval=0.01)

        async def attempt():
            async with locks.hold(connection.id):
                pass

        with pytest.raises(SyncInProgressError):
            asyncio.run(attempt())

    def test_expired_lease_is_taken_over(self, services, clock, make_connection):
        connection = make_connection()
        store = services.store
        assert store.acquire_sync_lease(connection.id, "crashed-worker", clock(), ttl_seconds=300)
        clock.advance(minutes=6)

        result = _sync(services, connection.id)

        assert result.connection_id == connection.id
        assert store.acquire_sync_lease(connection.id, "next-worker", clock(), ttl_seconds=300)
