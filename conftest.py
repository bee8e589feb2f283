"""Shared fixtures: a temporary banking database, a fixed clock and a mocked bank."""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from banking.models import (
    AccessScope,
    AccountAccess,
    BankAccount,
    BankConnection,
    ConnectionStatus,
    ConsentRequest,
    Transaction,
    build_dedup_key,
)
from banking.services import BankingServices
from connectors.bank_base import (
    AccountRef,
    BalanceRef,
    BankConnector,
    BankConsentStatus,
    ConsentRef,
    PaymentRef,
)
from core.config import BankingSettings, Psd2ProviderSettings
from core.security import generate_encryption_key

COMPANY_ID = 1
IBAN = "ES9121000418450200051332"


class FixedClock:
    """Callable clock the tests move by hand."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)

    def today(self) -> date:
        return self.now.date()


@pytest.fixture
def clock():
    return FixedClock(datetime(2025, 3, 10, 9, 30, tzinfo=timezone.utc))


@pytest.fixture
def connector():
    """Bank connector double with a single account and no transactions."""
    mock = AsyncMock(spec=BankConnector)
    mock.create_consent.return_value = ConsentRef(
        consent_id="consent-abc",
        status=BankConsentStatus.RECEIVED,
        sca_redirect_url="https://bank.example/sca/consent-abc",
    )
    mock.get_consent_status.return_value = BankConsentStatus.VALID
    mock.list_accounts.return_value = [
        AccountRef(resource_id="acc-1", iban=IBAN, currency="EUR", name="Cuenta corriente"),
    ]
    mock.get_balances.return_value = BalanceRef(
        balance=Decimal("1500.00"),
        available_balance=Decimal("1450.00"),
    )
    mock.get_transactions.return_value = []
    mock.initiate_payment.return_value = PaymentRef(
        payment_id="pay-1",
        status="RCVD",
        sca_redirect_url="https://bank.example/sca/pay-1",
    )
    return mock


@pytest.fixture
def settings(tmp_path):
    return BankingSettings(
        db_path=tmp_path / "banking.db",
        encryption_key=generate_encryption_key(),
        provider=Psd2ProviderSettings(
            api_url="https://bank.example",
            client_id="tpp-client",
            client_secret="tpp-secret",
        ),
    )


@pytest.fixture
def services(settings, connector, clock):
    return BankingServices.build(settings, connector_factory=lambda config: connector, clock=clock)


@pytest.fixture
def store(services):
    return services.store


@pytest.fixture
def make_connection(services, clock):
    """Insert a connection straight into the store, bypassing the bank."""

    def _make(
        status: ConnectionStatus = ConnectionStatus.ACTIVE,
        frequency_per_day: int = 4,
        access: AccessScope = None,
        valid_days: int = 90,
        company_id: int = COMPANY_ID,
    ) -> BankConnection:
        request = ConsentRequest(
            company_id=company_id,
            valid_until=clock.today() + timedelta(days=valid_days),
            access=access or AccessScope(all_psd2=AccountAccess.ALL_ACCOUNTS),
            frequency_per_day=frequency_per_day,
        )
        consent_request_id = services.consents.create(request)
        return services.store.insert_connection(BankConnection(
            company_id=company_id,
            name="Banco Test",
            provider="psd2",
            consent_id=f"consent-{consent_request_id}",
            consent_request_id=consent_request_id,
            valid_until=request.valid_until,
            status=status,
        ))

    return _make


@pytest.fixture
def make_account(services):
    def _make(connection: BankConnection, resource_id: str = "acc-1", iban: str = IBAN) -> BankAccount:
        return services.store.upsert_account(BankAccount(
            connection_id=connection.id,
            company_id=connection.company_id,
            resource_id=resource_id,
            iban=iban,
            name="Cuenta corriente",
        ))

    return _make


@pytest.fixture
def add_transactions(services, clock):
    """Store transactions for an account as a sync would, returning them with ids."""

    def _add(account: BankAccount, *rows) -> list:
        transactions = []
        for amount, description, tx_date in rows:
            amount = Decimal(amount)
            transactions.append(Transaction(
                account_id=account.id,
                amount=amount,
                transaction_date=tx_date,
                description=description,
                dedup_key=build_dedup_key(account.id, None, amount, tx_date, description),
            ))
        services.store.commit_account_sync(
            account.id, transactions, None, None, clock(), advance_last_sync=False
        )
        return services.store.list_transactions(account.id)

    return _add
