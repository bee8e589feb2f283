"""
API Response Models for the Banking API.

These Pydantic models define the JSON contract of the REST surface. Field
names are snake_case in Python and camelCase on the wire.

Hierarchy:
- ConnectionResponse / ConsentCreatedResponse: Bank connections
- AccountResponse: Accounts and balance snapshots
- TransactionResponse: Persisted transactions
- CategoryRuleResponse / RecategorizeResponse: Categorization rules
- DashboardResponse: Company banking summary
- SyncResponse / PaymentResponse: Operations against the bank
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer
from pydantic.alias_generators import to_camel

from banking.dashboard import DashboardSummary
from banking.models import BankAccount, BankConnection, Transaction
from banking.sync import AccountSyncResult, SyncResult
from categorization.models import CategoryRule, RecategorizeResult
from connectors.bank_base import PaymentRef


def _money(value: Decimal) -> str:
    return str(value.quantize(Decimal("0.01")))


# Amounts travel as fixed two-decimal strings
Money = Annotated[Decimal, PlainSerializer(_money, return_type=str, when_used="json")]


# =============================================================================
# BASE MODELS
# =============================================================================

class ResponseBase(BaseModel):
    """Base class for all API responses."""
    model_config = ConfigDict(
        populate_by_name=True,
        alias_generator=to_camel,
    )


class MessageResponse(ResponseBase):
    success: bool = True
    message: str


class ErrorBody(ResponseBase):
    code: str
    message: str
    retry_after: Optional[datetime] = None


class ErrorResponse(ResponseBase):
    """Envelope for every error answer."""
    success: bool = False
    error: ErrorBody


# =============================================================================
# CONNECTION MODELS
# =============================================================================

class ConnectionResponse(ResponseBase):
    """A company's bank connection."""
    id: int
    company_id: int
    name: str
    provider: str
    consent_id: str
    consent_request_id: int
    status: str = Field(..., description="pending, active, expired or revoked")
    valid_until: date
    sca_redirect_url: Optional[str] = None
    created_at: Optional[datetime] = None
    last_updated: Optional[datetime] = None

    @classmethod
    def from_domain(cls, connection: BankConnection) -> "ConnectionResponse":
        return cls(
            id=connection.id,
            company_id=connection.company_id,
            name=connection.name,
            provider=connection.provider,
            consent_id=connection.consent_id,
            consent_request_id=connection.consent_request_id,
            status=connection.status.value,
            valid_until=connection.valid_until,
            sca_redirect_url=connection.sca_redirect_url,
            created_at=connection.created_at,
            last_updated=connection.last_updated,
        )


class Href(BaseModel):
    href: str


class ConsentLinks(ResponseBase):
    sca_redirect: Optional[Href] = None


class ConsentCreatedResponse(ConnectionResponse):
    """Pending connection plus the link where the user completes SCA."""
    links: ConsentLinks = Field(default_factory=ConsentLinks, alias="_links")

    @classmethod
    def from_domain(cls, connection: BankConnection) -> "ConsentCreatedResponse":
        base = ConnectionResponse.from_domain(connection)
        redirect = Href(href=connection.sca_redirect_url) if connection.sca_redirect_url else None
        return cls(**base.model_dump(), links=ConsentLinks(sca_redirect=redirect))


# =============================================================================
# ACCOUNT MODELS
# =============================================================================

class AccountResponse(ResponseBase):
    id: int
    connection_id: int
    company_id: int
    resource_id: str
    iban: Optional[str] = None
    name: Optional[str] = None
    currency: str
    balance: Optional[Money] = None
    available_balance: Optional[Money] = None
    active: bool
    last_sync_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, account: BankAccount) -> "AccountResponse":
        return cls(
            id=account.id,
            connection_id=account.connection_id,
            company_id=account.company_id,
            resource_id=account.resource_id,
            iban=account.iban,
            name=account.name,
            currency=account.currency,
            balance=account.balance,
            available_balance=account.available_balance,
            active=account.active,
            last_sync_at=account.last_sync_at,
        )


# =============================================================================
# TRANSACTION MODELS
# =============================================================================

class TransactionResponse(ResponseBase):
    id: int
    account_id: int
    external_id: Optional[str] = None
    amount: Money
    currency: str
    transaction_date: date
    value_date: Optional[date] = None
    booking_date: Optional[date] = None
    description: str
    reference: str
    counterparty_name: Optional[str] = None
    counterparty_account: Optional[str] = None
    type: str
    status: str
    category: Optional[str] = None
    is_manual_category: bool
    invoice_id: Optional[int] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, tx: Transaction) -> "TransactionResponse":
        return cls(
            id=tx.id,
            account_id=tx.account_id,
            external_id=tx.external_id,
            amount=tx.amount,
            currency=tx.currency,
            transaction_date=tx.transaction_date,
            value_date=tx.value_date,
            booking_date=tx.booking_date,
            description=tx.description,
            reference=tx.reference,
            counterparty_name=tx.counterparty_name,
            counterparty_account=tx.counterparty_account,
            type=tx.type.value,
            status=tx.status.value,
            category=tx.category,
            is_manual_category=tx.is_manual_category,
            invoice_id=tx.invoice_id,
            created_at=tx.created_at,
        )


# =============================================================================
# SYNC & PAYMENT MODELS
# =============================================================================

class AccountSyncResponse(ResponseBase):
    account_id: int
    iban: Optional[str] = None
    date_from: date
    date_to: date
    fetched: int
    inserted: int
    duplicates: int
    categorized: int
    balances_fetched: bool
    transactions_fetched: bool

    @classmethod
    def from_domain(cls, result: AccountSyncResult) -> "AccountSyncResponse":
        return cls(
            account_id=result.account_id,
            iban=result.iban,
            date_from=result.date_from,
            date_to=result.date_to,
            fetched=result.fetched,
            inserted=result.inserted,
            duplicates=result.duplicates,
            categorized=result.categorized,
            balances_fetched=result.balances_fetched,
            transactions_fetched=result.transactions_fetched,
        )


class SyncResponse(ResponseBase):
    connection_id: int
    sync_id: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    accesses_remaining: int
    inserted: int
    duplicates: int
    accounts: List[AccountSyncResponse] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, result: SyncResult) -> "SyncResponse":
        return cls(
            connection_id=result.connection_id,
            sync_id=result.sync_id,
            started_at=result.started_at,
            completed_at=result.completed_at,
            accesses_remaining=result.accesses_remaining,
            inserted=result.inserted,
            duplicates=result.duplicates,
            accounts=[AccountSyncResponse.from_domain(a) for a in result.accounts],
        )


class PaymentData(ResponseBase):
    payment_id: str
    status: str
    sca_redirect_url: Optional[str] = None


class PaymentResponse(ResponseBase):
    success: bool = True
    message: str = "Payment initiated"
    data: PaymentData

    @classmethod
    def from_domain(cls, payment: PaymentRef) -> "PaymentResponse":
        return cls(data=PaymentData(
            payment_id=payment.payment_id,
            status=payment.status,
            sca_redirect_url=payment.sca_redirect_url,
        ))


# =============================================================================
# CATEGORIZATION MODELS
# =============================================================================

class CategoryRuleResponse(ResponseBase):
    id: int
    company_id: int
    name: str
    pattern: str
    is_regex: bool
    field: str
    category: str
    priority: int
    active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, rule: CategoryRule) -> "CategoryRuleResponse":
        return cls(
            id=rule.id,
            company_id=rule.company_id,
            name=rule.name,
            pattern=rule.pattern,
            is_regex=rule.is_regex,
            field=rule.field.value,
            category=rule.category,
            priority=rule.priority,
            active=rule.active,
            created_at=rule.created_at,
            updated_at=rule.updated_at,
        )


class RecategorizeResponse(ResponseBase):
    company_id: int
    evaluated: int
    updated: int
    skipped_rules: List[int] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, result: RecategorizeResult) -> "RecategorizeResponse":
        return cls(
            company_id=result.company_id,
            evaluated=result.evaluated,
            updated=result.updated,
            skipped_rules=list(result.skipped_rules),
        )


# =============================================================================
# DASHBOARD MODELS
# =============================================================================

class DashboardTotals(ResponseBase):
    total_accounts: int
    total_balance: Money
    total_available_balance: Money
    last_sync_date: Optional[datetime] = None


class CategoryAmount(ResponseBase):
    name: str
    amount: Money
    count: int


class MonthlyAmount(ResponseBase):
    month: str = Field(..., description="YYYY-MM")
    income: Money
    expense: Money
    net: Money


class DashboardResponse(ResponseBase):
    """Company banking summary."""
    summary: DashboardTotals
    accounts: List[AccountResponse] = Field(default_factory=list)
    recent_transactions: List[TransactionResponse] = Field(default_factory=list)
    category_data: List[CategoryAmount] = Field(default_factory=list)
    monthly: List[MonthlyAmount] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, summary: DashboardSummary) -> "DashboardResponse":
        return cls(
            summary=DashboardTotals(
                total_accounts=summary.total_accounts,
                total_balance=summary.total_balance,
                total_available_balance=summary.total_available_balance,
                last_sync_date=summary.last_sync_date,
            ),
            accounts=[AccountResponse.from_domain(a) for a in summary.accounts],
            recent_transactions=[TransactionResponse.from_domain(t) for t in summary.recent_transactions],
            category_data=[
                CategoryAmount(name=c.category, amount=c.amount, count=c.count) for c in summary.categories
            ],
            monthly=[
                MonthlyAmount(month=m.month, income=m.income, expense=m.expense, net=m.net)
                for m in summary.monthly
            ],
        )


# =============================================================================
# OPERATIONAL MODELS
# =============================================================================

class HealthResponse(ResponseBase):
    status: str
    timestamp: str
    version: str
    services: Dict[str, str]


class MetricsResponse(ResponseBase):
    metrics: Dict[str, Any]
