"""
Banking Models

Defines data structures for:
- Consent requests and access scopes
- Bank connections and their lifecycle states
- Bank accounts and transactions
"""

import hashlib
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional


UNCATEGORIZED_LABEL = "Sin categorizar"


class ConnectionStatus(str, Enum):
    """Lifecycle states of a bank connection"""
    PENDING = "pending"    # Consent submitted, SCA not completed
    ACTIVE = "active"      # Consent valid, data may be pulled
    EXPIRED = "expired"    # Validity window lapsed (terminal)
    REVOKED = "revoked"    # Revoked by user or bank (terminal)

    @property
    def is_terminal(self) -> bool:
        return self in (ConnectionStatus.EXPIRED, ConnectionStatus.REVOKED)


ALLOWED_TRANSITIONS: Dict[ConnectionStatus, frozenset] = {
    ConnectionStatus.PENDING: frozenset({
        ConnectionStatus.ACTIVE,
        ConnectionStatus.EXPIRED,
        ConnectionStatus.REVOKED,
    }),
    ConnectionStatus.ACTIVE: frozenset({
        ConnectionStatus.EXPIRED,
        ConnectionStatus.REVOKED,
    }),
    ConnectionStatus.EXPIRED: frozenset(),
    ConnectionStatus.REVOKED: frozenset(),
}


class AccountAccess(str, Enum):
    """Blanket account access values of a consent"""
    ALL_ACCOUNTS = "allAccounts"
    ALL_ACCOUNTS_WITH_OWNER_NAME = "allAccountsWithOwnerName"


class TransactionType(str, Enum):
    PAYMENT = "payment"
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    TRANSFER = "transfer"


class TransactionStatus(str, Enum):
    BOOKED = "booked"
    PENDING = "pending"


# =============================================================================
# Consent Models
# =============================================================================

@dataclass
class AccessScope:
    """
    What a consent grants.

    Attributes:
        accounts: IBANs whose details may be read
        balances: IBANs whose balances may be read
        transactions: IBANs whose transactions may be read
        available_accounts: Grants listing of all accounts (details only)
        all_psd2: Grants accounts, balances and transactions on every account
    """
    accounts: List[str] = field(default_factory=list)
    balances: List[str] = field(default_factory=list)
    transactions: List[str] = field(default_factory=list)
    available_accounts: Optional[AccountAccess] = None
    all_psd2: Optional[AccountAccess] = None

    @property
    def is_empty(self) -> bool:
        return not (
            self.accounts
            or self.balances
            or self.transactions
            or self.available_accounts
            or self.all_psd2
        )

    def grants_account_list(self) -> bool:
        return not self.is_empty

    def grants_balances(self, iban: Optional[str]) -> bool:
        if self.all_psd2:
            return True
        return iban is not None and iban in self.balances

    def grants_transactions(self, iban: Optional[str]) -> bool:
        if self.all_psd2:
            return True
        return iban is not None and iban in self.transactions

    def to_dict(self) -> Dict[str, Any]:
        """Berlin Group access object."""
        data: Dict[str, Any] = {}
        for name in ("accounts", "balances", "transactions"):
            ibans = getattr(self, name)
            if ibans:
                data[name] = [{"iban": iban} for iban in ibans]
        if self.available_accounts:
            data["availableAccounts"] = self.available_accounts.value
        if self.all_psd2:
            data["allPsd2"] = self.all_psd2.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AccessScope":
        def ibans(name: str) -> List[str]:
            return [item["iban"] if isinstance(item, dict) else item for item in data.get(name) or []]

        available = data.get("availableAccounts")
        all_psd2 = data.get("allPsd2")
        return cls(
            accounts=ibans("accounts"),
            balances=ibans("balances"),
            transactions=ibans("transactions"),
            available_accounts=AccountAccess(available) if available else None,
            all_psd2=AccountAccess(all_psd2) if all_psd2 else None,
        )


@dataclass
class ConsentRequest:
    """
    A PSD2 consent request as recorded locally.

    Immutable once stored; a new request is needed to change the scope.
    """
    company_id: int
    valid_until: date
    access: AccessScope
    recurring_indicator: bool = True
    frequency_per_day: int = 4
    combined_service_indicator: bool = False
    revoked_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    id: Optional[int] = None

    def is_valid_at(self, at: datetime) -> bool:
        """True while not revoked and ``at`` falls on or before validUntil (UTC)."""
        if self.revoked_at is not None:
            return False
        if at.tzinfo is not None:
            at = at.astimezone(timezone.utc)
        return at.date() <= self.valid_until


# =============================================================================
# Connection & Account Models
# =============================================================================

@dataclass
class BankConnection:
    """
    A company's link to one bank through one consent.

    Attributes:
        consent_id: Bank-issued consent identifier
        consent_request_id: Local ConsentStore id
        sca_redirect_url: Where the user completes SCA (while pending)
    """
    company_id: int
    name: str
    provider: str
    consent_id: str
    consent_request_id: int
    valid_until: date
    status: ConnectionStatus = ConnectionStatus.PENDING
    sca_redirect_url: Optional[str] = None
    created_at: Optional[datetime] = None
    last_updated: Optional[datetime] = None
    id: Optional[int] = None


@dataclass
class BankAccount:
    connection_id: int
    company_id: int
    resource_id: str
    iban: Optional[str]
    currency: str = "EUR"
    name: Optional[str] = None
    balance: Optional[Decimal] = None
    available_balance: Optional[Decimal] = None
    active: bool = True
    last_sync_at: Optional[datetime] = None
    id: Optional[int] = None


# =============================================================================
# Transaction Models
# =============================================================================

@dataclass
class Transaction:
    """
    A bank transaction. Amount is signed: negative is a debit.

    Only category, is_manual_category and invoice_id change after insert.
    """
    account_id: int
    amount: Decimal
    transaction_date: date
    currency: str = "EUR"
    description: str = ""
    reference: str = ""
    counterparty_name: Optional[str] = None
    counterparty_account: Optional[str] = None
    value_date: Optional[date] = None
    booking_date: Optional[date] = None
    type: TransactionType = TransactionType.TRANSFER
    status: TransactionStatus = TransactionStatus.BOOKED
    external_id: Optional[str] = None
    dedup_key: str = ""
    category: Optional[str] = None
    is_manual_category: bool = False
    invoice_id: Optional[int] = None
    created_at: Optional[datetime] = None
    id: Optional[int] = None

    def field_text(self, field_name: str) -> str:
        """Text a category rule matches against."""
        if field_name == "description":
            return self.description or ""
        if field_name == "reference":
            return self.reference or ""
        if field_name == "counterparty":
            return self.counterparty_name or ""
        raise ValueError(f"Unknown rule field: {field_name}")


def derive_transaction_type(amount: Decimal, creditor_name: Optional[str]) -> TransactionType:
    """Classify by sign: credits are deposits, debits to a named creditor are payments."""
    if amount > 0:
        return TransactionType.DEPOSIT
    if amount < 0:
        return TransactionType.PAYMENT if creditor_name else TransactionType.WITHDRAWAL
    return TransactionType.TRANSFER


def build_dedup_key(
    account_id: int,
    external_id: Optional[str],
    amount: Decimal,
    transaction_date: date,
    description: str,
) -> str:
    """Stable identity of a transaction within an account.

    Uses the bank's own id when it sends one; otherwise hashes the fields
    that identify the movement.
    """
    if external_id:
        return f"ext:{external_id}"
    normalized_amount = format(Decimal(amount).normalize(), "f")
    material = "|".join([
        str(account_id),
        normalized_amount,
        transaction_date.isoformat(),
        (description or "").strip(),
    ])
    return "sha256:" + hashlib.sha256(material.encode("utf-8")).hexdigest()
