"""Berlin Group NextGenPSD2 wire models.

These map to the bank API's JSON documents. They are separate from the
normalized refs in connectors.bank_base and from the banking domain models.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Psd2BaseModel(BaseModel):
    """Base model for PSD2 API documents."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class Href(Psd2BaseModel):
    href: str


class AccountReference(Psd2BaseModel):
    iban: Optional[str] = None
    currency: Optional[str] = None


class Amount(Psd2BaseModel):
    currency: str = "EUR"
    amount: Decimal


# =============================================================================
# Consents
# =============================================================================

class Psd2ConsentResponse(Psd2BaseModel):
    """Response to POST /v1/consents."""
    consentId: str = Field(..., alias="consentId")
    consentStatus: str = Field("received", alias="consentStatus")
    links: Dict[str, Href] = Field(default_factory=dict, alias="_links")

    @property
    def sca_redirect_url(self) -> Optional[str]:
        link = self.links.get("scaRedirect")
        return link.href if link else None


class Psd2ConsentStatusResponse(Psd2BaseModel):
    """Response to GET /v1/consents/{consentId}/status."""
    consentStatus: str = Field(..., alias="consentStatus")


# =============================================================================
# Accounts & Balances
# =============================================================================

class Psd2Account(Psd2BaseModel):
    """Account details as listed under a consent."""
    resourceId: str = Field(..., alias="resourceId")
    iban: Optional[str] = Field(None, alias="iban")
    currency: str = Field("EUR", alias="currency")
    name: Optional[str] = Field(None, alias="name")
    ownerName: Optional[str] = Field(None, alias="ownerName")
    cashAccountType: Optional[str] = Field(None, alias="cashAccountType")
    status: Optional[str] = Field(None, alias="status")
    bic: Optional[str] = Field(None, alias="bic")


class Psd2AccountsResponse(Psd2BaseModel):
    accounts: List[Psd2Account] = Field(default_factory=list)


class Psd2Balance(Psd2BaseModel):
    balanceType: str = Field(..., alias="balanceType")
    balanceAmount: Amount = Field(..., alias="balanceAmount")
    creditLimitIncluded: Optional[bool] = Field(None, alias="creditLimitIncluded")
    lastChangeDateTime: Optional[datetime] = Field(None, alias="lastChangeDateTime")
    referenceDate: Optional[date] = Field(None, alias="referenceDate")


class Psd2BalancesResponse(Psd2BaseModel):
    account: Optional[AccountReference] = None
    balances: List[Psd2Balance] = Field(default_factory=list)

    def find(self, balance_type: str) -> Optional[Psd2Balance]:
        for balance in self.balances:
            if balance.balanceType == balance_type:
                return balance
        return None


# =============================================================================
# Transactions
# =============================================================================

class Psd2Transaction(Psd2BaseModel):
    transactionId: Optional[str] = Field(None, alias="transactionId")
    entryReference: Optional[str] = Field(None, alias="entryReference")
    endToEndId: Optional[str] = Field(None, alias="endToEndId")
    mandateId: Optional[str] = Field(None, alias="mandateId")
    bookingDate: Optional[date] = Field(None, alias="bookingDate")
    valueDate: Optional[date] = Field(None, alias="valueDate")
    transactionAmount: Amount = Field(..., alias="transactionAmount")
    creditorName: Optional[str] = Field(None, alias="creditorName")
    creditorAccount: Optional[AccountReference] = Field(None, alias="creditorAccount")
    debtorName: Optional[str] = Field(None, alias="debtorName")
    debtorAccount: Optional[AccountReference] = Field(None, alias="debtorAccount")
    remittanceInformationUnstructured: Optional[str] = Field(None, alias="remittanceInformationUnstructured")
    remittanceInformationStructured: Optional[str] = Field(None, alias="remittanceInformationStructured")
    bankTransactionCode: Optional[str] = Field(None, alias="bankTransactionCode")


class Psd2TransactionList(Psd2BaseModel):
    booked: List[Psd2Transaction] = Field(default_factory=list)
    pending: List[Psd2Transaction] = Field(default_factory=list)
    links: Dict[str, Href] = Field(default_factory=dict, alias="_links")

    @property
    def next_href(self) -> Optional[str]:
        link = self.links.get("next")
        return link.href if link else None


class Psd2TransactionsResponse(Psd2BaseModel):
    account: Optional[AccountReference] = None
    transactions: Psd2TransactionList = Field(default_factory=Psd2TransactionList)


# =============================================================================
# Payments
# =============================================================================

class Psd2PaymentRequest(Psd2BaseModel):
    """Body of POST /v1/payments/sepa-credit-transfers."""
    instructedAmount: Dict[str, str] = Field(..., alias="instructedAmount")
    debtorAccount: AccountReference = Field(..., alias="debtorAccount")
    creditorName: str = Field(..., alias="creditorName")
    creditorAccount: AccountReference = Field(..., alias="creditorAccount")
    remittanceInformationUnstructured: str = Field("", alias="remittanceInformationUnstructured")


class Psd2PaymentResponse(Psd2BaseModel):
    paymentId: str = Field(..., alias="paymentId")
    transactionStatus: str = Field("RCVD", alias="transactionStatus")
    links: Dict[str, Href] = Field(default_factory=dict, alias="_links")

    @property
    def sca_redirect_url(self) -> Optional[str]:
        link = self.links.get("scaRedirect")
        return link.href if link else None
