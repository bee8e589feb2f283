"""Berlin Group NextGenPSD2 Connector.

Implements the BankConnector interface against a NextGenPSD2 XS2A API.
"""

from datetime import date
from decimal import Decimal
from typing import Any, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from connectors.bank_base import (
    AccountRef,
    BalanceRef,
    BankApiError,
    BankConfig,
    BankConnector,
    BankConsentStatus,
    ConsentPayload,
    ConsentRef,
    PaymentPayload,
    PaymentRef,
    TransactionRef,
    register_connector,
)
from connectors.psd2.psd2_auth import Psd2AuthConfig, Psd2AuthProvider
from connectors.psd2.psd2_client import Psd2ApiClient, Psd2ApiConfig, RetryConfig
from connectors.psd2.psd2_models import (
    Psd2AccountsResponse,
    Psd2BalancesResponse,
    Psd2ConsentResponse,
    Psd2ConsentStatusResponse,
    Psd2PaymentRequest,
    Psd2PaymentResponse,
    Psd2Transaction,
    Psd2TransactionsResponse,
)
from core.observability.logging import get_logger

logger = get_logger(__name__)

# Guard against a bank that keeps returning the same "next" link
MAX_TRANSACTION_PAGES = 200

M = TypeVar("M", bound=BaseModel)


def _parse(model: Type[M], payload: Any) -> M:
    """Validate a bank document; malformed payloads surface as BankApiError."""
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise BankApiError(f"Malformed {model.__name__} from bank: {e.error_count()} invalid field(s)")


def _consent_status(value: str) -> BankConsentStatus:
    try:
        return BankConsentStatus(value)
    except ValueError:
        raise BankApiError(f"Unknown consent status from bank: {value!r}")


def _to_transaction_ref(tx: Psd2Transaction, pending: bool) -> TransactionRef:
    amount = tx.transactionAmount.amount
    is_debit = amount < 0
    counterparty_name = tx.creditorName if is_debit else tx.debtorName
    counterparty_account = tx.creditorAccount if is_debit else tx.debtorAccount

    return TransactionRef(
        external_id=tx.transactionId or tx.entryReference,
        amount=amount,
        currency=tx.transactionAmount.currency,
        booking_date=tx.bookingDate,
        value_date=tx.valueDate,
        description=tx.remittanceInformationUnstructured or tx.remittanceInformationStructured or "",
        reference=tx.endToEndId or tx.entryReference or "",
        counterparty_name=counterparty_name,
        counterparty_account=counterparty_account.iban if counterparty_account else None,
        creditor_name=tx.creditorName,
        pending=pending,
    )


@register_connector("psd2")
class Psd2Connector(BankConnector):
    """NextGenPSD2 connector.

    Required configuration:
    - api_url: Base URL of the bank's XS2A API
    - client_id / client_secret: TPP credentials for the token endpoint

    Optional configuration:
    - redirect_uri: TPP-Redirect-URI sent with consent and payment requests
    - certificate_path / key_path: eIDAS client certificate for mTLS
    """

    def __init__(self, config: BankConfig, on_retry=None):
        super().__init__(config, on_retry=on_retry)

        api_config = Psd2ApiConfig(
            base_url=config.api_url,
            timeout_seconds=config.timeout_seconds,
            retry_config=RetryConfig(
                max_retries=config.max_retries,
                base_delay=config.retry_base_delay,
                max_delay=config.retry_max_delay,
            ),
            certificate_path=config.certificate_path,
            key_path=config.key_path,
            redirect_uri=config.redirect_uri,
        )
        auth_provider = Psd2AuthProvider(
            Psd2AuthConfig(
                api_url=config.api_url,
                client_id=config.client_id,
                client_secret=config.client_secret,
                timeout_seconds=config.timeout_seconds,
            ),
            ssl_context=api_config.build_ssl_context(),
        )
        self._api_client = Psd2ApiClient(auth_provider, api_config, on_retry=on_retry)

    @property
    def api_client(self) -> Psd2ApiClient:
        return self._api_client

    async def close(self) -> None:
        await self._api_client.disconnect()

    # =========================================================================
    # Consents
    # =========================================================================

    async def create_consent(self, payload: ConsentPayload) -> ConsentRef:
        body = {
            "access": payload.access,
            "recurringIndicator": payload.recurring_indicator,
            "validUntil": payload.valid_until.isoformat(),
            "frequencyPerDay": payload.frequency_per_day,
            "combinedServiceIndicator": payload.combined_service_indicator,
        }
        response = _parse(
            Psd2ConsentResponse,
            await self._api_client.post("/v1/consents", body),
        )
        logger.info(
            "Consent submitted to bank",
            extra_fields={"consent_id": response.consentId, "consent_status": response.consentStatus},
        )
        return ConsentRef(
            consent_id=response.consentId,
            status=_consent_status(response.consentStatus),
            sca_redirect_url=response.sca_redirect_url,
        )

    async def get_consent_status(self, consent_id: str) -> BankConsentStatus:
        response = _parse(
            Psd2ConsentStatusResponse,
            await self._api_client.get(f"/v1/consents/{consent_id}/status"),
        )
        return _consent_status(response.consentStatus)

    async def delete_consent(self, consent_id: str) -> None:
        await self._api_client.delete(f"/v1/consents/{consent_id}")

    # =========================================================================
    # Account information
    # =========================================================================

    async def list_accounts(self, consent_id: str) -> List[AccountRef]:
        response = _parse(
            Psd2AccountsResponse,
            await self._api_client.get("/v1/accounts", consent_id=consent_id),
        )
        return [
            AccountRef(
                resource_id=account.resourceId,
                iban=account.iban,
                currency=account.currency,
                name=account.name,
                owner_name=account.ownerName,
                cash_account_type=account.cashAccountType,
            )
            for account in response.accounts
        ]

    async def get_balances(self, consent_id: str, resource_id: str) -> BalanceRef:
        response = _parse(
            Psd2BalancesResponse,
            await self._api_client.get(f"/v1/accounts/{resource_id}/balances", consent_id=consent_id),
        )

        booked = response.find("closingBooked") or response.find("expected")
        available = response.find("interimAvailable") or response.find("forwardAvailable")
        reference = booked or available

        return BalanceRef(
            balance=booked.balanceAmount.amount if booked else None,
            available_balance=available.balanceAmount.amount if available else None,
            currency=reference.balanceAmount.currency if reference else "EUR",
            reference_date=reference.referenceDate if reference else None,
            last_change=reference.lastChangeDateTime if reference else None,
        )

    async def get_transactions(
        self,
        consent_id: str,
        resource_id: str,
        date_from: date,
        date_to: Optional[date] = None,
    ) -> List[TransactionRef]:
        params = {"dateFrom": date_from.isoformat(), "bookingStatus": "both"}
        if date_to:
            params["dateTo"] = date_to.isoformat()

        results: List[TransactionRef] = []
        path: Optional[str] = f"/v1/accounts/{resource_id}/transactions"
        pages = 0

        while path:
            if pages >= MAX_TRANSACTION_PAGES:
                # A truncated history must never be committed
                raise BankApiError(
                    f"Transactions of {resource_id} still paginating after {MAX_TRANSACTION_PAGES} pages"
                )
            response = _parse(
                Psd2TransactionsResponse,
                await self._api_client.get(path, consent_id=consent_id, params=params),
            )
            pages += 1
            results.extend(_to_transaction_ref(tx, pending=False) for tx in response.transactions.booked)
            results.extend(_to_transaction_ref(tx, pending=True) for tx in response.transactions.pending)

            path = response.transactions.next_href
            # The next link already carries the query string
            params = None

        logger.debug(
            "Fetched transactions",
            extra_fields={"resource_id": resource_id, "pages": pages, "count": len(results)},
        )
        return results

    # =========================================================================
    # Payments
    # =========================================================================

    async def initiate_payment(self, consent_id: str, payload: PaymentPayload) -> PaymentRef:
        request = Psd2PaymentRequest(
            instructedAmount={
                "currency": payload.currency,
                "amount": str(payload.amount.quantize(Decimal("0.01"))),
            },
            debtorAccount={"iban": payload.debtor_iban},
            creditorName=payload.creditor_name,
            creditorAccount={"iban": payload.creditor_iban},
            remittanceInformationUnstructured=payload.description,
        )
        response = _parse(
            Psd2PaymentResponse,
            await self._api_client.post(
                "/v1/payments/sepa-credit-transfers",
                request.model_dump(by_alias=True, exclude_none=True),
                consent_id=consent_id,
            ),
        )
        return PaymentRef(
            payment_id=response.paymentId,
            status=response.transactionStatus,
            sca_redirect_url=response.sca_redirect_url,
        )
