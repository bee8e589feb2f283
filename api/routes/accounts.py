"""Account endpoints.

Balance snapshots, transaction queries and payment initiation.
"""

from datetime import date, timedelta
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from api.dependencies import get_services
from banking.services import BankingServices
from core.errors import InvalidDateRangeError, account_not_found
from models.api_responses import AccountResponse, PaymentResponse, TransactionResponse


router = APIRouter()

# Stored transactions returned when no window is requested
STORED_TRANSACTIONS_LIMIT = 100


class PaymentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    creditor_name: str = Field(..., min_length=1)
    creditor_iban: str = Field(..., min_length=1)
    amount: Decimal
    currency: str = Field(default="EUR", min_length=3, max_length=3)
    description: str = "Pago"


@router.get("/accounts/{account_id}/balances", response_model=AccountResponse)
async def get_balances(
    account_id: int,
    services: BankingServices = Depends(get_services),
) -> AccountResponse:
    """Balance snapshot; reuses a recent sync, otherwise syncs the account."""
    max_age = timedelta(minutes=services.settings.balance_reuse_minutes)
    account = await services.sync.balance_snapshot(account_id, max_age)
    return AccountResponse.from_domain(account)


@router.get("/accounts/{account_id}/transactions", response_model=List[TransactionResponse])
async def get_transactions(
    account_id: int,
    date_from: Optional[date] = Query(default=None, alias="dateFrom"),
    date_to: Optional[date] = Query(default=None, alias="dateTo"),
    services: BankingServices = Depends(get_services),
) -> List[TransactionResponse]:
    """
    Transactions of an account in a window.

    Without a window, stored transactions are returned when there are any;
    otherwise the account is synced first.
    """
    if services.store.get_account(account_id) is None:
        raise account_not_found(account_id)
    if date_from and date_to and date_from > date_to:
        raise InvalidDateRangeError("dateFrom must not be after dateTo")

    if date_from is None and date_to is None:
        stored = services.store.list_transactions(account_id)
        if stored:
            return [TransactionResponse.from_domain(t) for t in stored[:STORED_TRANSACTIONS_LIMIT]]

    await services.sync.sync_account(account_id, date_from, date_to)
    return [
        TransactionResponse.from_domain(t)
        for t in services.store.list_transactions(account_id, date_from, date_to)
    ]


@router.post("/accounts/{account_id}/payments", response_model=PaymentResponse, status_code=201)
async def initiate_payment(
    account_id: int,
    request: PaymentRequest,
    services: BankingServices = Depends(get_services),
) -> PaymentResponse:
    """Initiate a SEPA credit transfer from the account."""
    payment = await services.payments.initiate_payment(
        account_id,
        creditor_name=request.creditor_name,
        creditor_iban=request.creditor_iban,
        amount=request.amount,
        currency=request.currency.upper(),
        description=request.description,
    )
    return PaymentResponse.from_domain(payment)
