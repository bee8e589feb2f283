"""Transaction endpoints: manual categorization and invoice linking."""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from api.dependencies import get_services
from banking.services import BankingServices
from models.api_responses import TransactionResponse


router = APIRouter()


class CategorizeRequest(BaseModel):
    """An empty or null category clears the manual override."""
    category: Optional[str] = None


class LinkRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    invoice_id: int


@router.put("/transactions/{transaction_id}/categorize", response_model=TransactionResponse)
async def categorize_transaction(
    transaction_id: int,
    request: CategorizeRequest,
    services: BankingServices = Depends(get_services),
) -> TransactionResponse:
    """Manual category override."""
    tx = services.categorization.categorize_manually(transaction_id, request.category)
    return TransactionResponse.from_domain(tx)


@router.put("/transactions/{transaction_id}/link", response_model=TransactionResponse)
async def link_transaction(
    transaction_id: int,
    request: LinkRequest,
    services: BankingServices = Depends(get_services),
) -> TransactionResponse:
    """Link a transaction to an invoice."""
    return TransactionResponse.from_domain(services.linker.link(transaction_id, request.invoice_id))


@router.delete("/transactions/{transaction_id}/link", response_model=TransactionResponse)
async def unlink_transaction(
    transaction_id: int,
    services: BankingServices = Depends(get_services),
) -> TransactionResponse:
    return TransactionResponse.from_domain(services.linker.unlink(transaction_id))
