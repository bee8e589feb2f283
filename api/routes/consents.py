"""Consent endpoints.

Creating a consent stores the request, submits it to the bank and records a
pending connection. The response carries the SCA redirect link the user must
follow before the connection can be activated.
"""

from datetime import date, datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from api.dependencies import get_services
from banking.consents import default_valid_until
from banking.models import AccessScope, AccountAccess, ConsentRequest
from banking.services import BankingServices
from models.api_responses import ConsentCreatedResponse


router = APIRouter()


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)


class AccountReferenceIn(CamelModel):
    iban: str = Field(..., min_length=1)


class AccessRequest(CamelModel):
    """Berlin Group access object."""
    accounts: List[AccountReferenceIn] = Field(default_factory=list)
    balances: List[AccountReferenceIn] = Field(default_factory=list)
    transactions: List[AccountReferenceIn] = Field(default_factory=list)
    available_accounts: Optional[AccountAccess] = None
    all_psd2: Optional[AccountAccess] = None

    def to_scope(self) -> AccessScope:
        return AccessScope(
            accounts=[ref.iban for ref in self.accounts],
            balances=[ref.iban for ref in self.balances],
            transactions=[ref.iban for ref in self.transactions],
            available_accounts=self.available_accounts,
            all_psd2=self.all_psd2,
        )


class ConsentCreateRequest(CamelModel):
    company_id: int
    name: str = Field(default="PSD2", description="Display name of the connection")
    valid_until: Optional[date] = Field(default=None, description="Defaults to 90 days from today")
    recurring_indicator: bool = True
    frequency_per_day: int = 4
    combined_service_indicator: bool = False
    access: Optional[AccessRequest] = Field(
        default=None, description="Defaults to availableAccounts=allAccounts"
    )


@router.post("/consents", response_model=ConsentCreatedResponse, status_code=201)
async def create_consent(
    request: ConsentCreateRequest,
    services: BankingServices = Depends(get_services),
) -> ConsentCreatedResponse:
    """Create a consent request and its pending connection."""
    access = request.access.to_scope() if request.access else AccessScope(
        available_accounts=AccountAccess.ALL_ACCOUNTS
    )
    consent = ConsentRequest(
        company_id=request.company_id,
        valid_until=request.valid_until or default_valid_until(datetime.now(timezone.utc).date()),
        access=access,
        recurring_indicator=request.recurring_indicator,
        frequency_per_day=request.frequency_per_day,
        combined_service_indicator=request.combined_service_indicator,
    )
    connection = await services.connections.create_connection(request.company_id, consent, request.name)
    return ConsentCreatedResponse.from_domain(connection)
