"""Connection endpoints.

Listing, status refresh, revocation, account discovery and on-demand sync.
"""

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from api.dependencies import get_services
from banking.services import BankingServices
from core.errors import InvalidDateRangeError
from models.api_responses import AccountResponse, ConnectionResponse, SyncResponse


router = APIRouter()


@router.get("/connections/{company_id}", response_model=List[ConnectionResponse])
async def list_connections(
    company_id: int,
    services: BankingServices = Depends(get_services),
) -> List[ConnectionResponse]:
    """List a company's connections in creation order."""
    return [ConnectionResponse.from_domain(c) for c in services.connections.list_for_company(company_id)]


@router.put("/connections/{connection_id}/status", response_model=ConnectionResponse)
async def refresh_connection_status(
    connection_id: int,
    services: BankingServices = Depends(get_services),
) -> ConnectionResponse:
    """Re-query the bank for the consent status and apply the transition."""
    connection = await services.connections.refresh_status(connection_id)
    return ConnectionResponse.from_domain(connection)


@router.delete("/connections/{connection_id}", response_model=ConnectionResponse)
async def revoke_connection(
    connection_id: int,
    services: BankingServices = Depends(get_services),
) -> ConnectionResponse:
    """Delete the consent at the bank and revoke the connection."""
    connection = await services.connections.revoke(connection_id)
    return ConnectionResponse.from_domain(connection)


@router.get("/connections/{connection_id}/accounts", response_model=List[AccountResponse])
async def list_connection_accounts(
    connection_id: int,
    services: BankingServices = Depends(get_services),
) -> List[AccountResponse]:
    """Stored accounts of a connection; discovers them at the bank when none are stored."""
    services.connections.get(connection_id)
    accounts = services.store.list_accounts(connection_id)
    if not accounts:
        accounts = await services.sync.discover_accounts(connection_id)
    return [AccountResponse.from_domain(a) for a in accounts]


@router.post("/connections/{connection_id}/sync", response_model=SyncResponse)
async def sync_connection(
    connection_id: int,
    date_from: Optional[date] = Query(default=None, alias="dateFrom"),
    date_to: Optional[date] = Query(default=None, alias="dateTo"),
    services: BankingServices = Depends(get_services),
) -> SyncResponse:
    """Sync every active account of the connection now."""
    if date_from and date_to and date_from > date_to:
        raise InvalidDateRangeError("dateFrom must not be after dateTo")
    result = await services.sync.sync_connection(connection_id, date_from, date_to)
    return SyncResponse.from_domain(result)
