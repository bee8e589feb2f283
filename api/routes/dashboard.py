"""Dashboard endpoint.

Aggregated banking summary of a company, built from stored data only.
"""

from fastapi import APIRouter, Depends

from api.dependencies import get_services
from banking.services import BankingServices
from models.api_responses import DashboardResponse


router = APIRouter()


@router.get("/companies/{company_id}/dashboard", response_model=DashboardResponse)
async def get_dashboard(
    company_id: int,
    services: BankingServices = Depends(get_services),
) -> DashboardResponse:
    """Balances, recent transactions, expense categories and monthly totals."""
    return DashboardResponse.from_domain(services.dashboard.summarize(company_id))
