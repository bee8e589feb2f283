"""Health check and metrics endpoints."""

from datetime import datetime, timezone
from typing import Dict

from fastapi import APIRouter, Depends, Response

from api.dependencies import get_services
from banking.services import BankingServices
from models.api_responses import HealthResponse, MetricsResponse


router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check(services: BankingServices = Depends(get_services)) -> HealthResponse:
    """Health check endpoint."""
    storage_up = services.store.ping()
    return HealthResponse(
        status="healthy" if storage_up else "degraded",
        timestamp=datetime.now(timezone.utc).isoformat(),
        version="1.0.0",
        services={
            "api": "up",
            "storage": "up" if storage_up else "down",
            "bank_provider": "configured" if services.connectors.is_configured else "not_configured",
        },
    )


@router.get("/ready")
async def readiness_check(
    response: Response,
    services: BankingServices = Depends(get_services),
) -> Dict[str, str]:
    """Readiness check for Kubernetes."""
    if not services.store.ping():
        response.status_code = 503
        return {"status": "not_ready"}
    return {"status": "ready"}


@router.get("/live")
async def liveness_check() -> Dict[str, str]:
    """Liveness check for Kubernetes."""
    return {"status": "alive"}


@router.get("/metrics", response_model=MetricsResponse)
async def metrics(services: BankingServices = Depends(get_services)) -> MetricsResponse:
    """In-process sync metrics."""
    return MetricsResponse(metrics=services.metrics.get_summary())
