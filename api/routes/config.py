"""Provider configuration endpoint.

Stores the PSD2 provider credentials. The client secret is encrypted at rest
and never returned.
"""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from api.dependencies import get_services
from banking.services import BankingServices
from core.config import Psd2ProviderSettings
from models.api_responses import MessageResponse


router = APIRouter()


class ProviderConfigRequest(BaseModel):
    """PSD2 provider credentials."""
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    api_url: str = Field(..., min_length=1, description="Base URL of the bank's Berlin Group API")
    client_id: str = Field(..., min_length=1)
    client_secret: str = Field(..., min_length=1)
    redirect_uri: str = ""
    certificate_path: Optional[str] = None
    key_path: Optional[str] = None


@router.post("/config", response_model=MessageResponse)
async def configure_provider(
    request: ProviderConfigRequest,
    services: BankingServices = Depends(get_services),
) -> MessageResponse:
    """Store PSD2 provider credentials."""
    await services.configure_provider(Psd2ProviderSettings(
        api_url=request.api_url.rstrip("/"),
        client_id=request.client_id,
        client_secret=request.client_secret,
        redirect_uri=request.redirect_uri,
        certificate_path=request.certificate_path,
        key_path=request.key_path,
    ))
    return MessageResponse(message="Banking provider configuration saved")
