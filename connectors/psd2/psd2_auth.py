"""PSD2 Authentication Provider.

Obtains OAuth2 client-credentials tokens for the TPP from the bank's token
endpoint. The user-facing authorisation is SCA on the consent itself; this
token only identifies the TPP.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

import aiohttp

from connectors.bank_base import BankApiError
from core.observability.logging import get_logger

logger = get_logger(__name__)


@dataclass
class Psd2AuthConfig:
    """Configuration for PSD2 client-credentials authentication.

    Attributes:
        api_url: Base URL of the bank API
        client_id: TPP client ID
        client_secret: TPP client secret
        scope: Requested scopes (account information + payment initiation)
        token_path: Token endpoint path under api_url
    """
    api_url: str
    client_id: str
    client_secret: str
    scope: str = "ais pis"
    token_path: str = "/oauth/token"
    timeout_seconds: int = 30

    @property
    def token_endpoint(self) -> str:
        return f"{self.api_url.rstrip('/')}{self.token_path}"


@dataclass
class Psd2Token:
    """OAuth2 access token with expiration tracking."""
    access_token: str
    token_type: str
    expires_in: int
    obtained_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def expires_at(self) -> datetime:
        return self.obtained_at + timedelta(seconds=self.expires_in)

    @property
    def is_expired(self) -> bool:
        """Check if token is expired (with 60-second buffer)."""
        return datetime.now(timezone.utc) >= (self.expires_at - timedelta(seconds=60))

    @property
    def authorization_header(self) -> str:
        return f"{self.token_type} {self.access_token}"


class Psd2AuthProvider:
    """Client-credentials token provider.

    Tokens are cached in memory and refreshed when within a minute of expiry.
    Concurrent callers share one refresh.

    Usage:
        auth = Psd2AuthProvider(Psd2AuthConfig(api_url=..., client_id=..., client_secret=...))
        header = await auth.get_authorization_header()
    """

    def __init__(self, config: Psd2AuthConfig, ssl_context=None):
        self.config = config
        self._ssl_context = ssl_context
        self._token: Optional[Psd2Token] = None
        self._lock = asyncio.Lock()

    async def get_authorization_header(self) -> str:
        """Get a valid "Bearer <token>" header value, fetching a token if needed.

        Raises:
            BankApiError: If the token endpoint rejects the credentials
        """
        async with self._lock:
            if self._token is None or self._token.is_expired:
                self._token = await self._fetch_token()
            return self._token.authorization_header

    def invalidate(self) -> None:
        """Drop the cached token so the next call fetches a new one."""
        self._token = None

    async def _fetch_token(self) -> Psd2Token:
        data = {
            "grant_type": "client_credentials",
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
            "scope": self.config.scope,
        }
        timeout = aiohttp.ClientTimeout(total=self.config.timeout_seconds)
        connector = aiohttp.TCPConnector(ssl=self._ssl_context) if self._ssl_context else None

        try:
            async with aiohttp.ClientSession(timeout=timeout, connector=connector) as session:
                async with session.post(
                    self.config.token_endpoint,
                    data=data,
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                ) as response:
                    if response.status != 200:
                        error_text = await response.text()
                        raise BankApiError(
                            f"Token request failed: {response.status}",
                            response.status,
                            error_text,
                        )
                    token_data = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise BankApiError(f"Token request failed: {type(e).__name__}: {e}")

        logger.debug("Obtained PSD2 access token", extra_fields={"expires_in": token_data.get("expires_in")})
        return Psd2Token(
            access_token=token_data["access_token"],
            token_type=token_data.get("token_type", "Bearer"),
            expires_in=int(token_data.get("expires_in", 3600)),
        )
