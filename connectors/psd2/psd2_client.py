"""PSD2 HTTP Client.

Low-level HTTP client for Berlin Group NextGenPSD2 API calls.
Handles request headers, retries with exponential backoff, and error mapping.
"""

import asyncio
import json
import ssl
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

import aiohttp

from connectors.bank_base import (
    BankApiError,
    BankNotFoundError,
    BankRateLimitError,
    BankUnauthorizedError,
    BankValidationError,
)
from connectors.psd2.psd2_auth import Psd2AuthProvider
from core.observability.logging import get_logger

logger = get_logger(__name__)

# tppMessages codes meaning the consent itself is no longer usable
CONSENT_ERROR_CODES = frozenset({"CONSENT_INVALID", "CONSENT_EXPIRED", "CONSENT_UNKNOWN"})

DEFAULT_RETRY_AFTER_SECONDS = 60


def parse_retry_after(value: Optional[str], now: Optional[datetime] = None) -> int:
    """Seconds to wait from a Retry-After header (delta-seconds or HTTP-date)."""
    if not value or not value.strip():
        return DEFAULT_RETRY_AFTER_SECONDS
    value = value.strip()
    if value.isdigit():
        return int(value)
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        logger.warning("Unparseable Retry-After header", extra_fields={"retry_after": value})
        return DEFAULT_RETRY_AFTER_SECONDS
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return max(int((when - now).total_seconds()), 0)


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_retries: int = 3
    base_delay: float = 1.0  # seconds
    max_delay: float = 30.0  # seconds
    exponential_base: float = 2.0
    retry_on_status: Tuple[int, ...] = (500, 502, 503, 504)

    def get_delay(self, attempt: int) -> float:
        """Calculate delay for retry attempt (exponential backoff)."""
        delay = self.base_delay * (self.exponential_base ** attempt)
        return min(delay, self.max_delay)


@dataclass
class Psd2ApiConfig:
    """Configuration for the PSD2 API client."""
    base_url: str
    timeout_seconds: int = 30
    retry_config: RetryConfig = field(default_factory=RetryConfig)
    certificate_path: Optional[str] = None
    key_path: Optional[str] = None
    redirect_uri: str = ""

    def build_ssl_context(self) -> Optional[ssl.SSLContext]:
        """Client-certificate context for mTLS, when a certificate is configured."""
        if not self.certificate_path:
            return None
        context = ssl.create_default_context()
        context.load_cert_chain(self.certificate_path, self.key_path)
        return context

    def url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"


def _tpp_message_codes(body: str) -> List[str]:
    """Extract tppMessages codes from an error body."""
    try:
        payload = json.loads(body) if body else {}
    except ValueError:
        return []
    if not isinstance(payload, dict):
        return []
    messages = payload.get("tppMessages") or []
    return [m.get("code", "") for m in messages if isinstance(m, dict)]


class Psd2ApiClient:
    """HTTP client for a Berlin Group NextGenPSD2 API.

    Provides:
    - X-Request-ID / Authorization / Consent-ID headers on every call
    - Timeouts and exponential backoff on 5xx and network errors
    - Mapping of error responses to BankApiError subclasses

    Usage:
        client = Psd2ApiClient(auth_provider, Psd2ApiConfig(base_url=...))
        await client.connect()
        accounts = await client.get("/v1/accounts", consent_id="c-1")
    """

    def __init__(
        self,
        auth_provider: Psd2AuthProvider,
        api_config: Psd2ApiConfig,
        on_retry: Optional[Callable[[], None]] = None,
    ):
        self.auth_provider = auth_provider
        self.api_config = api_config
        self.on_retry = on_retry
        self._session: Optional[aiohttp.ClientSession] = None

    async def connect(self) -> None:
        """Open the HTTP session."""
        if self._session is None or self._session.closed:
            ssl_context = self.api_config.build_ssl_context()
            connector = aiohttp.TCPConnector(ssl=ssl_context) if ssl_context else None
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.api_config.timeout_seconds),
                connector=connector,
            )

    async def disconnect(self) -> None:
        """Close HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    async def _headers(self, method: str, consent_id: Optional[str]) -> Dict[str, str]:
        headers = {
            "X-Request-ID": str(uuid.uuid4()),
            "Authorization": await self.auth_provider.get_authorization_header(),
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if consent_id:
            headers["Consent-ID"] = consent_id
        if method == "POST" and self.api_config.redirect_uri:
            headers["TPP-Redirect-URI"] = self.api_config.redirect_uri
        return headers

    async def _send(
        self,
        method: str,
        url: str,
        headers: Dict[str, str],
        params: Optional[Dict[str, str]] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> Tuple[int, Dict[str, str], str]:
        """Perform one HTTP exchange and return (status, headers, body)."""
        await self.connect()
        async with self._session.request(
            method,
            url,
            headers=headers,
            params=params,
            json=data,
        ) as response:
            body = await response.text()
            return response.status, dict(response.headers), body

    async def request(
        self,
        method: str,
        path: str,
        consent_id: Optional[str] = None,
        params: Optional[Dict[str, str]] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Make an API request with automatic retries.

        Args:
            method: HTTP method
            path: Path under the base URL, or an absolute URL (pagination links)
            consent_id: Sent as Consent-ID for account information calls
            params: Query parameters
            data: JSON body

        Returns:
            Response JSON (empty dict for 204)

        Raises:
            BankUnauthorizedError: Consent rejected by the bank
            BankNotFoundError: Resource not found
            BankRateLimitError: Access frequency exceeded
            BankValidationError: Request rejected as malformed
            BankApiError: Other errors, or retries exhausted
        """
        url = self.api_config.url(path)
        retry_config = self.api_config.retry_config
        last_error: Optional[Exception] = None

        for attempt in range(retry_config.max_retries + 1):
            try:
                headers = await self._headers(method, consent_id)
                status, response_headers, body = await self._send(method, url, headers, params, data)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = e
                if attempt < retry_config.max_retries:
                    await self._backoff(attempt, f"{type(e).__name__}: {e}")
                    continue
                raise BankApiError(
                    f"Request failed after {retry_config.max_retries} retries: {type(e).__name__}: {e}"
                )

            if status < 400:
                if status == 204 or not body:
                    return {}
                try:
                    return json.loads(body)
                except ValueError as e:
                    raise BankApiError(f"Response from {url} is not JSON: {e}", status, body)

            codes = _tpp_message_codes(body)

            if status in (401, 403) or CONSENT_ERROR_CODES.intersection(codes):
                if status == 401 and attempt == 0 and not CONSENT_ERROR_CODES.intersection(codes):
                    # Could be a stale TPP token rather than the consent
                    logger.warning("Got 401, refreshing access token")
                    self.auth_provider.invalidate()
                    continue
                if status == 403 and not CONSENT_ERROR_CODES.intersection(codes):
                    raise BankApiError(f"Forbidden: {url}", status, body)
                raise BankUnauthorizedError(
                    f"Consent rejected by bank ({', '.join(codes) or status})",
                    status,
                    body,
                )

            if status == 404:
                raise BankNotFoundError(f"Resource not found: {url}", status, body)

            if status == 429 or "ACCESS_EXCEEDED" in codes:
                retry_after = parse_retry_after(response_headers.get("Retry-After"))
                raise BankRateLimitError("Access frequency exceeded", retry_after)

            if status == 400:
                raise BankValidationError(f"Validation error: {body}", status, body)

            if status in retry_config.retry_on_status:
                last_error = BankApiError(f"API error {status}", status, body)
                if attempt < retry_config.max_retries:
                    await self._backoff(attempt, f"status {status}")
                    continue
                raise BankApiError(
                    f"API error {status} after {retry_config.max_retries} retries",
                    status,
                    body,
                )

            raise BankApiError(f"API error {status}: {body}", status, body)

        raise BankApiError(f"Request failed: {last_error}")

    async def _backoff(self, attempt: int, reason: str) -> None:
        delay = self.api_config.retry_config.get_delay(attempt)
        logger.warning(
            f"Bank request failed with {reason}, retrying in {delay:.1f}s "
            f"(attempt {attempt + 1}/{self.api_config.retry_config.max_retries})"
        )
        if self.on_retry:
            self.on_retry()
        await asyncio.sleep(delay)

    async def get(self, path: str, consent_id: Optional[str] = None, params: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        return await self.request("GET", path, consent_id=consent_id, params=params)

    async def post(self, path: str, data: Dict[str, Any], consent_id: Optional[str] = None) -> Dict[str, Any]:
        return await self.request("POST", path, consent_id=consent_id, data=data)

    async def delete(self, path: str, consent_id: Optional[str] = None) -> Dict[str, Any]:
        return await self.request("DELETE", path, consent_id=consent_id)
