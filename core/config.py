"""Application settings.

All runtime configuration comes from environment variables. A ``.env`` file
at the repository root is loaded first if it exists, so local development
does not need exported variables.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

REPO_ROOT = Path(__file__).resolve().parents[1]

env_path = REPO_ROOT / ".env"
if env_path.exists():
    load_dotenv(env_path)


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value else default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value else default


@dataclass
class Psd2ProviderSettings:
    """PSD2 provider credentials.

    Attributes:
        api_url: Base URL of the bank's Berlin Group API
        client_id: OAuth2 client ID of this TPP
        client_secret: OAuth2 client secret
        redirect_uri: Where the bank sends the user after SCA
        certificate_path: Optional eIDAS/QWAC client certificate (mTLS)
        key_path: Optional private key for the client certificate
    """
    api_url: str
    client_id: str
    client_secret: str
    redirect_uri: str = ""
    certificate_path: Optional[str] = None
    key_path: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return bool(self.api_url and self.client_id and self.client_secret)


@dataclass
class BankingSettings:
    """Settings for the banking services, API and sweep worker."""
    db_path: Path = REPO_ROOT / "banking.db"
    encryption_key: Optional[str] = None

    provider: Optional[Psd2ProviderSettings] = None

    # Bank API behaviour
    request_timeout_seconds: int = 30
    max_retries: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 30.0

    # Sync behaviour
    sync_lookback_days: int = 90
    balance_reuse_minutes: int = 15
    sync_lease_seconds: float = 300.0
    sync_lease_wait_seconds: float = 60.0
    dashboard_recent_limit: int = 10
    dashboard_months: int = 6

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    # Scheduled sweep
    sweep_interval_minutes: int = 60
    task_queue: str = "banking-sync"

    @classmethod
    def from_env(cls) -> "BankingSettings":
        """Build settings from environment variables."""
        provider = Psd2ProviderSettings(
            api_url=os.getenv("PSD2_API_URL", ""),
            client_id=os.getenv("PSD2_CLIENT_ID", ""),
            client_secret=os.getenv("PSD2_CLIENT_SECRET", ""),
            redirect_uri=os.getenv("PSD2_REDIRECT_URI", ""),
            certificate_path=os.getenv("PSD2_CERT_PATH") or None,
            key_path=os.getenv("PSD2_KEY_PATH") or None,
        )

        return cls(
            db_path=Path(os.getenv("BANKING_DB_PATH", str(REPO_ROOT / "banking.db"))),
            encryption_key=os.getenv("BANKING_ENCRYPTION_KEY") or None,
            provider=provider if provider.is_complete else None,
            request_timeout_seconds=_env_int("BANK_REQUEST_TIMEOUT_SECONDS", 30),
            max_retries=_env_int("BANK_MAX_RETRIES", 3),
            retry_base_delay=_env_float("BANK_RETRY_BASE_DELAY", 1.0),
            retry_max_delay=_env_float("BANK_RETRY_MAX_DELAY", 30.0),
            sync_lookback_days=_env_int("SYNC_LOOKBACK_DAYS", 90),
            balance_reuse_minutes=_env_int("BALANCE_REUSE_MINUTES", 15),
            sync_lease_seconds=_env_float("SYNC_LEASE_SECONDS", 300.0),
            sync_lease_wait_seconds=_env_float("SYNC_LEASE_WAIT_SECONDS", 60.0),
            dashboard_recent_limit=_env_int("DASHBOARD_RECENT_LIMIT", 10),
            dashboard_months=_env_int("DASHBOARD_MONTHS", 6),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_json=_env_bool("LOG_JSON"),
            sweep_interval_minutes=_env_int("SWEEP_INTERVAL_MINUTES", 60),
            task_queue=os.getenv("BANKING_TASK_QUEUE", "banking-sync"),
        )
