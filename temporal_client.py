"""Temporal client factory.

Connects to Temporal Cloud when an API key is configured, otherwise to a
local development server.
"""

import os
import ssl
from pathlib import Path
from typing import Optional

# Load .env file if it exists
from dotenv import load_dotenv
env_path = Path(__file__).resolve().parent / ".env"
if env_path.exists():
    load_dotenv(env_path)

from temporalio.client import Client

DEFAULT_ENDPOINT = "localhost:7233"


async def get_temporal_client() -> Client:
    """Create and return a Temporal client.

    Reads configuration from environment variables:
    - TEMPORAL_ENDPOINT: Server endpoint (default "localhost:7233")
    - TEMPORAL_NAMESPACE: Namespace (default "default")
    - TEMPORAL_API_KEY: Temporal Cloud API key; enables TLS
    - TEMPORAL_CERT_PATH: Path to client certificate (optional, for mTLS)

    Raises:
        ValueError: If a Cloud endpoint is configured without an API key or certificate
    """
    endpoint = os.getenv("TEMPORAL_ENDPOINT", DEFAULT_ENDPOINT)
    namespace = os.getenv("TEMPORAL_NAMESPACE", "default")
    api_key = os.getenv("TEMPORAL_API_KEY")
    cert_path = os.getenv("TEMPORAL_CERT_PATH")

    if endpoint.endswith(".tmprl.cloud:7233") and not (api_key or cert_path):
        raise ValueError(
            "TEMPORAL_API_KEY or TEMPORAL_CERT_PATH must be set to connect to Temporal Cloud"
        )

    tls_config: Optional[ssl.SSLContext] = None
    if api_key or cert_path:
        tls_config = ssl.create_default_context()
        if cert_path:
            tls_config.load_cert_chain(cert_path)

    if tls_config is None:
        return await Client.connect(endpoint, namespace=namespace)

    return await Client.connect(
        target_host=endpoint,
        namespace=namespace,
        tls=tls_config,
        api_key=api_key,
    )
