"""PSD2 Connector Package.

Implements the BankConnector interface for Berlin Group NextGenPSD2 APIs.
"""

from connectors.psd2.psd2_connector import Psd2Connector
from connectors.psd2.psd2_auth import Psd2AuthProvider, Psd2AuthConfig, Psd2Token
from connectors.psd2.psd2_client import Psd2ApiClient, Psd2ApiConfig, RetryConfig

__all__ = [
    # Connector
    "Psd2Connector",
    # Client credentials auth
    "Psd2AuthProvider",
    "Psd2AuthConfig",
    "Psd2Token",
    # HTTP client
    "Psd2ApiClient",
    "Psd2ApiConfig",
    "RetryConfig",
]
