"""Models Package.

API response models for the banking REST surface.
"""

from models.api_responses import (
    # Resources
    ConnectionResponse,
    ConsentCreatedResponse,
    AccountResponse,
    TransactionResponse,
    CategoryRuleResponse,
    DashboardResponse,
    # Operations
    SyncResponse,
    PaymentResponse,
    RecategorizeResponse,
    MessageResponse,
    # Errors and operational
    ErrorResponse,
    HealthResponse,
    MetricsResponse,
)

__all__ = [
    "ConnectionResponse",
    "ConsentCreatedResponse",
    "AccountResponse",
    "TransactionResponse",
    "CategoryRuleResponse",
    "DashboardResponse",
    "SyncResponse",
    "PaymentResponse",
    "RecategorizeResponse",
    "MessageResponse",
    "ErrorResponse",
    "HealthResponse",
    "MetricsResponse",
]
