"""
Observability Module for the Banking Core

Provides:
- Structured logging with correlation IDs
- Sync metrics collection (syncs, transactions, retries, durations)
"""

from core.observability.metrics import SyncMetrics

from core.observability.logging import (
    get_logger,
    configure_logging,
    CorrelationContext,
    with_correlation,
)

__all__ = [
    # Metrics
    "SyncMetrics",
    # Logging
    "get_logger",
    "configure_logging",
    "CorrelationContext",
    "with_correlation",
]
