"""Activity definitions module."""

from activities.banking import (
    BankingActivities,
    ConnectionInput,
    ConnectionOutcome,
    ConnectionsToRefresh,
    ExpireStaleOutput,
    SweepOutcome,
)

__all__ = [
    "BankingActivities",
    "ConnectionInput",
    "ConnectionOutcome",
    "ConnectionsToRefresh",
    "ExpireStaleOutput",
    "SweepOutcome",
]
