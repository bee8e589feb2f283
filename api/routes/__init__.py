"""API Routes Package."""

from api.routes import (
    health,
    config,
    consents,
    connections,
    accounts,
    transactions,
    category_rules,
    dashboard,
)

__all__ = [
    "health",
    "config",
    "consents",
    "connections",
    "accounts",
    "transactions",
    "category_rules",
    "dashboard",
]
