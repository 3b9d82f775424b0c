"""API routers package."""

from budget_engine.routers import accounts, reconciliation, recurring, settings

__all__ = [
    "accounts",
    "reconciliation",
    "recurring",
    "settings",
]
