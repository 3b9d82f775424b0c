"""SQLAlchemy models package."""

from budget_engine.models.account import Account
from budget_engine.models.app_settings import APP_SETTINGS_ID, AppSettings
from budget_engine.models.reconciliation import (
    ConfidenceLevel,
    MatchSource,
    MatchStatus,
    ReconciliationMatch,
)
from budget_engine.models.recurring import (
    ExceptionType,
    RecurrenceFrequency,
    RecurringException,
    RecurringSeries,
    SeriesKind,
)
from budget_engine.models.transaction import Transaction, TransactionLeg, TransactionSource

__all__ = [
    "APP_SETTINGS_ID",
    "Account",
    "AppSettings",
    "ConfidenceLevel",
    "ExceptionType",
    "MatchSource",
    "MatchStatus",
    "ReconciliationMatch",
    "RecurrenceFrequency",
    "RecurringException",
    "RecurringSeries",
    "SeriesKind",
    "Transaction",
    "TransactionLeg",
    "TransactionSource",
]
