from budget_engine.schemas.account import (
    AccountCreate,
    AccountListResponse,
    AccountResponse,
    ImportedTransactionCreate,
    ImportTransactionsRequest,
    TransactionListResponse,
    TransactionResponse,
)
from budget_engine.schemas.base import BaseResponse, ItemFailureResponse, ListResponse
from budget_engine.schemas.reconciliation import (
    AnalyzeBatchRequest,
    AnalyzeBatchResponse,
    AnalyzeRequest,
    AnalyzeResponse,
    InstanceStatusResponse,
    ManualLinkRequest,
    ReconciliationMatchListResponse,
    ReconciliationMatchResponse,
    ReconciliationStatusResponse,
)
from budget_engine.schemas.recurring import (
    AutoRealizeRunRequest,
    AutoRealizeRunResponse,
    EngineSettingsResponse,
    EngineSettingsUpdate,
    ImportPatternsRequest,
    InstanceExceptionResponse,
    InstanceModifyRequest,
    LearnPatternRequest,
    ProjectedInstanceListResponse,
    ProjectedInstanceResponse,
    RealizeBatchItem,
    RealizeBatchRequest,
    RealizeBatchResponse,
    RealizeRequest,
    RealizeResponse,
    RecurringSeriesCreate,
    RecurringSeriesListResponse,
    RecurringSeriesResponse,
    SkipNextResponse,
)

__all__ = [
    "AccountCreate",
    "AccountListResponse",
    "AccountResponse",
    "AnalyzeBatchRequest",
    "AnalyzeBatchResponse",
    "AnalyzeRequest",
    "AnalyzeResponse",
    "AutoRealizeRunRequest",
    "AutoRealizeRunResponse",
    "BaseResponse",
    "EngineSettingsResponse",
    "EngineSettingsUpdate",
    "ImportPatternsRequest",
    "ImportTransactionsRequest",
    "ImportedTransactionCreate",
    "InstanceExceptionResponse",
    "InstanceModifyRequest",
    "InstanceStatusResponse",
    "ItemFailureResponse",
    "LearnPatternRequest",
    "ListResponse",
    "ManualLinkRequest",
    "ProjectedInstanceListResponse",
    "ProjectedInstanceResponse",
    "RealizeBatchItem",
    "RealizeBatchRequest",
    "RealizeBatchResponse",
    "RealizeRequest",
    "RealizeResponse",
    "ReconciliationMatchListResponse",
    "ReconciliationMatchResponse",
    "ReconciliationStatusResponse",
    "RecurringSeriesCreate",
    "RecurringSeriesListResponse",
    "RecurringSeriesResponse",
    "SkipNextResponse",
    "TransactionListResponse",
    "TransactionResponse",
]
