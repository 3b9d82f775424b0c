"""Pydantic schemas for reconciliation API."""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field

from budget_engine.models import ConfidenceLevel, MatchSource, MatchStatus
from budget_engine.schemas.base import BaseResponse, ItemFailureResponse, ListResponse
from budget_engine.schemas.recurring import ProjectedInstanceResponse


class ReconciliationMatchResponse(BaseResponse):
    """Stored match between an imported transaction and a recurring instance."""

    id: UUID
    imported_transaction_id: UUID
    series_id: UUID
    instance_date: date
    confidence_score: float
    confidence_level: ConfidenceLevel
    status: MatchStatus
    source: MatchSource
    amount_variance: Decimal
    date_offset_days: int
    description_similarity: float
    score_breakdown: dict[str, float]
    resolved_at: datetime | None
    created_at: datetime
    updated_at: datetime


ReconciliationMatchListResponse = ListResponse[ReconciliationMatchResponse]


class AnalyzeRequest(BaseModel):
    """Profile defaults to the one in the settings store."""

    profile: str | None = None


class AnalyzeBatchRequest(AnalyzeRequest):
    """Omit ``transaction_ids`` to process every unreconciled import."""

    transaction_ids: list[UUID] | None = Field(default=None, max_length=5000)
    account_id: UUID | None = None


class AnalyzeResponse(BaseModel):
    transaction_id: UUID
    status: MatchStatus
    match: ReconciliationMatchResponse | None = None


class AnalyzeBatchResponse(BaseModel):
    profile: str
    matched: int
    pending: int
    missing: int
    results: list[AnalyzeResponse]
    failures: list[ItemFailureResponse]
    cancelled: bool = False


class ManualLinkRequest(BaseModel):
    transaction_id: UUID
    series_id: UUID
    instance_date: date
    remember_description: bool = False


class InstanceStatusResponse(BaseModel):
    instance: ProjectedInstanceResponse
    status: MatchStatus
    match_id: UUID | None = None


class ReconciliationStatusResponse(BaseModel):
    period_start: date
    period_end: date
    counts: dict[str, int]
    items: list[InstanceStatusResponse]
