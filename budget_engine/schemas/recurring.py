"""Pydantic schemas for recurring series, instances and realization."""

from datetime import date, datetime
from decimal import Decimal
from typing import Annotated
from uuid import UUID

from pydantic import BaseModel, Field

from budget_engine.models import ExceptionType, RecurrenceFrequency, SeriesKind
from budget_engine.schemas.account import TransactionResponse
from budget_engine.schemas.base import BaseResponse, ItemFailureResponse, ListResponse


class RecurringSeriesBase(BaseModel):
    """Shared series fields.

    Pattern fields are validated by the engine so a malformed pattern is
    reported with the engine's message.
    """

    kind: SeriesKind = SeriesKind.TRANSACTION
    account_id: UUID
    destination_account_id: UUID | None = None
    description: Annotated[str, Field(min_length=1, max_length=500)]
    amount: Annotated[Decimal, Field(max_digits=18, decimal_places=2)]
    currency: Annotated[str | None, Field(min_length=3, max_length=3)] = None
    frequency: RecurrenceFrequency
    interval: int = 1
    day_of_week: int | None = None
    day_of_month: int | None = None
    month_of_year: int | None = None
    start_date: date
    end_date: date | None = None


class RecurringSeriesCreate(RecurringSeriesBase):
    """Schema for creating a series."""

    import_patterns: list[str] = Field(default_factory=list)


class RecurringSeriesResponse(RecurringSeriesBase, BaseResponse):
    """Schema for series response."""

    id: UUID
    currency: str
    schedule: str
    next_occurrence: date | None
    last_generated_date: date | None
    is_active: bool
    import_patterns: list[str]
    created_at: datetime
    updated_at: datetime


RecurringSeriesListResponse = ListResponse[RecurringSeriesResponse]


class ProjectedInstanceResponse(BaseResponse):
    """A projected occurrence after the exception overlay."""

    series_id: UUID
    kind: SeriesKind
    account_id: UUID
    destination_account_id: UUID | None
    scheduled_date: date
    effective_date: date
    amount: Decimal
    currency: str
    description: str
    is_modified: bool
    is_skipped: bool
    is_generated: bool
    generated_transaction_id: UUID | None
    transaction_ids: list[UUID]


ProjectedInstanceListResponse = ListResponse[ProjectedInstanceResponse]


class InstanceModifyRequest(BaseModel):
    """Per-occurrence overrides; at least one must be given."""

    amount: Annotated[Decimal | None, Field(max_digits=18, decimal_places=2)] = None
    description: Annotated[str | None, Field(max_length=500)] = None
    effective_date: date | None = None


class InstanceExceptionResponse(BaseResponse):
    id: UUID
    series_id: UUID
    original_date: date
    exception_type: ExceptionType
    modified_amount: Decimal | None
    modified_description: str | None
    modified_date: date | None


class SkipNextResponse(BaseModel):
    skipped_date: date
    series: RecurringSeriesResponse


class RealizeRequest(BaseModel):
    """Explicit overrides win over exception overrides and series defaults."""

    amount: Annotated[Decimal | None, Field(max_digits=18, decimal_places=2)] = None
    description: Annotated[str | None, Field(min_length=1, max_length=500)] = None
    txn_date: date | None = None


class RealizeResponse(BaseModel):
    series_id: UUID
    instance_date: date
    transactions: list[TransactionResponse]


class RealizeBatchItem(RealizeRequest):
    series_id: UUID
    instance_date: date


class RealizeBatchRequest(BaseModel):
    items: Annotated[list[RealizeBatchItem], Field(min_length=1, max_length=1000)]


class RealizeBatchResponse(BaseModel):
    realized: list[RealizeResponse]
    failures: list[ItemFailureResponse]
    cancelled: bool = False


class AutoRealizeRunRequest(BaseModel):
    today: date | None = None
    account_id: UUID | None = None


class AutoRealizeRunResponse(BaseResponse):
    enabled: bool
    window_start: date | None
    window_end: date | None
    realized_count: int
    transactions_created: int
    failures: list[ItemFailureResponse]
    cancelled: bool


class EngineSettingsResponse(BaseResponse):
    auto_realize_past_due_items: bool
    past_due_lookback_days: int
    reconciliation_profile: str


class EngineSettingsUpdate(BaseModel):
    auto_realize_past_due_items: bool | None = None
    past_due_lookback_days: Annotated[int | None, Field(ge=0, le=3650)] = None
    reconciliation_profile: str | None = None


class ImportPatternsRequest(BaseModel):
    patterns: list[str]


class LearnPatternRequest(BaseModel):
    """An imported description to remember verbatim."""

    description: Annotated[str, Field(min_length=1, max_length=500)]
