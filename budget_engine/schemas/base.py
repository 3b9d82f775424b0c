"""Base schema classes and generic types."""

from datetime import date
from typing import Generic, TypeVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict

T = TypeVar("T")


class BaseResponse(BaseModel):
    """Base for all response schemas with from_attributes config."""

    model_config = ConfigDict(from_attributes=True)


class ListResponse(BaseModel, Generic[T]):  # noqa: UP046
    """Generic list response with item count.

    ``total`` counts every row matching the query and may exceed ``len(items)``
    when the router applies limit/offset.
    """

    items: list[T]
    total: int


class ItemFailureResponse(BaseResponse):
    """Per-item failure recorded by a batch operation."""

    error_type: str
    message: str
    series_id: UUID | None = None
    instance_date: date | None = None
    transaction_id: UUID | None = None
