"""Error taxonomy shared by the projection, realization and reconciliation services."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from uuid import UUID


class EngineError(Exception):
    """Base exception for engine errors."""


class ValidationError(EngineError):
    """Malformed input, such as an invalid recurrence pattern or an unscheduled date."""


class NotFoundError(EngineError):
    """Unknown series, account, transaction or match."""

    def __init__(self, resource: str, identifier: object | None = None) -> None:
        self.resource = resource
        self.identifier = identifier
        message = f"{resource} not found" if identifier is None else f"{resource} {identifier} not found"
        super().__init__(message)


class AlreadyRealizedError(EngineError):
    """A transaction already exists for this (series, instance date)."""

    def __init__(
        self,
        series_id: UUID,
        instance_date: date,
        transaction_ids: Iterable[UUID] = (),
    ) -> None:
        self.series_id = series_id
        self.instance_date = instance_date
        self.transaction_ids = list(transaction_ids)
        super().__init__(f"Instance {instance_date.isoformat()} of series {series_id} is already realized")


class ConflictError(EngineError):
    """A concurrent writer won the race for the same instance."""

    retryable = True


@dataclass
class ItemFailure:
    """Per-item error recorded by batch operations."""

    error_type: str
    message: str
    series_id: UUID | None = None
    instance_date: date | None = None
    transaction_id: UUID | None = None

    @classmethod
    def from_error(
        cls,
        exc: EngineError,
        *,
        series_id: UUID | None = None,
        instance_date: date | None = None,
        transaction_id: UUID | None = None,
    ) -> ItemFailure:
        return cls(
            error_type=type(exc).__name__,
            message=str(exc),
            series_id=series_id,
            instance_date=instance_date,
            transaction_id=transaction_id,
        )
