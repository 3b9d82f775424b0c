"""Common exception utilities for FastAPI routers."""

from typing import NoReturn

from fastapi import HTTPException, status

from budget_engine.services.errors import (
    AlreadyRealizedError,
    ConflictError,
    EngineError,
    NotFoundError,
    ValidationError,
)

CONFLICT_RETRY_AFTER_SECONDS = 1


def raise_not_found(resource_name: str, *, cause: Exception | None = None) -> NoReturn:
    raise HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"{resource_name} not found",
    ) from cause


def raise_bad_request(detail: str, *, cause: Exception | None = None) -> NoReturn:
    raise HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail=detail,
    ) from cause


def raise_conflict(detail: str, *, retry_after: int | None = None, cause: Exception | None = None) -> NoReturn:
    headers = {"Retry-After": str(retry_after)} if retry_after else None
    raise HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail=detail,
        headers=headers,
    ) from cause


def raise_for_engine_error(exc: EngineError) -> NoReturn:
    """Map the engine error taxonomy onto HTTP status codes."""
    if isinstance(exc, NotFoundError):
        raise_not_found(exc.resource, cause=exc)
    if isinstance(exc, ConflictError):
        raise_conflict(str(exc), retry_after=CONFLICT_RETRY_AFTER_SECONDS, cause=exc)
    if isinstance(exc, AlreadyRealizedError):
        raise_conflict(str(exc), cause=exc)
    if isinstance(exc, ValidationError):
        raise_bad_request(str(exc), cause=exc)
    raise_bad_request(str(exc), cause=exc)
