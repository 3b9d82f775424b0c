"""Recurring series management: creation, lifecycle and single-instance edits."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from budget_engine.logger import get_logger
from budget_engine.models import (
    Account,
    ExceptionType,
    RecurrenceFrequency,
    RecurringException,
    RecurringSeries,
    SeriesKind,
    Transaction,
)
from budget_engine.schemas.recurring import RecurringSeriesCreate
from budget_engine.services.errors import AlreadyRealizedError, NotFoundError, ValidationError
from budget_engine.services.import_patterns import literal_pattern, normalize_import_patterns
from budget_engine.services.recurrence import (
    FIXED_INTERVALS,
    RecurrencePattern,
    first_occurrence,
    is_scheduled,
    next_occurrence_after,
)

logger = get_logger(__name__)


def build_pattern(
    frequency: RecurrenceFrequency | str,
    *,
    interval: int | None = 1,
    day_of_week: int | None = None,
    day_of_month: int | None = None,
    month_of_year: int | None = None,
) -> RecurrencePattern:
    """Build a pattern from loose API fields.

    BiWeekly and Quarterly ignore the requested interval and use 2 weeks and
    3 months. Missing or out-of-range anchors raise ValidationError.
    """
    try:
        frequency = RecurrenceFrequency(frequency)
    except ValueError as exc:
        raise ValidationError(f"Unknown frequency: {frequency}") from exc
    interval = FIXED_INTERVALS.get(frequency, interval if interval is not None else 1)
    return RecurrencePattern(
        frequency=frequency,
        interval=interval,
        day_of_week=day_of_week,
        day_of_month=day_of_month,
        month_of_year=month_of_year,
    )


async def get_account(db: AsyncSession, account_id: UUID) -> Account:
    account = await db.get(Account, account_id)
    if account is None:
        raise NotFoundError("Account", account_id)
    return account


async def get_series(db: AsyncSession, series_id: UUID) -> RecurringSeries:
    series = await db.get(RecurringSeries, series_id)
    if series is None:
        raise NotFoundError("Recurring series", series_id)
    return series


async def list_series(
    db: AsyncSession,
    *,
    account_id: UUID | None = None,
    is_active: bool | None = None,
    kind: SeriesKind | None = None,
) -> list[RecurringSeries]:
    """List series, matching ``account_id`` against either transfer leg."""
    query = select(RecurringSeries)
    if account_id is not None:
        query = query.where(
            or_(
                RecurringSeries.account_id == account_id,
                RecurringSeries.destination_account_id == account_id,
            )
        )
    if is_active is not None:
        query = query.where(RecurringSeries.is_active == is_active)
    if kind is not None:
        query = query.where(RecurringSeries.kind == kind)
    result = await db.execute(query.order_by(RecurringSeries.start_date, RecurringSeries.id))
    return list(result.scalars().all())


async def create_series(db: AsyncSession, data: RecurringSeriesCreate) -> RecurringSeries:
    description = data.description.strip()
    if not description:
        raise ValidationError("Description is required")
    if data.end_date is not None and data.end_date < data.start_date:
        raise ValidationError("end_date must be on or after start_date")

    account = await get_account(db, data.account_id)
    destination_id: UUID | None = None
    if data.kind == SeriesKind.TRANSFER:
        if data.destination_account_id is None:
            raise ValidationError("Transfer series require a destination account")
        if data.destination_account_id == data.account_id:
            raise ValidationError("Transfer source and destination accounts must differ")
        destination = await get_account(db, data.destination_account_id)
        if destination.currency != account.currency:
            raise ValidationError("Transfer accounts must share a currency")
        destination_id = destination.id
    elif data.destination_account_id is not None:
        raise ValidationError("Only transfer series take a destination account")

    pattern = build_pattern(
        data.frequency,
        interval=data.interval,
        day_of_week=data.day_of_week,
        day_of_month=data.day_of_month,
        month_of_year=data.month_of_year,
    )
    first = first_occurrence(pattern, data.start_date)
    if data.end_date is not None and first > data.end_date:
        raise ValidationError("Series has no occurrence between start_date and end_date")

    series = RecurringSeries(
        kind=data.kind,
        account_id=account.id,
        destination_account_id=destination_id,
        description=description,
        amount=data.amount,
        currency=(data.currency or account.currency).upper(),
        frequency=pattern.frequency,
        interval=pattern.interval,
        day_of_week=pattern.day_of_week,
        day_of_month=pattern.day_of_month,
        month_of_year=pattern.month_of_year,
        start_date=data.start_date,
        end_date=data.end_date,
        next_occurrence=first,
        is_active=True,
        import_patterns=normalize_import_patterns(data.import_patterns),
    )
    db.add(series)
    await db.flush()
    await db.refresh(series)
    logger.info(
        "Recurring series created",
        series_id=str(series.id),
        kind=series.kind.value,
        schedule=pattern.describe(),
    )
    return series


async def set_series_active(db: AsyncSession, series_id: UUID, is_active: bool) -> RecurringSeries:
    """Pause or resume a series. The schedule stays anchored to its start date."""
    series = await get_series(db, series_id)
    series.is_active = is_active
    await db.flush()
    logger.info("Recurring series updated", series_id=str(series.id), is_active=is_active)
    return series


async def pause_series(db: AsyncSession, series_id: UUID) -> RecurringSeries:
    return await set_series_active(db, series_id, False)


async def resume_series(db: AsyncSession, series_id: UUID) -> RecurringSeries:
    return await set_series_active(db, series_id, True)


async def get_exception(db: AsyncSession, series_id: UUID, original_date: date) -> RecurringException | None:
    result = await db.execute(
        select(RecurringException)
        .where(RecurringException.series_id == series_id)
        .where(RecurringException.original_date == original_date)
    )
    return result.scalar_one_or_none()


async def realized_transaction_ids(db: AsyncSession, series_id: UUID, instance_date: date) -> list[UUID]:
    result = await db.execute(
        select(Transaction.id)
        .where(Transaction.recurring_series_id == series_id)
        .where(Transaction.recurring_instance_date == instance_date)
    )
    return list(result.scalars().all())


async def _require_open_instance(db: AsyncSession, series: RecurringSeries, original_date: date) -> None:
    if not is_scheduled(series.pattern, series.start_date, series.end_date, original_date):
        raise ValidationError(f"{original_date.isoformat()} is not a scheduled occurrence of this series")
    existing = await realized_transaction_ids(db, series.id, original_date)
    if existing:
        raise AlreadyRealizedError(series.id, original_date, existing)


async def _upsert_exception(
    db: AsyncSession,
    series_id: UUID,
    original_date: date,
    exception_type: ExceptionType,
    *,
    amount: Decimal | None = None,
    description: str | None = None,
    effective_date: date | None = None,
) -> RecurringException:
    exc = await get_exception(db, series_id, original_date)
    if exc is None:
        exc = RecurringException(series_id=series_id, original_date=original_date, exception_type=exception_type)
        db.add(exc)
    exc.exception_type = exception_type
    exc.modified_amount = amount
    exc.modified_description = description
    exc.modified_date = effective_date
    await db.flush()
    return exc


async def modify_instance(
    db: AsyncSession,
    series_id: UUID,
    original_date: date,
    *,
    amount: Decimal | None = None,
    description: str | None = None,
    effective_date: date | None = None,
) -> RecurringException:
    """Record a Modified exception; the series definition is untouched."""
    if description is not None:
        description = description.strip() or None
    if amount is None and description is None and effective_date is None:
        raise ValidationError("A modification needs at least one of amount, description or date")
    series = await get_series(db, series_id)
    await _require_open_instance(db, series, original_date)
    exc = await _upsert_exception(
        db,
        series.id,
        original_date,
        ExceptionType.MODIFIED,
        amount=amount,
        description=description,
        effective_date=effective_date,
    )
    logger.info("Instance modified", series_id=str(series.id), instance_date=original_date.isoformat())
    return exc


async def skip_instance(db: AsyncSession, series_id: UUID, original_date: date) -> RecurringException:
    """Replace any exception on the occurrence with Skipped."""
    series = await get_series(db, series_id)
    await _require_open_instance(db, series, original_date)
    exc = await _upsert_exception(db, series.id, original_date, ExceptionType.SKIPPED)
    logger.info("Instance skipped", series_id=str(series.id), instance_date=original_date.isoformat())
    return exc


async def restore_instance(db: AsyncSession, series_id: UUID, original_date: date) -> None:
    """Drop the exception so the occurrence reverts to series defaults."""
    series = await get_series(db, series_id)
    exc = await get_exception(db, series.id, original_date)
    if exc is None:
        raise NotFoundError("Exception", f"{series.id}@{original_date.isoformat()}")
    await db.delete(exc)
    await db.flush()
    logger.info("Instance restored", series_id=str(series.id), instance_date=original_date.isoformat())


async def skip_next(db: AsyncSession, series_id: UUID) -> tuple[date, RecurringSeries]:
    """Skip the occurrence at the cursor and advance it.

    Occurrences that are already realized are stepped over, so the skip lands
    on the first open one. The following date is computed from the original
    anchor, so the cadence is preserved. A cursor that runs past ``end_date``
    deactivates the series.
    """
    series = await get_series(db, series_id)
    skipped = series.next_occurrence
    while skipped is not None and await realized_transaction_ids(db, series.id, skipped):
        skipped = next_occurrence_after(series.pattern, series.start_date, series.end_date, skipped)
    if skipped is None:
        raise ValidationError("Series has no upcoming occurrence")
    await _upsert_exception(db, series.id, skipped, ExceptionType.SKIPPED)

    following = next_occurrence_after(series.pattern, series.start_date, series.end_date, skipped)
    series.next_occurrence = following
    if following is None:
        series.is_active = False
    await db.flush()
    logger.info(
        "Next occurrence skipped",
        series_id=str(series.id),
        skipped=skipped.isoformat(),
        next_occurrence=following.isoformat() if following else None,
    )
    return skipped, series


async def update_import_patterns(db: AsyncSession, series_id: UUID, patterns: list[str]) -> RecurringSeries:
    series = await get_series(db, series_id)
    series.import_patterns = normalize_import_patterns(patterns)
    await db.flush()
    return series


async def learn_import_pattern(db: AsyncSession, series_id: UUID, description: str) -> RecurringSeries:
    """Remember an imported description so it always scores 1.0 for this series."""
    series = await get_series(db, series_id)
    pattern = literal_pattern(description)
    if pattern not in (series.import_patterns or []):
        series.import_patterns = [*(series.import_patterns or []), pattern]
        await db.flush()
        logger.info("Import pattern learned", series_id=str(series.id), pattern=pattern)
    return series

