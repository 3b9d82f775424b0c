"""Realization: turn a projected instance into persisted transactions, at most once.

The persistence-level unique key (series id, instance date, leg) is what
makes this safe against concurrent callers; the existence check here only
produces a friendlier error for the common case.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from budget_engine.logger import get_logger, log_exception
from budget_engine.models import (
    RecurringSeries,
    SeriesKind,
    Transaction,
    TransactionLeg,
    TransactionSource,
)
from budget_engine.services.errors import (
    AlreadyRealizedError,
    ConflictError,
    EngineError,
    ItemFailure,
    ValidationError,
)
from budget_engine.services.projection import resolve_value
from budget_engine.services.recurrence import is_scheduled
from budget_engine.services.recurring import get_exception, get_series, realized_transaction_ids

logger = get_logger(__name__)


@dataclass(frozen=True)
class RealizationOverrides:
    """Caller-supplied values; they win over exception overrides and series defaults."""

    amount: Decimal | None = None
    description: str | None = None
    txn_date: date | None = None


@dataclass(frozen=True)
class RealizeRequest:
    series_id: UUID
    instance_date: date
    overrides: RealizationOverrides | None = None


@dataclass
class RealizedInstance:
    series_id: UUID
    instance_date: date
    transactions: list[Transaction]


@dataclass
class RealizeBatchResult:
    realized: list[RealizedInstance] = field(default_factory=list)
    failures: list[ItemFailure] = field(default_factory=list)
    cancelled: bool = False


def _build_transactions(
    series: RecurringSeries,
    instance_date: date,
    *,
    amount: Decimal,
    description: str,
    txn_date: date,
) -> list[Transaction]:
    common = {
        "txn_date": txn_date,
        "currency": series.currency,
        "description": description,
        "source": TransactionSource.RECURRING,
        "recurring_series_id": series.id,
        "recurring_instance_date": instance_date,
    }
    if series.kind == SeriesKind.TRANSFER:
        transfer_id = uuid4()
        magnitude = abs(amount)
        return [
            Transaction(
                account_id=series.account_id,
                amount=-magnitude,
                recurring_leg=TransactionLeg.SOURCE,
                transfer_id=transfer_id,
                **common,
            ),
            Transaction(
                account_id=series.destination_account_id,
                amount=magnitude,
                recurring_leg=TransactionLeg.DESTINATION,
                transfer_id=transfer_id,
                **common,
            ),
        ]
    return [
        Transaction(
            account_id=series.account_id,
            amount=amount,
            recurring_leg=TransactionLeg.SINGLE,
            **common,
        )
    ]


async def _persist(
    db: AsyncSession,
    transactions: list[Transaction],
    series_id: UUID,
    instance_date: date,
) -> None:
    # One savepoint per instance: both transfer legs land or neither does
    try:
        async with db.begin_nested():
            for txn in transactions:
                db.add(txn)
                await db.flush()
    except IntegrityError as exc:
        raise ConflictError(
            f"Instance {instance_date.isoformat()} of series {series_id} was realized concurrently"
        ) from exc


async def realize_instance(
    db: AsyncSession,
    series_id: UUID,
    instance_date: date,
    overrides: RealizationOverrides | None = None,
) -> list[Transaction]:
    """Realize one instance and return its transaction (or both transfer legs).

    Raises:
        NotFoundError: unknown series
        ValidationError: inactive series, unscheduled or skipped date
        AlreadyRealizedError: a transaction already exists for the instance
        ConflictError: a concurrent realization won the unique constraint
    """
    series = await get_series(db, series_id)
    if not series.is_active:
        raise ValidationError(f"Series {series.id} is paused")
    if not is_scheduled(series.pattern, series.start_date, series.end_date, instance_date):
        raise ValidationError(f"{instance_date.isoformat()} is not a scheduled occurrence of this series")

    exc = await get_exception(db, series.id, instance_date)
    if exc is not None and exc.is_skipped:
        raise ValidationError(f"{instance_date.isoformat()} is skipped")

    existing = await realized_transaction_ids(db, series.id, instance_date)
    if existing:
        raise AlreadyRealizedError(series.id, instance_date, existing)

    overrides = overrides or RealizationOverrides()
    modified = exc if exc is not None and not exc.is_skipped else None
    transactions = _build_transactions(
        series,
        instance_date,
        amount=resolve_value(overrides.amount, modified and modified.modified_amount, series.amount),
        description=resolve_value(
            overrides.description, modified and modified.modified_description, series.description
        ),
        txn_date=resolve_value(overrides.txn_date, modified and modified.modified_date, instance_date),
    )
    await _persist(db, transactions, series.id, instance_date)

    if series.last_generated_date is None or instance_date > series.last_generated_date:
        series.last_generated_date = instance_date
        await db.flush()

    logger.info(
        "Instance realized",
        series_id=str(series.id),
        instance_date=instance_date.isoformat(),
        transaction_ids=[str(txn.id) for txn in transactions],
    )
    return transactions


async def realize_batch(
    db: AsyncSession,
    requests: list[RealizeRequest],
    *,
    stop_event: asyncio.Event | None = None,
) -> RealizeBatchResult:
    """Realize each request independently; engine errors are recorded per item."""
    result = RealizeBatchResult()
    for request in requests:
        if stop_event is not None and stop_event.is_set():
            result.cancelled = True
            break
        try:
            transactions = await realize_instance(db, request.series_id, request.instance_date, request.overrides)
        except EngineError as exc:
            log_exception(
                logger,
                exc,
                "Realization failed",
                level="warning",
                include_traceback=False,
                series_id=str(request.series_id),
                instance_date=request.instance_date.isoformat(),
            )
            result.failures.append(
                ItemFailure.from_error(exc, series_id=request.series_id, instance_date=request.instance_date)
            )
            continue
        result.realized.append(RealizedInstance(request.series_id, request.instance_date, transactions))
    return result


async def link_to_instance(
    db: AsyncSession,
    transaction: Transaction,
    series: RecurringSeries,
    instance_date: date,
) -> Transaction:
    """Tag an imported transaction as the realization of an instance."""
    if series.kind != SeriesKind.TRANSACTION:
        raise ValidationError("Only transaction series can be linked to imported transactions")
    if transaction.recurring_series_id is not None:
        if (transaction.recurring_series_id, transaction.recurring_instance_date) == (series.id, instance_date):
            return transaction
        raise ValidationError(f"Transaction {transaction.id} is already linked to another instance")

    existing = await realized_transaction_ids(db, series.id, instance_date)
    if existing:
        raise AlreadyRealizedError(series.id, instance_date, existing)

    try:
        async with db.begin_nested():
            transaction.recurring_series_id = series.id
            transaction.recurring_instance_date = instance_date
            transaction.recurring_leg = TransactionLeg.SINGLE
            await db.flush()
    except IntegrityError as exc:
        # Savepoint rollback expired the transaction's attributes
        await db.refresh(transaction)
        raise ConflictError(
            f"Instance {instance_date.isoformat()} of series {series.id} was linked concurrently"
        ) from exc

    if series.last_generated_date is None or instance_date > series.last_generated_date:
        series.last_generated_date = instance_date
        await db.flush()
    logger.info(
        "Transaction linked",
        transaction_id=str(transaction.id),
        series_id=str(series.id),
        instance_date=instance_date.isoformat(),
    )
    return transaction


async def unlink_from_instance(db: AsyncSession, transaction: Transaction) -> None:
    transaction.recurring_series_id = None
    transaction.recurring_instance_date = None
    transaction.recurring_leg = None
    await db.flush()
