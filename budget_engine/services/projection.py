"""Instance projection.

Composes a series' recurrence pattern, the sparse exception overlay and the
realized-transaction lookup into projected instances. Nothing here is cached:
every query re-reads exceptions and realized transactions for its range.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import TypeVar
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from budget_engine.logger import get_logger, log_timing
from budget_engine.models import (
    RecurringException,
    RecurringSeries,
    SeriesKind,
    Transaction,
)
from budget_engine.services.errors import ValidationError
from budget_engine.services.recurrence import occurrences_between
from budget_engine.services.recurring import list_series

logger = get_logger(__name__)

T = TypeVar("T")

InstanceKey = tuple[UUID, date]


def resolve_value(override: T | None, exception_value: T | None, default: T) -> T:
    """Value resolution order: explicit override, then exception, then series default."""
    if override is not None:
        return override
    if exception_value is not None:
        return exception_value
    return default


class ExceptionOverlay:
    """Sparse map of (series id, original date) to exception."""

    def __init__(self, exceptions: Iterable[RecurringException] = ()) -> None:
        self._by_key: dict[InstanceKey, RecurringException] = {
            (exc.series_id, exc.original_date): exc for exc in exceptions
        }

    def get(self, series_id: UUID, original_date: date) -> RecurringException | None:
        return self._by_key.get((series_id, original_date))

    def is_skipped(self, series_id: UUID, original_date: date) -> bool:
        exc = self.get(series_id, original_date)
        return exc is not None and exc.is_skipped

    def __len__(self) -> int:
        return len(self._by_key)


class RealizedLookup:
    """Transactions already tied to each (series id, scheduled date)."""

    def __init__(self, rows: Iterable[tuple[UUID, UUID, date]] = ()) -> None:
        self._by_key: dict[InstanceKey, list[UUID]] = defaultdict(list)
        for transaction_id, series_id, instance_date in rows:
            self._by_key[(series_id, instance_date)].append(transaction_id)

    def transaction_ids(self, series_id: UUID, instance_date: date) -> list[UUID]:
        return list(self._by_key.get((series_id, instance_date), ()))

    def is_realized(self, series_id: UUID, instance_date: date) -> bool:
        return bool(self._by_key.get((series_id, instance_date)))


@dataclass(frozen=True)
class ProjectedInstance:
    """One dated expectation of a series after the exception overlay."""

    series_id: UUID
    kind: SeriesKind
    account_id: UUID
    destination_account_id: UUID | None
    scheduled_date: date
    effective_date: date
    amount: Decimal
    currency: str
    description: str
    is_modified: bool = False
    is_skipped: bool = False
    is_generated: bool = False
    transaction_ids: tuple[UUID, ...] = ()
    import_patterns: tuple[str, ...] = field(default=(), compare=False)

    @property
    def key(self) -> InstanceKey:
        return (self.series_id, self.scheduled_date)

    @property
    def generated_transaction_id(self) -> UUID | None:
        return self.transaction_ids[0] if self.transaction_ids else None

    def touches_account(self, account_id: UUID) -> bool:
        return account_id in (self.account_id, self.destination_account_id)


def sort_key(instance: ProjectedInstance) -> tuple[date, date, str]:
    # Effective date first: a moved occurrence sorts where it will really happen
    return (instance.effective_date, instance.scheduled_date, str(instance.series_id))


def project_series(
    series: RecurringSeries,
    overlay: ExceptionOverlay,
    realized: RealizedLookup,
    range_from: date,
    range_to: date,
    *,
    include_skipped: bool = False,
) -> list[ProjectedInstance]:
    """Project one series over ``[range_from, range_to]`` (inclusive, by scheduled date)."""
    instances: list[ProjectedInstance] = []
    dates = occurrences_between(series.pattern, series.start_date, series.end_date, range_from, range_to)
    for scheduled in dates:
        exc = overlay.get(series.id, scheduled)
        if exc is not None and exc.is_skipped and not include_skipped:
            continue
        modified = exc if exc is not None and not exc.is_skipped else None
        transaction_ids = tuple(realized.transaction_ids(series.id, scheduled))
        instances.append(
            ProjectedInstance(
                series_id=series.id,
                kind=series.kind,
                account_id=series.account_id,
                destination_account_id=series.destination_account_id,
                scheduled_date=scheduled,
                effective_date=resolve_value(None, modified and modified.modified_date, scheduled),
                amount=resolve_value(None, modified and modified.modified_amount, series.amount),
                currency=series.currency,
                description=resolve_value(
                    None, modified and modified.modified_description, series.description
                ),
                is_modified=modified is not None,
                is_skipped=exc is not None and exc.is_skipped,
                is_generated=bool(transaction_ids),
                transaction_ids=transaction_ids,
                import_patterns=tuple(series.import_patterns or ()),
            )
        )
    instances.sort(key=sort_key)
    return instances


async def load_overlay(
    db: AsyncSession,
    series_ids: Sequence[UUID],
    range_from: date,
    range_to: date,
) -> ExceptionOverlay:
    if not series_ids:
        return ExceptionOverlay()
    result = await db.execute(
        select(RecurringException)
        .where(RecurringException.series_id.in_(series_ids))
        .where(RecurringException.original_date >= range_from)
        .where(RecurringException.original_date <= range_to)
    )
    return ExceptionOverlay(result.scalars().all())


async def load_realized_lookup(
    db: AsyncSession,
    series_ids: Sequence[UUID],
    range_from: date,
    range_to: date,
) -> RealizedLookup:
    if not series_ids:
        return RealizedLookup()
    result = await db.execute(
        select(
            Transaction.id,
            Transaction.recurring_series_id,
            Transaction.recurring_instance_date,
        )
        .where(Transaction.recurring_series_id.in_(series_ids))
        .where(Transaction.recurring_instance_date >= range_from)
        .where(Transaction.recurring_instance_date <= range_to)
    )
    return RealizedLookup(result.tuples().all())


async def get_projected_instances(
    db: AsyncSession,
    range_from: date,
    range_to: date,
    *,
    account_id: UUID | None = None,
    kind: SeriesKind | None = None,
    series_ids: Sequence[UUID] | None = None,
    include_skipped: bool = False,
) -> list[ProjectedInstance]:
    """Project every active series over a date range, union-sorted by effective date.

    ``account_id`` matches either leg of a transfer. Skipped instances are
    omitted unless ``include_skipped`` is set (status reports only).
    """
    if range_from > range_to:
        raise ValidationError("range_from must be on or before range_to")

    series_list = await list_series(db, account_id=account_id, is_active=True, kind=kind)
    if series_ids is not None:
        wanted = set(series_ids)
        series_list = [series for series in series_list if series.id in wanted]
    ids = [series.id for series in series_list]

    with log_timing(
        "project_instances",
        logger=logger,
        level="debug",
        series=len(ids),
        range_from=range_from.isoformat(),
        range_to=range_to.isoformat(),
    ) as timing:
        overlay = await load_overlay(db, ids, range_from, range_to)
        realized = await load_realized_lookup(db, ids, range_from, range_to)
        instances: list[ProjectedInstance] = []
        for series in series_list:
            instances.extend(
                project_series(
                    series,
                    overlay,
                    realized,
                    range_from,
                    range_to,
                    include_skipped=include_skipped,
                )
            )
        instances.sort(key=sort_key)
        timing["instances"] = len(instances)
    return instances
