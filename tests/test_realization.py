"""Realization service tests."""

import asyncio
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from budget_engine.models import (
    RecurrenceFrequency,
    SeriesKind,
    Transaction,
    TransactionLeg,
    TransactionSource,
)
from budget_engine.services import recurring
from budget_engine.services.errors import AlreadyRealizedError, NotFoundError, ValidationError
from budget_engine.services.realization import (
    RealizationOverrides,
    RealizeRequest,
    link_to_instance,
    realize_batch,
    realize_instance,
)
from tests.factories import AccountFactory, RecurringSeriesFactory, TransactionFactory


async def _count_transactions(db) -> int:
    return (await db.execute(select(func.count()).select_from(Transaction))).scalar_one()


@pytest.mark.asyncio
async def test_realize_uses_series_defaults(db):
    account = await AccountFactory.create_async(db)
    series = await RecurringSeriesFactory.create_async(db, account.id, description="Spotify")

    [txn] = await realize_instance(db, series.id, date(2025, 3, 15))

    assert txn.amount == Decimal("50.00")
    assert txn.description == "Spotify"
    assert txn.txn_date == date(2025, 3, 15)
    assert txn.source == TransactionSource.RECURRING
    assert txn.recurring_leg == TransactionLeg.SINGLE
    assert series.last_generated_date == date(2025, 3, 15)


@pytest.mark.asyncio
async def test_second_realization_raises_already_realized(db):
    account = await AccountFactory.create_async(db)
    series = await RecurringSeriesFactory.create_async(db, account.id)
    [first] = await realize_instance(db, series.id, date(2025, 1, 15))

    with pytest.raises(AlreadyRealizedError) as exc_info:
        await realize_instance(db, series.id, date(2025, 1, 15))

    assert exc_info.value.transaction_ids == [first.id]
    assert await _count_transactions(db) == 1


@pytest.mark.asyncio
async def test_override_beats_exception_beats_default(db):
    account = await AccountFactory.create_async(db)
    series = await RecurringSeriesFactory.create_async(db, account.id, description="Power bill")
    await recurring.modify_instance(
        db,
        series.id,
        date(2025, 2, 15),
        amount=Decimal("61.20"),
        description="Power bill (winter)",
        effective_date=date(2025, 2, 18),
    )

    [txn] = await realize_instance(
        db,
        series.id,
        date(2025, 2, 15),
        RealizationOverrides(amount=Decimal("63.00")),
    )

    assert txn.amount == Decimal("63.00")
    assert txn.description == "Power bill (winter)"
    assert txn.txn_date == date(2025, 2, 18)
    # Correlation key stays on the scheduled date
    assert txn.recurring_instance_date == date(2025, 2, 15)


@pytest.mark.asyncio
async def test_realize_rejects_paused_unscheduled_and_skipped(db):
    account = await AccountFactory.create_async(db)
    series = await RecurringSeriesFactory.create_async(db, account.id)

    with pytest.raises(ValidationError, match="not a scheduled occurrence"):
        await realize_instance(db, series.id, date(2025, 1, 16))

    await recurring.skip_instance(db, series.id, date(2025, 2, 15))
    with pytest.raises(ValidationError, match="skipped"):
        await realize_instance(db, series.id, date(2025, 2, 15))

    await recurring.pause_series(db, series.id)
    with pytest.raises(ValidationError, match="paused"):
        await realize_instance(db, series.id, date(2025, 3, 15))


@pytest.mark.asyncio
async def test_unknown_series(db):
    with pytest.raises(NotFoundError):
        await realize_instance(db, uuid4(), date(2025, 1, 15))


@pytest.mark.asyncio
async def test_transfer_creates_two_opposite_legs(db):
    checking = await AccountFactory.create_async(db)
    savings = await AccountFactory.create_async(db)
    series = await RecurringSeriesFactory.create_async(
        db,
        checking.id,
        kind=SeriesKind.TRANSFER,
        destination_account_id=savings.id,
        amount=Decimal("200.00"),
        frequency=RecurrenceFrequency.MONTHLY,
        day_of_month=1,
    )

    source, destination = await realize_instance(db, series.id, date(2025, 2, 1))

    assert source.account_id == checking.id and source.amount == Decimal("-200.00")
    assert destination.account_id == savings.id and destination.amount == Decimal("200.00")
    assert source.transfer_id is not None
    assert source.transfer_id == destination.transfer_id
    assert {source.recurring_leg, destination.recurring_leg} == {TransactionLeg.SOURCE, TransactionLeg.DESTINATION}


@pytest.mark.asyncio
async def test_transfer_failure_after_first_leg_leaves_nothing(db, monkeypatch):
    checking = await AccountFactory.create_async(db)
    savings = await AccountFactory.create_async(db)
    series = await RecurringSeriesFactory.create_async(
        db,
        checking.id,
        kind=SeriesKind.TRANSFER,
        destination_account_id=savings.id,
        day_of_month=1,
    )

    original_flush = db.flush
    calls = {"count": 0}

    async def failing_flush(*args, **kwargs):
        calls["count"] += 1
        if calls["count"] == 2:
            raise RuntimeError("simulated failure after first leg")
        return await original_flush(*args, **kwargs)

    monkeypatch.setattr(db, "flush", failing_flush)
    with pytest.raises(RuntimeError, match="simulated failure"):
        await realize_instance(db, series.id, date(2025, 2, 1))
    monkeypatch.setattr(db, "flush", original_flush)

    assert await _count_transactions(db) == 0


@pytest.mark.asyncio
async def test_realize_batch_collects_failures(db):
    account = await AccountFactory.create_async(db)
    series = await RecurringSeriesFactory.create_async(db, account.id)
    await realize_instance(db, series.id, date(2025, 1, 15))

    result = await realize_batch(
        db,
        [
            RealizeRequest(series.id, date(2025, 1, 15)),
            RealizeRequest(series.id, date(2025, 1, 16)),
            RealizeRequest(series.id, date(2025, 2, 15)),
        ],
    )

    assert [item.instance_date for item in result.realized] == [date(2025, 2, 15)]
    assert [failure.error_type for failure in result.failures] == ["AlreadyRealizedError", "ValidationError"]
    assert not result.cancelled


@pytest.mark.asyncio
async def test_realize_batch_honours_stop_event(db):
    account = await AccountFactory.create_async(db)
    series = await RecurringSeriesFactory.create_async(db, account.id)
    stop_event = asyncio.Event()
    stop_event.set()

    result = await realize_batch(db, [RealizeRequest(series.id, date(2025, 1, 15))], stop_event=stop_event)

    assert result.cancelled
    assert result.realized == []


@pytest.mark.asyncio
async def test_link_marks_instance_realized(db):
    account = await AccountFactory.create_async(db)
    series = await RecurringSeriesFactory.create_async(db, account.id)
    imported = await TransactionFactory.create_async(db, account.id)

    await link_to_instance(db, imported, series, date(2025, 1, 15))

    with pytest.raises(AlreadyRealizedError):
        await realize_instance(db, series.id, date(2025, 1, 15))
    # Linking again to the same instance is a no-op
    assert await link_to_instance(db, imported, series, date(2025, 1, 15)) is imported


@pytest.mark.asyncio
async def test_modify_realized_instance_rejected(db):
    account = await AccountFactory.create_async(db)
    series = await RecurringSeriesFactory.create_async(db, account.id)
    await realize_instance(db, series.id, date(2025, 1, 15))

    with pytest.raises(AlreadyRealizedError):
        await recurring.modify_instance(db, series.id, date(2025, 1, 15), amount=Decimal("1.00"))
