"""Auto-realize tests."""

import asyncio
from datetime import date

import pytest
from sqlalchemy import func, select

from budget_engine.models import RecurrenceFrequency, Transaction
from budget_engine.services import recurring
from budget_engine.services.app_settings import update_engine_settings
from budget_engine.services.auto_realize import (
    AutoRealizeSettings,
    auto_realize_once,
    auto_realize_window,
    run_if_enabled,
)
from budget_engine.services.realization import realize_instance
from tests.factories import AccountFactory, RecurringSeriesFactory

ENABLED = AutoRealizeSettings(enabled=True, lookback_days=30)


def test_window_excludes_today():
    assert auto_realize_window(date(2025, 3, 10), 30) == (date(2025, 2, 8), date(2025, 3, 9))
    start, end = auto_realize_window(date(2025, 3, 10), 0)
    assert start > end


@pytest.mark.asyncio
async def test_disabled_does_nothing(db):
    account = await AccountFactory.create_async(db)
    await RecurringSeriesFactory.create_async(db, account.id)

    result = await run_if_enabled(
        db, date(2025, 3, 1), settings=AutoRealizeSettings(enabled=False, lookback_days=30)
    )

    assert result.enabled is False
    assert result.realized_count == 0


@pytest.mark.asyncio
async def test_today_and_future_are_never_realized(db):
    account = await AccountFactory.create_async(db)
    series = await RecurringSeriesFactory.create_async(db, account.id, day_of_month=1)

    result = await run_if_enabled(db, date(2025, 3, 1), settings=ENABLED)

    # Jan 1 is outside the window and Mar 1 is today
    assert result.realized_count == 1
    rows = await db.execute(select(Transaction.recurring_instance_date).where(Transaction.recurring_series_id == series.id))
    assert list(rows.scalars().all()) == [date(2025, 2, 1)]


@pytest.mark.asyncio
async def test_skips_realized_and_skipped_instances(db):
    account = await AccountFactory.create_async(db)
    weekly = await RecurringSeriesFactory.create_async(
        db,
        account.id,
        frequency=RecurrenceFrequency.WEEKLY,
        day_of_week=0,
        day_of_month=None,
        start_date=date(2025, 1, 6),
    )
    await realize_instance(db, weekly.id, date(2025, 1, 6))
    await recurring.skip_instance(db, weekly.id, date(2025, 1, 13))

    result = await run_if_enabled(db, date(2025, 1, 28), settings=ENABLED)

    # Jan 20 and Jan 27 remain
    assert result.realized_count == 2
    assert result.failures == []


@pytest.mark.asyncio
async def test_running_twice_realizes_nothing_new(db):
    account = await AccountFactory.create_async(db)
    await RecurringSeriesFactory.create_async(db, account.id)

    first = await run_if_enabled(db, date(2025, 3, 1), settings=ENABLED)
    second = await run_if_enabled(db, date(2025, 3, 1), settings=ENABLED)

    assert first.realized_count == 1
    assert second.realized_count == 0


@pytest.mark.asyncio
async def test_stop_event_cancels_run(db):
    account = await AccountFactory.create_async(db)
    await RecurringSeriesFactory.create_async(db, account.id)
    stop_event = asyncio.Event()
    stop_event.set()

    result = await run_if_enabled(db, date(2025, 3, 1), settings=ENABLED, stop_event=stop_event)

    assert result.cancelled
    assert result.realized_count == 0


@pytest.mark.asyncio
async def test_auto_realize_once_reads_settings_store(session_maker):
    async with session_maker() as db:
        account = await AccountFactory.create_async(db)
        await RecurringSeriesFactory.create_async(db, account.id)
        await update_engine_settings(db, auto_realize_past_due_items=True, past_due_lookback_days=45)
        await db.commit()

    result = await auto_realize_once(date(2025, 3, 1), session_maker=session_maker)

    assert result.enabled
    assert result.realized_count == 2

    async with session_maker() as db:
        total = (await db.execute(select(func.count()).select_from(Transaction))).scalar_one()
    assert total == 2
