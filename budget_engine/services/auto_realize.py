"""Auto-realize past-due occurrences.

Triggered externally (HTTP endpoint or a scheduled caller of
``auto_realize_once``); nothing here schedules itself. The window is
``[today - lookback_days, today - 1]`` so today's and future occurrences stay
projections until someone confirms them.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import date, timedelta
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from budget_engine.database import get_session_maker
from budget_engine.logger import async_log_timing, get_logger, log_exception
from budget_engine.services.app_settings import EngineSettings, load_engine_settings
from budget_engine.services.errors import EngineError, ItemFailure
from budget_engine.services.projection import load_overlay, load_realized_lookup
from budget_engine.services.realization import realize_instance
from budget_engine.services.recurrence import occurrences_between
from budget_engine.services.recurring import list_series

logger = get_logger(__name__)


@dataclass(frozen=True)
class AutoRealizeSettings:
    enabled: bool
    lookback_days: int

    @classmethod
    def from_engine_settings(cls, engine_settings: EngineSettings) -> AutoRealizeSettings:
        return cls(
            enabled=engine_settings.auto_realize_past_due_items,
            lookback_days=engine_settings.past_due_lookback_days,
        )


@dataclass
class AutoRealizeResult:
    enabled: bool
    window_start: date | None = None
    window_end: date | None = None
    realized_count: int = 0
    transactions_created: int = 0
    failures: list[ItemFailure] = field(default_factory=list)
    cancelled: bool = False


def auto_realize_window(today: date, lookback_days: int) -> tuple[date, date]:
    """Inclusive window; empty (start > end) when ``lookback_days`` is 0."""
    return today - timedelta(days=lookback_days), today - timedelta(days=1)


async def run_if_enabled(
    db: AsyncSession,
    today: date,
    *,
    settings: AutoRealizeSettings,
    account_id: UUID | None = None,
    stop_event: asyncio.Event | None = None,
) -> AutoRealizeResult:
    """Realize unrealized, unskipped occurrences in the trailing window.

    Work is flushed, not committed; the caller commits the whole run once.
    Engine errors are recorded per occurrence; anything else aborts the run.
    """
    if not settings.enabled:
        logger.debug("Auto-realize disabled")
        return AutoRealizeResult(enabled=False)

    window_start, window_end = auto_realize_window(today, settings.lookback_days)
    result = AutoRealizeResult(enabled=True, window_start=window_start, window_end=window_end)
    if window_start > window_end:
        return result

    series_list = await list_series(db, account_id=account_id, is_active=True)
    series_ids = [series.id for series in series_list]

    async with async_log_timing(
        "auto_realize",
        logger=logger,
        window_start=window_start.isoformat(),
        window_end=window_end.isoformat(),
        series=len(series_ids),
    ) as timing:
        overlay = await load_overlay(db, series_ids, window_start, window_end)
        realized = await load_realized_lookup(db, series_ids, window_start, window_end)

        for series in series_list:
            if result.cancelled:
                break
            dates = occurrences_between(
                series.pattern, series.start_date, series.end_date, window_start, window_end
            )
            for instance_date in dates:
                if stop_event is not None and stop_event.is_set():
                    result.cancelled = True
                    break
                if realized.is_realized(series.id, instance_date):
                    continue
                if overlay.is_skipped(series.id, instance_date):
                    continue
                try:
                    transactions = await realize_instance(db, series.id, instance_date)
                except EngineError as exc:
                    log_exception(
                        logger,
                        exc,
                        "Auto-realize item failed",
                        level="warning",
                        include_traceback=False,
                        series_id=str(series.id),
                        instance_date=instance_date.isoformat(),
                    )
                    result.failures.append(
                        ItemFailure.from_error(exc, series_id=series.id, instance_date=instance_date)
                    )
                    continue
                result.realized_count += 1
                result.transactions_created += len(transactions)

        timing["realized"] = result.realized_count
        timing["failures"] = len(result.failures)
        timing["cancelled"] = result.cancelled
    return result


async def auto_realize_once(
    today: date | None = None,
    *,
    session_maker: async_sessionmaker[AsyncSession] | None = None,
    stop_event: asyncio.Event | None = None,
) -> AutoRealizeResult:
    """Scheduled-job entry point: own session, settings read once, single commit."""
    maker = session_maker or get_session_maker()
    async with maker() as db:
        engine_settings = await load_engine_settings(db)
        result = await run_if_enabled(
            db,
            today or date.today(),
            settings=AutoRealizeSettings.from_engine_settings(engine_settings),
            stop_event=stop_event,
        )
        await db.commit()
    return result
