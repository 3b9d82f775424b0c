"""Settings store backed by the single-row ``app_settings`` table.

Values fall back to environment configuration until a row is written.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from budget_engine.config import settings as env_settings
from budget_engine.models import APP_SETTINGS_ID, AppSettings
from budget_engine.services.errors import ValidationError
from budget_engine.services.reconciliation import get_tolerance_profile


@dataclass(frozen=True)
class EngineSettings:
    auto_realize_past_due_items: bool
    past_due_lookback_days: int
    reconciliation_profile: str


def default_engine_settings() -> EngineSettings:
    return EngineSettings(
        auto_realize_past_due_items=env_settings.auto_realize_past_due_items,
        past_due_lookback_days=env_settings.past_due_lookback_days,
        reconciliation_profile=env_settings.reconciliation_profile.lower(),
    )


async def load_engine_settings(db: AsyncSession) -> EngineSettings:
    row = await db.get(AppSettings, APP_SETTINGS_ID)
    if row is None:
        return default_engine_settings()
    return EngineSettings(
        auto_realize_past_due_items=row.auto_realize_past_due_items,
        past_due_lookback_days=row.past_due_lookback_days,
        reconciliation_profile=row.reconciliation_profile,
    )


async def update_engine_settings(
    db: AsyncSession,
    *,
    auto_realize_past_due_items: bool | None = None,
    past_due_lookback_days: int | None = None,
    reconciliation_profile: str | None = None,
) -> EngineSettings:
    if past_due_lookback_days is not None and past_due_lookback_days < 0:
        raise ValidationError("past_due_lookback_days must not be negative")

    row = await db.get(AppSettings, APP_SETTINGS_ID)
    if row is None:
        defaults = default_engine_settings()
        row = AppSettings(
            id=APP_SETTINGS_ID,
            auto_realize_past_due_items=defaults.auto_realize_past_due_items,
            past_due_lookback_days=defaults.past_due_lookback_days,
            reconciliation_profile=defaults.reconciliation_profile,
        )
        db.add(row)

    if auto_realize_past_due_items is not None:
        row.auto_realize_past_due_items = auto_realize_past_due_items
    if past_due_lookback_days is not None:
        row.past_due_lookback_days = past_due_lookback_days
    if reconciliation_profile is not None:
        row.reconciliation_profile = get_tolerance_profile(reconciliation_profile).name
    await db.flush()
    return await load_engine_settings(db)
