"""Persisted engine settings."""

from sqlalchemy import Boolean, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from budget_engine.database import Base
from budget_engine.models.base import TimestampMixin

APP_SETTINGS_ID = 1


class AppSettings(Base, TimestampMixin):
    """Single-row settings store read once per auto-realize or reconciliation run."""

    __tablename__ = "app_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=APP_SETTINGS_ID)
    auto_realize_past_due_items: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    past_due_lookback_days: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    reconciliation_profile: Mapped[str] = mapped_column(String(32), nullable=False, default="moderate")
