"""Recurring series and per-occurrence exception models."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import JSON, Boolean, Date, ForeignKey, Integer, Numeric, String, UniqueConstraint
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from budget_engine.database import Base
from budget_engine.models.base import TimestampMixin, UUIDMixin

if TYPE_CHECKING:
    from budget_engine.services.recurrence import RecurrencePattern


class RecurrenceFrequency(str, Enum):
    """How often a series repeats."""

    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class SeriesKind(str, Enum):
    """Single-account transaction series or two-legged transfer series."""

    TRANSACTION = "transaction"
    TRANSFER = "transfer"


class ExceptionType(str, Enum):
    """Per-occurrence override type."""

    SKIPPED = "skipped"
    MODIFIED = "modified"


class RecurringSeries(Base, UUIDMixin, TimestampMixin):
    """A recurrence definition from which dated occurrences are generated."""

    __tablename__ = "recurring_series"

    kind: Mapped[SeriesKind] = mapped_column(
        SQLEnum(SeriesKind), nullable=False, default=SeriesKind.TRANSACTION
    )
    account_id: Mapped[UUID] = mapped_column(ForeignKey("accounts.id"), nullable=False, index=True)
    # Transfers only
    destination_account_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("accounts.id"), nullable=True, index=True
    )
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")

    frequency: Mapped[RecurrenceFrequency] = mapped_column(SQLEnum(RecurrenceFrequency), nullable=False)
    interval: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    day_of_week: Mapped[int | None] = mapped_column(Integer, nullable=True, comment="0=Monday")
    day_of_month: Mapped[int | None] = mapped_column(Integer, nullable=True)
    month_of_year: Mapped[int | None] = mapped_column(Integer, nullable=True)

    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    # Cursor for skip-next only; projection is range based
    next_occurrence: Mapped[date | None] = mapped_column(Date, nullable=True)
    last_generated_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Reassign the list on change; in-place mutation is not tracked
    import_patterns: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    exceptions: Mapped[list[RecurringException]] = relationship(
        "RecurringException",
        back_populates="series",
        cascade="all, delete-orphan",
    )

    @property
    def pattern(self) -> RecurrencePattern:
        from budget_engine.services.recurrence import RecurrencePattern

        return RecurrencePattern(
            frequency=self.frequency,
            interval=self.interval,
            day_of_week=self.day_of_week,
            day_of_month=self.day_of_month,
            month_of_year=self.month_of_year,
        )

    @property
    def schedule(self) -> str:
        return self.pattern.describe()

    def __repr__(self) -> str:
        return f"<RecurringSeries {self.description} {self.frequency.value}>"


class RecurringException(Base, UUIDMixin, TimestampMixin):
    """Skip or modify a single occurrence without touching the series."""

    __tablename__ = "recurring_exceptions"
    __table_args__ = (
        UniqueConstraint("series_id", "original_date", name="uq_recurring_exceptions_series_date"),
    )

    series_id: Mapped[UUID] = mapped_column(
        ForeignKey("recurring_series.id", ondelete="CASCADE"), nullable=False, index=True
    )
    original_date: Mapped[date] = mapped_column(Date, nullable=False)
    exception_type: Mapped[ExceptionType] = mapped_column(SQLEnum(ExceptionType), nullable=False)
    modified_amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    modified_description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    modified_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    series: Mapped[RecurringSeries] = relationship("RecurringSeries", back_populates="exceptions")

    @property
    def is_skipped(self) -> bool:
        return self.exception_type == ExceptionType.SKIPPED
