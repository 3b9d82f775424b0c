"""Reconciliation match models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, Date, DateTime, Float, ForeignKey, Index, Integer, Numeric, text
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from budget_engine.database import Base
from budget_engine.models.base import TimestampMixin, UUIDMixin


class MatchStatus(str, Enum):
    """Match status for reconciliation results.

    MISSING and SKIPPED are reported for instances and never stored.
    """

    MATCHED = "matched"
    PENDING = "pending"
    MISSING = "missing"
    SKIPPED = "skipped"
    REJECTED = "rejected"


class ConfidenceLevel(str, Enum):
    """Discretized match score."""

    HIGH = "high"  # Auto-link
    MEDIUM = "medium"  # Review queue
    LOW = "low"  # Manual linking required


class MatchSource(str, Enum):
    AUTO = "auto"
    MANUAL = "manual"


class ReconciliationMatch(Base, UUIDMixin, TimestampMixin):
    """Link between one imported transaction and one (series, instance date)."""

    __tablename__ = "reconciliation_matches"
    __table_args__ = (
        # At most one live match per (transaction, series, instance)
        Index(
            "uq_reconciliation_matches_active",
            "imported_transaction_id",
            "series_id",
            "instance_date",
            unique=True,
            postgresql_where=text("status <> 'REJECTED'"),
            sqlite_where=text("status <> 'REJECTED'"),
        ),
        Index("ix_reconciliation_matches_instance", "series_id", "instance_date"),
    )

    imported_transaction_id: Mapped[UUID] = mapped_column(
        ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    series_id: Mapped[UUID] = mapped_column(
        ForeignKey("recurring_series.id", ondelete="CASCADE"), nullable=False
    )
    instance_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Scores are non-monetary; floats are acceptable for display/analysis.
    confidence_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    confidence_level: Mapped[ConfidenceLevel] = mapped_column(SQLEnum(ConfidenceLevel), nullable=False)
    status: Mapped[MatchStatus] = mapped_column(
        SQLEnum(MatchStatus), nullable=False, default=MatchStatus.PENDING
    )
    source: Mapped[MatchSource] = mapped_column(SQLEnum(MatchSource), nullable=False, default=MatchSource.AUTO)
    amount_variance: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    date_offset_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    description_similarity: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    score_breakdown: Mapped[dict[str, float]] = mapped_column(JSON, nullable=False, default=dict)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def is_active(self) -> bool:
        return self.status != MatchStatus.REJECTED
