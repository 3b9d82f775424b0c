"""Ledger transaction model."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Numeric, String, UniqueConstraint, Uuid
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from budget_engine.database import Base
from budget_engine.models.base import TimestampMixin, UUIDMixin


class TransactionSource(str, Enum):
    """Where a transaction came from."""

    MANUAL = "manual"
    RECURRING = "recurring"
    IMPORT = "import"


class TransactionLeg(str, Enum):
    """Which side of a recurring instance a transaction fulfils."""

    SINGLE = "single"
    SOURCE = "source"
    DESTINATION = "destination"


class Transaction(Base, UUIDMixin, TimestampMixin):
    """A ledger entry, optionally tied to one recurring instance.

    `recurring_instance_date` is always the originally scheduled date, so the
    (series, instance date, leg) key stays stable when an occurrence is moved.
    """

    __tablename__ = "transactions"
    __table_args__ = (
        UniqueConstraint(
            "recurring_series_id",
            "recurring_instance_date",
            "recurring_leg",
            name="uq_transactions_recurring_instance",
        ),
    )

    account_id: Mapped[UUID] = mapped_column(ForeignKey("accounts.id"), nullable=False, index=True)
    txn_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    description: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    source: Mapped[TransactionSource] = mapped_column(
        SQLEnum(TransactionSource), nullable=False, default=TransactionSource.MANUAL
    )

    recurring_series_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("recurring_series.id", ondelete="SET NULL"), nullable=True, index=True
    )
    recurring_instance_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    recurring_leg: Mapped[TransactionLeg | None] = mapped_column(SQLEnum(TransactionLeg), nullable=True)
    transfer_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True, index=True)

    @property
    def is_recurring_instance(self) -> bool:
        return self.recurring_series_id is not None

    def __repr__(self) -> str:
        return f"<Transaction {self.txn_date} {self.amount} {self.description!r}>"
