"""Account model."""

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from budget_engine.database import Base
from budget_engine.models.base import TimestampMixin, UUIDMixin


class Account(Base, UUIDMixin, TimestampMixin):
    """A bank or cash account that recurring series and transactions post to."""

    __tablename__ = "accounts"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Account {self.name} ({self.currency})>"
