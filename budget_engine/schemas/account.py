"""Pydantic schemas for accounts and ledger transactions."""

from datetime import date, datetime
from decimal import Decimal
from typing import Annotated
from uuid import UUID

from pydantic import BaseModel, Field

from budget_engine.models import TransactionLeg, TransactionSource
from budget_engine.schemas.base import BaseResponse, ListResponse


class AccountCreate(BaseModel):
    """Schema for creating an account."""

    name: Annotated[str, Field(min_length=1, max_length=255)]
    currency: Annotated[str, Field(min_length=3, max_length=3)] = "USD"


class AccountResponse(BaseResponse):
    """Schema for account response."""

    id: UUID
    name: str
    currency: str
    is_active: bool
    created_at: datetime
    updated_at: datetime


AccountListResponse = ListResponse[AccountResponse]


class ImportedTransactionCreate(BaseModel):
    """One row of an external import, such as a bank CSV line."""

    account_id: UUID
    txn_date: date
    amount: Annotated[Decimal, Field(max_digits=18, decimal_places=2)]
    currency: Annotated[str | None, Field(min_length=3, max_length=3)] = None
    description: Annotated[str, Field(max_length=500)] = ""


class ImportTransactionsRequest(BaseModel):
    transactions: Annotated[list[ImportedTransactionCreate], Field(min_length=1, max_length=5000)]


class TransactionResponse(BaseResponse):
    """Schema for transaction response."""

    id: UUID
    account_id: UUID
    txn_date: date
    amount: Decimal
    currency: str
    description: str
    source: TransactionSource
    recurring_series_id: UUID | None = None
    recurring_instance_date: date | None = None
    recurring_leg: TransactionLeg | None = None
    transfer_id: UUID | None = None
    created_at: datetime


TransactionListResponse = ListResponse[TransactionResponse]
