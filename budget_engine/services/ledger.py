"""Accounts and transaction intake."""

from __future__ import annotations

from datetime import date
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from budget_engine.logger import get_logger
from budget_engine.models import Account, Transaction, TransactionSource
from budget_engine.schemas.account import AccountCreate, ImportedTransactionCreate
from budget_engine.services.errors import ValidationError
from budget_engine.services.recurring import get_account

logger = get_logger(__name__)


async def create_account(db: AsyncSession, account_data: AccountCreate) -> Account:
    account = Account(name=account_data.name.strip(), currency=account_data.currency.upper())
    db.add(account)
    await db.flush()
    await db.refresh(account)
    return account


async def list_accounts(db: AsyncSession, *, is_active: bool | None = None) -> list[Account]:
    query = select(Account)
    if is_active is not None:
        query = query.where(Account.is_active == is_active)
    result = await db.execute(query.order_by(Account.name, Account.id))
    return list(result.scalars().all())


async def import_transactions(db: AsyncSession, rows: list[ImportedTransactionCreate]) -> list[Transaction]:
    """Record externally imported transactions so they can be reconciled."""
    accounts: dict[UUID, Account] = {}
    transactions: list[Transaction] = []
    for row in rows:
        account = accounts.get(row.account_id)
        if account is None:
            account = await get_account(db, row.account_id)
            accounts[account.id] = account
        currency = (row.currency or account.currency).upper()
        if currency != account.currency:
            raise ValidationError(f"Currency {currency} does not match account currency {account.currency}")
        transactions.append(
            Transaction(
                account_id=account.id,
                txn_date=row.txn_date,
                amount=row.amount,
                currency=currency,
                description=row.description.strip(),
                source=TransactionSource.IMPORT,
            )
        )
    db.add_all(transactions)
    await db.flush()
    logger.info("Transactions imported", count=len(transactions), accounts=len(accounts))
    return transactions


async def list_transactions(
    db: AsyncSession,
    *,
    account_id: UUID | None = None,
    source: TransactionSource | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[Transaction], int]:
    query = select(Transaction)
    if account_id is not None:
        query = query.where(Transaction.account_id == account_id)
    if source is not None:
        query = query.where(Transaction.source == source)
    if date_from is not None:
        query = query.where(Transaction.txn_date >= date_from)
    if date_to is not None:
        query = query.where(Transaction.txn_date <= date_to)

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar_one()
    result = await db.execute(
        query.order_by(Transaction.txn_date, Transaction.id).limit(limit).offset(offset)
    )
    return list(result.scalars().all()), total
