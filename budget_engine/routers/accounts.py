"""Accounts and imported transactions router."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Query, status

from budget_engine.deps import DbSession
from budget_engine.logger import get_logger
from budget_engine.models import TransactionSource
from budget_engine.schemas import (
    AccountCreate,
    AccountListResponse,
    AccountResponse,
    ImportTransactionsRequest,
    TransactionListResponse,
    TransactionResponse,
)
from budget_engine.services import ledger
from budget_engine.services.errors import EngineError
from budget_engine.utils.exceptions import raise_for_engine_error

router = APIRouter(tags=["accounts"])
logger = get_logger(__name__)


@router.post("/accounts", response_model=AccountResponse, status_code=status.HTTP_201_CREATED)
async def create_account(account_data: AccountCreate, db: DbSession) -> AccountResponse:
    """Create a new account."""
    account = await ledger.create_account(db, account_data)
    await db.commit()
    await db.refresh(account)
    logger.info("Account created", account_id=str(account.id), currency=account.currency)
    return AccountResponse.model_validate(account)


@router.get("/accounts", response_model=AccountListResponse)
async def list_accounts(db: DbSession, is_active: bool | None = None) -> AccountListResponse:
    accounts = await ledger.list_accounts(db, is_active=is_active)
    items = [AccountResponse.model_validate(account) for account in accounts]
    return AccountListResponse(items=items, total=len(items))


@router.post(
    "/transactions/import",
    response_model=TransactionListResponse,
    status_code=status.HTTP_201_CREATED,
)
async def import_transactions(payload: ImportTransactionsRequest, db: DbSession) -> TransactionListResponse:
    """Record imported rows; all rows are stored or none are."""
    try:
        transactions = await ledger.import_transactions(db, payload.transactions)
    except EngineError as exc:
        raise_for_engine_error(exc)
    await db.commit()
    items = [TransactionResponse.model_validate(txn) for txn in transactions]
    return TransactionListResponse(items=items, total=len(items))


@router.get("/transactions", response_model=TransactionListResponse)
async def list_transactions(
    db: DbSession,
    account_id: UUID | None = None,
    source: TransactionSource | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
) -> TransactionListResponse:
    transactions, total = await ledger.list_transactions(
        db,
        account_id=account_id,
        source=source,
        date_from=date_from,
        date_to=date_to,
        limit=limit,
        offset=offset,
    )
    return TransactionListResponse(
        items=[TransactionResponse.model_validate(txn) for txn in transactions],
        total=total,
    )
