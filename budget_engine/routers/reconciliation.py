"""Reconciliation API router."""

from uuid import UUID

from fastapi import APIRouter, Query, status

from budget_engine.deps import DbSession
from budget_engine.logger import get_logger
from budget_engine.models import MatchStatus, ReconciliationMatch
from budget_engine.schemas import (
    AnalyzeBatchRequest,
    AnalyzeBatchResponse,
    AnalyzeRequest,
    AnalyzeResponse,
    InstanceStatusResponse,
    ItemFailureResponse,
    ManualLinkRequest,
    ProjectedInstanceResponse,
    ReconciliationMatchListResponse,
    ReconciliationMatchResponse,
    ReconciliationStatusResponse,
)
from budget_engine.services import reconciliation
from budget_engine.services.app_settings import load_engine_settings
from budget_engine.services.errors import EngineError
from budget_engine.utils.exceptions import raise_for_engine_error

router = APIRouter(prefix="/reconciliation", tags=["reconciliation"])
logger = get_logger(__name__)


async def _resolve_profile(db: DbSession, name: str | None) -> reconciliation.ToleranceProfile:
    if name is None:
        name = (await load_engine_settings(db)).reconciliation_profile
    return reconciliation.get_tolerance_profile(name)


async def _match_response(db: DbSession, match: ReconciliationMatch) -> ReconciliationMatchResponse:
    await db.refresh(match)
    return ReconciliationMatchResponse.model_validate(match)


async def _outcome_response(db: DbSession, outcome: reconciliation.ReconciliationOutcome) -> AnalyzeResponse:
    match = await _match_response(db, outcome.match) if outcome.match is not None else None
    return AnalyzeResponse(transaction_id=outcome.transaction_id, status=outcome.status, match=match)


@router.post("/transactions/{transaction_id}/analyze", response_model=AnalyzeResponse)
async def analyze_transaction(
    transaction_id: UUID,
    db: DbSession,
    payload: AnalyzeRequest | None = None,
) -> AnalyzeResponse:
    """Score one imported transaction against projected instances."""
    try:
        profile = await _resolve_profile(db, payload.profile if payload else None)
        outcome = await reconciliation.analyze_transaction(db, transaction_id, profile=profile)
    except EngineError as exc:
        raise_for_engine_error(exc)
    await db.commit()
    return await _outcome_response(db, outcome)


@router.post("/analyze-batch", response_model=AnalyzeBatchResponse)
async def analyze_batch(payload: AnalyzeBatchRequest, db: DbSession) -> AnalyzeBatchResponse:
    """Reconcile a whole import; per-item failures do not abort the batch."""
    try:
        profile = await _resolve_profile(db, payload.profile)
    except EngineError as exc:
        raise_for_engine_error(exc)
    result = await reconciliation.reconcile_batch(
        db,
        payload.transaction_ids,
        profile=profile,
        account_id=payload.account_id,
    )
    await db.commit()
    return AnalyzeBatchResponse(
        profile=profile.name,
        matched=result.count(MatchStatus.MATCHED),
        pending=result.count(MatchStatus.PENDING),
        missing=result.count(MatchStatus.MISSING),
        results=[await _outcome_response(db, outcome) for outcome in result.outcomes],
        failures=[ItemFailureResponse.model_validate(failure) for failure in result.failures],
        cancelled=result.cancelled,
    )


@router.get("/matches", response_model=ReconciliationMatchListResponse)
async def list_matches(
    db: DbSession,
    status_filter: MatchStatus | None = Query(None, alias="status"),
    series_id: UUID | None = None,
    transaction_id: UUID | None = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
) -> ReconciliationMatchListResponse:
    matches, total = await reconciliation.list_matches(
        db,
        status=status_filter,
        series_id=series_id,
        transaction_id=transaction_id,
        limit=limit,
        offset=offset,
    )
    return ReconciliationMatchListResponse(
        items=[ReconciliationMatchResponse.model_validate(match) for match in matches],
        total=total,
    )


@router.post("/matches/{match_id}/accept", response_model=ReconciliationMatchResponse)
async def accept_match(match_id: UUID, db: DbSession) -> ReconciliationMatchResponse:
    try:
        match = await reconciliation.accept_match(db, match_id)
    except EngineError as exc:
        raise_for_engine_error(exc)
    await db.commit()
    return await _match_response(db, match)


@router.post("/matches/{match_id}/reject", response_model=ReconciliationMatchResponse)
async def reject_match(match_id: UUID, db: DbSession) -> ReconciliationMatchResponse:
    try:
        match = await reconciliation.reject_match(db, match_id)
    except EngineError as exc:
        raise_for_engine_error(exc)
    await db.commit()
    return await _match_response(db, match)


@router.delete("/matches/{match_id}", status_code=status.HTTP_204_NO_CONTENT)
async def unlink_match(match_id: UUID, db: DbSession) -> None:
    """Remove a match and free its transaction and instance."""
    try:
        await reconciliation.unlink_match(db, match_id)
    except EngineError as exc:
        raise_for_engine_error(exc)
    await db.commit()


@router.post("/links", response_model=ReconciliationMatchResponse, status_code=status.HTTP_201_CREATED)
async def create_manual_link(payload: ManualLinkRequest, db: DbSession) -> ReconciliationMatchResponse:
    try:
        match = await reconciliation.create_manual_link(
            db,
            payload.transaction_id,
            payload.series_id,
            payload.instance_date,
            remember_description=payload.remember_description,
        )
    except EngineError as exc:
        raise_for_engine_error(exc)
    await db.commit()
    return await _match_response(db, match)


@router.get("/status", response_model=ReconciliationStatusResponse)
async def get_status(
    db: DbSession,
    year: int = Query(..., ge=1900, le=9999),
    month: int = Query(..., ge=1, le=12),
    account_id: UUID | None = None,
) -> ReconciliationStatusResponse:
    """Matched, pending, missing and skipped instances for one month."""
    try:
        report = await reconciliation.get_reconciliation_status(db, year, month, account_id=account_id)
    except EngineError as exc:
        raise_for_engine_error(exc)
    return ReconciliationStatusResponse(
        period_start=report.period_start,
        period_end=report.period_end,
        counts=report.counts,
        items=[
            InstanceStatusResponse(
                instance=ProjectedInstanceResponse.model_validate(item.instance),
                status=item.status,
                match_id=item.match_id,
            )
            for item in report.items
        ],
    )
