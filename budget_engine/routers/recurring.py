"""Recurring series API router."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Query, status

from budget_engine.deps import DbSession
from budget_engine.logger import get_logger
from budget_engine.models import RecurringSeries
from budget_engine.schemas import (
    AutoRealizeRunRequest,
    AutoRealizeRunResponse,
    ImportPatternsRequest,
    InstanceExceptionResponse,
    InstanceModifyRequest,
    ItemFailureResponse,
    LearnPatternRequest,
    ProjectedInstanceListResponse,
    ProjectedInstanceResponse,
    RealizeBatchRequest,
    RealizeBatchResponse,
    RealizeRequest,
    RealizeResponse,
    RecurringSeriesCreate,
    RecurringSeriesListResponse,
    RecurringSeriesResponse,
    SkipNextResponse,
    TransactionResponse,
)
from budget_engine.services import auto_realize, realization, recurring
from budget_engine.services.app_settings import load_engine_settings
from budget_engine.services.errors import EngineError
from budget_engine.services.projection import get_projected_instances
from budget_engine.utils.exceptions import raise_for_engine_error

router = APIRouter(prefix="/recurring", tags=["recurring"])
logger = get_logger(__name__)


async def _series_response(db: DbSession, series: RecurringSeries) -> RecurringSeriesResponse:
    await db.refresh(series)
    return RecurringSeriesResponse.model_validate(series)


@router.post("/series", response_model=RecurringSeriesResponse, status_code=status.HTTP_201_CREATED)
async def create_series(payload: RecurringSeriesCreate, db: DbSession) -> RecurringSeriesResponse:
    """Create a recurring transaction or transfer series."""
    try:
        series = await recurring.create_series(db, payload)
    except EngineError as exc:
        raise_for_engine_error(exc)
    await db.commit()
    return await _series_response(db, series)


@router.get("/series", response_model=RecurringSeriesListResponse)
async def list_series(
    db: DbSession,
    account_id: UUID | None = None,
    is_active: bool | None = None,
) -> RecurringSeriesListResponse:
    series_list = await recurring.list_series(db, account_id=account_id, is_active=is_active)
    items = [RecurringSeriesResponse.model_validate(series) for series in series_list]
    return RecurringSeriesListResponse(items=items, total=len(items))


@router.get("/series/{series_id}", response_model=RecurringSeriesResponse)
async def get_series(series_id: UUID, db: DbSession) -> RecurringSeriesResponse:
    try:
        series = await recurring.get_series(db, series_id)
    except EngineError as exc:
        logger.debug("Series not found", series_id=str(series_id))
        raise_for_engine_error(exc)
    return RecurringSeriesResponse.model_validate(series)


@router.post("/series/{series_id}/pause", response_model=RecurringSeriesResponse)
async def pause_series(series_id: UUID, db: DbSession) -> RecurringSeriesResponse:
    try:
        series = await recurring.pause_series(db, series_id)
    except EngineError as exc:
        raise_for_engine_error(exc)
    await db.commit()
    return await _series_response(db, series)


@router.post("/series/{series_id}/resume", response_model=RecurringSeriesResponse)
async def resume_series(series_id: UUID, db: DbSession) -> RecurringSeriesResponse:
    try:
        series = await recurring.resume_series(db, series_id)
    except EngineError as exc:
        raise_for_engine_error(exc)
    await db.commit()
    return await _series_response(db, series)


@router.post("/series/{series_id}/skip-next", response_model=SkipNextResponse)
async def skip_next(series_id: UUID, db: DbSession) -> SkipNextResponse:
    """Skip the occurrence at the series cursor and advance it."""
    try:
        skipped, series = await recurring.skip_next(db, series_id)
    except EngineError as exc:
        raise_for_engine_error(exc)
    await db.commit()
    return SkipNextResponse(skipped_date=skipped, series=await _series_response(db, series))


@router.put("/series/{series_id}/import-patterns", response_model=RecurringSeriesResponse)
async def update_import_patterns(
    series_id: UUID,
    payload: ImportPatternsRequest,
    db: DbSession,
) -> RecurringSeriesResponse:
    try:
        series = await recurring.update_import_patterns(db, series_id, payload.patterns)
    except EngineError as exc:
        raise_for_engine_error(exc)
    await db.commit()
    return await _series_response(db, series)


@router.post("/series/{series_id}/import-patterns/learn", response_model=RecurringSeriesResponse)
async def learn_import_pattern(
    series_id: UUID,
    payload: LearnPatternRequest,
    db: DbSession,
) -> RecurringSeriesResponse:
    try:
        series = await recurring.learn_import_pattern(db, series_id, payload.description)
    except EngineError as exc:
        raise_for_engine_error(exc)
    await db.commit()
    return await _series_response(db, series)


@router.get("/instances", response_model=ProjectedInstanceListResponse)
async def list_instances(
    db: DbSession,
    date_from: date = Query(..., alias="from"),
    date_to: date = Query(..., alias="to"),
    account_id: UUID | None = None,
    include_skipped: bool = False,
) -> ProjectedInstanceListResponse:
    """Projected instances of active series, ordered by effective date."""
    try:
        instances = await get_projected_instances(
            db,
            date_from,
            date_to,
            account_id=account_id,
            include_skipped=include_skipped,
        )
    except EngineError as exc:
        raise_for_engine_error(exc)
    items = [ProjectedInstanceResponse.model_validate(instance) for instance in instances]
    return ProjectedInstanceListResponse(items=items, total=len(items))


@router.put(
    "/series/{series_id}/instances/{instance_date}",
    response_model=InstanceExceptionResponse,
)
async def modify_instance(
    series_id: UUID,
    instance_date: date,
    payload: InstanceModifyRequest,
    db: DbSession,
) -> InstanceExceptionResponse:
    try:
        exception = await recurring.modify_instance(
            db,
            series_id,
            instance_date,
            amount=payload.amount,
            description=payload.description,
            effective_date=payload.effective_date,
        )
    except EngineError as exc:
        raise_for_engine_error(exc)
    await db.commit()
    await db.refresh(exception)
    return InstanceExceptionResponse.model_validate(exception)


@router.post(
    "/series/{series_id}/instances/{instance_date}/skip",
    response_model=InstanceExceptionResponse,
)
async def skip_instance(series_id: UUID, instance_date: date, db: DbSession) -> InstanceExceptionResponse:
    try:
        exception = await recurring.skip_instance(db, series_id, instance_date)
    except EngineError as exc:
        raise_for_engine_error(exc)
    await db.commit()
    await db.refresh(exception)
    return InstanceExceptionResponse.model_validate(exception)


@router.delete(
    "/series/{series_id}/instances/{instance_date}/exception",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def restore_instance(series_id: UUID, instance_date: date, db: DbSession) -> None:
    try:
        await recurring.restore_instance(db, series_id, instance_date)
    except EngineError as exc:
        raise_for_engine_error(exc)
    await db.commit()


@router.post(
    "/series/{series_id}/instances/{instance_date}/realize",
    response_model=RealizeResponse,
    status_code=status.HTTP_201_CREATED,
)
async def realize_instance(
    series_id: UUID,
    instance_date: date,
    db: DbSession,
    payload: RealizeRequest | None = None,
) -> RealizeResponse:
    """Persist the transaction (or both transfer legs) for one instance."""
    overrides = None
    if payload is not None:
        overrides = realization.RealizationOverrides(
            amount=payload.amount,
            description=payload.description,
            txn_date=payload.txn_date,
        )
    try:
        transactions = await realization.realize_instance(db, series_id, instance_date, overrides)
    except EngineError as exc:
        raise_for_engine_error(exc)
    await db.commit()
    return RealizeResponse(
        series_id=series_id,
        instance_date=instance_date,
        transactions=[TransactionResponse.model_validate(txn) for txn in transactions],
    )


@router.post("/realize-batch", response_model=RealizeBatchResponse)
async def realize_batch(payload: RealizeBatchRequest, db: DbSession) -> RealizeBatchResponse:
    requests = [
        realization.RealizeRequest(
            series_id=item.series_id,
            instance_date=item.instance_date,
            overrides=realization.RealizationOverrides(
                amount=item.amount,
                description=item.description,
                txn_date=item.txn_date,
            ),
        )
        for item in payload.items
    ]
    result = await realization.realize_batch(db, requests)
    await db.commit()
    return RealizeBatchResponse(
        realized=[
            RealizeResponse(
                series_id=item.series_id,
                instance_date=item.instance_date,
                transactions=[TransactionResponse.model_validate(txn) for txn in item.transactions],
            )
            for item in result.realized
        ],
        failures=[ItemFailureResponse.model_validate(failure) for failure in result.failures],
        cancelled=result.cancelled,
    )


@router.post("/auto-realize/run", response_model=AutoRealizeRunResponse)
async def run_auto_realize(payload: AutoRealizeRunRequest, db: DbSession) -> AutoRealizeRunResponse:
    """Realize past-due occurrences if the settings store enables it."""
    engine_settings = await load_engine_settings(db)
    result = await auto_realize.run_if_enabled(
        db,
        payload.today or date.today(),
        settings=auto_realize.AutoRealizeSettings.from_engine_settings(engine_settings),
        account_id=payload.account_id,
    )
    await db.commit()
    return AutoRealizeRunResponse.model_validate(result)
