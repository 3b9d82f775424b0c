"""Engine settings router."""

from fastapi import APIRouter

from budget_engine.deps import DbSession
from budget_engine.logger import get_logger
from budget_engine.schemas import EngineSettingsResponse, EngineSettingsUpdate
from budget_engine.services.app_settings import load_engine_settings, update_engine_settings
from budget_engine.services.errors import EngineError
from budget_engine.utils.exceptions import raise_for_engine_error

router = APIRouter(prefix="/settings", tags=["settings"])
logger = get_logger(__name__)


@router.get("/auto-realize", response_model=EngineSettingsResponse)
async def get_engine_settings(db: DbSession) -> EngineSettingsResponse:
    return EngineSettingsResponse.model_validate(await load_engine_settings(db))


@router.put("/auto-realize", response_model=EngineSettingsResponse)
async def put_engine_settings(payload: EngineSettingsUpdate, db: DbSession) -> EngineSettingsResponse:
    """Update auto-realization and the default reconciliation profile."""
    try:
        updated = await update_engine_settings(
            db,
            auto_realize_past_due_items=payload.auto_realize_past_due_items,
            past_due_lookback_days=payload.past_due_lookback_days,
            reconciliation_profile=payload.reconciliation_profile,
        )
    except EngineError as exc:
        raise_for_engine_error(exc)
    await db.commit()
    logger.info(
        "Engine settings updated",
        auto_realize=updated.auto_realize_past_due_items,
        lookback_days=updated.past_due_lookback_days,
        profile=updated.reconciliation_profile,
    )
    return EngineSettingsResponse.model_validate(updated)
