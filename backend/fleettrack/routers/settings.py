from fastapi import APIRouter, Depends
import logging

from fleettrack.db.store import SETTINGS, DocumentStore
from fleettrack.deps import get_store
from fleettrack.schemas.trip import FleetSettings, FleetSettingsPatch
from fleettrack.services.presence import now_ms

router = APIRouter()
logger = logging.getLogger(__name__)

FLEET = "fleet"


@router.get("/settings/fleet", response_model=FleetSettings)
async def get_fleet_settings(store: DocumentStore = Depends(get_store)):
    doc = await store.get(SETTINGS, FLEET)
    return FleetSettings.model_validate(doc) if doc else FleetSettings()


@router.put("/settings/fleet", response_model=FleetSettings)
async def set_fleet_settings(body: FleetSettingsPatch, store: DocumentStore = Depends(get_store)):
    settings = FleetSettings(sync_speed=body.sync_speed, updated_at_ms=now_ms())
    await store.put(SETTINGS, FLEET, settings.model_dump())
    logger.info(f"sync speed set to {settings.sync_speed}")
    return settings
