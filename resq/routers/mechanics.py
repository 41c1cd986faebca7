import asyncio
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket
from fastapi.concurrency import run_in_threadpool

from .. import schemas
from ..auth import Identity, require_staff
from ..errors import FeatureDisabled, ValidationError
from ..matcher import MAX_DISTANCE_MILES, MechanicFilter, all_specialties, filter_mechanics, select_mechanic
from ..services import Services, get_services
from ..streaming import pump, queue_callback

router = APIRouter(prefix="/mechanics", tags=["Mechanics"])


def mechanic_filter(
    status: str = "all",
    specialty: List[str] = Query(default=[]),
    min_rating: float = 0.0,
    max_distance: float = MAX_DISTANCE_MILES,
    services: Services = Depends(get_services),
) -> MechanicFilter:
    try:
        return MechanicFilter(
            status=status,
            specialties=frozenset(specialty),
            min_rating=min_rating,
            max_distance=max_distance,
        )
    except ValidationError as e:
        services.analytics.emit("Map", "Filter Error", e.field)
        raise


def origin(
    lon: Optional[float] = Query(None, ge=-180, le=180),
    lat: Optional[float] = Query(None, ge=-90, le=90),
):
    if lon is None or lat is None:
        return None
    return (lon, lat)


@router.get("/", response_model=List[schemas.MechanicCandidate])
def list_mechanics(
    criteria: MechanicFilter = Depends(mechanic_filter),
    user_location=Depends(origin),
    services: Services = Depends(get_services),
):
    if not services.features.feature_enabled("mechanic-list"):
        raise FeatureDisabled("Mechanic list is disabled")
    if not criteria.is_default():
        services.analytics.emit("Map", "Apply Filters", "Mechanic Filters")
    return filter_mechanics(services.store.list_mechanics(), criteria, user_location)


@router.get("/specialties", response_model=List[str])
def list_specialties(services: Services = Depends(get_services)):
    return all_specialties(services.store.list_mechanics())


@router.post("/{mechanic_id}/select", response_model=schemas.MechanicOut)
def choose_mechanic(mechanic_id: str, services: Services = Depends(get_services)):
    mechanic = select_mechanic(services.store.list_mechanics(), mechanic_id)
    services.analytics.emit("Map", "Select Mechanic", mechanic.name)
    return mechanic


@router.post("/{mechanic_id}/location", response_model=schemas.MechanicOut)
def update_location(
    mechanic_id: str,
    body: schemas.LocationUpdate,
    _: Identity = Depends(require_staff),
    services: Services = Depends(get_services),
):
    return services.sequencer.publish_location(mechanic_id, body.coordinates)


@router.patch("/{mechanic_id}/status", response_model=schemas.MechanicOut)
def update_availability(
    mechanic_id: str,
    body: schemas.MechanicStatusUpdate,
    identity: Identity = Depends(require_staff),
    services: Services = Depends(get_services),
):
    if not identity.is_admin and identity.user_id != mechanic_id:
        raise HTTPException(status_code=403, detail="Mechanics can only change their own availability")
    return services.sequencer.set_mechanic_status(mechanic_id, body.status)


# ────────────────────────────── LIVE LOCATIONS ──────────────────────────────

@router.websocket("/locations")
async def location_feed(websocket: WebSocket, mechanic_id: List[str] = Query(default=[])):
    services: Services = websocket.app.state.services
    await websocket.accept()
    if not services.features.feature_enabled("real-time-tracking"):
        await websocket.send_json({"error": FeatureDisabled.kind, "detail": "Real-time tracking is disabled"})
        await websocket.close(code=1013)
        return

    queue: asyncio.Queue = asyncio.Queue()
    subscription = await run_in_threadpool(services.sequencer.subscribe_locations, mechanic_id, queue_callback(queue))
    try:
        await pump(websocket, queue)
        logging.info("Client left mechanic location feed")
    finally:
        subscription.unsubscribe()
