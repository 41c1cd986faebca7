import asyncio
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket
from fastapi.concurrency import run_in_threadpool

from .. import schemas
from ..auth import Identity, get_identity, require_staff
from ..errors import FeatureDisabled, NotFound
from ..lifecycle import TERMINAL, RequestStatus
from ..services import Services, get_services
from ..streaming import pump, queue_callback
from ..submission import MATCHED_ETA_MINUTES

router = APIRouter(prefix="/requests", tags=["Requests"])


def _check_owner(request: schemas.EmergencyRequestOut, identity: Optional[Identity]) -> None:
    if request.user_id is None:
        return
    if identity is None or (identity.user_id != request.user_id and not identity.is_staff):
        raise HTTPException(status_code=403, detail="This request belongs to another user")


@router.post("/", response_model=schemas.EmergencyRequestOut)
def create_request(
    req: schemas.RequestCreate,
    identity: Optional[Identity] = Depends(get_identity),
    services: Services = Depends(get_services),
):
    if not services.features.feature_enabled("emergency-form"):
        raise FeatureDisabled("Emergency requests are temporarily unavailable")
    return services.flow.submit(req, user_id=identity.user_id if identity else None)


@router.get("/", response_model=List[schemas.EmergencyRequestOut])
def get_requests(
    status: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    _: Identity = Depends(require_staff),
    services: Services = Depends(get_services),
):
    return services.store.list_requests(status=status, limit=limit)


@router.get("/{request_id}", response_model=schemas.EmergencyRequestOut)
def get_request(request_id: str, services: Services = Depends(get_services)):
    return services.store.get_request(request_id)


@router.patch("/{request_id}/status", response_model=schemas.EmergencyRequestOut)
def update_status(
    request_id: str,
    update: schemas.StatusUpdate,
    _: Identity = Depends(require_staff),
    services: Services = Depends(get_services),
):
    return services.sequencer.transition(
        request_id,
        update.status,
        mechanic_id=update.mechanic_id,
        estimated_arrival_minutes=update.estimated_arrival_minutes,
    )


@router.post("/{request_id}/accept", response_model=schemas.EmergencyRequestOut)
def accept_request(
    request_id: str,
    body: Optional[schemas.AcceptIn] = None,
    identity: Identity = Depends(require_staff),
    services: Services = Depends(get_services),
):
    """A mechanic takes a pending request for themselves."""
    if identity.role != "mechanic":
        raise HTTPException(status_code=403, detail="Only mechanics can accept requests")
    return services.sequencer.transition(
        request_id,
        RequestStatus.matched,
        mechanic_id=identity.user_id,
        estimated_arrival_minutes=body.estimated_arrival_minutes if body else MATCHED_ETA_MINUTES,
    )


@router.post("/{request_id}/cancel", response_model=schemas.EmergencyRequestOut)
def cancel_request(
    request_id: str,
    identity: Optional[Identity] = Depends(get_identity),
    services: Services = Depends(get_services),
):
    _check_owner(services.store.get_request(request_id), identity)
    return services.sequencer.cancel(request_id)


@router.post("/{request_id}/review", response_model=schemas.EmergencyRequestOut)
def submit_review(
    request_id: str,
    body: schemas.ReviewIn,
    identity: Optional[Identity] = Depends(get_identity),
    services: Services = Depends(get_services),
):
    _check_owner(services.store.get_request(request_id), identity)
    return services.sequencer.submit_review(request_id, body.rating, body.review)


@router.get("/{request_id}/notifications", response_model=List[schemas.NotificationOut])
def get_notifications(request_id: str, services: Services = Depends(get_services)):
    services.store.get_request(request_id)
    return services.inbox.for_request(request_id)


# ────────────────────────────── LIVE STATUS ──────────────────────────────

@router.websocket("/{request_id}/events")
async def request_events(websocket: WebSocket, request_id: str):
    services: Services = websocket.app.state.services
    await websocket.accept()
    if not services.features.feature_enabled("real-time-tracking"):
        await websocket.send_json({"error": FeatureDisabled.kind, "detail": "Real-time tracking is disabled"})
        await websocket.close(code=1013)
        return

    queue: asyncio.Queue = asyncio.Queue()
    try:
        subscription = await run_in_threadpool(services.sequencer.subscribe, request_id, queue_callback(queue))
    except NotFound as e:
        await websocket.send_json({"error": e.kind, "detail": e.message})
        await websocket.close(code=1008)
        return

    try:
        finished = await pump(websocket, queue, lambda snapshot: snapshot.status in TERMINAL)
        if finished:
            await websocket.close()
        else:
            logging.info("Client left status stream for request %s", request_id)
    finally:
        subscription.unsubscribe()
