from fastapi import APIRouter, HTTPException, Depends, Header, Query
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import datetime
import logging

from acfleet.database import get_db
from acfleet.schemas.event import EventCreate, EventUpdate, EventResponse, OperationResponse
from acfleet.services import event_store
from acfleet.services.actors import Actor
from acfleet.services.directory import resolve_actor
from acfleet.services.errors import EventError
from acfleet.services.event_service import EventService, OperationResult, event_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/events", tags=["events"])


def get_event_service() -> EventService:
    return event_service


def get_actor(
    x_actor_role: str = Header(..., description="tenant or sub-tenant"),
    x_actor_id: int = Header(...),
    db: Session = Depends(get_db),
) -> Actor:
    try:
        return resolve_actor(db, x_actor_role, x_actor_id)
    except EventError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


def _respond(result: OperationResult) -> OperationResponse:
    return OperationResponse(
        success=result.success,
        message=result.message,
        event=EventResponse.model_validate(result.event) if result.event is not None else None,
        data=result.data,
        warnings=result.warnings,
    )


async def _run(operation, *args) -> OperationResponse:
    try:
        result = await operation(*args)
    except EventError as e:
        logger.info(f"{operation.__name__} rejected: {e}")
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return _respond(result)


@router.post("/", response_model=OperationResponse, status_code=201)
async def create_event(
    draft: EventCreate,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
    service: EventService = Depends(get_event_service),
):
    """Create an event; one-off events start immediately"""
    return await _run(service.create_event, db, actor, draft)

@router.get("/", response_model=List[EventResponse])
async def list_events(
    status: Optional[str] = None,
    device_id: Optional[int] = None,
    window_start: Optional[datetime] = Query(None, alias="from"),
    window_end: Optional[datetime] = Query(None, alias="to"),
    include_instances: bool = True,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    return event_store.events_for_actor(
        db, actor,
        status=status,
        device_id=device_id,
        window_start=window_start,
        window_end=window_end,
        include_instances=include_instances,
    )

@router.get("/{event_id}", response_model=EventResponse)
async def get_event(event_id: int, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    event = event_store.get_event(db, event_id)
    if not event or not actor.can_manage(event):
        raise HTTPException(status_code=404, detail=f"Event {event_id} not found")
    return event

@router.put("/{event_id}", response_model=OperationResponse)
async def update_event(
    event_id: int,
    changes: EventUpdate,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
    service: EventService = Depends(get_event_service),
):
    return await _run(service.update_event, db, actor, event_id, changes)

@router.delete("/{event_id}", response_model=OperationResponse)
async def delete_event(
    event_id: int,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
    service: EventService = Depends(get_event_service),
):
    return await _run(service.delete_event, db, actor, event_id)

@router.post("/{event_id}/start", response_model=OperationResponse)
async def start_event(
    event_id: int,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
    service: EventService = Depends(get_event_service),
):
    return await _run(service.start_event, db, actor, event_id)

@router.post("/{event_id}/stop", response_model=OperationResponse)
async def stop_event(
    event_id: int,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
    service: EventService = Depends(get_event_service),
):
    return await _run(service.stop_event, db, actor, event_id)

@router.post("/{event_id}/disable", response_model=OperationResponse)
async def disable_event(
    event_id: int,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
    service: EventService = Depends(get_event_service),
):
    return await _run(service.disable_event, db, actor, event_id)

@router.post("/{event_id}/enable", response_model=OperationResponse)
async def enable_event(
    event_id: int,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
    service: EventService = Depends(get_event_service),
):
    """Resume a disabled event; the end time moves by the time spent disabled"""
    return await _run(service.enable_event, db, actor, event_id)
