"""
Query surface over persisted events.

Functions take the caller's session so that reads and the writes that
depend on them share one transaction.
"""
from datetime import datetime, timedelta
from typing import List, Optional
from sqlalchemy import or_
from sqlalchemy.orm import Session

from acfleet.models.event import Event, EventStatus, LIVE_STATUSES
from acfleet.services.actors import Actor, Role

# One-off events and recurring instances; templates only spawn instances
NOT_TEMPLATE = or_(Event.is_recurring == False, Event.parent_recurring_event_id.isnot(None))


def get_event(db: Session, event_id: int, lock: bool = False) -> Optional[Event]:
    query = db.query(Event).filter(Event.id == event_id)
    if lock:
        query = query.with_for_update()
    return query.first()


def overlapping_events(
    db: Session,
    device_id: int,
    start_time: datetime,
    end_time: datetime,
    role: Role,
    exclude_id: Optional[int] = None,
) -> List[Event]:
    """Non-disabled live events of one role whose [start, end) overlaps the window.

    Recurring templates never conflict; their instances do.
    """
    query = db.query(Event).filter(
        Event.device_id == device_id,
        Event.created_by_role == role.value,
        Event.is_disabled == False,
        Event.status.in_(LIVE_STATUSES),
        NOT_TEMPLATE,
        Event.start_time < end_time,
        Event.end_time > start_time,
    )
    if exclude_id is not None:
        query = query.filter(Event.id != exclude_id)
    return query.with_for_update().all()


def active_events_on_device(db: Session, device_id: int, role: Role) -> List[Event]:
    return db.query(Event).filter(
        Event.device_id == device_id,
        Event.created_by_role == role.value,
        Event.status == EventStatus.ACTIVE.value,
        Event.is_disabled == False,
    ).all()


def events_for_actor(
    db: Session,
    actor: Actor,
    status: Optional[str] = None,
    device_id: Optional[int] = None,
    window_start: Optional[datetime] = None,
    window_end: Optional[datetime] = None,
    include_instances: bool = True,
) -> List[Event]:
    query = db.query(Event).filter(Event.tenant_id == actor.tenant_id)
    if not actor.is_tenant:
        query = query.filter(
            Event.created_by_role == Role.SUB_TENANT.value,
            Event.sub_tenant_id == actor.id,
        )
    if status:
        query = query.filter(Event.status == status)
    if device_id is not None:
        query = query.filter(Event.device_id == device_id)
    if window_start is not None:
        query = query.filter(Event.end_time > window_start)
    if window_end is not None:
        query = query.filter(Event.start_time < window_end)
    if not include_instances:
        query = query.filter(Event.parent_recurring_event_id.is_(None))
    return query.order_by(Event.start_time.asc()).all()


def due_to_start(db: Session, now: datetime, window_seconds: int) -> List[Event]:
    """Scheduled, non-disabled, non-template events whose start fell in the trailing window"""
    return db.query(Event).filter(
        Event.status == EventStatus.SCHEDULED.value,
        Event.is_disabled == False,
        NOT_TEMPLATE,
        Event.start_time >= now - timedelta(seconds=window_seconds),
        Event.start_time <= now,
    ).order_by(Event.start_time.asc()).all()


def due_to_end(db: Session, now: datetime) -> List[Event]:
    return db.query(Event).filter(
        Event.status == EventStatus.ACTIVE.value,
        Event.is_disabled == False,
        Event.end_time <= now,
    ).all()


def disabled_events(db: Session) -> List[Event]:
    return db.query(Event).filter(
        Event.is_disabled == True,
        Event.status.in_(LIVE_STATUSES),
        NOT_TEMPLATE,
    ).all()


def stale_events(db: Session, now: datetime, grace_seconds: int) -> List[Event]:
    """Events left untouched past the grace period.

    Scheduled/active rows only qualify once their end time has passed;
    recurring templates are retired separately.
    """
    cutoff = now - timedelta(seconds=grace_seconds)
    candidates = db.query(Event).filter(
        Event.status.in_(LIVE_STATUSES + (EventStatus.COMPLETED.value,)),
        Event.updated_at <= cutoff,
        NOT_TEMPLATE,
    ).all()
    return [
        event for event in candidates
        if event.status == EventStatus.COMPLETED.value or event.end_time <= now
    ]


def expired_deletions(db: Session, now: datetime) -> List[Event]:
    return db.query(Event).filter(
        Event.delete_after.isnot(None),
        Event.delete_after <= now,
    ).all()


def stray_completed_events(db: Session, now: datetime, grace_seconds: int) -> List[Event]:
    """Completed events whose completion is older than the grace period"""
    cutoff = now - timedelta(seconds=grace_seconds)
    return db.query(Event).filter(
        Event.status == EventStatus.COMPLETED.value,
        or_(Event.completed_at.is_(None), Event.completed_at <= cutoff),
    ).all()


def recurring_templates(db: Session, include_disabled: bool = False) -> List[Event]:
    query = db.query(Event).filter(
        Event.is_recurring == True,
        Event.parent_recurring_event_id.is_(None),
        Event.status.in_(LIVE_STATUSES),
    )
    if not include_disabled:
        query = query.filter(Event.is_disabled == False)
    return query.all()


def instance_between(db: Session, template_id: int, start: datetime, end: datetime) -> Optional[Event]:
    return db.query(Event).filter(
        Event.parent_recurring_event_id == template_id,
        Event.start_time >= start,
        Event.start_time < end,
    ).first()
