"""
Event orchestration: create/start/stop/disable/enable/update/delete.

Every operation runs as one unit of work on the caller's session.  Conflict
checks, status transitions and device record changes are committed first;
device commands and observer broadcasts are sent only after the commit and
never roll it back.  Tenants outrank sub-tenants: a tenant event disables
overlapping sub-tenant events, a sub-tenant event is refused when a tenant
event holds the device.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from acfleet.database import settings
from acfleet.models.device import Device
from acfleet.models.event import Event, EventStatus, LIVE_STATUSES
from acfleet.providers.device_bridge import device_bridge
from acfleet.schemas.event import EventCreate, EventUpdate
from acfleet.services import event_store
from acfleet.services import timezone_utils as tz
from acfleet.services.activity import record_activity
from acfleet.services.actors import Actor, Role
from acfleet.services.commands import CommandBatch
from acfleet.services.directory import get_owned_device
from acfleet.services.errors import (
    AlreadyActive,
    AlreadyDisabled,
    CannotModifyActive,
    DuplicateSubTenantEvent,
    DuplicateTenantEvent,
    EventDisabled,
    InvalidInterval,
    InvalidRecurrence,
    InvalidTemperature,
    InvalidTerminalTransition,
    NoValidOccurrence,
    NotActive,
    NotDisabled,
    NotFound,
    TemplateNotRunnable,
    TenantPriorityConflict,
    ValidationError,
)

logger = logging.getLogger(__name__)

_DUPLICATE_ERRORS = {
    Role.TENANT: DuplicateTenantEvent,
    Role.SUB_TENANT: DuplicateSubTenantEvent,
}


@dataclass
class OperationResult:
    success: bool
    message: str
    event: Optional[Event] = None
    data: Dict[str, Any] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)


def _event_payload(event: Event) -> Dict[str, Any]:
    return {
        "event_id": event.id,
        "event_name": event.name,
        "device_id": event.device_id,
        "serial_number": event.device.serial_number if event.device else None,
        "created_by_role": event.created_by_role,
    }


class EventService:
    def __init__(self, bridge=None):
        self.bridge = bridge or device_bridge

    # Validation

    def _validate_temperature(self, temperature) -> int:
        if temperature is None:
            raise ValidationError("Temperature is required")
        if not settings.min_temperature <= temperature <= settings.max_temperature:
            raise InvalidTemperature(
                f"Temperature must be between {settings.min_temperature} and {settings.max_temperature}"
            )
        return int(temperature)

    def _resolve_window(self, draft: EventCreate):
        """Return (start_time, end_time, recurrence fields) for a draft"""
        if not draft.is_recurring:
            if draft.start_time is None or draft.end_time is None:
                raise ValidationError("Start time and end time are required")
            start_time = tz.ensure_utc(draft.start_time)
            end_time = tz.ensure_utc(draft.end_time)
            if end_time <= start_time:
                raise InvalidInterval("End time must be after start time")
            return start_time, end_time, {}

        if (draft.recurring_type or "weekly") != "weekly":
            raise InvalidRecurrence("Only weekly recurrence is supported")
        if draft.recurring_start_date is None or draft.recurring_end_date is None:
            raise InvalidRecurrence("Recurring events need a start date and an end date")
        if not draft.time_start or not draft.time_end:
            raise InvalidRecurrence("Recurring events need a start time and an end time")
        days = draft.days_of_week or []
        if not days:
            raise InvalidRecurrence("At least one day of week must be selected")
        if any(not isinstance(day, int) or isinstance(day, bool) or not 0 <= day <= 6 for day in days):
            raise InvalidRecurrence("Days of week must be integers between 0 (Sunday) and 6 (Saturday)")
        if draft.recurring_end_date < draft.recurring_start_date:
            raise InvalidRecurrence("Recurring end date must not be before the start date")

        time_start = tz.parse_time_of_day(draft.time_start)
        time_end = tz.parse_time_of_day(draft.time_end)
        if time_end <= time_start:
            raise InvalidInterval("End time must be after start time")

        first = tz.first_occurrence(draft.recurring_start_date, draft.recurring_end_date, days)
        if first is None:
            raise NoValidOccurrence(
                f"No selected weekday falls between {draft.recurring_start_date} and {draft.recurring_end_date}"
            )

        recurrence = {
            "is_recurring": True,
            "recurring_type": "weekly",
            "days_of_week": sorted(set(days)),
            "recurring_start_date": draft.recurring_start_date,
            "recurring_end_date": draft.recurring_end_date,
            "time_start": time_start.strftime("%H:%M:%S"),
            "time_end": time_end.strftime("%H:%M:%S"),
        }
        return tz.local_datetime_to_utc(first, time_start), tz.local_datetime_to_utc(first, time_end), recurrence

    # Shared steps

    def _load(self, db: Session, actor: Actor, event_id: int) -> Event:
        event = event_store.get_event(db, event_id, lock=True)
        if not event or not actor.can_manage(event):
            raise NotFound(f"Event {event_id} not found")
        return event

    def _apply_settings(self, device: Device, event: Event, batch: CommandBatch, changed_by: str, now: datetime):
        """Turn the device on at the event temperature and queue the matching commands"""
        device.is_on = True
        device.temperature = event.temperature
        device.last_temperature_change = now
        device.last_power_change_at = now
        device.last_power_change_by = changed_by
        device.changed_by = changed_by
        batch.temperature_sync(device.serial_number, event.temperature)
        batch.power(device.serial_number, True)

    def _power_off(self, device: Device, batch: CommandBatch, changed_by: str, now: datetime):
        device.is_on = False
        device.last_power_change_at = now
        device.last_power_change_by = changed_by
        batch.power(device.serial_number, False)

    def _disable(self, event: Event, batch: CommandBatch, now: datetime, changed_by: str):
        if event.original_end_time is None:
            event.original_end_time = event.end_time
        event.is_disabled = True
        event.disabled_at = now
        if event.status == EventStatus.ACTIVE.value:
            self._power_off(event.device, batch, changed_by, now)
            batch.status(event.device.serial_number, "disable", {
                "event_id": event.id, "event_name": event.name,
            })

    def _arbitrate(
        self,
        db: Session,
        role: Role,
        device: Device,
        start_time: datetime,
        end_time: datetime,
        batch: CommandBatch,
        now: datetime,
        exclude_id: Optional[int] = None,
    ) -> List[int]:
        """Apply role precedence against overlapping events on the device.

        Same role: refused as a duplicate.  Higher precedence: refused.
        Lower precedence: disabled.  Returns the ids that were disabled.
        """
        disabled = []
        for other_role in Role:
            overlapping = event_store.overlapping_events(
                db, device.id, start_time, end_time, other_role, exclude_id=exclude_id
            )
            if not overlapping:
                continue
            if other_role is role:
                raise _DUPLICATE_ERRORS[role](
                    f"Event '{overlapping[0].name}' already overlaps this window on the device"
                )
            if role.precedence < other_role.precedence:
                raise TenantPriorityConflict(
                    f"Tenant event '{overlapping[0].name}' takes precedence on this device"
                )
            for other in overlapping:
                self._disable(other, batch, now, role.value)
                disabled.append(other.id)
                logger.info(f"Event {other.id} disabled by overlapping {role.value} event")
        return disabled

    # Operations

    async def create_event(self, db: Session, actor: Actor, draft: EventCreate) -> OperationResult:
        now = tz.now_utc()
        batch = CommandBatch(self.bridge)
        try:
            if not draft.name or not draft.name.strip():
                raise ValidationError("Event name is required")
            if draft.device_id is None:
                raise ValidationError("Device is required")
            temperature = self._validate_temperature(draft.temperature)
            start_time, end_time, recurrence = self._resolve_window(draft)
            device = get_owned_device(db, actor, draft.device_id)

            disabled_ids = self._arbitrate(db, actor.role, device, start_time, end_time, batch, now)

            device.temperature = temperature
            device.last_temperature_change = now
            device.changed_by = actor.role.value

            event = Event(
                name=draft.name.strip(),
                event_type="device",
                created_by_role=actor.role.value,
                tenant_id=actor.tenant_id,
                sub_tenant_id=actor.sub_tenant_id,
                device_id=device.id,
                start_time=start_time,
                end_time=end_time,
                temperature=temperature,
                power_on=True,
                status=EventStatus.SCHEDULED.value,
                **recurrence,
            )
            db.add(event)
            db.flush()

            start_now = not event.is_recurring
            if start_now:
                event.status = EventStatus.ACTIVE.value
                event.started_at = now
                self._apply_settings(device, event, batch, actor.role.value, now)
            else:
                batch.temperature_sync(device.serial_number, temperature)

            record_activity(db, actor, "CREATE_AND_START_EVENT" if start_now else "CREATE_EVENT", event.id, {
                "event_id": event.id,
                "event_name": event.name,
                "start_time": start_time.isoformat(),
                "end_time": end_time.isoformat(),
                "started_immediately": start_now,
                "disabled_sub_tenant_events_count": len(disabled_ids),
                "disabled_sub_tenant_event_ids": disabled_ids,
            })
            db.commit()
        except Exception:
            db.rollback()
            raise

        payload = _event_payload(event)
        batch.status(device.serial_number, "event created" if start_now else "event temp", {
            "event_id": event.id, "event_name": event.name, "temperature": event.temperature,
        })
        batch.broadcast({"type": "EVENT_STARTED" if start_now else "EVENT_CREATED", **payload})
        warnings = await batch.flush()

        logger.info(f"Event {event.id} '{event.name}' created by {actor} (started={start_now})")
        message = "Event created and started" if start_now else "Event created"
        if disabled_ids:
            message += f"; {len(disabled_ids)} overlapping sub-tenant event(s) disabled"
        return OperationResult(
            success=True,
            message=message,
            event=event,
            data={"started_immediately": start_now, "disabled_event_ids": disabled_ids},
            warnings=warnings,
        )

    async def start_event(self, db: Session, actor: Actor, event_id: int) -> OperationResult:
        now = tz.now_utc()
        batch = CommandBatch(self.bridge)
        try:
            event = self._load(db, actor, event_id)
            if event.is_template:
                raise TemplateNotRunnable()
            if event.is_disabled:
                raise EventDisabled("Cannot start a disabled event")
            if event.status == EventStatus.ACTIVE.value:
                raise AlreadyActive()
            if event.status in (EventStatus.COMPLETED.value, EventStatus.CANCELLED.value):
                raise InvalidTerminalTransition(f"Cannot start a {event.status} event")

            role = Role(event.created_by_role)
            owner = Actor.owner_of(event)
            for other_role in Role:
                if owner.yields_to(other_role) and event_store.active_events_on_device(db, event.device_id, other_role):
                    raise TenantPriorityConflict("A tenant event is already running on this device")
            disabled_ids = []
            for other_role in Role:
                if owner.outranks(other_role):
                    for other in event_store.overlapping_events(
                        db, event.device_id, event.start_time, event.end_time, other_role
                    ):
                        self._disable(other, batch, now, role.value)
                        disabled_ids.append(other.id)

            event.status = EventStatus.ACTIVE.value
            event.started_at = now
            event.delete_after = None
            self._apply_settings(event.device, event, batch, role.value, now)
            record_activity(db, actor, "START_EVENT", event.id, {
                "event_id": event.id,
                "event_name": event.name,
                "disabled_sub_tenant_event_ids": disabled_ids,
            })
            db.commit()
        except Exception:
            db.rollback()
            raise

        payload = _event_payload(event)
        batch.status(payload["serial_number"], "event temp", {
            "event_id": event.id, "event_name": event.name, "temperature": event.temperature,
        })
        batch.broadcast({"type": "EVENT_STARTED", **payload})
        warnings = await batch.flush()
        logger.info(f"Event {event.id} started by {actor}")
        return OperationResult(True, "Event started", event=event,
                               data={"disabled_event_ids": disabled_ids}, warnings=warnings)

    async def stop_event(self, db: Session, actor: Actor, event_id: int) -> OperationResult:
        now = tz.now_utc()
        batch = CommandBatch(self.bridge)
        try:
            event = self._load(db, actor, event_id)
            if event.status != EventStatus.ACTIVE.value:
                raise NotActive("Only active events can be stopped")

            self._power_off(event.device, batch, actor.role.value, now)
            event.status = EventStatus.STOPPED.value
            event.stopped_at = now
            event.delete_after = now + timedelta(seconds=settings.deletion_grace_seconds)
            record_activity(db, actor, "STOP_EVENT", event.id, {
                "event_id": event.id, "event_name": event.name,
            })
            db.commit()
        except Exception:
            db.rollback()
            raise

        payload = _event_payload(event)
        batch.status(payload["serial_number"], "event stop", {
            "event_id": event.id, "event_name": event.name,
        })
        batch.broadcast({"type": "EVENT_STOPPED", **payload})
        warnings = await batch.flush()
        logger.info(f"Event {event.id} stopped by {actor}")
        return OperationResult(True, "Event stopped", event=event, warnings=warnings)

    async def disable_event(self, db: Session, actor: Actor, event_id: int) -> OperationResult:
        now = tz.now_utc()
        batch = CommandBatch(self.bridge)
        try:
            event = self._load(db, actor, event_id)
            if event.is_disabled:
                raise AlreadyDisabled()
            if event.status not in LIVE_STATUSES:
                raise InvalidTerminalTransition(f"Cannot disable a {event.status} event")

            was_active = event.status == EventStatus.ACTIVE.value
            self._disable(event, batch, now, actor.role.value)
            record_activity(db, actor, "DISABLE_EVENT", event.id, {
                "event_id": event.id,
                "event_name": event.name,
                "was_active": was_active,
                "original_end_time": event.original_end_time.isoformat(),
            })
            db.commit()
        except Exception:
            db.rollback()
            raise

        batch.broadcast({"type": "EVENT_DISABLED", **_event_payload(event)})
        warnings = await batch.flush()
        logger.info(f"Event {event.id} disabled by {actor}")
        return OperationResult(True, "Event disabled", event=event, warnings=warnings)

    async def enable_event(self, db: Session, actor: Actor, event_id: int) -> OperationResult:
        now = tz.now_utc()
        batch = CommandBatch(self.bridge)
        try:
            event = self._load(db, actor, event_id)
            if not event.is_disabled:
                raise NotDisabled()

            if not event.is_template and now >= event.effective_end_time:
                payload = _event_payload(event)
                event.status = EventStatus.COMPLETED.value
                event.completed_at = now
                db.delete(event)
                db.commit()
                batch.broadcast({"type": "EVENT_DELETED", **payload})
                warnings = await batch.flush()
                logger.info(f"Event {payload['event_id']} expired while disabled, removed on enable")
                return OperationResult(
                    False,
                    "Event end time has already passed; the event was completed and removed",
                    data=payload,
                    warnings=warnings,
                )

            owner = Actor.owner_of(event)
            if event.status == EventStatus.ACTIVE.value:
                for other_role in Role:
                    if owner.yields_to(other_role) and event_store.active_events_on_device(db, event.device_id, other_role):
                        raise TenantPriorityConflict("A tenant event is running on this device")

            # A paused series resumes as is; only one-off windows are extended
            if event.is_template or not event.disabled_at:
                disabled_for = timedelta(0)
            else:
                disabled_for = now - event.disabled_at
            disabled_ms = int(disabled_for.total_seconds() * 1000)
            event.end_time = event.end_time + disabled_for
            event.total_disabled_duration = (event.total_disabled_duration or 0) + disabled_ms
            event.is_disabled = False
            event.disabled_at = None

            reactivated = event.status == EventStatus.ACTIVE.value
            if reactivated:
                self._apply_settings(event.device, event, batch, actor.role.value, now)
                batch.status(event.device.serial_number, "enable", {
                    "event_id": event.id, "event_name": event.name, "temperature": event.temperature,
                })

            record_activity(db, actor, "ENABLE_EVENT", event.id, {
                "event_id": event.id,
                "event_name": event.name,
                "disabled_duration_ms": disabled_ms,
                "new_end_time": event.end_time.isoformat(),
            })
            db.commit()
        except Exception:
            db.rollback()
            raise

        batch.broadcast({"type": "EVENT_ENABLED", **_event_payload(event)})
        warnings = await batch.flush()
        minutes = round(disabled_ms / 60000)
        logger.info(f"Event {event.id} enabled by {actor}, extended by {disabled_ms} ms")
        return OperationResult(
            True,
            f"Event enabled; end time extended by {minutes} minute(s)",
            event=event,
            data={"disabled_duration_ms": disabled_ms, "reactivated": reactivated},
            warnings=warnings,
        )

    async def update_event(self, db: Session, actor: Actor, event_id: int, changes: EventUpdate) -> OperationResult:
        batch = CommandBatch(self.bridge)
        try:
            event = self._load(db, actor, event_id)
            if event.status == EventStatus.ACTIVE.value:
                raise CannotModifyActive("Cannot update an active event")

            updates = changes.model_dump(exclude_unset=True)
            if "name" in updates and (not updates["name"] or not updates["name"].strip()):
                raise ValidationError("Event name is required")
            if "temperature" in updates:
                updates["temperature"] = self._validate_temperature(updates["temperature"])
            for key in ("start_time", "end_time"):
                if updates.get(key) is not None:
                    updates[key] = tz.ensure_utc(updates[key])
                elif key in updates:
                    raise ValidationError(f"{key} cannot be empty")

            new_start = updates.get("start_time", event.start_time)
            new_end = updates.get("end_time", event.end_time)
            if new_end <= new_start:
                raise InvalidInterval("End time must be after start time")

            recorded = {}
            for key, value in updates.items():
                old = getattr(event, key)
                if old != value:
                    recorded[key] = {
                        "old": old.isoformat() if isinstance(old, datetime) else old,
                        "new": value.isoformat() if isinstance(value, datetime) else value,
                    }
                    setattr(event, key, value)
            event.power_on = True
            if "end_time" in recorded:
                event.original_end_time = event.end_time if event.is_disabled else None

            record_activity(db, actor, "UPDATE_EVENT", event.id, {
                "event_id": event.id,
                "event_name": event.name,
                "changes": recorded,
                "changed_fields": list(recorded.keys()),
            })
            db.commit()
        except Exception:
            db.rollback()
            raise

        batch.broadcast({"type": "EVENT_UPDATED", **_event_payload(event), "changed_fields": list(recorded.keys())})
        warnings = await batch.flush()
        return OperationResult(True, "Event updated", event=event,
                               data={"changed_fields": list(recorded.keys())}, warnings=warnings)

    async def delete_event(self, db: Session, actor: Actor, event_id: int) -> OperationResult:
        batch = CommandBatch(self.bridge)
        try:
            event = self._load(db, actor, event_id)
            if event.status == EventStatus.ACTIVE.value:
                raise CannotModifyActive("Cannot delete an active event")
            payload = _event_payload(event)
            record_activity(db, actor, "DELETE_EVENT", event.id, {
                "event_id": event.id, "event_name": event.name,
            })
            db.delete(event)
            db.commit()
        except Exception:
            db.rollback()
            raise

        batch.broadcast({"type": "EVENT_DELETED", **payload})
        warnings = await batch.flush()
        logger.info(f"Event {payload['event_id']} deleted by {actor}")
        return OperationResult(True, "Event deleted", data=payload, warnings=warnings)

    # Scheduler transitions

    async def complete_event(self, db: Session, event_id: int, now: datetime) -> bool:
        """End an active event whose end time has passed"""
        batch = CommandBatch(self.bridge)
        try:
            event = event_store.get_event(db, event_id, lock=True)
            if (not event or event.status != EventStatus.ACTIVE.value
                    or event.is_disabled or event.end_time > now):
                db.rollback()
                return False

            device = event.device
            if (event.temperature is not None
                    and settings.min_temperature <= event.temperature <= settings.max_temperature
                    and device.temperature != event.temperature):
                device.temperature = event.temperature
                device.last_temperature_change = now
                batch.temperature_sync(device.serial_number, event.temperature)
            self._power_off(device, batch, "scheduler", now)

            event.status = EventStatus.COMPLETED.value
            event.completed_at = now
            event.delete_after = now + timedelta(seconds=settings.deletion_grace_seconds)
            db.commit()
        except Exception:
            db.rollback()
            raise

        payload = _event_payload(event)
        batch.status(payload["serial_number"], "event end", {
            "event_id": event.id, "event_name": event.name, "temperature": event.temperature,
        })
        batch.broadcast({"type": "EVENT_COMPLETED", **payload})
        await batch.flush()
        logger.info(f"Event {event.id} '{event.name}' completed")
        return True

    async def expire_disabled_event(self, db: Session, event_id: int, now: datetime) -> bool:
        """Complete and remove a disabled event whose original deadline passed"""
        batch = CommandBatch(self.bridge)
        try:
            event = event_store.get_event(db, event_id, lock=True)
            if (not event or not event.is_disabled or event.status not in LIVE_STATUSES
                    or event.is_template or event.effective_end_time > now):
                db.rollback()
                return False

            if event.status == EventStatus.ACTIVE.value and event.device.is_on:
                self._power_off(event.device, batch, "scheduler", now)
            payload = _event_payload(event)
            event.status = EventStatus.COMPLETED.value
            event.completed_at = now
            db.delete(event)
            db.commit()
        except Exception:
            db.rollback()
            raise

        batch.broadcast({"type": "EVENT_DELETED", **payload})
        await batch.flush()
        logger.info(f"Disabled event {payload['event_id']} passed its end time and was removed")
        return True

    async def purge_event(self, db: Session, event_id: int, reason: str) -> bool:
        batch = CommandBatch(self.bridge)
        try:
            event = event_store.get_event(db, event_id, lock=True)
            if not event:
                db.rollback()
                return False
            payload = _event_payload(event)
            db.delete(event)
            db.commit()
        except Exception:
            db.rollback()
            raise

        batch.broadcast({"type": "EVENT_DELETED", **payload})
        await batch.flush()
        logger.info(f"Event {payload['event_id']} removed ({reason})")
        return True


event_service = EventService()
