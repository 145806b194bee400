"""
Materializes today's instances of weekly recurring templates
"""
import logging
from typing import List, Optional
from sqlalchemy.orm import Session

from acfleet.models.event import Event, EventStatus
from acfleet.services import event_store
from acfleet.services import timezone_utils as tz

logger = logging.getLogger(__name__)


def _instance_for_today(db: Session, template: Event, today) -> Optional[Event]:
    if template.recurring_start_date and today < template.recurring_start_date:
        return None
    if template.recurring_end_date and today > template.recurring_end_date:
        return None
    if tz.weekday_index(today) not in (template.days_of_week or []):
        return None

    day_start, day_end = tz.local_day_bounds_utc(today)
    if event_store.instance_between(db, template.id, day_start, day_end):
        return None

    instance = Event(
        name=template.name,
        event_type="device",
        created_by_role=template.created_by_role,
        tenant_id=template.tenant_id,
        sub_tenant_id=template.sub_tenant_id,
        device_id=template.device_id,
        start_time=tz.local_datetime_to_utc(today, template.time_start),
        end_time=tz.local_datetime_to_utc(today, template.time_end),
        temperature=template.temperature,
        power_on=True,
        status=EventStatus.SCHEDULED.value,
        is_recurring=False,
        parent_recurring_event_id=template.id,
    )
    db.add(instance)
    return instance


def materialize_today(db: Session) -> List[Event]:
    """Create today's instance for every template that runs today.

    Idempotent per local day.  A failing template is logged and skipped.
    """
    today = tz.local_today()
    created = []
    for template in event_store.recurring_templates(db):
        try:
            instance = _instance_for_today(db, template, today)
            if instance is None:
                continue
            db.commit()
            created.append(instance)
            logger.info(
                f"Created instance {instance.id} of recurring event {template.id} "
                f"for {today} ({template.time_start}-{template.time_end})"
            )
        except Exception as e:
            db.rollback()
            logger.error(f"Error creating instance for recurring event {template.id}: {e}")
    return created


def retire_expired_templates(db: Session) -> List[int]:
    """Templates whose recurring end date is behind us"""
    today = tz.local_today()
    return [
        template.id
        for template in event_store.recurring_templates(db, include_disabled=True)
        if template.recurring_end_date and template.recurring_end_date < today
    ]
