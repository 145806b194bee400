"""
Event lifecycle scheduler
"""
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from datetime import datetime
from typing import Callable, Optional
import asyncio
import logging

from acfleet.database import SessionLocal, settings
from acfleet.services import event_store
from acfleet.services import timezone_utils as tz
from acfleet.services.actors import Actor
from acfleet.services.errors import EventError
from acfleet.services.event_service import EventService, event_service
from acfleet.services.recurring import materialize_today, retire_expired_templates

logger = logging.getLogger(__name__)
scheduler = AsyncIOScheduler()


class EventScheduler:
    """Single-flight tick driving events through their lifecycle.

    Each phase re-reads the database; nothing about events is cached
    between phases.  A tick that finds the previous one still running
    returns without touching the store.
    """

    def __init__(self, service: Optional[EventService] = None, session_factory: Callable = SessionLocal):
        self.service = service or event_service
        self.session_factory = session_factory
        self._tick_lock = asyncio.Lock()

    @property
    def in_flight(self) -> bool:
        return self._tick_lock.locked()

    async def tick(self, now: Optional[datetime] = None) -> bool:
        if self._tick_lock.locked():
            logger.debug("Previous scheduler tick still running, skipping")
            return False

        async with self._tick_lock:
            now = now or tz.now_utc()
            db = self.session_factory()
            try:
                await self.start_due_events(db, now)
                await self.end_due_events(db, now)
                await self.cleanup(db, now)
                if now.second == 0:
                    await self.minute_work(db, now)
            except Exception as e:
                logger.exception(f"Error in scheduler tick: {e}")
            finally:
                db.close()
        return True

    async def start_due_events(self, db, now: datetime):
        for event in event_store.due_to_start(db, now, settings.start_window_seconds):
            event_id = event.id
            try:
                await self.service.start_event(db, Actor.owner_of(event), event_id)
                logger.info(f"Scheduled start of event {event_id}")
            except EventError as e:
                logger.warning(f"Could not start event {event_id}: {e}")
            except Exception as e:
                logger.error(f"Error starting event {event_id}: {e}")

    async def end_due_events(self, db, now: datetime):
        for event_id in [e.id for e in event_store.disabled_events(db) if e.effective_end_time <= now]:
            try:
                await self.service.expire_disabled_event(db, event_id, now)
            except Exception as e:
                logger.error(f"Error expiring disabled event {event_id}: {e}")

        for event_id in [e.id for e in event_store.due_to_end(db, now)]:
            try:
                await self.service.complete_event(db, event_id, now)
            except Exception as e:
                logger.error(f"Error completing event {event_id}: {e}")

    async def cleanup(self, db, now: datetime):
        for event_id in [e.id for e in event_store.expired_deletions(db, now)]:
            try:
                await self.service.purge_event(db, event_id, "deletion grace period elapsed")
            except Exception as e:
                logger.error(f"Error deleting event {event_id}: {e}")

        for event_id in [e.id for e in event_store.stale_events(db, now, settings.deletion_grace_seconds)]:
            try:
                await self.service.purge_event(db, event_id, "stale")
            except Exception as e:
                logger.error(f"Error deleting stale event {event_id}: {e}")

    async def minute_work(self, db, now: datetime):
        created = materialize_today(db)
        if created:
            logger.info(f"Created {len(created)} recurring event instance(s)")

        for event_id in retire_expired_templates(db):
            try:
                await self.service.purge_event(db, event_id, "recurring schedule ended")
            except Exception as e:
                logger.error(f"Error retiring recurring event {event_id}: {e}")

        for event_id in [e.id for e in event_store.stray_completed_events(db, now, settings.deletion_grace_seconds)]:
            try:
                await self.service.purge_event(db, event_id, "completed sweep")
            except Exception as e:
                logger.error(f"Error sweeping completed event {event_id}: {e}")


event_scheduler = EventScheduler()


def start_scheduler():
    """Start the event lifecycle scheduler"""
    if not scheduler.running:
        scheduler.add_job(
            event_scheduler.tick,
            IntervalTrigger(seconds=settings.scheduler_tick_seconds),
            id='event_lifecycle',
            replace_existing=True,
            max_instances=3,
            coalesce=True,
        )
        scheduler.start()
        logger.info(f"Event scheduler started (interval: {settings.scheduler_tick_seconds}s)")

def stop_scheduler():
    """Stop the scheduler"""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Event scheduler stopped")
