"""Shared fixtures: in-memory database, tenancy records, fake device connections."""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("LOCAL_TIMEZONE", "Asia/Karachi")

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from acfleet.models import Base, Tenant, SubTenant, Venue, Device, Event, EventStatus
from acfleet.providers.device_bridge import DeviceBridge
from acfleet.services.actors import Actor
from acfleet.services.event_service import EventService
from acfleet.services.scheduler import EventScheduler

# Monday 2025-06-02 11:00 in Asia/Karachi
FROZEN_NOW = datetime(2025, 6, 2, 6, 0, 0, tzinfo=timezone.utc)


class FakeConnection:
    """Stands in for a websocket; records every JSON message sent to it."""

    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail

    async def send_json(self, data):
        if self.fail:
            raise ConnectionError("socket closed")
        self.sent.append(dict(data))

    def types(self):
        return [message["type"] for message in self.sent]

    def of_type(self, message_type):
        return [message for message in self.sent if message["type"] == message_type]


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory(expire_on_commit=False)
    yield session
    session.close()


@pytest.fixture
def tenancy(db):
    tenant = Tenant(name="Acme")
    other_tenant = Tenant(name="Globex")
    db.add_all([tenant, other_tenant])
    db.flush()

    manager = SubTenant(tenant_id=tenant.id, name="Floor Manager")
    db.add(manager)
    db.flush()

    venue = Venue(name="HQ", tenant_id=tenant.id, sub_tenant_id=manager.id)
    other_venue = Venue(name="Elsewhere", tenant_id=other_tenant.id)
    db.add_all([venue, other_venue])
    db.flush()

    device = Device(name="Boardroom AC", serial_number="AC-001", venue_id=venue.id,
                    is_on=False, temperature=24)
    foreign_device = Device(name="Foreign AC", serial_number="AC-999", venue_id=other_venue.id,
                            is_on=False, temperature=24)
    db.add_all([device, foreign_device])
    db.commit()

    return SimpleNamespace(
        tenant=tenant,
        other_tenant=other_tenant,
        manager=manager,
        venue=venue,
        device=device,
        foreign_device=foreign_device,
        tenant_actor=Actor.tenant(tenant.id),
        manager_actor=Actor.sub_tenant(manager.id, tenant.id),
        other_tenant_actor=Actor.tenant(other_tenant.id),
    )


@pytest.fixture
def bridge(session_factory):
    return DeviceBridge(session_factory=session_factory)


@pytest.fixture
def service(bridge):
    return EventService(bridge=bridge)


@pytest.fixture
def event_scheduler(service, session_factory):
    return EventScheduler(service=service, session_factory=session_factory)


@pytest.fixture
def observer(bridge):
    connection = FakeConnection()
    bridge.add_observer(connection)
    return connection


@pytest.fixture
async def device_conn(bridge, tenancy):
    """AC-001 connected to the bridge, with the restore burst cleared"""
    connection = FakeConnection()
    await bridge.register_device(tenancy.device.serial_number, connection)
    connection.sent.clear()
    return connection


def make_event(db, tenancy, role="tenant", **fields):
    """Insert an event row directly, bypassing orchestration"""
    values = dict(
        name="Direct event",
        created_by_role=role,
        tenant_id=tenancy.tenant.id,
        sub_tenant_id=tenancy.manager.id if role == "sub-tenant" else None,
        device_id=tenancy.device.id,
        start_time=FROZEN_NOW,
        end_time=FROZEN_NOW + timedelta(hours=1),
        temperature=22,
        status=EventStatus.SCHEDULED.value,
    )
    values.update(fields)
    event = Event(**values)
    db.add(event)
    db.commit()
    return event
