"""
Device/Venue directory lookups used by the orchestration service
"""
from typing import Optional
from sqlalchemy.orm import Session

from acfleet.models.device import Device
from acfleet.models.tenant import Tenant, SubTenant
from acfleet.models.venue import Venue
from acfleet.services.actors import Actor, Role
from acfleet.services.errors import DeviceNotOwned, UnknownActor


def resolve_actor(db: Session, role: str, actor_id: int) -> Actor:
    try:
        role = Role(role)
    except ValueError as e:
        raise UnknownActor(f"Unknown role: {role}") from e

    if role is Role.TENANT:
        tenant = db.query(Tenant).filter(Tenant.id == actor_id).first()
        if not tenant:
            raise UnknownActor(f"Unknown tenant {actor_id}")
        return Actor.tenant(tenant.id)

    sub_tenant = db.query(SubTenant).filter(SubTenant.id == actor_id).first()
    if not sub_tenant:
        raise UnknownActor(f"Unknown sub-tenant {actor_id}")
    return Actor.sub_tenant(sub_tenant.id, sub_tenant.tenant_id)


def device_query_for(db: Session, actor: Actor):
    """Devices visible to the actor"""
    query = db.query(Device).join(Venue, Device.venue_id == Venue.id)
    if actor.is_tenant:
        return query.filter(Venue.tenant_id == actor.tenant_id)
    return query.filter(Venue.sub_tenant_id == actor.id)


def get_owned_device(db: Session, actor: Actor, device_id: int) -> Device:
    device = device_query_for(db, actor).filter(Device.id == device_id).first()
    if not device:
        raise DeviceNotOwned(f"Device {device_id} not found or not accessible")
    return device


def get_device_by_serial(db: Session, serial_number: str) -> Optional[Device]:
    return db.query(Device).filter(Device.serial_number == serial_number).first()
