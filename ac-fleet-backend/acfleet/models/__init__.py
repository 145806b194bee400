from acfleet.database import Base
from .tenant import Tenant, SubTenant
from .venue import Venue
from .device import Device
from .event import Event, EventStatus
from .activity_log import ActivityLog

__all__ = [
    "Base",
    "Tenant",
    "SubTenant",
    "Venue",
    "Device",
    "Event",
    "EventStatus",
    "ActivityLog",
]
