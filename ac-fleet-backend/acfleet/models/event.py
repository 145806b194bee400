import enum
from sqlalchemy import Column, Integer, String, Boolean, BigInteger, Date, JSON, ForeignKey
from sqlalchemy.orm import relationship
from acfleet.database import Base, UTCDateTime, get_utc_datetime


class EventStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    STOPPED = "stopped"


TERMINAL_STATUSES = (EventStatus.COMPLETED.value, EventStatus.CANCELLED.value, EventStatus.STOPPED.value)
LIVE_STATUSES = (EventStatus.SCHEDULED.value, EventStatus.ACTIVE.value)


class Event(Base):
    __tablename__ = "events"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    event_type = Column(String, default="device", nullable=False)

    created_by_role = Column(String, nullable=False)  # "tenant" | "sub-tenant"
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    sub_tenant_id = Column(Integer, ForeignKey("sub_tenants.id"), nullable=True, index=True)
    device_id = Column(Integer, ForeignKey("devices.id"), nullable=False, index=True)

    start_time = Column(UTCDateTime, nullable=False, index=True)
    end_time = Column(UTCDateTime, nullable=False, index=True)
    original_end_time = Column(UTCDateTime, nullable=True)

    temperature = Column(Integer, nullable=False)
    power_on = Column(Boolean, default=True, nullable=False)
    status = Column(String, default=EventStatus.SCHEDULED.value, nullable=False, index=True)

    is_disabled = Column(Boolean, default=False, nullable=False)
    disabled_at = Column(UTCDateTime, nullable=True)
    total_disabled_duration = Column(BigInteger, default=0, nullable=False)  # milliseconds

    is_recurring = Column(Boolean, default=False, nullable=False)
    recurring_type = Column(String, nullable=True)  # only "weekly"
    days_of_week = Column(JSON, nullable=True)  # [0..6], 0 = Sunday
    recurring_start_date = Column(Date, nullable=True)
    recurring_end_date = Column(Date, nullable=True)
    time_start = Column(String, nullable=True)  # "HH:MM:SS" local
    time_end = Column(String, nullable=True)
    parent_recurring_event_id = Column(
        Integer, ForeignKey("events.id", ondelete="SET NULL"), nullable=True, index=True
    )

    started_at = Column(UTCDateTime, nullable=True)
    stopped_at = Column(UTCDateTime, nullable=True)
    completed_at = Column(UTCDateTime, nullable=True)
    delete_after = Column(UTCDateTime, nullable=True, index=True)

    created_at = Column(UTCDateTime, default=get_utc_datetime)
    updated_at = Column(UTCDateTime, default=get_utc_datetime, onupdate=get_utc_datetime)

    device = relationship("Device", back_populates="events")

    @property
    def is_template(self) -> bool:
        return bool(self.is_recurring) and self.parent_recurring_event_id is None

    @property
    def effective_end_time(self):
        """Deadline a disabled event cannot outlive"""
        return self.original_end_time or self.end_time

    def __repr__(self):
        return f"<Event {self.id} {self.name!r} {self.status}{' disabled' if self.is_disabled else ''}>"
