from sqlalchemy import Column, Integer, String, Boolean, Float, ForeignKey
from sqlalchemy.orm import relationship
from acfleet.database import Base, UTCDateTime, get_utc_datetime

class Device(Base):
    __tablename__ = "devices"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    serial_number = Column(String, unique=True, index=True, nullable=False)  # websocket key
    venue_id = Column(Integer, ForeignKey("venues.id"), nullable=False, index=True)

    is_on = Column(Boolean, default=False, nullable=False)
    temperature = Column(Integer, nullable=True)  # target setpoint
    locked = Column(Boolean, default=False, nullable=False)
    room_temperature = Column(Float, nullable=True)
    last_room_temp_update = Column(UTCDateTime, nullable=True)

    last_temperature_change = Column(UTCDateTime, nullable=True)
    changed_by = Column(String, nullable=True)  # "tenant", "sub-tenant", "device", "operator"
    last_power_change_at = Column(UTCDateTime, nullable=True)
    last_power_change_by = Column(String, nullable=True)
    manual_override_until = Column(UTCDateTime, nullable=True)

    created_at = Column(UTCDateTime, default=get_utc_datetime)
    updated_at = Column(UTCDateTime, default=get_utc_datetime, onupdate=get_utc_datetime)

    venue = relationship("Venue", back_populates="devices")
    events = relationship("Event", back_populates="device")
