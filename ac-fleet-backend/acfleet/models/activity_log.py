from sqlalchemy import Column, Integer, String, JSON
from acfleet.database import Base, UTCDateTime, get_utc_datetime

class ActivityLog(Base):
    __tablename__ = "activity_logs"

    id = Column(Integer, primary_key=True, index=True)
    actor_role = Column(String, nullable=False)
    actor_id = Column(Integer, nullable=True)
    action = Column(String, nullable=False, index=True)  # CREATE_EVENT, STOP_EVENT, ...
    target_type = Column(String, default="event")
    target_id = Column(Integer, nullable=True)
    details = Column(JSON, default=dict)
    created_at = Column(UTCDateTime, default=get_utc_datetime)
