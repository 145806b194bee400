from sqlalchemy import Column, Integer, String, ForeignKey
from sqlalchemy.orm import relationship
from acfleet.database import Base, UTCDateTime, get_utc_datetime

class Venue(Base):
    __tablename__ = "venues"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    sub_tenant_id = Column(Integer, ForeignKey("sub_tenants.id"), nullable=True, index=True)  # managing sub-tenant, if any
    created_at = Column(UTCDateTime, default=get_utc_datetime)

    tenant = relationship("Tenant", back_populates="venues")
    sub_tenant = relationship("SubTenant", back_populates="venues")
    devices = relationship("Device", back_populates="venue")
