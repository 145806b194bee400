from sqlalchemy import Column, Integer, String, ForeignKey
from sqlalchemy.orm import relationship
from acfleet.database import Base, UTCDateTime, get_utc_datetime

class Tenant(Base):
    __tablename__ = "tenants"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    created_at = Column(UTCDateTime, default=get_utc_datetime)

    sub_tenants = relationship("SubTenant", back_populates="tenant")
    venues = relationship("Venue", back_populates="tenant")

class SubTenant(Base):
    __tablename__ = "sub_tenants"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    created_at = Column(UTCDateTime, default=get_utc_datetime)

    tenant = relationship("Tenant", back_populates="sub_tenants")
    venues = relationship("Venue", back_populates="sub_tenant")
