"""
Database initialization
Creates tables and, when SEED_DEMO_DATA is set, a demo tenancy with one device
"""
import logging

from acfleet.database import SessionLocal, engine, settings
from acfleet.models import Base
from acfleet.models.tenant import Tenant, SubTenant
from acfleet.models.venue import Venue
from acfleet.models.device import Device

logger = logging.getLogger(__name__)

def init_database(seed: bool = None, session_factory=SessionLocal, bind=engine):
    """Create tables and optionally seed demo records"""

    Base.metadata.create_all(bind=bind)

    if not (settings.seed_demo_data if seed is None else seed):
        return

    db = session_factory()
    try:
        if db.query(Tenant).count() > 0:
            logger.info("Database already initialized")
            return

        tenant = Tenant(name="Demo Tenant")
        db.add(tenant)
        db.flush()

        manager = SubTenant(tenant_id=tenant.id, name="Demo Manager")
        db.add(manager)
        db.flush()

        venue = Venue(name="Head Office", tenant_id=tenant.id, sub_tenant_id=manager.id)
        db.add(venue)
        db.flush()

        devices = [
            Device(name="Conference Room AC", serial_number="AC-DEMO-001", venue_id=venue.id,
                   temperature=settings.default_device_temperature),
            Device(name="Lobby AC", serial_number="AC-DEMO-002", venue_id=venue.id,
                   temperature=settings.default_device_temperature),
        ]
        db.add_all(devices)
        db.commit()
        logger.info(f"Seeded tenant {tenant.name}, sub-tenant {manager.name}, {len(devices)} devices")

    except Exception as e:
        db.rollback()
        logger.error(f"Error initializing database: {e}")
        raise
    finally:
        db.close()

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    init_database(seed=True)
