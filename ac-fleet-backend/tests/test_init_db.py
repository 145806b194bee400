"""Tests for table creation and the optional demo seed."""
from sqlalchemy import create_engine, inspect
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from acfleet.init_db import init_database
from acfleet.models import Device, Tenant


def fresh_engine():
    return create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)


def test_creates_tables_without_seeding():
    engine = fresh_engine()
    factory = sessionmaker(bind=engine)

    init_database(seed=False, session_factory=factory, bind=engine)

    tables = set(inspect(engine).get_table_names())
    assert {"tenants", "devices", "events", "activity_logs"} <= tables
    db = factory()
    try:
        assert db.query(Tenant).count() == 0
    finally:
        db.close()


def test_seed_runs_once():
    engine = fresh_engine()
    factory = sessionmaker(bind=engine)

    init_database(seed=True, session_factory=factory, bind=engine)
    init_database(seed=True, session_factory=factory, bind=engine)

    db = factory()
    try:
        assert db.query(Tenant).count() == 1
        serials = sorted(d.serial_number for d in db.query(Device).all())
        assert serials == ["AC-DEMO-001", "AC-DEMO-002"]
    finally:
        db.close()
