from datetime import datetime, timezone
from sqlalchemy import create_engine
from sqlalchemy.types import DateTime, TypeDecorator
from sqlalchemy.orm import declarative_base, sessionmaker
from pydantic_settings import BaseSettings
import os
from dotenv import load_dotenv

load_dotenv()

class Settings(BaseSettings):
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./ac_fleet.db")
    local_timezone: str = os.getenv("LOCAL_TIMEZONE", "Asia/Karachi")

    scheduler_enabled: bool = os.getenv("SCHEDULER_ENABLED", "true").lower() == "true"
    scheduler_tick_seconds: int = int(os.getenv("SCHEDULER_TICK_SECONDS", "1"))
    start_window_seconds: int = int(os.getenv("START_WINDOW_SECONDS", "5"))
    deletion_grace_seconds: int = int(os.getenv("DELETION_GRACE_SECONDS", "5"))
    manual_override_seconds: int = int(os.getenv("MANUAL_OVERRIDE_SECONDS", "5"))

    default_device_temperature: int = int(os.getenv("DEFAULT_DEVICE_TEMPERATURE", "24"))
    min_temperature: int = int(os.getenv("MIN_TEMPERATURE", "16"))
    max_temperature: int = int(os.getenv("MAX_TEMPERATURE", "30"))

    seed_demo_data: bool = os.getenv("SEED_DEMO_DATA", "false").lower() == "true"
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    debug: bool = os.getenv("DEBUG", "false").lower() == "true"

settings = Settings()

engine = create_engine(
    settings.database_url,
    connect_args={"check_same_thread": False} if "sqlite" in settings.database_url else {}
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def get_utc_datetime() -> datetime:
    """Current instant as a timezone-aware UTC datetime"""
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Stores naive UTC, always hands back aware UTC datetimes."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
