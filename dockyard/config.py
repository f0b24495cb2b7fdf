from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import Optional
from functools import lru_cache
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./dockyard.db"

    # Database Connection Pool Settings
    DB_POOL_SIZE: int = 10  # Base number of connections in pool
    DB_MAX_OVERFLOW: int = 20  # Extra connections allowed beyond pool_size
    DB_POOL_TIMEOUT: int = 30  # Seconds to wait for connection from pool
    DB_POOL_RECYCLE: int = 1800  # Recycle connections after 30 minutes

    # App Settings
    APP_NAME: str = "Dockyard Scheduling Engine"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # CORS - accepts JSON string, comma-separated, or list
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Redis Cache Settings
    REDIS_URL: Optional[str] = None  # e.g., "redis://localhost:6379/0"
    CACHE_ENABLED: bool = True
    DOCK_SCHEDULE_CACHE_TTL: int = 300  # 5 minutes for computed dock schedules
    YARD_CONFIG_CACHE_TTL: int = 3600  # 1 hour for per-warehouse yard policy

    # Operating Day
    FACILITY_TIMEZONE: str = "UTC"  # Zone for operating hours and time-of-day windows
    OPERATING_START_HOUR: int = 6  # 06:00
    OPERATING_END_HOUR: int = 22  # 22:00
    DEFAULT_DOCK_COUNT: int = 12  # Docks synthesized when a warehouse registers none
    SLOT_GRANULE_MINUTES: int = 30

    # Default expected durations (minutes) by appointment type
    DEFAULT_DURATION_INBOUND: int = 120
    DEFAULT_DURATION_OUTBOUND: int = 90
    DEFAULT_DURATION_CROSS_DOCK: int = 60
    DEFAULT_DURATION_RETURN: int = 90

    # Detention & Performance
    DETENTION_FREE_HOURS: float = 2.0  # Free dwell allowance before detention
    DETENTION_RATE_PER_HOUR: float = 100.0
    ON_TIME_GRACE_MINUTES: int = 15
    LATE_ALERT_THRESHOLD_MINUTES: int = 30  # Late-arrival event when delay exceeds this
    YARD_SPOT_COST_PER_DAY: float = 50.0

    # Yard Moves
    YARD_MOVE_DEFAULT_DISTANCE_METERS: int = 100
    YARD_MOVE_SPEED_METERS_PER_MINUTE: int = 20

    # Notification delivery
    NOTIFICATION_MAX_RETRIES: int = 3
    NOTIFICATION_RETRY_DELAY_SECONDS: int = 60
    NOTIFICATION_DROPPED_HISTORY: int = 100

    # Background jobs
    CACHE_CLEANUP_INTERVAL_MINUTES: int = 10

    @field_validator('CORS_ORIGINS', mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [origin.strip() for origin in v.split(',')]
        return v

    @field_validator('OPERATING_END_HOUR')
    @classmethod
    def validate_operating_window(cls, v, info):
        start = info.data.get('OPERATING_START_HOUR', 0)
        if not 0 < v <= 24 or v <= start:
            raise ValueError("OPERATING_END_HOUR must be after OPERATING_START_HOUR and at most 24")
        return v

    @property
    def cors_origins_list(self) -> list[str]:
        return self.CORS_ORIGINS

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
