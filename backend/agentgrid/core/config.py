"""
Agent coordination configuration settings
"""

import os
import tempfile
from typing import List

import pytz
from pydantic import ConfigDict, field_validator
from pydantic_settings import BaseSettings

_RUNTIME_DIR = os.path.join(tempfile.gettempdir(), "agentgrid")


class Settings(BaseSettings):
    """Application settings"""

    # Project
    PROJECT_NAME: str = "agentgrid"
    VERSION: str = "1.0.0"
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")

    # Agent identity
    AGENT_NAME: str = os.getenv("AGENT_NAME", "agentgrid")

    # Coordination (lock + status directories)
    LOCK_DIR: str = os.getenv("LOCK_DIR", os.path.join(_RUNTIME_DIR, "locks"))
    STATUS_DIR: str = os.getenv("STATUS_DIR", os.path.join(_RUNTIME_DIR, "status"))
    LOCK_TIMEOUT_SECONDS: float = 30.0
    LOCK_ACQUIRE_TIMEOUT_SECONDS: float = 30.0
    LOCK_VERIFY_DELAY_SECONDS: float = 0.1
    LOCK_RETRY_DELAY_SECONDS: float = 1.0
    HEARTBEAT_INTERVAL_SECONDS: float = 5.0
    COMPATIBILITY_POLL_SECONDS: float = 5.0
    COMPATIBILITY_MAX_WAIT_SECONDS: float = 300.0

    # Event bus
    EVENT_QUEUE_SIZE: int = 100
    EVENT_HISTORY_SIZE: int = 500
    EVENT_LOG_ENABLED: bool = True
    EVENT_LOG_PATH: str = os.getenv("EVENT_LOG_PATH", os.path.join("logs", "events.log"))
    EVENT_RETENTION_HOURS: int = 24

    # Event detection
    PERFORMANCE_CHECK_INTERVAL_SECONDS: float = 30.0
    DATABASE_CHECK_INTERVAL_SECONDS: float = 300.0
    RESPONSE_TIME_THRESHOLD_MS: float = 3000.0
    ERROR_RATE_THRESHOLD: float = 0.05
    MEMORY_USAGE_THRESHOLD: float = 0.8
    DISK_USAGE_THRESHOLD: float = 0.9
    GROWTH_THRESHOLD: float = 0.10
    MONITORED_TABLES: str = os.getenv("MONITORED_TABLES", "")  # comma separated
    SCHEDULE_TIMEZONE: str = "UTC"

    @field_validator("SCHEDULE_TIMEZONE")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        if v not in pytz.all_timezones_set:
            raise ValueError(f"Unknown timezone: {v}")
        return v

    @property
    def monitored_tables(self) -> List[str]:
        return [t.strip() for t in self.MONITORED_TABLES.split(",") if t.strip()]

    # Dispatcher
    SPAWN_LOCK_TIMEOUT_SECONDS: float = 300.0
    SHUTDOWN_DRAIN_TIMEOUT_SECONDS: float = 30.0

    # Consolidation safety limits
    CONSOLIDATION_MAX_OPERATIONS: int = 20
    CONSOLIDATION_MAX_TABLES: int = 10
    CONSOLIDATION_AUTO_SELECT_LIMIT: int = 5
    CONSOLIDATION_PHASE_PAUSE_SECONDS: float = 5.0

    # Backups
    BACKUP_DIRECTORY: str = os.getenv("BACKUP_DIRECTORY", os.path.join(_RUNTIME_DIR, "backups"))
    BACKUP_MIN_FREE_BYTES: int = 100 * 1024 * 1024  # 100MB

    # External store client
    STORE_RATE_LIMIT_REQUESTS: int = 5
    STORE_RATE_LIMIT_WINDOW_SECONDS: float = 60.0

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_FORMAT: str = os.getenv("LOG_FORMAT", "json")

    model_config = ConfigDict(case_sensitive=True, env_file=".env", extra="ignore")


settings = Settings()


def get_settings() -> Settings:
    """Get application settings"""
    return settings
