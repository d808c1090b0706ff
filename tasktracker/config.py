# tasktracker/config.py
from datetime import time, timedelta
from typing import List, Optional
from pydantic import Field
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    SECRET_KEY: str = Field("change-me-in-production")
    ALGORITHM: str = Field("HS256")
    ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(60)
    REFRESH_TOKEN_EXPIRE_DAYS: int = Field(7)
    BCRYPT_ROUNDS: int = Field(12)

    DATABASE_URL: Optional[str] = None
    SQLALCHEMY_DATABASE_URL: Optional[str] = None
    SQL_ECHO: bool = False

    LOG_LEVEL: str = Field("INFO")
    LOG_FILE: Optional[str] = None

    # Comma-separated origins. "*" → allow any origin.
    CORS_ORIGINS: str = Field("*")

    # Account lifecycle
    SOFT_DELETE_GRACE_DAYS: int = Field(30)

    # Daily sweep (overdue marking + purge of expired accounts)
    SWEEP_ENABLED: bool = True
    SWEEP_RUN_AT: Optional[str] = Field("00:00")  # local wall-clock "HH:MM"; empty → run every interval
    SWEEP_INTERVAL_HOURS: float = Field(24)
    SWEEP_TIMEOUT_SECONDS: float = Field(600)
    PURGE_CONCURRENCY: int = Field(4, ge=1)

    # Reassignment: require the new assignee to exist and be active
    VALIDATE_ASSIGNEE: bool = False

    model_config = {
        "env_file": ".env",
        "extra": "allow",
    }

    @property
    def effective_database_url(self) -> str:
        return self.SQLALCHEMY_DATABASE_URL or self.DATABASE_URL or "sqlite+aiosqlite:///./tasktracker.db"

    @property
    def grace_period(self) -> timedelta:
        return timedelta(days=self.SOFT_DELETE_GRACE_DAYS)

    @property
    def sweep_interval(self) -> timedelta:
        return timedelta(hours=self.SWEEP_INTERVAL_HOURS)

    @property
    def sweep_run_at(self) -> Optional[time]:
        if not self.SWEEP_RUN_AT:
            return None
        return time.fromisoformat(self.SWEEP_RUN_AT)

    @property
    def cors_origins(self) -> List[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

settings = Settings()
