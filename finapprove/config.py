from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    APP_NAME: str = "Finance Approval System"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    DATABASE_URL: str = "sqlite+aiosqlite:///./finapprove.db"
    DATABASE_SYNC_URL: str = ""
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 5
    DB_POOL_RECYCLE: int = 300

    JWT_SECRET_KEY: str = "change-me"
    JWT_PUBLIC_KEY_PATH: Optional[str] = None  # RS256 deployments verify with a public key
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # Approval chain: "standard", "extended" or "legacy"
    APPROVAL_CHAIN: str = "standard"
    APPROVAL_LEVELS: Optional[list[str]] = None
    SLA_HOURS: dict[str, int] = {}
    CRITICAL_SLA_HOURS: dict[str, int] = {}
    DEFAULT_SLA_HOURS: int = 24

    SLA_RISK_WINDOW_HOURS: float = 4.0
    SLA_WARNING_RATIO: float = 0.8
    SLA_WARNING_SUPPRESSION_HOURS: int = 24

    MAX_RESUBMISSIONS: int = 3
    REFERENCE_PREFIX: str = "FIN"

    BREVO_API_KEY: Optional[str] = None
    EMAIL_FROM_ADDRESS: str = "noreply@finapprove.example.com"
    INTERNAL_JOB_SECRET: Optional[str] = None  # Required in production for /internal/jobs/* auth
    CORS_ORIGINS: str = "http://localhost:3000"

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",")]

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
