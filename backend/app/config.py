"""Application configuration management"""

import json
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any, List
from urllib.parse import quote_plus

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode

# Base directory: backend/
_BASE_DIR = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    # Application
    APP_NAME: str = "Industrial Automation API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    WORKERS: int = 4

    # Database
    DATABASE_URL: str = "sqlite:///./industrial_automation.db"
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "industrial_automation"
    POSTGRES_USER: str = "automation"
    POSTGRES_PASSWORD: str = "automation"
    DATABASE_POOL_SIZE: int = 30
    DATABASE_MAX_OVERFLOW: int = 20

    # Access tokens
    SECRET_KEY: str = "dev-secret-key-change-in-production-use-openssl-rand-hex-32"
    ALGORITHM: str = "HS256"
    JWT_ISSUER: str = "IndustrialAutomation"
    JWT_AUDIENCE: str = "IndustrialAutomation"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    TOKEN_CLOCK_SKEW_SECONDS: int = 0

    # Refresh / reset tokens
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7
    REFRESH_TOKEN_BYTES: int = 64
    REFRESH_REUSE_REVOKES_FAMILY: bool = True
    REFRESH_REUSE_GRACE_SECONDS: int = 10
    LOGOUT_REVOKES_REFRESH_TOKENS: bool = True
    PASSWORD_RESET_EXPIRE_MINUTES: int = 60

    # Credentials
    BCRYPT_ROUNDS: int = 12
    PASSWORD_MIN_LENGTH: int = 8
    MAX_FAILED_LOGIN_ATTEMPTS: int = 5
    LOCKOUT_DURATION_MINUTES: int = 15
    DEFAULT_USER_ROLE: str = "user"
    REGISTRATION_CONCEALS_CONFLICTS: bool = False

    # Rate Limiting
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_MAX_REQUESTS: int = 100
    RATE_LIMIT_WINDOW_SECONDS: int = 60
    RATE_LIMIT_BACKEND: str = "memory"  # memory | redis
    RATE_LIMIT_MAX_TRACKED_KEYS: int = 100_000
    REDIS_URL: str = ""
    RATE_LIMIT_EXEMPT_PATHS: Annotated[List[str], NoDecode] = ["/health", "/metrics"]
    TRUST_FORWARDED_FOR: bool = False

    # Request pipeline
    AUTH_PASSTHROUGH_PATHS: Annotated[List[str], NoDecode] = ["/api/v1/auth/validate"]
    LOG_BODY_MAX_BYTES: int = 10 * 1024
    SLOW_REQUEST_SECONDS: float = 1.0
    AUDIT_ENABLED: bool = True
    AUDIT_MAX_WORKERS: int = 2
    AUDIT_MAX_PENDING: int = 1000
    AUDIT_BODY_MAX_BYTES: int = 4 * 1024

    # Token maintenance
    TOKEN_JANITOR_ENABLED: bool = True
    TOKEN_PURGE_INTERVAL_SECONDS: float = 3600.0

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""

    # CORS
    CORS_ORIGINS: Annotated[List[str], NoDecode] = ["http://localhost:3000"]

    # Admin
    ADMIN_USERNAME: str = "admin"
    ADMIN_EMAIL: str = "admin@example.com"
    ADMIN_PASSWORD: str = "admin123"

    # Database initialization discipline
    DB_INIT_MODE: str = "migrate"  # migrate | create_all | off
    DB_REQUIRE_HEAD: bool = True

    class Config:
        env_file = ".env"
        case_sensitive = True

    @field_validator(
        "CORS_ORIGINS",
        "RATE_LIMIT_EXEMPT_PATHS",
        "AUTH_PASSTHROUGH_PATHS",
        mode="before",
    )
    @classmethod
    def _parse_list(cls, value: Any) -> Any:
        """
        Accept JSON array or comma-separated values from env.

        Examples:
            CORS_ORIGINS=["http://localhost:3000","http://example.com"]
            RATE_LIMIT_EXEMPT_PATHS=/health,/metrics
        """
        if not isinstance(value, str):
            return value

        raw = value.strip()
        if not raw:
            return []

        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            parsed = None

        if isinstance(parsed, str):
            return [parsed]
        if isinstance(parsed, list):
            return [str(item).strip() for item in parsed if str(item).strip()]

        return [item.strip() for item in raw.split(",") if item.strip()]

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    def get_log_file(self) -> str:
        p = self.LOG_FILE
        if not p or p.startswith(".."):
            return str(_BASE_DIR.parent / "logs" / "app.log")
        return p

    def get_database_url(self) -> str:
        """
        Resolve database URL.

        Priority:
          1) Explicit DATABASE_URL
          2) Construct from POSTGRES_* parts with safe URL encoding
        """
        if self.DATABASE_URL:
            return self.DATABASE_URL

        user = quote_plus(self.POSTGRES_USER)
        password = quote_plus(self.POSTGRES_PASSWORD)
        return (
            f"postgresql://{user}:{password}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    def validate_security_settings(self) -> None:
        """
        Refuse to start a production deployment on development defaults.

        Raises:
            ValueError: If a default secret, a weak admin password or an
                inconsistent token setting is configured.
        """
        if not self.is_production:
            return

        default_secret = Settings.model_fields["SECRET_KEY"].default
        if not self.SECRET_KEY or self.SECRET_KEY == default_secret or len(self.SECRET_KEY) < 32:
            raise ValueError("SECRET_KEY must be set to at least 32 random characters in production.")

        if self.ADMIN_PASSWORD and (
            self.ADMIN_PASSWORD == Settings.model_fields["ADMIN_PASSWORD"].default
            or len(self.ADMIN_PASSWORD) < max(10, self.PASSWORD_MIN_LENGTH)
        ):
            raise ValueError("ADMIN_PASSWORD is too weak for production; set a unique strong value or leave it empty.")

        if self.REFRESH_REUSE_GRACE_SECONDS < 0 or self.TOKEN_CLOCK_SKEW_SECONDS < 0:
            raise ValueError("Token grace and clock skew windows cannot be negative.")

        if self.RATE_LIMIT_BACKEND == "redis" and not self.REDIS_URL:
            raise ValueError("RATE_LIMIT_BACKEND=redis requires REDIS_URL.")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


settings = get_settings()
