"""
Application Configuration
Loads authorization engine settings from environment variables
"""
from functools import lru_cache
from typing import Annotated, List, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from schemas.audit import AuditAction

MIN_SECRET_LENGTH = 32


class Settings(BaseSettings):
    """Settings loaded from environment variables (and .env)"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================================================
    # APPLICATION
    # ========================================================================
    ENV: str = Field(default="development", description="Environment name")
    DEBUG: bool = Field(default=False, description="Debug mode")
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_JSON: bool = Field(default=False, description="Render logs as JSON")
    CORS_ORIGINS: Annotated[List[str], NoDecode] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        description="Allowed CORS origins for the admin UI"
    )

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    # ========================================================================
    # SIGNING SECRETS
    # ========================================================================
    JWT_SECRET: Optional[str] = Field(
        default=None,
        description="Current signing secret (generated at startup outside production if unset)"
    )
    JWT_PREVIOUS_SECRET: Optional[str] = Field(
        default=None,
        description="Secret retired by the last rotation, accepted during the grace window"
    )
    JWT_SECRET_LAST_ROTATION: Optional[str] = Field(
        default=None,
        description="ISO-8601 timestamp of the last rotation"
    )
    JWT_ALGORITHM: str = Field(default="HS256")
    JWT_ISSUER: str = Field(default="framtt-admin")
    JWT_AUDIENCE: str = Field(default="framtt-users")
    SECRET_ROTATION_INTERVAL_DAYS: int = Field(default=30, ge=1)
    SECRET_ROTATION_CHECK_SECONDS: int = Field(default=3600, ge=10)

    @field_validator("JWT_SECRET", "JWT_PREVIOUS_SECRET")
    @classmethod
    def check_secret_strength(cls, v):
        if v is not None and len(v) < MIN_SECRET_LENGTH:
            raise ValueError(f"signing secrets must be at least {MIN_SECRET_LENGTH} characters")
        return v

    @field_validator("JWT_ALGORITHM")
    @classmethod
    def check_algorithm(cls, v):
        if v not in {"HS256", "HS384", "HS512"}:
            raise ValueError("only HMAC algorithms are supported")
        return v

    # ========================================================================
    # TOKEN LIFETIMES
    # ========================================================================
    ACCESS_TOKEN_TTL_MINUTES: int = Field(default=120, ge=1)
    IMPERSONATION_MAX_TTL_MINUTES: int = Field(default=60, ge=1)

    # ========================================================================
    # AUTHORIZATION
    # ========================================================================
    CHECK_PRINCIPAL_STATUS: bool = Field(
        default=True,
        description="Reject tokens whose subject is no longer active in the user directory"
    )
    SESSION_SWEEP_SECONDS: int = Field(default=60, ge=1)

    # ========================================================================
    # RATE LIMITING
    # ========================================================================
    RATE_LIMIT_ENABLED: bool = Field(default=True)
    RATE_LIMIT_BACKEND: str = Field(default="memory", description="memory | redis")
    RATE_LIMIT_FAIL_OPEN: bool = Field(
        default=True,
        description="Allow requests when the limiter backend is unreachable"
    )
    REDIS_URL: str = Field(default="redis://localhost:6379/0")

    RATE_LIMIT_LOGIN: int = Field(default=5, ge=1)
    RATE_LIMIT_LOGIN_WINDOW_SECONDS: int = Field(default=15 * 60, ge=1)
    RATE_LIMIT_IMPERSONATION: int = Field(default=10, ge=1)
    RATE_LIMIT_IMPERSONATION_WINDOW_SECONDS: int = Field(default=60 * 60, ge=1)
    RATE_LIMIT_PASSWORD_CHANGE: int = Field(default=3, ge=1)
    RATE_LIMIT_PASSWORD_CHANGE_WINDOW_SECONDS: int = Field(default=60 * 60, ge=1)
    RATE_LIMIT_ADMIN_OPERATIONS: int = Field(default=20, ge=1)
    RATE_LIMIT_ADMIN_OPERATIONS_WINDOW_SECONDS: int = Field(default=5 * 60, ge=1)
    RATE_LIMIT_GENERAL: int = Field(default=100, ge=1)
    RATE_LIMIT_GENERAL_WINDOW_SECONDS: int = Field(default=15 * 60, ge=1)

    @field_validator("RATE_LIMIT_BACKEND")
    @classmethod
    def check_backend(cls, v):
        v = v.lower()
        if v not in {"memory", "redis"}:
            raise ValueError("RATE_LIMIT_BACKEND must be 'memory' or 'redis'")
        return v

    # ========================================================================
    # AUDIT
    # ========================================================================
    AUDIT_DATABASE_URL: Optional[str] = Field(
        default=None,
        description="SQLAlchemy URL for the durable audit sink (in-memory when unset)"
    )
    AUDIT_SINK_TIMEOUT_SECONDS: float = Field(default=2.0, gt=0)
    AUDIT_FAIL_CLOSED_ACTIONS: Annotated[List[AuditAction], NoDecode] = Field(
        default=[AuditAction.IMPERSONATION_STARTED, AuditAction.IMPERSONATION_ENDED],
        description="Actions that must not succeed unless their audit entry is durable"
    )

    @field_validator("AUDIT_FAIL_CLOSED_ACTIONS", mode="before")
    @classmethod
    def parse_fail_closed_actions(cls, v):
        if isinstance(v, str):
            return [action.strip().upper() for action in v.split(",") if action.strip()]
        return v

    @model_validator(mode="after")
    def check_lifetimes(self):
        if self.IMPERSONATION_MAX_TTL_MINUTES >= self.ACCESS_TOKEN_TTL_MINUTES:
            raise ValueError(
                "IMPERSONATION_MAX_TTL_MINUTES must be strictly shorter than ACCESS_TOKEN_TTL_MINUTES"
            )
        if self.JWT_SECRET is None and self.is_production:
            raise ValueError("JWT_SECRET is required in production")
        if self.JWT_PREVIOUS_SECRET is not None and self.JWT_PREVIOUS_SECRET == self.JWT_SECRET:
            raise ValueError("JWT_PREVIOUS_SECRET must differ from JWT_SECRET")
        return self

    # ========================================================================
    # COMPUTED PROPERTIES
    # ========================================================================

    @property
    def is_production(self) -> bool:
        return self.ENV.lower() == "production"

    @property
    def max_token_ttl_minutes(self) -> int:
        """Longest lifetime any signed token can have (bounds the rotation grace window)"""
        return max(self.ACCESS_TOKEN_TTL_MINUTES, self.IMPERSONATION_MAX_TTL_MINUTES)


@lru_cache
def get_settings() -> Settings:
    """Process-wide settings instance"""
    return Settings()
