# AdaptiveMFA - Risk-Adaptive MFA Orchestration Core
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Configuration management using Pydantic Settings."""

from typing import Self

from beartype import beartype
from pydantic import Field, ValidationInfo, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_ALLOWED_FACTORS = ["totp", "sms", "email", "webauthn", "backup_code"]

_DEFAULT_HIGH_RISK_COUNTRIES = ["NG", "GH", "PK", "RU", "CN"]

_DEFAULT_DISPOSABLE_DOMAINS = [
    "tempmail.com",
    "guerrillamail.com",
    "10minutemail.com",
    "mailinator.com",
    "throwaway.email",
]


class Settings(BaseSettings):
    """Application settings with immutable configuration."""

    model_config = SettingsConfigDict(
        env_prefix="ADAPTIVE_MFA_",
        env_file=None,
        env_file_encoding="utf-8",
        frozen=True,
        validate_default=True,
        extra="forbid",
    )

    # Storage
    storage_backend: str = Field(
        default="memory",
        pattern="^(memory|postgres)$",
        description="Record storage backend",
    )
    database_url: str = Field(
        default="postgresql://localhost:5432/adaptive_mfa",
        description="PostgreSQL connection URL",
        min_length=1,
    )
    database_pool_min: int = Field(
        default=5,
        ge=1,
        le=20,
        description="Minimum database pool size",
    )
    database_pool_max: int = Field(
        default=20,
        ge=1,
        le=100,
        description="Maximum database pool size",
    )
    database_pool_timeout: float = Field(
        default=10.0,
        ge=1.0,
        le=60.0,
        description="Connection acquisition timeout in seconds",
    )
    database_command_timeout: float = Field(
        default=30.0,
        ge=1.0,
        le=300.0,
        description="Query execution timeout in seconds",
    )
    database_retry_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts for statements failing on connection errors",
    )

    # Redis
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL",
        min_length=1,
    )
    risk_cache_enabled: bool = Field(
        default=False,
        description="Write risk scores to the advisory Redis cache",
    )
    risk_cache_ttl_seconds: int = Field(
        default=300,
        ge=60,
        le=3600,
        description="Lifetime of cached risk scores",
    )

    # API Configuration
    app_name: str = Field(
        default="Adaptive MFA",
        description="Application name",
        min_length=1,
    )
    api_host: str = Field(
        default="0.0.0.0",  # nosec B104
        description="API host to bind to",
    )
    api_port: int = Field(
        default=8000,
        ge=1,
        le=65535,
        description="API port to bind to",
    )
    api_env: str = Field(
        default="development",
        pattern="^(development|staging|production)$",
        description="API environment",
    )

    # Security
    secret_key: str = Field(
        default="test-secret-key-for-testing-only-never-use-in-production-32-chars",
        min_length=32,
        description="Application secret key, also the pepper for code hashes",
    )
    encryption_key: str | None = Field(
        default=None,
        description="Fernet key for secrets at rest; derived from secret_key when unset",
    )

    # Challenges
    challenge_ttl_seconds: int = Field(
        default=300,
        ge=30,
        le=3600,
        description="Lifetime of an MFA challenge",
    )
    challenge_max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Failed verifications allowed per challenge",
    )
    challenge_tombstone_ttl_seconds: int = Field(
        default=900,
        ge=60,
        le=86400,
        description="How long a finished challenge id keeps reporting its terminal state",
    )

    # Sessions
    session_ttl_hours: int = Field(
        default=24,
        ge=1,
        le=720,
        description="Session lifetime in hours",
    )

    # Password factor
    password_min_length: int = Field(default=8, ge=6, le=128)
    password_history_depth: int = Field(
        default=5,
        ge=0,
        le=24,
        description="Number of previous passwords that cannot be reused",
    )
    password_lockout_threshold: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Failed attempts inside the window that trigger a lockout",
    )
    password_lockout_window_minutes: int = Field(default=15, ge=1, le=1440)
    bcrypt_rounds: int = Field(
        default=12,
        ge=4,
        le=16,
        description="bcrypt cost factor",
    )

    # TOTP factor
    totp_issuer: str = Field(default="Adaptive MFA", min_length=1)
    totp_digits: int = Field(default=6, ge=6, le=8)
    totp_interval: int = Field(default=30, ge=15, le=120)
    totp_valid_window: int = Field(
        default=1,
        ge=0,
        le=3,
        description="Accepted clock drift in time steps either side",
    )

    # SMS / email one-time codes
    otp_code_length: int = Field(default=6, ge=4, le=10)
    otp_ttl_seconds: int = Field(default=300, ge=60, le=3600)
    otp_max_sends_per_hour: int = Field(default=3, ge=1, le=100)
    otp_delivery_attempts: int = Field(
        default=2,
        ge=1,
        le=5,
        description="Delivery attempts before the code is invalidated",
    )
    sms_gateway_url: str | None = Field(
        default=None,
        description="HTTP endpoint of the SMS gateway; a logging channel stands in when unset",
    )
    email_gateway_url: str | None = Field(
        default=None,
        description="HTTP endpoint of the email transport",
    )
    delivery_timeout_seconds: float = Field(default=10.0, ge=1.0, le=60.0)

    # Backup codes
    backup_code_count: int = Field(default=10, ge=4, le=20)
    backup_code_length: int = Field(default=8, ge=8, le=16)
    backup_code_low_threshold: int = Field(default=2, ge=0, le=10)

    # WebAuthn
    webauthn_rp_id: str = Field(default="localhost", min_length=1)
    webauthn_rp_name: str = Field(default="Adaptive MFA", min_length=1)
    webauthn_origin: str = Field(default="http://localhost:3000", min_length=1)
    webauthn_ceremony_ttl_seconds: int = Field(default=300, ge=30, le=3600)

    # Factor enrollment and policy defaults
    max_factors_per_user: int = Field(default=10, ge=1, le=50)
    default_enforcement: str = Field(
        default="optional",
        pattern="^(disabled|optional|required)$",
    )
    default_allowed_factors: list[str] = Field(
        default_factory=lambda: list(_DEFAULT_ALLOWED_FACTORS),
        min_length=1,
    )

    # Risk engine
    risk_weight_device: float = Field(default=0.25, ge=0.0, le=1.0)
    risk_weight_location: float = Field(default=0.25, ge=0.0, le=1.0)
    risk_weight_behavioral: float = Field(default=0.20, ge=0.0, le=1.0)
    risk_weight_velocity: float = Field(default=0.15, ge=0.0, le=1.0)
    risk_weight_threat: float = Field(default=0.15, ge=0.0, le=1.0)
    risk_threshold_medium: float = Field(default=30.0, gt=0.0, le=100.0)
    risk_threshold_high: float = Field(default=60.0, gt=0.0, le=100.0)
    risk_threshold_critical: float = Field(default=80.0, gt=0.0, le=100.0)
    risk_degraded_score: int = Field(
        default=20,
        ge=0,
        le=100,
        description="Score used for a signal whose history could not be read",
    )
    risk_unresolved_location_score: int = Field(default=10, ge=0, le=100)
    risk_high_risk_countries: list[str] = Field(
        default_factory=lambda: list(_DEFAULT_HIGH_RISK_COUNTRIES),
    )
    risk_disposable_domains: list[str] = Field(
        default_factory=lambda: list(_DEFAULT_DISPOSABLE_DOMAINS),
    )
    reputation_service_url: str | None = Field(
        default=None,
        description="HTTP endpoint for IP reputation lookups",
    )
    reputation_timeout_seconds: float = Field(default=5.0, ge=0.5, le=30.0)

    @field_validator("database_pool_max")
    @classmethod
    def validate_pool_sizes(cls: type["Settings"], v: int, info: ValidationInfo) -> int:
        """Ensure pool max is greater than pool min."""
        if "database_pool_min" in info.data:
            min_size = info.data["database_pool_min"]
            if v < min_size:
                raise ValueError(
                    f"database_pool_max ({v}) must be >= database_pool_min ({min_size})"
                )
        return v

    @field_validator("secret_key")
    @classmethod
    def validate_secret_key(cls: type["Settings"], v: str, info: ValidationInfo) -> str:
        """Ensure test secrets are not used in production."""
        if "api_env" in info.data and info.data["api_env"] == "production":
            if v.startswith("test-"):
                raise ValueError(
                    "Test secret key cannot be used in production. "
                    "Set ADAPTIVE_MFA_SECRET_KEY environment variable."
                )
        return v

    @field_validator("default_allowed_factors")
    @classmethod
    def validate_allowed_factors(cls: type["Settings"], v: list[str]) -> list[str]:
        """Only second-factor types may be allowed by default."""
        known = set(_DEFAULT_ALLOWED_FACTORS)
        unknown = [item for item in v if item not in known]
        if unknown:
            raise ValueError(f"Unknown factor types: {unknown}")
        return v

    @field_validator("risk_high_risk_countries")
    @classmethod
    def normalize_countries(cls: type["Settings"], v: list[str]) -> list[str]:
        """Country codes are compared upper-case."""
        return [code.strip().upper() for code in v]

    @model_validator(mode="after")
    def validate_risk_calibration(self) -> Self:
        """Weights must sum to one and thresholds must be ascending."""
        total = (
            self.risk_weight_device
            + self.risk_weight_location
            + self.risk_weight_behavioral
            + self.risk_weight_velocity
            + self.risk_weight_threat
        )
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"Risk weights must sum to 1.0, got {total:.4f}")
        if not (
            self.risk_threshold_medium
            < self.risk_threshold_high
            < self.risk_threshold_critical
        ):
            raise ValueError("Risk thresholds must be strictly ascending")
        return self

    @property
    @beartype
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.api_env == "production"

    @property
    @beartype
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.api_env == "development"

    @property
    @beartype
    def asyncpg_url(self) -> str:
        """Database URL without a SQLAlchemy driver suffix."""
        url = self.database_url
        if url.startswith("postgresql+"):
            url = "postgresql://" + url.split("://", 1)[1]
        return url


_settings: Settings | None = None


@beartype
def get_settings() -> Settings:
    """Get cached settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


@beartype
def clear_settings_cache() -> None:
    """Clear settings cache (for testing)."""
    global _settings
    _settings = None
