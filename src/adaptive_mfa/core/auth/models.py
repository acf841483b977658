# AdaptiveMFA - Risk-Adaptive MFA Orchestration Core
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""MFA domain models."""

from datetime import datetime
from enum import Enum
from typing import Any

from beartype import beartype
from pydantic import BaseModel, ConfigDict, Field, field_validator

from adaptive_mfa.core.crypto import device_fingerprint


class FactorType(str, Enum):
    """Closed set of verification factors."""

    PASSWORD = "password"
    TOTP = "totp"
    SMS = "sms"
    EMAIL = "email"
    WEBAUTHN = "webauthn"
    BACKUP_CODE = "backup_code"


class Enforcement(str, Enum):
    """Policy-level MFA enforcement, ordered by restrictiveness."""

    DISABLED = "disabled"
    OPTIONAL = "optional"
    REQUIRED = "required"

    @property
    def rank(self) -> int:
        return _ENFORCEMENT_RANK[self]


_ENFORCEMENT_RANK = {
    Enforcement.DISABLED: 0,
    Enforcement.OPTIONAL: 1,
    Enforcement.REQUIRED: 2,
}


class RiskLevel(str, Enum):
    """Risk assessment levels."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class TerminalReason(str, Enum):
    """Why a challenge stopped accepting verifications."""

    COMPLETED = "completed"
    EXPIRED = "expired"
    MAX_ATTEMPTS = "max_attempts"


class VerificationStatus(str, Enum):
    """Non-terminal results of a challenge verification."""

    COMPLETE = "complete"
    ADDITIONAL_VERIFICATION_REQUIRED = "additional_verification_required"
    RETRY = "retry"


class AuthStatus(str, Enum):
    """Decision returned by primary authentication."""

    SESSION_ISSUED = "session_issued"
    MFA_REQUIRED = "mfa_required"
    ENROLLMENT_REQUIRED = "enrollment_required"


class FrozenModel(BaseModel):
    """Immutable, strictly validated base for every domain model."""

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        validate_assignment=True,
        str_strip_whitespace=True,
        validate_default=True,
    )


# ---------------------------------------------------------------------------
# Authentication context
# ---------------------------------------------------------------------------


@beartype
class DeviceInfo(FrozenModel):
    """Client-reported device descriptor."""

    platform: str | None = None
    timezone: str | None = None
    language: str | None = None
    screen_resolution: str | None = None
    is_trusted: bool | None = Field(
        default=None, description="Explicit trust flag; False marks the device untrusted"
    )


@beartype
class GeoLocation(FrozenModel):
    """Coarse location resolved from a network address."""

    country: str = Field(..., min_length=2, max_length=2)
    region: str | None = None
    city: str | None = None
    latitude: float | None = Field(default=None, ge=-90.0, le=90.0)
    longitude: float | None = Field(default=None, ge=-180.0, le=180.0)

    @field_validator("country")
    @classmethod
    def upper_country(cls, v: str) -> str:
        return v.upper()


@beartype
class AuthContext(FrozenModel):
    """Ephemeral description of one authentication attempt."""

    user_id: str | None = None
    email: str | None = None
    ip_address: str = Field(..., min_length=1)
    user_agent: str = ""
    device: DeviceInfo = Field(default_factory=DeviceInfo)
    location: GeoLocation | None = None
    timestamp: datetime

    @field_validator("timestamp")
    @classmethod
    def require_timezone(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            raise ValueError("timestamp must be timezone-aware")
        return v

    def for_user(self, user_id: str, email: str | None = None) -> "AuthContext":
        """Copy of this context bound to a resolved user."""
        return self.model_copy(update={"user_id": user_id, "email": email or self.email})

    def fingerprint(self) -> str:
        """Deterministic device fingerprint for this attempt."""
        return device_fingerprint(
            {
                "user_agent": self.user_agent,
                "screen_resolution": self.device.screen_resolution,
                "timezone": self.device.timezone,
                "language": self.device.language,
                "platform": self.device.platform,
            }
        )


# ---------------------------------------------------------------------------
# Risk
# ---------------------------------------------------------------------------


@beartype
class RiskFactor(FrozenModel):
    """One weighted sub-assessment of a risk score."""

    name: str
    score: int = Field(..., ge=0, le=100)
    weight: float = Field(..., ge=0.0, le=1.0)
    evidence: dict[str, Any] = Field(default_factory=dict)

    @property
    def weighted(self) -> float:
        return self.score * self.weight


@beartype
class MFARecommendation(FrozenModel):
    """MFA demanded by the risk engine on its own."""

    required: bool
    factors: list[FactorType] = Field(default_factory=list)
    min_factors: int = Field(default=1, ge=1)


@beartype
class RiskScore(FrozenModel):
    """Aggregate risk estimate for one attempt."""

    score: float = Field(..., ge=0.0, le=100.0)
    level: RiskLevel
    factors: list[RiskFactor]
    recommendation: MFARecommendation
    assessed_at: datetime

    def factor(self, name: str) -> RiskFactor | None:
        return next((f for f in self.factors if f.name == name), None)


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------


@beartype
class MFAPolicy(FrozenModel):
    """User- or organization-level MFA policy."""

    enforcement: Enforcement = Enforcement.OPTIONAL
    min_factors: int = Field(default=1, ge=1, le=5)
    allowed_factors: list[FactorType] = Field(default_factory=list)


@beartype
class MFARequirement(FrozenModel):
    """Resolved requirement for one authentication attempt; never persisted."""

    required: bool
    factor_count: int = Field(..., ge=1)
    allowed_factors: list[FactorType] = Field(..., min_length=1)
    enforcement: Enforcement


# ---------------------------------------------------------------------------
# Factors and challenges
# ---------------------------------------------------------------------------


@beartype
class EnrolledFactor(FrozenModel):
    """A factor a user has completed enrollment for."""

    id: str
    user_id: str
    factor_type: FactorType
    display_name: str
    is_primary: bool = False
    created_at: datetime
    last_used_at: datetime | None = None
    verified_at: datetime | None = None


@beartype
class Challenge(FrozenModel):
    """Server-side record of an in-progress multi-factor verification."""

    id: str
    user_id: str
    ip_address: str
    user_agent: str
    created_at: datetime
    expires_at: datetime
    factor_count: int = Field(..., ge=1)
    allowed_factors: list[FactorType] = Field(..., min_length=1)
    failed_attempts: int = Field(default=0, ge=0)
    risk_level: RiskLevel = RiskLevel.LOW

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


@beartype
class EnrollmentResult(FrozenModel):
    """Factor-specific enrollment material, shown to the user once."""

    factor: EnrolledFactor | None = None
    factor_type: FactorType
    pending: bool = Field(
        default=False, description="True when a second enrollment step is still needed"
    )
    secret: str | None = None
    provisioning_uri: str | None = None
    qr_code: str | None = None
    manual_entry_key: str | None = None
    options: dict[str, Any] | None = None
    backup_codes: list[str] = Field(default_factory=list)
    password_strength: str | None = None


@beartype
class BackupCodeStatus(FrozenModel):
    """Summary of a user's recovery codes."""

    total: int = Field(..., ge=0)
    remaining: int = Field(..., ge=0)
    used: int = Field(..., ge=0)
    low: bool
    generated_at: datetime | None = None


# ---------------------------------------------------------------------------
# Sessions and outcomes
# ---------------------------------------------------------------------------


@beartype
class IssuedSession(FrozenModel):
    """A freshly issued session; carries the raw tokens exactly once."""

    session_id: str
    user_id: str
    access_token: str
    refresh_token: str
    expires_at: datetime


@beartype
class SessionRecord(FrozenModel):
    """Persisted view of a session; never holds raw tokens."""

    id: str
    user_id: str
    device_fingerprint: str
    ip_address: str
    user_agent: str
    created_at: datetime
    expires_at: datetime
    revoked: bool = False


@beartype
class AuthenticationResult(FrozenModel):
    """Outcome of primary authentication."""

    status: AuthStatus
    user_id: str
    risk_level: RiskLevel
    risk_score: float
    session: IssuedSession | None = None
    challenge_id: str | None = None
    available_factors: list[FactorType] = Field(default_factory=list)
    factor_count: int | None = None
    expires_at: datetime | None = None


@beartype
class VerificationResult(FrozenModel):
    """Non-terminal outcome of a challenge verification."""

    status: VerificationStatus
    challenge_id: str
    session: IssuedSession | None = None
    satisfied_factors: list[FactorType] = Field(default_factory=list)
    remaining_factors: int = Field(default=0, ge=0)
    remaining_attempts: int | None = None
    low_backup_codes: bool = False


@beartype
class FactorStartResult(FrozenModel):
    """What a client needs to complete a factor inside a challenge."""

    challenge_id: str
    factor_type: FactorType
    delivered_to: str | None = None
    expires_at: datetime | None = None
    options: dict[str, Any] | None = None
