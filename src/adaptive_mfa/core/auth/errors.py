# AdaptiveMFA - Risk-Adaptive MFA Orchestration Core
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Authentication error taxonomy."""

from enum import Enum
from typing import Any

from attrs import field, frozen

from adaptive_mfa.storage.base import StorageUnavailableError

__all__ = ["AuthError", "AuthErrorCode", "StorageUnavailableError"]


class AuthErrorCode(str, Enum):
    """Stable error codes surfaced to callers."""

    INVALID_CREDENTIALS = "invalid_credentials"
    ACCOUNT_LOCKED = "account_locked"
    CHALLENGE_NOT_FOUND = "challenge_not_found"
    CHALLENGE_EXPIRED = "challenge_expired"
    MAX_ATTEMPTS_EXCEEDED = "max_attempts_exceeded"
    UNSUPPORTED_FACTOR = "unsupported_factor"
    ENROLLMENT_REQUIRED = "enrollment_required"
    LAST_FACTOR_REMOVAL_DENIED = "last_factor_removal_denied"
    STORAGE_UNAVAILABLE = "storage_unavailable"
    DELIVERY_FAILURE = "delivery_failure"
    RATE_LIMITED = "rate_limited"
    INVALID_ENROLLMENT = "invalid_enrollment"
    WEAK_PASSWORD = "weak_password"
    PASSWORD_REUSED = "password_reused"
    FACTOR_NOT_FOUND = "factor_not_found"
    FACTOR_LIMIT_REACHED = "factor_limit_reached"
    VERIFICATION_FAILED = "verification_failed"


_DEFAULT_MESSAGES: dict[AuthErrorCode, str] = {
    AuthErrorCode.INVALID_CREDENTIALS: "Invalid credentials",
    AuthErrorCode.ACCOUNT_LOCKED: "Too many failed attempts. Try again later.",
    AuthErrorCode.CHALLENGE_NOT_FOUND: "Challenge not found. Please sign in again.",
    AuthErrorCode.CHALLENGE_EXPIRED: "Challenge expired. Please sign in again.",
    AuthErrorCode.MAX_ATTEMPTS_EXCEEDED: "Maximum verification attempts exceeded",
    AuthErrorCode.UNSUPPORTED_FACTOR: "Factor type is not supported here",
    AuthErrorCode.ENROLLMENT_REQUIRED: "MFA enrollment is required",
    AuthErrorCode.LAST_FACTOR_REMOVAL_DENIED: "Cannot remove the last MFA factor",
    AuthErrorCode.STORAGE_UNAVAILABLE: "Service temporarily unavailable",
    AuthErrorCode.DELIVERY_FAILURE: "Could not deliver verification code",
    AuthErrorCode.RATE_LIMITED: "Too many requests. Try again later.",
    AuthErrorCode.INVALID_ENROLLMENT: "Invalid enrollment data",
    AuthErrorCode.WEAK_PASSWORD: "Password does not meet requirements",
    AuthErrorCode.PASSWORD_REUSED: "Password was used recently",
    AuthErrorCode.FACTOR_NOT_FOUND: "Factor not found",
    AuthErrorCode.FACTOR_LIMIT_REACHED: "Maximum number of factors reached",
    AuthErrorCode.VERIFICATION_FAILED: "Verification failed",
}


@frozen
class AuthError:
    """Error value carried in ``Err`` results."""

    code: AuthErrorCode
    message: str = field(default="")
    details: dict[str, Any] = field(factory=dict)

    def __attrs_post_init__(self) -> None:
        if not self.message:
            object.__setattr__(self, "message", _DEFAULT_MESSAGES[self.code])

    @property
    def is_terminal(self) -> bool:
        """Whether the caller must restart authentication."""
        return self.code in {
            AuthErrorCode.CHALLENGE_NOT_FOUND,
            AuthErrorCode.CHALLENGE_EXPIRED,
            AuthErrorCode.MAX_ATTEMPTS_EXCEEDED,
        }

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"
