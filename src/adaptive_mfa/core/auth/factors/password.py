# AdaptiveMFA - Risk-Adaptive MFA Orchestration Core
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Password factor: bcrypt hashes, strength rules, reuse history and lockout."""

import logging
import re
from datetime import timedelta
from typing import Any
from uuid import uuid4

import bcrypt
from beartype import beartype
from pydantic import Field

from adaptive_mfa.core.auth.errors import AuthError, AuthErrorCode
from adaptive_mfa.core.auth.models import (
    EnrollmentResult,
    FactorType,
    FrozenModel,
)
from adaptive_mfa.core.config import Settings
from adaptive_mfa.core.result_types import Err, Ok, Result
from adaptive_mfa.storage.base import RecordSet, Row, Storage, TimeWindow

from .base import Clock, FactorStore, FactorVerifier, Proof

logger = logging.getLogger(__name__)

COMMON_PASSWORDS = (
    "password",
    "password123",
    "password1",
    "123456",
    "12345678",
    "1234567890",
    "qwerty",
    "abc123",
    "111111",
    "123123",
    "admin",
    "letmein",
    "welcome",
    "monkey",
)

_SPECIAL = re.compile(r"[!@#$%^&*()_+\-=\[\]{};':\"\\|,.<>/?]")


@beartype
class PasswordStrength(FrozenModel):
    """Outcome of the password rules."""

    valid: bool
    errors: list[str] = Field(default_factory=list)
    strength: str = Field(..., pattern="^(weak|medium|strong|very_strong)$")


class PasswordVerifier(FactorVerifier):
    """Primary credential check.

    A lockout engages after ``password_lockout_threshold`` failures inside the
    lockout window and holds regardless of whether later guesses are correct.
    Unknown emails still cost one bcrypt comparison.
    """

    factor_type = FactorType.PASSWORD

    def __init__(
        self, storage: Storage, settings: Settings, factors: FactorStore, clock: Clock
    ) -> None:
        super().__init__(storage, settings, factors, clock)
        self._rounds = settings.bcrypt_rounds
        self._dummy_hash = self._hash("dummy-password-for-timing")

    def _hash(self, password: str) -> str:
        return bcrypt.hashpw(
            password.encode(), bcrypt.gensalt(rounds=self._rounds)
        ).decode()

    @staticmethod
    def _matches(password: str, hashed: str) -> bool:
        try:
            return bcrypt.checkpw(password.encode(), hashed.encode())
        except ValueError:
            return False

    @beartype
    def validate_strength(self, password: str, email: str | None = None) -> PasswordStrength:
        """Apply the password rules and grade the result."""
        errors: list[str] = []
        score = 0
        min_length = self._settings.password_min_length

        checks = (
            (len(password) >= min_length, f"Password must be at least {min_length} characters"),
            (re.search(r"[A-Z]", password) is not None, "Password must contain an uppercase letter"),
            (re.search(r"[a-z]", password) is not None, "Password must contain a lowercase letter"),
            (re.search(r"[0-9]", password) is not None, "Password must contain a number"),
            (_SPECIAL.search(password) is not None, "Password must contain a special character"),
        )
        for passed, message in checks:
            if passed:
                score += 1
            else:
                errors.append(message)

        lowered = password.lower()
        if any(common in lowered for common in COMMON_PASSWORDS):
            errors.append("Password is too common")
            score -= 2

        if email:
            local_part = email.split("@", 1)[0].lower()
            if local_part and local_part in lowered:
                errors.append("Password must not contain your email")
                score -= 1

        if score >= 5:
            strength = "very_strong"
        elif score >= 4:
            strength = "strong"
        elif score >= 3:
            strength = "medium"
        else:
            strength = "weak"
        return PasswordStrength(valid=not errors, errors=errors, strength=strength)

    @beartype
    async def find_user(self, email: str) -> Row | None:
        return await self._storage.select_one(
            RecordSet.USERS, {"email": email.strip().lower()}
        )

    @beartype
    async def get_user(self, user_id: str) -> Row | None:
        return await self._storage.select_one(RecordSet.USERS, {"id": user_id})

    @beartype
    async def create_user(
        self, email: str, password: str, organization_id: str | None = None
    ) -> Result[Row, AuthError]:
        """Create an account with its initial password."""
        email = email.strip().lower()
        strength = self.validate_strength(password, email)
        if not strength.valid:
            return Err(
                AuthError(AuthErrorCode.WEAK_PASSWORD, details={"errors": strength.errors})
            )
        if await self.find_user(email) is not None:
            return Err(AuthError(AuthErrorCode.INVALID_ENROLLMENT, "Account already exists"))

        now = self._clock()
        hashed = self._hash(password)
        user = await self._storage.insert(
            RecordSet.USERS,
            {
                "id": str(uuid4()),
                "email": email,
                "organization_id": organization_id,
                "password_hash": hashed,
                "password_changed_at": now,
                "created_at": now,
            },
        )
        await self._remember(user["id"], hashed, is_change=False)
        return Ok(user)

    @beartype
    async def is_locked(self, user_id: str) -> bool:
        window_start = self._clock() - timedelta(
            minutes=self._settings.password_lockout_window_minutes
        )
        failures = await self._storage.count(
            RecordSet.FAILED_LOGINS,
            {"user_id": user_id},
            window=TimeWindow("created_at", since=window_start),
        )
        return failures >= self._settings.password_lockout_threshold

    @beartype
    async def authenticate(self, email: str, password: str) -> Result[Row, AuthError]:
        """Primary check by email and password.

        Returns:
            Result containing the user row, or a generic credentials error
        """
        user = await self.find_user(email)
        if user is None:
            self._matches(password, self._dummy_hash)
            return Err(AuthError(AuthErrorCode.INVALID_CREDENTIALS))

        result = await self.verify(user["id"], {"password": password})
        if result.is_err():
            return Err(result.unwrap_err())
        if not result.unwrap():
            return Err(AuthError(AuthErrorCode.INVALID_CREDENTIALS))
        return Ok(user)

    @beartype
    async def verify(self, user_id: str, proof: Proof) -> Result[bool, AuthError]:
        password = proof.get("password")
        if not isinstance(password, str):
            return Ok(False)

        if await self.is_locked(user_id):
            logger.warning("Password check refused for locked user %s", user_id)
            return Err(AuthError(AuthErrorCode.ACCOUNT_LOCKED))

        user = await self.get_user(user_id)
        if user is None:
            self._matches(password, self._dummy_hash)
            return Ok(False)

        if not self._matches(password, user["password_hash"]):
            await self._storage.insert(
                RecordSet.FAILED_LOGINS,
                {
                    "id": str(uuid4()),
                    "user_id": user_id,
                    "email": user["email"],
                    "created_at": self._clock(),
                },
            )
            return Ok(False)

        await self._storage.delete(RecordSet.FAILED_LOGINS, {"user_id": user_id})
        return Ok(True)

    @beartype
    async def enroll(
        self, user_id: str, data: dict[str, Any]
    ) -> Result[EnrollmentResult, AuthError]:
        """Change the password after checking strength and reuse history."""
        password = data.get("password")
        if not isinstance(password, str):
            return Err(AuthError(AuthErrorCode.INVALID_ENROLLMENT, "Password is required"))

        user = await self.get_user(user_id)
        if user is None:
            return Err(AuthError(AuthErrorCode.INVALID_ENROLLMENT, "Unknown user"))

        strength = self.validate_strength(password, user["email"])
        if not strength.valid:
            return Err(
                AuthError(AuthErrorCode.WEAK_PASSWORD, details={"errors": strength.errors})
            )

        if await self._recently_used(user_id, password):
            return Err(AuthError(AuthErrorCode.PASSWORD_REUSED))

        hashed = self._hash(password)
        await self._storage.update(
            RecordSet.USERS,
            {"id": user_id},
            {"password_hash": hashed, "password_changed_at": self._clock()},
        )
        await self._remember(user_id, hashed, is_change=True)
        await self._storage.delete(RecordSet.FAILED_LOGINS, {"user_id": user_id})
        return Ok(
            EnrollmentResult(
                factor_type=FactorType.PASSWORD, password_strength=strength.strength
            )
        )

    async def _recently_used(self, user_id: str, password: str) -> bool:
        depth = self._settings.password_history_depth
        if depth == 0:
            return False
        history = await self._storage.select(
            RecordSet.PASSWORD_HISTORY,
            {"user_id": user_id},
            order_by="created_at",
            descending=True,
            limit=depth,
        )
        return any(self._matches(password, row["password_hash"]) for row in history)

    async def _remember(self, user_id: str, hashed: str, *, is_change: bool) -> None:
        await self._storage.insert(
            RecordSet.PASSWORD_HISTORY,
            {
                "id": str(uuid4()),
                "user_id": user_id,
                "password_hash": hashed,
                "is_change": is_change,
                "created_at": self._clock(),
            },
        )
