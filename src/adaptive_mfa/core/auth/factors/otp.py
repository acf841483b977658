# AdaptiveMFA - Risk-Adaptive MFA Orchestration Core
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""SMS and email one-time code factors.

Codes live in their own record set with an expiry and a consumed flag. A
verification attempt consumes the outstanding code whether or not it
matches, so every code gets exactly one guess.
"""

import logging
import re
from datetime import datetime, timedelta
from typing import Any
from uuid import uuid4

from beartype import beartype

from adaptive_mfa.core.auth.errors import AuthError, AuthErrorCode
from adaptive_mfa.core.auth.models import (
    EnrollmentResult,
    FactorStartResult,
    FactorType,
)
from adaptive_mfa.core.config import Settings
from adaptive_mfa.core.crypto import (
    SecretBox,
    constant_time_equals,
    generate_numeric_code,
    hash_code,
)
from adaptive_mfa.core.result_types import Err, Ok, Result
from adaptive_mfa.storage.base import RecordSet, Row, Storage, TimeWindow

from .base import Clock, FactorStore, FactorVerifier, Proof, factor_from_row
from .delivery import DeliveryChannel, mask_destination

logger = logging.getLogger(__name__)

PURPOSE_CHALLENGE = "challenge"
PURPOSE_ENROLLMENT = "enrollment"

_EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class OneTimeCodeVerifier(FactorVerifier):
    """Shared machinery for codes delivered over an external channel."""

    channel_label = "code"

    def __init__(
        self,
        storage: Storage,
        settings: Settings,
        factors: FactorStore,
        clock: Clock,
        secrets: SecretBox,
        channel: DeliveryChannel,
    ) -> None:
        super().__init__(storage, settings, factors, clock)
        self._box = secrets
        self._channel = channel
        self._ttl = timedelta(seconds=settings.otp_ttl_seconds)

    def normalize_destination(self, destination: str) -> str | None:
        """Canonical destination, or None when it is not acceptable."""
        raise NotImplementedError

    def _message(self, code: str) -> str:
        minutes = max(1, self._settings.otp_ttl_seconds // 60)
        return (
            f"Your {self._settings.app_name} verification code is {code}. "
            f"It expires in {minutes} minutes."
        )

    @beartype
    async def sends_in_last_hour(self, user_id: str) -> int:
        return await self._storage.count(
            RecordSet.ONE_TIME_CODES,
            {"user_id": user_id, "channel": self.factor_type.value},
            window=TimeWindow("created_at", since=self._clock() - timedelta(hours=1)),
        )

    async def _issue(
        self, user_id: str, factor_row: Row, purpose: str
    ) -> Result[datetime, AuthError]:
        """Generate, store and deliver a fresh code for one factor."""
        if await self.sends_in_last_hour(user_id) >= self._settings.otp_max_sends_per_hour:
            return Err(
                AuthError(
                    AuthErrorCode.RATE_LIMITED,
                    f"Too many {self.channel_label} codes requested. Try again later.",
                )
            )

        # Only the newest code for a channel may be redeemed.
        await self._storage.update(
            RecordSet.ONE_TIME_CODES,
            {"user_id": user_id, "channel": self.factor_type.value, "consumed": False},
            {"consumed": True},
        )

        code = generate_numeric_code(self._settings.otp_code_length)
        now = self._clock()
        expires_at = now + self._ttl
        code_id = str(uuid4())
        await self._storage.insert(
            RecordSet.ONE_TIME_CODES,
            {
                "id": code_id,
                "user_id": user_id,
                "factor_id": factor_row["id"],
                "channel": self.factor_type.value,
                "purpose": purpose,
                "code_hash": hash_code(code, self._settings.secret_key),
                "consumed": False,
                "created_at": now,
                "expires_at": expires_at,
            },
        )

        destination = self._box.decrypt(factor_row["destination"])
        message = self._message(code)
        for attempt in range(1, self._settings.otp_delivery_attempts + 1):
            if await self._channel.send(destination, message):
                return Ok(expires_at)
            logger.warning(
                "%s delivery attempt %d failed for user %s",
                self.channel_label,
                attempt,
                user_id,
            )

        await self._storage.update(
            RecordSet.ONE_TIME_CODES, {"id": code_id}, {"consumed": True}
        )
        return Err(AuthError(AuthErrorCode.DELIVERY_FAILURE))

    async def _redeem(
        self, user_id: str, code: str, purpose: str, factor_id: str | None = None
    ) -> Row | None:
        """Consume the outstanding code; return it when ``code`` matched."""
        where: dict[str, Any] = {
            "user_id": user_id,
            "channel": self.factor_type.value,
            "purpose": purpose,
            "consumed": False,
        }
        if factor_id is not None:
            where["factor_id"] = factor_id
        outstanding = await self._storage.select(
            RecordSet.ONE_TIME_CODES, where, order_by="created_at", descending=True, limit=1
        )
        if not outstanding:
            return None

        row = outstanding[0]
        claimed = await self._storage.update(
            RecordSet.ONE_TIME_CODES,
            {"id": row["id"], "consumed": False},
            {"consumed": True, "consumed_at": self._clock()},
        )
        if claimed != 1 or self._clock() >= row["expires_at"]:
            return None
        expected = row["code_hash"]
        if not constant_time_equals(hash_code(code, self._settings.secret_key), expected):
            return None
        return row

    @beartype
    async def enroll(
        self, user_id: str, data: dict[str, Any]
    ) -> Result[EnrollmentResult, AuthError]:
        """Begin enrollment by sending a code, or confirm it.

        Args:
            user_id: Enrolling user
            data: ``destination`` to begin; ``factor_id`` and ``code`` to confirm

        Returns:
            Result containing the enrolled (or pending) factor
        """
        if "factor_id" in data:
            return await self._confirm(user_id, str(data["factor_id"]), str(data.get("code", "")))

        destination = self.normalize_destination(str(data.get("destination", "")))
        if destination is None:
            return Err(
                AuthError(
                    AuthErrorCode.INVALID_ENROLLMENT,
                    f"A valid {self.channel_label} destination is required",
                )
            )

        factor = await self._factors.add(
            user_id,
            self.factor_type,
            str(data.get("display_name") or mask_destination(destination)),
            destination=self._box.encrypt(destination),
            verified_at=None,
            is_primary=False,
        )
        row = await self._factors.get(user_id, factor.id)
        if row is None:
            return Err(AuthError(AuthErrorCode.FACTOR_NOT_FOUND))
        issued = await self._issue(user_id, row, PURPOSE_ENROLLMENT)
        if issued.is_err():
            await self._factors.remove(user_id, factor.id)
            return Err(issued.unwrap_err())
        return Ok(EnrollmentResult(factor=factor, factor_type=self.factor_type, pending=True))

    async def _confirm(
        self, user_id: str, factor_id: str, code: str
    ) -> Result[EnrollmentResult, AuthError]:
        row = await self._factors.get(user_id, factor_id)
        if row is None or row["factor_type"] != self.factor_type.value:
            return Err(AuthError(AuthErrorCode.FACTOR_NOT_FOUND))
        if row.get("verified_at") is not None:
            return Err(AuthError(AuthErrorCode.INVALID_ENROLLMENT, "Factor already confirmed"))

        if await self._redeem(user_id, code, PURPOSE_ENROLLMENT, factor_id) is None:
            return Err(AuthError(AuthErrorCode.VERIFICATION_FAILED, "Invalid or expired code"))

        first = not await self._factors.list_for_user(user_id)
        await self._storage.update(
            RecordSet.MFA_FACTORS,
            {"id": factor_id},
            {"verified_at": self._clock(), "is_primary": first},
        )
        confirmed = await self._factors.get(user_id, factor_id)
        if confirmed is None:
            return Err(AuthError(AuthErrorCode.FACTOR_NOT_FOUND))
        return Ok(EnrollmentResult(factor=factor_from_row(confirmed), factor_type=self.factor_type))

    @beartype
    async def start(
        self, user_id: str, challenge_id: str
    ) -> Result[FactorStartResult, AuthError]:
        """Send a code to the user's confirmed destination for this channel."""
        rows = [
            row
            for row in await self._factors.rows_of_type(user_id, self.factor_type)
            if row.get("verified_at") is not None
        ]
        if not rows:
            return Err(AuthError(AuthErrorCode.FACTOR_NOT_FOUND))
        row = next((r for r in rows if r.get("is_primary")), rows[0])

        issued = await self._issue(user_id, row, PURPOSE_CHALLENGE)
        if issued.is_err():
            return Err(issued.unwrap_err())
        return Ok(
            FactorStartResult(
                challenge_id=challenge_id,
                factor_type=self.factor_type,
                delivered_to=mask_destination(self._box.decrypt(row["destination"])),
                expires_at=issued.unwrap(),
            )
        )

    @beartype
    async def verify(self, user_id: str, proof: Proof) -> Result[bool, AuthError]:
        code = str(proof.get("code", "")).strip()
        row = await self._redeem(user_id, code, PURPOSE_CHALLENGE)
        if row is None:
            return Ok(False)
        await self._factors.touch(row["factor_id"])
        return Ok(True)

    async def cleanup(self, user_id: str, factor_row: Row) -> None:
        await self._storage.update(
            RecordSet.ONE_TIME_CODES,
            {"factor_id": factor_row["id"], "consumed": False},
            {"consumed": True},
        )


class SMSVerifier(OneTimeCodeVerifier):
    """One-time codes by text message."""

    factor_type = FactorType.SMS
    channel_label = "SMS"

    def normalize_destination(self, destination: str) -> str | None:
        digits = re.sub(r"\D", "", destination)
        if not 8 <= len(digits) <= 15:
            return None
        return f"+{digits}"


class EmailVerifier(OneTimeCodeVerifier):
    """One-time codes by email."""

    factor_type = FactorType.EMAIL
    channel_label = "email"

    def normalize_destination(self, destination: str) -> str | None:
        address = destination.strip().lower()
        return address if _EMAIL.match(address) else None
