# AdaptiveMFA - Risk-Adaptive MFA Orchestration Core
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""TOTP (Time-based One-Time Password) factor."""

import base64
import io
import logging
from datetime import datetime
from typing import Any

import pyotp
import qrcode  # type: ignore[import-untyped]
from beartype import beartype

from adaptive_mfa.core.auth.errors import AuthError, AuthErrorCode
from adaptive_mfa.core.auth.models import EnrollmentResult, FactorType
from adaptive_mfa.core.config import Settings
from adaptive_mfa.core.crypto import SecretBox, constant_time_equals
from adaptive_mfa.core.result_types import Err, Ok, Result
from adaptive_mfa.storage.base import RecordSet, Row, Storage

from .base import Clock, FactorStore, FactorVerifier, Proof, factor_from_row

logger = logging.getLogger(__name__)


class TOTPVerifier(FactorVerifier):
    """Google Authenticator compatible TOTP.

    Enrollment is two calls: the first returns the secret and QR code and
    stores the factor unconfirmed; the second confirms it with a code from
    the authenticator app. A time step, once accepted, is never accepted
    again for the same factor.
    """

    factor_type = FactorType.TOTP

    def __init__(
        self,
        storage: Storage,
        settings: Settings,
        factors: FactorStore,
        clock: Clock,
        secrets: SecretBox,
    ) -> None:
        super().__init__(storage, settings, factors, clock)
        self._box = secrets
        self._digits = settings.totp_digits
        self._interval = settings.totp_interval
        self._window = settings.totp_valid_window
        self._issuer = settings.totp_issuer

    def _totp(self, secret: str) -> pyotp.TOTP:
        return pyotp.TOTP(secret, digits=self._digits, interval=self._interval)

    @beartype
    def current_code(self, secret: str, at: datetime | None = None) -> str:
        """Code an authenticator app would show at ``at`` (default: now)."""
        moment = at or self._clock()
        return self._totp(secret).at(int(moment.timestamp()))

    @beartype
    def time_remaining(self) -> int:
        """Seconds until the current code rotates."""
        now = int(self._clock().timestamp())
        return self._interval - (now % self._interval)

    @staticmethod
    def _format_secret_for_display(secret: str) -> str:
        """Groups of 4 characters for manual entry."""
        return " ".join(secret[i : i + 4] for i in range(0, len(secret), 4))

    @staticmethod
    def _qr_data_url(uri: str) -> str:
        qr = qrcode.QRCode(
            version=1,
            error_correction=qrcode.constants.ERROR_CORRECT_L,
            box_size=10,
            border=5,
        )
        qr.add_data(uri)
        qr.make(fit=True)
        img = qr.make_image(fill_color="black", back_color="white")

        buffered = io.BytesIO()
        img.save(buffered, format="PNG")
        return "data:image/png;base64," + base64.b64encode(buffered.getvalue()).decode()

    @beartype
    async def enroll(
        self, user_id: str, data: dict[str, Any]
    ) -> Result[EnrollmentResult, AuthError]:
        """Begin or confirm TOTP enrollment.

        Args:
            user_id: Enrolling user
            data: Empty (or ``display_name``/``account_name``) to begin;
                ``factor_id`` and ``code`` to confirm

        Returns:
            Result containing the enrollment material or an error
        """
        if "factor_id" in data:
            return await self._confirm(user_id, str(data["factor_id"]), str(data.get("code", "")))

        account_name = data.get("account_name")
        if not account_name:
            user = await self._storage.select_one(RecordSet.USERS, {"id": user_id})
            account_name = user["email"] if user is not None else user_id

        secret = pyotp.random_base32()
        uri = self._totp(secret).provisioning_uri(
            name=str(account_name), issuer_name=self._issuer
        )
        factor = await self._factors.add(
            user_id,
            FactorType.TOTP,
            str(data.get("display_name") or "Authenticator app"),
            secret=self._box.encrypt(secret),
            verified_at=None,
            is_primary=False,
        )
        return Ok(
            EnrollmentResult(
                factor=factor,
                factor_type=FactorType.TOTP,
                pending=True,
                secret=secret,
                provisioning_uri=uri,
                qr_code=self._qr_data_url(uri),
                manual_entry_key=self._format_secret_for_display(secret),
            )
        )

    async def _confirm(
        self, user_id: str, factor_id: str, code: str
    ) -> Result[EnrollmentResult, AuthError]:
        row = await self._factors.get(user_id, factor_id)
        if row is None or row["factor_type"] != FactorType.TOTP.value:
            return Err(AuthError(AuthErrorCode.FACTOR_NOT_FOUND))
        if row.get("verified_at") is not None:
            return Err(AuthError(AuthErrorCode.INVALID_ENROLLMENT, "Factor already confirmed"))

        if not await self._accept(row, code):
            return Err(AuthError(AuthErrorCode.VERIFICATION_FAILED, "Invalid TOTP code"))

        await self._storage.update(
            RecordSet.MFA_FACTORS,
            {"id": factor_id},
            {"verified_at": self._clock(), "is_primary": await self._is_first(user_id)},
        )
        confirmed = await self._factors.get(user_id, factor_id)
        if confirmed is None:
            return Err(AuthError(AuthErrorCode.FACTOR_NOT_FOUND))
        return Ok(EnrollmentResult(factor=factor_from_row(confirmed), factor_type=FactorType.TOTP))

    async def _is_first(self, user_id: str) -> bool:
        return not await self._factors.list_for_user(user_id)

    @beartype
    async def verify(self, user_id: str, proof: Proof) -> Result[bool, AuthError]:
        code = str(proof.get("code", "")).replace(" ", "")
        if not code.isdigit() or len(code) != self._digits:
            return Ok(False)

        for row in await self._factors.rows_of_type(user_id, FactorType.TOTP):
            if row.get("verified_at") is None:
                continue
            if await self._accept(row, code):
                await self._factors.touch(row["id"])
                return Ok(True)
        return Ok(False)

    async def _accept(self, row: Row, code: str) -> bool:
        """Match ``code`` within the drift window and burn its time step."""
        try:
            secret = self._box.decrypt(row["secret"])
        except ValueError:
            logger.error("TOTP secret for factor %s could not be decrypted", row["id"])
            return False

        totp = self._totp(secret)
        current_step = int(self._clock().timestamp()) // self._interval
        last_used = row.get("last_used_step")
        for offset in range(-self._window, self._window + 1):
            step = current_step + offset
            if last_used is not None and step <= last_used:
                continue
            if constant_time_equals(totp.at(step * self._interval), code):
                claimed = await self._storage.update(
                    RecordSet.MFA_FACTORS,
                    {"id": row["id"], "last_used_step": last_used},
                    {"last_used_step": step},
                )
                return claimed == 1
        return False
