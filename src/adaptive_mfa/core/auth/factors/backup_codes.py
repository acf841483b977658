# AdaptiveMFA - Risk-Adaptive MFA Orchestration Core
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Single-use recovery codes."""

import logging
import secrets
from typing import Any
from uuid import uuid4

from beartype import beartype

from adaptive_mfa.core.auth.errors import AuthError
from adaptive_mfa.core.auth.models import (
    BackupCodeStatus,
    EnrolledFactor,
    EnrollmentResult,
    FactorType,
)
from adaptive_mfa.core.crypto import constant_time_equals, hash_code
from adaptive_mfa.core.result_types import Ok, Result
from adaptive_mfa.storage.base import RecordSet, Row

from .base import FactorVerifier, Proof, factor_from_row

logger = logging.getLogger(__name__)

# No 0/O or 1/I so codes survive being read aloud or copied by hand.
CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


class BackupCodeVerifier(FactorVerifier):
    """Recovery codes stored as peppered HMAC hashes.

    A new batch replaces every unused code of the previous one. Each code
    is consumed by a conditional update, so concurrent attempts with the
    same code cannot both succeed.
    """

    factor_type = FactorType.BACKUP_CODE

    def _generate_code(self) -> str:
        length = self._settings.backup_code_length
        raw = "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))
        half = length // 2
        return f"{raw[:half]}-{raw[half:]}"

    @staticmethod
    def clean(code: str) -> str:
        """Normalize user input: no dashes or spaces, upper case."""
        return code.replace("-", "").replace(" ", "").upper()

    def _hash(self, code: str) -> str:
        return hash_code(self.clean(code), self._settings.secret_key)

    @beartype
    async def generate(self, user_id: str) -> list[str]:
        """Replace the user's unused codes with a fresh batch.

        Returns:
            The plaintext codes; they are not retrievable afterwards
        """
        await self._storage.delete(
            RecordSet.BACKUP_CODES, {"user_id": user_id, "used": False}
        )

        now = self._clock()
        codes = [self._generate_code() for _ in range(self._settings.backup_code_count)]
        for code in codes:
            await self._storage.insert(
                RecordSet.BACKUP_CODES,
                {
                    "id": str(uuid4()),
                    "user_id": user_id,
                    "code_hash": self._hash(code),
                    "used": False,
                    "created_at": now,
                    "used_at": None,
                },
            )

        await self._ensure_factor(user_id)
        logger.info("Generated %d backup codes for user %s", len(codes), user_id)
        return codes

    async def _ensure_factor(self, user_id: str) -> EnrolledFactor:
        rows = await self._factors.rows_of_type(user_id, FactorType.BACKUP_CODE)
        if rows:
            return factor_from_row(rows[0])
        return await self._factors.add(
            user_id, FactorType.BACKUP_CODE, "Backup codes", is_primary=False
        )

    @beartype
    async def enroll(
        self, user_id: str, data: dict[str, Any]
    ) -> Result[EnrollmentResult, AuthError]:
        codes = await self.generate(user_id)
        factor = await self._ensure_factor(user_id)
        return Ok(
            EnrollmentResult(
                factor=factor, factor_type=FactorType.BACKUP_CODE, backup_codes=codes
            )
        )

    @beartype
    async def verify(self, user_id: str, proof: Proof) -> Result[bool, AuthError]:
        code = self.clean(str(proof.get("code", "")))
        if len(code) != self._settings.backup_code_length:
            return Ok(False)

        candidate = hash_code(code, self._settings.secret_key)
        unused = await self._storage.select(
            RecordSet.BACKUP_CODES, {"user_id": user_id, "used": False}
        )

        # Compare against every hash so timing does not reveal position.
        match: Row | None = None
        for row in unused:
            if constant_time_equals(candidate, row["code_hash"]) and match is None:
                match = row
        if match is None:
            return Ok(False)

        claimed = await self._storage.update(
            RecordSet.BACKUP_CODES,
            {"id": match["id"], "used": False},
            {"used": True, "used_at": self._clock()},
        )
        if claimed != 1:
            return Ok(False)

        for row in await self._factors.rows_of_type(user_id, FactorType.BACKUP_CODE):
            await self._factors.touch(row["id"])
        return Ok(True)

    @beartype
    async def remaining(self, user_id: str) -> int:
        return await self._storage.count(
            RecordSet.BACKUP_CODES, {"user_id": user_id, "used": False}
        )

    @beartype
    async def is_low(self, user_id: str) -> bool:
        return await self.remaining(user_id) <= self._settings.backup_code_low_threshold

    @beartype
    async def status(self, user_id: str) -> BackupCodeStatus:
        rows = await self._storage.select(
            RecordSet.BACKUP_CODES, {"user_id": user_id}, order_by="created_at"
        )
        remaining = sum(1 for row in rows if not row["used"])
        return BackupCodeStatus(
            total=len(rows),
            remaining=remaining,
            used=len(rows) - remaining,
            low=remaining <= self._settings.backup_code_low_threshold,
            generated_at=rows[-1]["created_at"] if rows else None,
        )

    async def cleanup(self, user_id: str, factor_row: Row) -> None:
        await self._storage.delete(RecordSet.BACKUP_CODES, {"user_id": user_id})
