# AdaptiveMFA - Risk-Adaptive MFA Orchestration Core
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Shared factor verifier contract, factor records and the verifier registry."""

from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Iterator
from datetime import datetime
from typing import Any, ClassVar
from uuid import uuid4

from beartype import beartype

from adaptive_mfa.core.auth.errors import AuthError
from adaptive_mfa.core.auth.models import (
    EnrolledFactor,
    EnrollmentResult,
    FactorStartResult,
    FactorType,
)
from adaptive_mfa.core.config import Settings
from adaptive_mfa.core.result_types import Ok, Result
from adaptive_mfa.storage.base import RecordSet, Row, Storage

Clock = Callable[[], datetime]
Proof = dict[str, Any]


def factor_from_row(row: Row) -> EnrolledFactor:
    """Public view of a factor row; secrets never leave storage this way."""
    return EnrolledFactor(
        id=row["id"],
        user_id=row["user_id"],
        factor_type=FactorType(row["factor_type"]),
        display_name=row["display_name"],
        is_primary=bool(row.get("is_primary")),
        created_at=row["created_at"],
        last_used_at=row.get("last_used_at"),
        verified_at=row.get("verified_at"),
    )


class FactorStore:
    """The ``mfa_factors`` record set."""

    def __init__(self, storage: Storage, clock: Clock) -> None:
        self._storage = storage
        self._clock = clock

    @beartype
    async def list_for_user(self, user_id: str) -> list[EnrolledFactor]:
        """Confirmed factors only; enrollments awaiting confirmation are hidden."""
        rows = await self._storage.select(
            RecordSet.MFA_FACTORS, {"user_id": user_id}, order_by="created_at"
        )
        return [factor_from_row(row) for row in rows if row.get("verified_at") is not None]

    @beartype
    async def rows_of_type(self, user_id: str, factor_type: FactorType) -> list[Row]:
        return await self._storage.select(
            RecordSet.MFA_FACTORS,
            {"user_id": user_id, "factor_type": factor_type.value},
            order_by="created_at",
        )

    @beartype
    async def get(self, user_id: str, factor_id: str) -> Row | None:
        return await self._storage.select_one(
            RecordSet.MFA_FACTORS, {"id": factor_id, "user_id": user_id}
        )

    @beartype
    async def count(self, user_id: str) -> int:
        return await self._storage.count(RecordSet.MFA_FACTORS, {"user_id": user_id})

    @beartype
    async def add(
        self,
        user_id: str,
        factor_type: FactorType,
        display_name: str,
        **attributes: Any,
    ) -> EnrolledFactor:
        """Insert a verified factor; the user's first factor becomes primary."""
        now = self._clock()
        row: Row = {
            "id": str(uuid4()),
            "user_id": user_id,
            "factor_type": factor_type.value,
            "display_name": display_name,
            "is_primary": not await self.list_for_user(user_id),
            "created_at": now,
            "last_used_at": None,
            "verified_at": now,
            "secret": None,
            "destination": None,
            "last_used_step": None,
        }
        row.update(attributes)
        return factor_from_row(await self._storage.insert(RecordSet.MFA_FACTORS, row))

    @beartype
    async def touch(self, factor_id: str) -> None:
        await self._storage.update(
            RecordSet.MFA_FACTORS, {"id": factor_id}, {"last_used_at": self._clock()}
        )

    @beartype
    async def remove(self, user_id: str, factor_id: str) -> bool:
        removed = await self._storage.delete(
            RecordSet.MFA_FACTORS, {"id": factor_id, "user_id": user_id}
        )
        return removed > 0


class FactorVerifier(ABC):
    """Enroll/verify contract shared by every factor type."""

    factor_type: ClassVar[FactorType]

    def __init__(
        self, storage: Storage, settings: Settings, factors: FactorStore, clock: Clock
    ) -> None:
        self._storage = storage
        self._settings = settings
        self._factors = factors
        self._clock = clock

    @abstractmethod
    async def enroll(
        self, user_id: str, data: dict[str, Any]
    ) -> Result[EnrollmentResult, AuthError]:
        """Register the factor and return the material shown to the user once."""

    @abstractmethod
    async def verify(self, user_id: str, proof: Proof) -> Result[bool, AuthError]:
        """Check a proof; ``Ok(False)`` is an ordinary wrong answer."""

    async def start(
        self, user_id: str, challenge_id: str
    ) -> Result[FactorStartResult, AuthError]:
        """Prepare the factor inside a challenge (send a code, issue options)."""
        return Ok(FactorStartResult(challenge_id=challenge_id, factor_type=self.factor_type))

    async def cleanup(self, user_id: str, factor_row: Row) -> None:
        """Remove factor-specific records after the factor itself is deleted."""


class FactorRegistry:
    """Closed mapping from factor type to its verifier."""

    def __init__(self, verifiers: Iterable[FactorVerifier]) -> None:
        self._verifiers: dict[FactorType, FactorVerifier] = {}
        for verifier in verifiers:
            if verifier.factor_type in self._verifiers:
                raise ValueError(f"Duplicate verifier for {verifier.factor_type.value}")
            self._verifiers[verifier.factor_type] = verifier

    def get(self, factor_type: FactorType) -> FactorVerifier | None:
        return self._verifiers.get(factor_type)

    def __contains__(self, factor_type: object) -> bool:
        return factor_type in self._verifiers

    def __iter__(self) -> Iterator[FactorType]:
        return iter(self._verifiers)
