# AdaptiveMFA - Risk-Adaptive MFA Orchestration Core
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Storage collaborator contract.

Records are plain ``dict`` rows grouped into named record sets. Filters are
equality matches on columns plus an optional half-open time window on one
timestamp column. ``update``, ``increment`` and ``delete`` are atomic
conditional operations: the filter is evaluated and the write applied as one
step, so two concurrent callers can never both observe the same pre-state.
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from datetime import datetime
from enum import Enum
from typing import Any

from attrs import field, frozen

Row = dict[str, Any]
Where = Mapping[str, Any]


class StorageUnavailableError(Exception):
    """The record store could not be reached or rejected the operation."""


class RecordSet(str, Enum):
    """Named record sets (tables)."""

    USERS = "users"
    PASSWORD_HISTORY = "password_history"
    FAILED_LOGINS = "failed_logins"
    LOGIN_EVENTS = "login_events"
    USER_DEVICES = "user_devices"
    USER_LOCATIONS = "user_locations"
    RISK_ASSESSMENTS = "risk_assessments"
    MFA_FACTORS = "mfa_factors"
    USER_MFA_SETTINGS = "user_mfa_settings"
    ORG_MFA_POLICIES = "org_mfa_policies"
    CHALLENGES = "mfa_challenges"
    CHALLENGE_VERIFICATIONS = "mfa_challenge_verifications"
    CHALLENGE_TOMBSTONES = "mfa_challenge_tombstones"
    ONE_TIME_CODES = "one_time_codes"
    BACKUP_CODES = "backup_codes"
    WEBAUTHN_CREDENTIALS = "webauthn_credentials"
    WEBAUTHN_CEREMONIES = "webauthn_ceremonies"
    SESSIONS = "user_sessions"
    AUDIT_LOG = "auth_audit_log"


@frozen
class TimeWindow:
    """Half-open range ``since <= row[column] < until`` on a timestamp column."""

    column: str = field()
    since: datetime | None = field(default=None)
    until: datetime | None = field(default=None)

    def contains(self, value: datetime | None) -> bool:
        if value is None:
            return False
        if self.since is not None and value < self.since:
            return False
        if self.until is not None and value >= self.until:
            return False
        return True


class Storage(ABC):
    """Record store used by every component; implementations must be atomic."""

    @abstractmethod
    async def insert(self, records: RecordSet, row: Row) -> Row:
        """Insert a row and return it as stored."""

    @abstractmethod
    async def select(
        self,
        records: RecordSet,
        where: Where | None = None,
        *,
        window: TimeWindow | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Row]:
        """Return matching rows, optionally ordered and limited."""

    @abstractmethod
    async def count(
        self,
        records: RecordSet,
        where: Where | None = None,
        *,
        window: TimeWindow | None = None,
    ) -> int:
        """Count matching rows."""

    @abstractmethod
    async def update(
        self,
        records: RecordSet,
        where: Where,
        values: Mapping[str, Any],
    ) -> int:
        """Apply ``values`` to every matching row; return the number changed."""

    @abstractmethod
    async def increment(
        self,
        records: RecordSet,
        where: Where,
        column: str,
        amount: int = 1,
    ) -> Row | None:
        """Atomically add ``amount`` to ``column`` of one matching row.

        Returns the row after the increment, or None when nothing matched.
        """

    @abstractmethod
    async def delete(
        self,
        records: RecordSet,
        where: Where | None = None,
        *,
        window: TimeWindow | None = None,
    ) -> int:
        """Delete matching rows; return how many were removed."""

    async def select_one(self, records: RecordSet, where: Where) -> Row | None:
        """First matching row or None."""
        rows = await self.select(records, where, limit=1)
        return rows[0] if rows else None

    async def close(self) -> None:
        """Release any held resources."""
