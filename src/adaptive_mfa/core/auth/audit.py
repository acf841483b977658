# AdaptiveMFA - Risk-Adaptive MFA Orchestration Core
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Append-only authentication audit trail.

Every verification attempt, enrollment, removal and risk assessment is
written here regardless of outcome. Events are immutable once built and the
trail exposes no update or delete path.
"""

import logging
from collections.abc import Callable
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from beartype import beartype
from pydantic import BaseModel, ConfigDict, Field

from adaptive_mfa.storage.base import RecordSet, Storage

logger = logging.getLogger(__name__)


class AuditEventType(str, Enum):
    """Types of authentication audit events."""

    LOGIN_SUCCESS = "login_success"
    AUTHENTICATION_FAILED = "authentication_failed"
    ACCOUNT_LOCKED = "account_locked"
    RISK_ASSESSED = "risk_assessed"
    MFA_CHALLENGE_CREATED = "mfa_challenge_created"
    MFA_VERIFICATION = "mfa_verification"
    MFA_FACTOR_ENROLLED = "mfa_factor_enrolled"
    MFA_FACTOR_REMOVED = "mfa_factor_removed"
    OTP_SENT = "otp_sent"
    OTP_DELIVERY_FAILED = "otp_delivery_failed"
    BACKUP_CODES_GENERATED = "backup_codes_generated"
    BACKUP_CODES_LOW = "backup_codes_low"
    PASSWORD_CHANGED = "password_changed"
    SESSION_ISSUED = "session_issued"
    SESSION_REVOKED = "session_revoked"


class AuditEvent(BaseModel):
    """Immutable authentication audit event."""

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        validate_assignment=True,
        str_strip_whitespace=True,
        validate_default=True,
    )

    id: str = Field(default_factory=lambda: str(uuid4()))
    event_type: AuditEventType
    created_at: datetime
    success: bool
    user_id: str | None = None
    email: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    risk_score: float | None = Field(default=None, ge=0.0, le=100.0)
    event_data: dict[str, Any] = Field(default_factory=dict)

    def to_record(self) -> dict[str, Any]:
        """Row shape stored in the audit log."""
        record = self.model_dump()
        record["event_type"] = self.event_type.value
        return record


class AuditTrail:
    """Writes audit events to the append-only log record set."""

    def __init__(self, storage: Storage, clock: Callable[[], datetime]) -> None:
        self._storage = storage
        self._clock = clock

    @beartype
    async def record(
        self,
        event_type: AuditEventType,
        *,
        success: bool,
        user_id: str | None = None,
        email: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        risk_score: float | None = None,
        **event_data: Any,
    ) -> AuditEvent:
        """Append one event.

        Raises:
            StorageUnavailableError: If the log cannot be written.
        """
        event = AuditEvent(
            event_type=event_type,
            created_at=self._clock(),
            success=success,
            user_id=user_id,
            email=email,
            ip_address=ip_address,
            user_agent=user_agent,
            risk_score=risk_score,
            event_data=event_data,
        )
        await self._storage.insert(RecordSet.AUDIT_LOG, event.to_record())
        logger.info(
            "audit event=%s user=%s success=%s",
            event_type.value,
            user_id,
            success,
        )
        return event

    @beartype
    async def events_for(
        self, user_id: str, event_type: AuditEventType | None = None
    ) -> list[AuditEvent]:
        """Events for one user, oldest first."""
        where: dict[str, Any] = {"user_id": user_id}
        if event_type is not None:
            where["event_type"] = event_type.value
        rows = await self._storage.select(
            RecordSet.AUDIT_LOG, where, order_by="created_at"
        )
        return [AuditEvent.model_validate(row) for row in rows]
