# AdaptiveMFA - Risk-Adaptive MFA Orchestration Core
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Opaque session token issuance."""

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from uuid import uuid4

from beartype import beartype

from adaptive_mfa.core.config import Settings
from adaptive_mfa.core.crypto import constant_time_equals, generate_token, hash_token
from adaptive_mfa.storage.base import RecordSet, Row, Storage

from .audit import AuditEventType, AuditTrail
from .models import AuthContext, IssuedSession, SessionRecord

logger = logging.getLogger(__name__)


def _record_from_row(row: Row) -> SessionRecord:
    return SessionRecord(
        id=row["id"],
        user_id=row["user_id"],
        device_fingerprint=row["device_fingerprint"],
        ip_address=row["ip_address"],
        user_agent=row["user_agent"],
        created_at=row["created_at"],
        expires_at=row["expires_at"],
        revoked=bool(row.get("revoked")),
    )


class SessionIssuer:
    """Issues access/refresh token pairs.

    Raw tokens are returned to the caller once; storage only ever sees
    their SHA-256 hashes.
    """

    def __init__(
        self,
        storage: Storage,
        settings: Settings,
        clock: Callable[[], datetime],
        audit: AuditTrail | None = None,
    ) -> None:
        self._storage = storage
        self._clock = clock
        self._audit = audit
        self._ttl = timedelta(hours=settings.session_ttl_hours)

    @beartype
    async def issue(self, user_id: str, ctx: AuthContext) -> IssuedSession:
        """Create a session bound to the attempt's device fingerprint."""
        access_token = generate_token()
        refresh_token = generate_token()
        now = self._clock()
        expires_at = now + self._ttl
        session_id = str(uuid4())

        await self._storage.insert(
            RecordSet.SESSIONS,
            {
                "id": session_id,
                "user_id": user_id,
                "access_token_hash": hash_token(access_token),
                "refresh_token_hash": hash_token(refresh_token),
                "device_fingerprint": ctx.fingerprint(),
                "ip_address": ctx.ip_address,
                "user_agent": ctx.user_agent,
                "created_at": now,
                "expires_at": expires_at,
                "revoked": False,
                "revoked_at": None,
            },
        )
        if self._audit is not None:
            await self._audit.record(
                AuditEventType.SESSION_ISSUED,
                success=True,
                user_id=user_id,
                ip_address=ctx.ip_address,
                user_agent=ctx.user_agent,
                session_id=session_id,
            )

        return IssuedSession(
            session_id=session_id,
            user_id=user_id,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=expires_at,
        )

    @beartype
    async def resolve(self, access_token: str) -> SessionRecord | None:
        """Live session for an access token; None if unknown, expired or revoked."""
        token_hash = hash_token(access_token)
        row = await self._storage.select_one(
            RecordSet.SESSIONS, {"access_token_hash": token_hash}
        )
        if row is None or not constant_time_equals(row["access_token_hash"], token_hash):
            return None
        if row.get("revoked") or self._clock() >= row["expires_at"]:
            return None
        return _record_from_row(row)

    @beartype
    async def revoke(self, session_id: str) -> bool:
        """Revoke a session; False when it was unknown or already revoked."""
        revoked = await self._storage.update(
            RecordSet.SESSIONS,
            {"id": session_id, "revoked": False},
            {"revoked": True, "revoked_at": self._clock()},
        )
        if revoked and self._audit is not None:
            await self._audit.record(
                AuditEventType.SESSION_REVOKED, success=True, session_id=session_id
            )
        return revoked == 1
