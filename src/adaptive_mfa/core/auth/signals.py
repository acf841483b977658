# AdaptiveMFA - Risk-Adaptive MFA Orchestration Core
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Login history: the historical state risk scoring reads and the events that feed it."""

from collections import Counter
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from beartype import beartype

from adaptive_mfa.storage.base import RecordSet, Row, Storage, TimeWindow

from .models import AuthContext, GeoLocation


class LoginHistory:
    """Reads and appends the per-user login signal record sets."""

    def __init__(self, storage: Storage) -> None:
        self._storage = storage

    # -- reads -------------------------------------------------------------

    @beartype
    async def known_device(self, user_id: str, fingerprint: str) -> Row | None:
        return await self._storage.select_one(
            RecordSet.USER_DEVICES, {"user_id": user_id, "fingerprint": fingerprint}
        )

    @beartype
    async def recent_locations(self, user_id: str, limit: int = 10) -> list[Row]:
        """Most recent locations first."""
        return await self._storage.select(
            RecordSet.USER_LOCATIONS,
            {"user_id": user_id},
            order_by="created_at",
            descending=True,
            limit=limit,
        )

    @beartype
    async def common_login_hours(
        self, user_id: str, *, sample: int = 100, min_occurrences: int = 3
    ) -> set[int]:
        """UTC hours seen at least ``min_occurrences`` times in recent successes."""
        rows = await self._storage.select(
            RecordSet.LOGIN_EVENTS,
            {"user_id": user_id, "success": True},
            order_by="created_at",
            descending=True,
            limit=sample,
        )
        hours = Counter(row["created_at"].astimezone(timezone.utc).hour for row in rows)
        return {hour for hour, seen in hours.items() if seen >= min_occurrences}

    @beartype
    async def login_count(self, user_id: str, since: datetime) -> int:
        return await self._storage.count(
            RecordSet.LOGIN_EVENTS,
            {"user_id": user_id, "success": True},
            window=TimeWindow("created_at", since=since),
        )

    @beartype
    async def password_change_count(self, user_id: str, since: datetime) -> int:
        """Changes since ``since``; the password set at sign-up is not a change."""
        return await self._storage.count(
            RecordSet.PASSWORD_HISTORY,
            {"user_id": user_id, "is_change": True},
            window=TimeWindow("created_at", since=since),
        )

    @beartype
    async def distinct_addresses(self, user_id: str, since: datetime) -> int:
        rows = await self._storage.select(
            RecordSet.LOGIN_EVENTS,
            {"user_id": user_id},
            window=TimeWindow("created_at", since=since),
        )
        return len({row["ip_address"] for row in rows})

    @beartype
    async def failed_attempt_count(self, user_id: str, since: datetime) -> int:
        return await self._storage.count(
            RecordSet.LOGIN_EVENTS,
            {"user_id": user_id, "success": False},
            window=TimeWindow("created_at", since=since),
        )

    # -- writes ------------------------------------------------------------

    @beartype
    async def record_success(
        self, ctx: AuthContext, user_id: str, location: GeoLocation | None
    ) -> None:
        """Remember the device, location and time of a completed login."""
        now = ctx.timestamp
        await self._storage.insert(
            RecordSet.LOGIN_EVENTS,
            _event(user_id, ctx, success=True, country=location.country if location else None),
        )

        fingerprint = ctx.fingerprint()
        updated = await self._storage.update(
            RecordSet.USER_DEVICES,
            {"user_id": user_id, "fingerprint": fingerprint},
            {"last_seen_at": now},
        )
        if updated == 0:
            await self._storage.insert(
                RecordSet.USER_DEVICES,
                {
                    "id": str(uuid4()),
                    "user_id": user_id,
                    "fingerprint": fingerprint,
                    "user_agent": ctx.user_agent,
                    "first_seen_at": now,
                    "last_seen_at": now,
                },
            )

        if location is not None:
            await self._storage.insert(
                RecordSet.USER_LOCATIONS,
                {
                    "id": str(uuid4()),
                    "user_id": user_id,
                    "ip_address": ctx.ip_address,
                    "country": location.country,
                    "city": location.city,
                    "latitude": location.latitude,
                    "longitude": location.longitude,
                    "created_at": now,
                },
            )

    @beartype
    async def record_failure(self, ctx: AuthContext, user_id: str | None) -> None:
        """Count a failed primary check for velocity scoring."""
        await self._storage.insert(
            RecordSet.LOGIN_EVENTS, _event(user_id, ctx, success=False, country=None)
        )


def _event(
    user_id: str | None, ctx: AuthContext, *, success: bool, country: str | None
) -> dict[str, Any]:
    return {
        "id": str(uuid4()),
        "user_id": user_id,
        "email": ctx.email,
        "ip_address": ctx.ip_address,
        "user_agent": ctx.user_agent,
        "country": country,
        "success": success,
        "created_at": ctx.timestamp,
    }
