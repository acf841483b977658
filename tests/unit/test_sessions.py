"""Unit tests for session issuance."""

import pytest

from adaptive_mfa.core.auth.audit import AuditEventType
from adaptive_mfa.core.crypto import hash_token
from adaptive_mfa.storage import RecordSet


@pytest.fixture
def sessions(components):
    return components.sessions


class TestSessionIssuer:
    """Tests for issuing, resolving and revoking sessions."""

    async def test_issue_stores_only_hashes(self, sessions, user, make_context, storage, clock):
        """Test raw tokens are returned once and never persisted."""
        issued = await sessions.issue(user["id"], make_context())

        assert issued.access_token != issued.refresh_token
        assert (issued.expires_at - clock()).total_seconds() == 24 * 3600
        row = await storage.select_one(RecordSet.SESSIONS, {"id": issued.session_id})
        assert issued.access_token not in row.values()
        assert issued.refresh_token not in row.values()
        assert row["access_token_hash"] == hash_token(issued.access_token)

    async def test_session_bound_to_fingerprint(self, sessions, user, make_context):
        """Test the session records the attempt's device fingerprint."""
        ctx = make_context()
        issued = await sessions.issue(user["id"], ctx)

        record = await sessions.resolve(issued.access_token)

        assert record is not None
        assert record.user_id == user["id"]
        assert record.device_fingerprint == ctx.fingerprint()
        assert record.ip_address == ctx.ip_address

    async def test_unknown_and_expired_tokens(self, sessions, user, make_context, clock):
        """Test resolution fails for unknown tokens and after expiry."""
        issued = await sessions.issue(user["id"], make_context())

        assert await sessions.resolve("not-a-token") is None
        clock.advance(hours=23, minutes=59)
        assert await sessions.resolve(issued.access_token) is not None
        clock.advance(minutes=1)
        assert await sessions.resolve(issued.access_token) is None

    async def test_revoke(self, sessions, user, make_context, components):
        """Test revocation is effective once and audited."""
        issued = await sessions.issue(user["id"], make_context())

        assert await sessions.revoke(issued.session_id)
        assert not await sessions.revoke(issued.session_id)
        assert await sessions.resolve(issued.access_token) is None

        events = await components.audit.events_for(user["id"], AuditEventType.SESSION_ISSUED)
        assert len(events) == 1

    async def test_each_session_unique(self, sessions, user, make_context):
        """Test two sessions never share tokens."""
        first = await sessions.issue(user["id"], make_context())
        second = await sessions.issue(user["id"], make_context())

        assert first.session_id != second.session_id
        assert first.access_token != second.access_token
