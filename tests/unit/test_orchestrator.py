"""Unit tests for the challenge orchestrator."""

import asyncio
from datetime import timedelta
from uuid import uuid4

import pytest

from adaptive_mfa.core.auth.audit import AuditEventType
from adaptive_mfa.core.auth.components import build_components
from adaptive_mfa.core.auth.errors import AuthErrorCode
from adaptive_mfa.core.auth.models import (
    AuthStatus,
    DeviceInfo,
    Enforcement,
    FactorType,
    GeoLocation,
    MFAPolicy,
    RiskLevel,
    VerificationStatus,
)
from adaptive_mfa.core.auth.reputation import (
    IPReputation,
    StaticGeoResolver,
    StaticReputationService,
)
from adaptive_mfa.core.config import Settings
from adaptive_mfa.storage import InMemoryStorage, RecordSet, StorageUnavailableError

from conftest import PASSWORD, USER_EMAIL

TOR_EXIT = "198.51.100.7"
WRONG_BACKUP_CODE = "ZZZZ-ZZZZ"


class UnavailableStorage(InMemoryStorage):
    """Store that cannot be read."""

    async def select(self, records, where=None, **kwargs):
        raise StorageUnavailableError("connection refused")


@pytest.fixture
def orchestrator(components):
    return components.orchestrator


@pytest.fixture
def require_mfa(components):
    """Save a REQUIRED user policy."""

    async def _require(user_id: str, **fields) -> None:
        await components.policy_store.save_user_policy(
            user_id, MFAPolicy(enforcement=Enforcement.REQUIRED, **fields)
        )

    return _require


@pytest.fixture
def challenged(orchestrator, user, enroll_totp, require_mfa, make_context):
    """A user with TOTP under a REQUIRED policy, holding a fresh challenge."""

    async def _challenge(**policy):
        secret, codes = await enroll_totp(user["id"])
        await require_mfa(user["id"], **policy)
        result = await orchestrator.authenticate(USER_EMAIL, PASSWORD, make_context())
        return result.unwrap(), secret, codes

    return _challenge


class TestAuthenticate:
    """Tests for primary authentication and the MFA decision."""

    async def test_low_risk_issues_session(self, orchestrator, user, make_context, components):
        """Test an optional policy at low risk goes straight to a session."""
        result = await orchestrator.authenticate(USER_EMAIL, PASSWORD, make_context())

        outcome = result.unwrap()
        assert outcome.status is AuthStatus.SESSION_ISSUED
        assert outcome.risk_level is RiskLevel.LOW
        assert outcome.challenge_id is None
        record = await components.sessions.resolve(outcome.session.access_token)
        assert record is not None and record.user_id == user["id"]
        events = await components.audit.events_for(user["id"], AuditEventType.LOGIN_SUCCESS)
        assert len(events) == 1

    async def test_successful_login_remembers_device(
        self, orchestrator, user, make_context, storage
    ):
        """Test a completed login records the device for later risk checks."""
        await orchestrator.authenticate(USER_EMAIL, PASSWORD, make_context())

        assert await storage.count(RecordSet.USER_DEVICES, {"user_id": user["id"]}) == 1

    async def test_wrong_password(self, orchestrator, user, make_context, components):
        """Test a wrong password fails generically and is audited."""
        result = await orchestrator.authenticate(USER_EMAIL, "Wrong-Horse-42!", make_context())

        assert result.unwrap_err().code is AuthErrorCode.INVALID_CREDENTIALS
        events = await components.audit.events_for(
            user["id"], AuditEventType.AUTHENTICATION_FAILED
        )
        assert len(events) == 1
        assert not events[0].success

    async def test_unknown_email(self, orchestrator, make_context, storage):
        """Test an unknown account gets the same error and is still audited."""
        result = await orchestrator.authenticate("nobody@example.com", PASSWORD, make_context())

        assert result.unwrap_err().code is AuthErrorCode.INVALID_CREDENTIALS
        assert await storage.count(RecordSet.AUDIT_LOG, {"email": "nobody@example.com"}) == 1

    async def test_lockout(self, orchestrator, user, make_context, components):
        """Test repeated failures lock the account even for the right password."""
        for _ in range(5):
            await orchestrator.authenticate(USER_EMAIL, "Wrong-Horse-42!", make_context())

        result = await orchestrator.authenticate(USER_EMAIL, PASSWORD, make_context())

        assert result.unwrap_err().code is AuthErrorCode.ACCOUNT_LOCKED
        events = await components.audit.events_for(user["id"], AuditEventType.ACCOUNT_LOCKED)
        assert len(events) == 1

    async def test_enrollment_required(self, orchestrator, user, require_mfa, make_context):
        """Test a REQUIRED policy with nothing enrolled demands enrollment."""
        await require_mfa(user["id"])

        result = await orchestrator.authenticate(USER_EMAIL, PASSWORD, make_context())

        outcome = result.unwrap()
        assert outcome.status is AuthStatus.ENROLLMENT_REQUIRED
        assert outcome.session is None
        assert FactorType.TOTP in outcome.available_factors

    async def test_risk_alone_triggers_challenge(
        self, make_components, user, enroll_totp, make_context
    ):
        """Test an anonymizing address demands MFA under an optional policy."""
        orchestrator = make_components(
            reputation=StaticReputationService(
                [], {TOR_EXIT: IPReputation(is_tor=True, threat_score=80)}
            )
        ).orchestrator
        await enroll_totp(user["id"])

        result = await orchestrator.authenticate(USER_EMAIL, PASSWORD, make_context(TOR_EXIT))

        outcome = result.unwrap()
        assert outcome.status is AuthStatus.MFA_REQUIRED
        assert outcome.risk_level is RiskLevel.MEDIUM
        assert outcome.risk_score == 31.0
        assert outcome.available_factors == [FactorType.TOTP, FactorType.BACKUP_CODE]
        assert outcome.factor_count == 1
        assert outcome.session is None

    async def test_storage_outage(self, settings, clock, make_context):
        """Test an unreadable store is reported, not raised."""
        orchestrator = build_components(settings, UnavailableStorage(), clock=clock).orchestrator

        result = await orchestrator.authenticate(USER_EMAIL, PASSWORD, make_context())

        assert result.unwrap_err().code is AuthErrorCode.STORAGE_UNAVAILABLE


class TestVerifyChallenge:
    """Tests for completing challenges."""

    async def test_totp_completes_challenge(
        self, orchestrator, challenged, make_context, components
    ):
        """Test one good factor completes a single-factor challenge exactly once."""
        outcome, secret, _ = await challenged()
        code = components.totp.current_code(secret)

        verified = await orchestrator.verify_challenge(
            outcome.challenge_id, FactorType.TOTP, {"code": code}, make_context()
        )

        result = verified.unwrap()
        assert result.status is VerificationStatus.COMPLETE
        assert result.satisfied_factors == [FactorType.TOTP]
        assert await components.sessions.resolve(result.session.access_token) is not None

        again = await orchestrator.verify_challenge(
            outcome.challenge_id, FactorType.TOTP, {"code": code}, make_context()
        )
        assert again.unwrap_err().code is AuthErrorCode.CHALLENGE_NOT_FOUND

    async def test_attempt_ceiling(self, orchestrator, challenged, make_context):
        """Test failures count down and the third one closes the challenge."""
        outcome, _, _ = await challenged()

        remaining = []
        for _ in range(2):
            retry = await orchestrator.verify_challenge(
                outcome.challenge_id,
                FactorType.BACKUP_CODE,
                {"code": WRONG_BACKUP_CODE},
                make_context(),
            )
            assert retry.unwrap().status is VerificationStatus.RETRY
            remaining.append(retry.unwrap().remaining_attempts)
        final = await orchestrator.verify_challenge(
            outcome.challenge_id, FactorType.BACKUP_CODE, {"code": WRONG_BACKUP_CODE}, make_context()
        )
        after = await orchestrator.verify_challenge(
            outcome.challenge_id, FactorType.BACKUP_CODE, {"code": WRONG_BACKUP_CODE}, make_context()
        )

        assert remaining == [2, 1]
        assert final.unwrap_err().code is AuthErrorCode.MAX_ATTEMPTS_EXCEEDED
        assert after.unwrap_err().code is AuthErrorCode.MAX_ATTEMPTS_EXCEEDED

    async def test_correct_proof_after_lockout_is_refused(
        self, orchestrator, challenged, make_context
    ):
        """Test a closed challenge stays closed even for a valid code."""
        outcome, _, codes = await challenged()
        for _ in range(3):
            await orchestrator.verify_challenge(
                outcome.challenge_id,
                FactorType.BACKUP_CODE,
                {"code": WRONG_BACKUP_CODE},
                make_context(),
            )

        result = await orchestrator.verify_challenge(
            outcome.challenge_id, FactorType.BACKUP_CODE, {"code": codes[0]}, make_context()
        )

        assert result.unwrap_err().code is AuthErrorCode.MAX_ATTEMPTS_EXCEEDED

    async def test_expiry(self, orchestrator, challenged, make_context, clock):
        """Test an expired challenge reports expiry until its tombstone lapses."""
        outcome, _, codes = await challenged()
        clock.advance(seconds=300)

        first = await orchestrator.verify_challenge(
            outcome.challenge_id, FactorType.BACKUP_CODE, {"code": codes[0]}, make_context()
        )
        second = await orchestrator.verify_challenge(
            outcome.challenge_id, FactorType.BACKUP_CODE, {"code": codes[0]}, make_context()
        )
        clock.advance(seconds=900)
        third = await orchestrator.verify_challenge(
            outcome.challenge_id, FactorType.BACKUP_CODE, {"code": codes[0]}, make_context()
        )

        assert first.unwrap_err().code is AuthErrorCode.CHALLENGE_EXPIRED
        assert second.unwrap_err().code is AuthErrorCode.CHALLENGE_EXPIRED
        assert third.unwrap_err().code is AuthErrorCode.CHALLENGE_NOT_FOUND

    async def test_unknown_challenge(self, orchestrator, make_context):
        """Test an id that never existed is not found."""
        result = await orchestrator.verify_challenge(
            "no-such-challenge", FactorType.TOTP, {"code": "123456"}, make_context()
        )

        assert result.unwrap_err().code is AuthErrorCode.CHALLENGE_NOT_FOUND

    async def test_two_factors_must_differ(
        self, orchestrator, challenged, make_context, components, clock
    ):
        """Test the same factor type twice counts once toward the requirement."""
        outcome, secret, codes = await challenged(min_factors=2)
        assert outcome.factor_count == 2

        first = await orchestrator.verify_challenge(
            outcome.challenge_id,
            FactorType.TOTP,
            {"code": components.totp.current_code(secret)},
            make_context(),
        )
        clock.advance(seconds=30)
        repeat = await orchestrator.verify_challenge(
            outcome.challenge_id,
            FactorType.TOTP,
            {"code": components.totp.current_code(secret)},
            make_context(),
        )
        final = await orchestrator.verify_challenge(
            outcome.challenge_id, FactorType.BACKUP_CODE, {"code": codes[0]}, make_context()
        )

        assert first.unwrap().status is VerificationStatus.ADDITIONAL_VERIFICATION_REQUIRED
        assert first.unwrap().remaining_factors == 1
        assert repeat.unwrap().status is VerificationStatus.ADDITIONAL_VERIFICATION_REQUIRED
        assert repeat.unwrap().satisfied_factors == [FactorType.TOTP]
        assert final.unwrap().status is VerificationStatus.COMPLETE
        assert final.unwrap().satisfied_factors == [FactorType.TOTP, FactorType.BACKUP_CODE]

    async def test_password_and_disallowed_types(self, orchestrator, challenged, make_context):
        """Test the primary credential and types outside the policy are refused."""
        outcome, _, _ = await challenged(allowed_factors=[FactorType.TOTP, FactorType.BACKUP_CODE])

        password = await orchestrator.verify_challenge(
            outcome.challenge_id, FactorType.PASSWORD, {"password": PASSWORD}, make_context()
        )
        sms = await orchestrator.verify_challenge(
            outcome.challenge_id, FactorType.SMS, {"code": "123456"}, make_context()
        )
        started = await orchestrator.start_factor(outcome.challenge_id, FactorType.SMS)

        assert password.unwrap_err().code is AuthErrorCode.UNSUPPORTED_FACTOR
        assert sms.unwrap_err().code is AuthErrorCode.UNSUPPORTED_FACTOR
        assert started.unwrap_err().code is AuthErrorCode.UNSUPPORTED_FACTOR

    async def test_low_backup_codes_flagged(
        self, orchestrator, challenged, make_context, components, user
    ):
        """Test spending a backup code near the end of the batch raises the flag."""
        outcome, _, codes = await challenged()
        for code in codes[:8]:
            await components.backup_codes.verify(user["id"], {"code": code})

        result = await orchestrator.verify_challenge(
            outcome.challenge_id, FactorType.BACKUP_CODE, {"code": codes[8]}, make_context()
        )

        assert result.unwrap().status is VerificationStatus.COMPLETE
        assert result.unwrap().low_backup_codes
        events = await components.audit.events_for(user["id"], AuditEventType.BACKUP_CODES_LOW)
        assert events[0].event_data["remaining"] == 1

    async def test_email_factor(
        self, orchestrator, user, require_mfa, make_context, email_channel, components
    ):
        """Test starting the email factor sends a code that completes the challenge."""
        begun = await orchestrator.enroll_factor(
            user["id"], FactorType.EMAIL, {"destination": USER_EMAIL}
        )
        await orchestrator.enroll_factor(
            user["id"],
            FactorType.EMAIL,
            {"factor_id": begun.unwrap().factor.id, "code": email_channel.last_code},
        )
        await require_mfa(user["id"])
        outcome = (await orchestrator.authenticate(USER_EMAIL, PASSWORD, make_context())).unwrap()

        started = await orchestrator.start_factor(outcome.challenge_id, FactorType.EMAIL)
        verified = await orchestrator.verify_challenge(
            outcome.challenge_id,
            FactorType.EMAIL,
            {"code": email_channel.last_code},
            make_context(),
        )

        assert started.unwrap().delivered_to == "a***@example.com"
        assert verified.unwrap().status is VerificationStatus.COMPLETE
        events = await components.audit.events_for(user["id"], AuditEventType.OTP_SENT)
        assert events[0].event_data["channel"] == "email"

    async def test_concurrent_completion_has_one_winner(
        self, orchestrator, challenged, make_context
    ):
        """Test two valid proofs racing for one challenge issue one session."""
        outcome, _, codes = await challenged()

        results = await asyncio.gather(
            *(
                orchestrator.verify_challenge(
                    outcome.challenge_id,
                    FactorType.BACKUP_CODE,
                    {"code": code},
                    make_context(),
                )
                for code in codes[:2]
            )
        )

        completed = [r for r in results if r.is_ok()]
        assert len(completed) == 1
        assert completed[0].unwrap().status is VerificationStatus.COMPLETE
        assert [r.unwrap_err().code for r in results if r.is_err()] == [
            AuthErrorCode.CHALLENGE_NOT_FOUND
        ]

    async def test_high_risk_challenge_under_optional_policy(
        self, make_components, user, enroll_totp, make_context, storage, clock
    ):
        """Test a HIGH risk login is challenged, completed by TOTP and not replayable."""
        components = make_components(
            geo=StaticGeoResolver({TOR_EXIT: GeoLocation(country="RU")}),
            reputation=StaticReputationService(
                [], {TOR_EXIT: IPReputation(is_tor=True, threat_score=80)}
            ),
        )
        orchestrator = components.orchestrator
        secret, _ = await enroll_totp(user["id"])
        await storage.insert(
            RecordSet.USER_LOCATIONS,
            {
                "id": str(uuid4()),
                "user_id": user["id"],
                "ip_address": "203.0.113.10",
                "country": "US",
                "created_at": clock() - timedelta(minutes=30),
            },
        )
        for minute in range(1, 7):
            await storage.insert(
                RecordSet.LOGIN_EVENTS,
                {
                    "id": str(uuid4()),
                    "user_id": user["id"],
                    "ip_address": TOR_EXIT,
                    "success": False,
                    "created_at": clock() - timedelta(minutes=minute),
                },
            )
        context = make_context(TOR_EXIT, device=DeviceInfo(platform="windows", is_trusted=False))

        outcome = (await orchestrator.authenticate(USER_EMAIL, PASSWORD, context)).unwrap()
        assert outcome.status is AuthStatus.MFA_REQUIRED
        assert outcome.risk_level is RiskLevel.HIGH
        assert FactorType.TOTP in outcome.available_factors
        assert outcome.factor_count == 1

        code = components.totp.current_code(secret)
        verified = await orchestrator.verify_challenge(
            outcome.challenge_id, FactorType.TOTP, {"code": code}, context
        )
        replayed = await orchestrator.verify_challenge(
            outcome.challenge_id, FactorType.TOTP, {"code": code}, context
        )

        assert verified.unwrap().status is VerificationStatus.COMPLETE
        assert verified.unwrap().session is not None
        assert replayed.unwrap_err().code is AuthErrorCode.CHALLENGE_NOT_FOUND

    async def test_challenge_closed_during_verification(
        self, orchestrator, challenged, make_context, components, storage, monkeypatch
    ):
        """Test a proof landing on a just-closed challenge leaves no verification behind."""
        outcome, secret, _ = await challenged()
        insert = storage.insert

        async def close_first(records, row):
            if records is RecordSet.CHALLENGE_VERIFICATIONS:
                await storage.delete(RecordSet.CHALLENGES, {"id": outcome.challenge_id})
            return await insert(records, row)

        monkeypatch.setattr(storage, "insert", close_first)

        result = await orchestrator.verify_challenge(
            outcome.challenge_id,
            FactorType.TOTP,
            {"code": components.totp.current_code(secret)},
            make_context(),
        )

        assert result.unwrap_err().code is AuthErrorCode.CHALLENGE_NOT_FOUND
        assert await storage.count(RecordSet.CHALLENGE_VERIFICATIONS) == 0


class TestFactorManagement:
    """Tests for enrollment and removal through the orchestrator."""

    async def test_first_factor_issues_backup_codes(self, orchestrator, user, enroll_totp, components):
        """Test confirming the first factor returns a batch of backup codes."""
        _, codes = await enroll_totp(user["id"])

        assert len(codes) == 10
        factors = (await orchestrator.list_factors(user["id"])).unwrap()
        assert [f.factor_type for f in factors] == [FactorType.TOTP, FactorType.BACKUP_CODE]
        events = await components.audit.events_for(user["id"], AuditEventType.MFA_FACTOR_ENROLLED)
        assert [e.event_data["factor_type"] for e in events] == ["totp"]

    async def test_unknown_user(self, orchestrator):
        """Test enrollment for an account that does not exist fails."""
        result = await orchestrator.enroll_factor("missing", FactorType.TOTP, {})

        assert result.unwrap_err().code is AuthErrorCode.INVALID_ENROLLMENT

    async def test_failed_enrollment_is_audited(self, orchestrator, user, components):
        """Test enrollment errors leave an audit trail."""
        result = await orchestrator.enroll_factor(
            user["id"], FactorType.SMS, {"destination": "nope"}
        )

        assert result.unwrap_err().code is AuthErrorCode.INVALID_ENROLLMENT
        events = await components.audit.events_for(user["id"], AuditEventType.MFA_FACTOR_ENROLLED)
        assert events[0].event_data["reason"] == "invalid_enrollment"

    async def test_factor_limit(self, make_components, settings, user):
        """Test new enrollments stop at the configured limit."""
        limited = make_components(settings.model_copy(update={"max_factors_per_user": 1}))
        orchestrator = limited.orchestrator

        assert (await orchestrator.enroll_factor(user["id"], FactorType.TOTP, {})).is_ok()
        result = await orchestrator.enroll_factor(
            user["id"], FactorType.SMS, {"destination": "+15550109999"}
        )

        assert result.unwrap_err().code is AuthErrorCode.FACTOR_LIMIT_REACHED

    async def test_last_factor_protected(self, orchestrator, user, require_mfa, components):
        """Test the only factor cannot be removed while MFA is required."""
        material = (await components.totp.enroll(user["id"], {})).unwrap()
        await components.totp.enroll(
            user["id"],
            {"factor_id": material.factor.id, "code": components.totp.current_code(material.secret)},
        )
        await require_mfa(user["id"])

        result = await orchestrator.remove_factor(
            user["id"], material.factor.id, {"factor_type": "password", "password": PASSWORD}
        )

        assert result.unwrap_err().code is AuthErrorCode.LAST_FACTOR_REMOVAL_DENIED
        assert len((await orchestrator.list_factors(user["id"])).unwrap()) == 1

    async def test_spent_backup_codes_do_not_count(
        self, orchestrator, user, enroll_totp, require_mfa, make_context, components
    ):
        """Test a backup-code factor with no codes left is not a usable factor."""
        _, codes = await enroll_totp(user["id"])
        await require_mfa(user["id"])
        for code in codes:
            assert (await components.backup_codes.verify(user["id"], {"code": code})).unwrap()
        totp = (await orchestrator.list_factors(user["id"])).unwrap()[0]
        assert totp.factor_type is FactorType.TOTP

        removal = await orchestrator.remove_factor(
            user["id"], totp.id, {"factor_type": "password", "password": PASSWORD}
        )
        login = await orchestrator.authenticate(USER_EMAIL, PASSWORD, make_context())

        assert removal.unwrap_err().code is AuthErrorCode.LAST_FACTOR_REMOVAL_DENIED
        assert login.unwrap().available_factors == [FactorType.TOTP]

    async def test_removal_requires_proof(self, orchestrator, user, components, storage):
        """Test removal needs a valid proof and then cleans up after the factor."""
        material = (await components.totp.enroll(user["id"], {})).unwrap()
        await components.totp.enroll(
            user["id"],
            {"factor_id": material.factor.id, "code": components.totp.current_code(material.secret)},
        )

        denied = await orchestrator.remove_factor(
            user["id"], material.factor.id, {"factor_type": "password", "password": "nope"}
        )
        removed = await orchestrator.remove_factor(
            user["id"], material.factor.id, {"factor_type": "password", "password": PASSWORD}
        )
        missing = await orchestrator.remove_factor(
            user["id"], material.factor.id, {"factor_type": "password", "password": PASSWORD}
        )

        assert denied.unwrap_err().code is AuthErrorCode.VERIFICATION_FAILED
        assert removed.unwrap().id == material.factor.id
        assert missing.unwrap_err().code is AuthErrorCode.FACTOR_NOT_FOUND
        assert await storage.count(RecordSet.MFA_FACTORS, {"user_id": user["id"]}) == 0

    async def test_removal_with_unenrolled_proof_type(self, orchestrator, user, enroll_totp):
        """Test only enrolled factor types can prove possession."""
        await enroll_totp(user["id"])
        factors = (await orchestrator.list_factors(user["id"])).unwrap()

        result = await orchestrator.remove_factor(
            user["id"], factors[0].id, {"factor_type": "webauthn", "credential": {}}
        )

        assert result.unwrap_err().code is AuthErrorCode.UNSUPPORTED_FACTOR


class TestSweep:
    """Tests for expired record cleanup."""

    async def test_sweep_tombstones_expired_challenges(
        self, orchestrator, challenged, make_context, clock
    ):
        """Test swept challenges still answer as expired."""
        outcome, _, codes = await challenged()
        clock.advance(seconds=301)

        removed = await orchestrator.sweep_expired()

        assert removed[RecordSet.CHALLENGES.value] == 1
        assert removed[RecordSet.CHALLENGE_TOMBSTONES.value] == 0
        result = await orchestrator.verify_challenge(
            outcome.challenge_id, FactorType.BACKUP_CODE, {"code": codes[0]}, make_context()
        )
        assert result.unwrap_err().code is AuthErrorCode.CHALLENGE_EXPIRED

        clock.advance(seconds=901)
        removed = await orchestrator.sweep_expired()
        assert removed[RecordSet.CHALLENGE_TOMBSTONES.value] == 1

    async def test_sweep_removes_stale_verifications(self, orchestrator, storage, clock):
        """Test verifications older than any live challenge are swept."""
        await storage.insert(
            RecordSet.CHALLENGE_VERIFICATIONS,
            {
                "id": str(uuid4()),
                "challenge_id": "closed-elsewhere",
                "factor_type": FactorType.TOTP.value,
                "verified_at": clock(),
            },
        )

        assert (await orchestrator.sweep_expired())[RecordSet.CHALLENGE_VERIFICATIONS.value] == 0
        clock.advance(seconds=301)
        removed = await orchestrator.sweep_expired()

        assert removed[RecordSet.CHALLENGE_VERIFICATIONS.value] == 1
        assert await storage.count(RecordSet.CHALLENGE_VERIFICATIONS) == 0
