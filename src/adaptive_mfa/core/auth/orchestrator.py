# AdaptiveMFA - Risk-Adaptive MFA Orchestration Core
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Challenge orchestrator: primary check, risk, policy, challenge, session.

A challenge lives in storage for at most ``challenge_ttl_seconds``. It ends
exactly once: completed (a session is issued), expired, or after too many
failed attempts. A short-lived tombstone remembers how it ended so later
calls with the same id get the same terminal answer.
"""

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any
from uuid import uuid4

from beartype import beartype

from adaptive_mfa.core.config import Settings
from adaptive_mfa.core.result_types import Err, Ok, Result
from adaptive_mfa.storage.base import (
    RecordSet,
    Row,
    Storage,
    StorageUnavailableError,
    TimeWindow,
)

from .audit import AuditEventType, AuditTrail
from .errors import AuthError, AuthErrorCode
from .factors import (
    BackupCodeVerifier,
    FactorRegistry,
    FactorStore,
    FactorVerifier,
    PasswordVerifier,
)
from .models import (
    AuthContext,
    AuthenticationResult,
    AuthStatus,
    Challenge,
    EnrolledFactor,
    EnrollmentResult,
    Enforcement,
    FactorStartResult,
    FactorType,
    IssuedSession,
    RiskLevel,
    TerminalReason,
    VerificationResult,
    VerificationStatus,
)
from .policy import PolicyResolver, PolicyStore
from .risk_engine import RiskEngine
from .sessions import SessionIssuer
from .signals import LoginHistory

logger = logging.getLogger(__name__)

_TERMINAL_ERRORS: dict[TerminalReason, AuthErrorCode] = {
    TerminalReason.COMPLETED: AuthErrorCode.CHALLENGE_NOT_FOUND,
    TerminalReason.EXPIRED: AuthErrorCode.CHALLENGE_EXPIRED,
    TerminalReason.MAX_ATTEMPTS: AuthErrorCode.MAX_ATTEMPTS_EXCEEDED,
}

# Types whose enrollment takes a second, confirming call.
_CONFIRMATION_KEYS = ("factor_id", "credential")

_STORAGE_DOWN = AuthError(AuthErrorCode.STORAGE_UNAVAILABLE)


def _challenge_from_row(row: Row) -> Challenge:
    return Challenge(
        id=row["id"],
        user_id=row["user_id"],
        ip_address=row["ip_address"],
        user_agent=row["user_agent"],
        created_at=row["created_at"],
        expires_at=row["expires_at"],
        factor_count=row["factor_count"],
        allowed_factors=[FactorType(value) for value in row["allowed_factors"]],
        failed_attempts=row.get("failed_attempts") or 0,
        risk_level=RiskLevel(row["risk_level"]),
    )


class ChallengeOrchestrator:
    """Caller-facing authentication operations.

    The orchestrator holds no state of its own; every challenge, counter and
    factor lives in the storage collaborator, so any number of instances can
    serve the same users.
    """

    def __init__(
        self,
        storage: Storage,
        settings: Settings,
        *,
        risk_engine: RiskEngine,
        policy_resolver: PolicyResolver,
        policy_store: PolicyStore,
        registry: FactorRegistry,
        factors: FactorStore,
        sessions: SessionIssuer,
        audit: AuditTrail,
        clock: Callable[[], datetime],
    ) -> None:
        self._storage = storage
        self._settings = settings
        self._risk = risk_engine
        self._resolver = policy_resolver
        self._policies = policy_store
        self._registry = registry
        self._factors = factors
        self._sessions = sessions
        self._audit = audit
        self._clock = clock
        self._history = LoginHistory(storage)

        passwords = registry.get(FactorType.PASSWORD)
        backup_codes = registry.get(FactorType.BACKUP_CODE)
        if not isinstance(passwords, PasswordVerifier) or not isinstance(
            backup_codes, BackupCodeVerifier
        ):
            raise ValueError("Registry must provide password and backup code verifiers")
        self._passwords = passwords
        self._backup_codes = backup_codes

        self._challenge_ttl = timedelta(seconds=settings.challenge_ttl_seconds)
        self._tombstone_ttl = timedelta(seconds=settings.challenge_tombstone_ttl_seconds)
        self._max_attempts = settings.challenge_max_attempts

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    @beartype
    async def authenticate(
        self, email: str, password: str, ctx: AuthContext
    ) -> Result[AuthenticationResult, AuthError]:
        """Primary check followed by the risk-adaptive MFA decision.

        Args:
            email: Account email
            password: Account password
            ctx: Attempt context (address, device, timestamp)

        Returns:
            Result containing a session, an MFA challenge or an enrollment
            demand; credential failures are reported generically
        """
        try:
            return await self._authenticate(email, password, ctx)
        except StorageUnavailableError as e:
            logger.error("Storage unavailable during authentication: %s", e)
            return Err(_STORAGE_DOWN)

    async def _authenticate(
        self, email: str, password: str, ctx: AuthContext
    ) -> Result[AuthenticationResult, AuthError]:
        primary = await self._passwords.authenticate(email, password)
        if primary.is_err():
            error = primary.unwrap_err()
            user = await self._passwords.find_user(email)
            await self._history.record_failure(
                ctx.model_copy(update={"email": email}), user["id"] if user else None
            )
            await self._audit.record(
                AuditEventType.ACCOUNT_LOCKED
                if error.code is AuthErrorCode.ACCOUNT_LOCKED
                else AuditEventType.AUTHENTICATION_FAILED,
                success=False,
                user_id=user["id"] if user else None,
                email=email,
                ip_address=ctx.ip_address,
                user_agent=ctx.user_agent,
            )
            return Err(error)

        user = primary.unwrap()
        user_id: str = user["id"]
        ctx = ctx.for_user(user_id, user["email"])

        risk = await self._risk.assess(ctx)
        user_policy, org_policy = await self._policies.policies_for(
            user_id, user.get("organization_id")
        )
        requirement = self._resolver.resolve(risk, user_policy, org_policy)

        if not requirement.required:
            session = await self._complete_login(user_id, ctx, risk_score=risk.score)
            return Ok(
                AuthenticationResult(
                    status=AuthStatus.SESSION_ISSUED,
                    user_id=user_id,
                    risk_level=risk.level,
                    risk_score=risk.score,
                    session=session,
                )
            )

        enrolled = await self._usable_factors(user_id)
        if not enrolled and requirement.enforcement is Enforcement.REQUIRED:
            await self._audit.record(
                AuditEventType.AUTHENTICATION_FAILED,
                success=False,
                user_id=user_id,
                email=ctx.email,
                ip_address=ctx.ip_address,
                user_agent=ctx.user_agent,
                risk_score=risk.score,
                reason=AuthErrorCode.ENROLLMENT_REQUIRED.value,
            )
            return Ok(
                AuthenticationResult(
                    status=AuthStatus.ENROLLMENT_REQUIRED,
                    user_id=user_id,
                    risk_level=risk.level,
                    risk_score=risk.score,
                    available_factors=list(requirement.allowed_factors),
                )
            )

        enrolled_types = {factor.factor_type for factor in enrolled}
        available = [f for f in requirement.allowed_factors if f in enrolled_types]

        now = self._clock()
        challenge = Challenge(
            id=str(uuid4()),
            user_id=user_id,
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
            created_at=now,
            expires_at=now + self._challenge_ttl,
            factor_count=requirement.factor_count,
            allowed_factors=list(requirement.allowed_factors),
            risk_level=risk.level,
        )
        await self._storage.insert(
            RecordSet.CHALLENGES,
            {
                **challenge.model_dump(mode="python"),
                "allowed_factors": [f.value for f in challenge.allowed_factors],
                "risk_level": challenge.risk_level.value,
                "risk_score": risk.score,
            },
        )
        await self._audit.record(
            AuditEventType.MFA_CHALLENGE_CREATED,
            success=True,
            user_id=user_id,
            email=ctx.email,
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
            risk_score=risk.score,
            challenge_id=challenge.id,
            factor_count=challenge.factor_count,
            available_factors=[f.value for f in available],
        )

        return Ok(
            AuthenticationResult(
                status=AuthStatus.MFA_REQUIRED,
                user_id=user_id,
                risk_level=risk.level,
                risk_score=risk.score,
                challenge_id=challenge.id,
                available_factors=available,
                factor_count=challenge.factor_count,
                expires_at=challenge.expires_at,
            )
        )

    async def _complete_login(
        self, user_id: str, ctx: AuthContext, risk_score: float | None = None
    ) -> IssuedSession:
        session = await self._sessions.issue(user_id, ctx)
        await self._history.record_success(ctx, user_id, await self._risk.locate(ctx))
        await self._audit.record(
            AuditEventType.LOGIN_SUCCESS,
            success=True,
            user_id=user_id,
            email=ctx.email,
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
            risk_score=risk_score,
            session_id=session.session_id,
        )
        return session

    async def _usable_factors(self, user_id: str) -> list[EnrolledFactor]:
        """Confirmed factors that can still pass a challenge.

        A backup-code factor with every code spent is left out.
        """
        enrolled = await self._factors.list_for_user(user_id)
        has_codes = any(f.factor_type is FactorType.BACKUP_CODE for f in enrolled)
        if has_codes and await self._backup_codes.remaining(user_id) == 0:
            return [f for f in enrolled if f.factor_type is not FactorType.BACKUP_CODE]
        return enrolled

    # ------------------------------------------------------------------
    # Challenges
    # ------------------------------------------------------------------

    async def _open_challenge(self, challenge_id: str) -> Result[Challenge, AuthError]:
        """Live challenge for ``challenge_id`` or the terminal error explaining why not."""
        row = await self._storage.select_one(RecordSet.CHALLENGES, {"id": challenge_id})
        if row is None:
            return Err(await self._terminal_error(challenge_id))

        challenge = _challenge_from_row(row)
        if challenge.is_expired(self._clock()):
            await self._close(challenge, TerminalReason.EXPIRED)
            return Err(AuthError(AuthErrorCode.CHALLENGE_EXPIRED))
        return Ok(challenge)

    async def _terminal_error(self, challenge_id: str) -> AuthError:
        tombstone = await self._storage.select_one(
            RecordSet.CHALLENGE_TOMBSTONES, {"id": challenge_id}
        )
        if tombstone is None or self._clock() >= tombstone["expires_at"]:
            return AuthError(AuthErrorCode.CHALLENGE_NOT_FOUND)
        return AuthError(_TERMINAL_ERRORS[TerminalReason(tombstone["reason"])])

    async def _close(self, challenge: Challenge, reason: TerminalReason) -> bool:
        """Delete the challenge; True only for the caller that actually removed it."""
        removed = await self._storage.delete(RecordSet.CHALLENGES, {"id": challenge.id})
        if removed != 1:
            return False
        now = self._clock()
        await self._storage.insert(
            RecordSet.CHALLENGE_TOMBSTONES,
            {
                "id": challenge.id,
                "user_id": challenge.user_id,
                "reason": reason.value,
                "created_at": now,
                "expires_at": now + self._tombstone_ttl,
            },
        )
        await self._storage.delete(
            RecordSet.CHALLENGE_VERIFICATIONS, {"challenge_id": challenge.id}
        )
        return True

    def _verifier_for(
        self, challenge: Challenge, factor_type: FactorType
    ) -> Result[FactorVerifier, AuthError]:
        verifier = self._registry.get(factor_type)
        if (
            verifier is None
            or factor_type is FactorType.PASSWORD
            or factor_type not in challenge.allowed_factors
        ):
            return Err(
                AuthError(
                    AuthErrorCode.UNSUPPORTED_FACTOR,
                    f"{factor_type.value} cannot be used for this challenge",
                )
            )
        return Ok(verifier)

    @beartype
    async def start_factor(
        self, challenge_id: str, factor_type: FactorType
    ) -> Result[FactorStartResult, AuthError]:
        """Prepare a factor inside a live challenge.

        Sends the SMS or email code, or issues WebAuthn assertion options.
        TOTP and backup codes need no preparation.
        """
        try:
            opened = await self._open_challenge(challenge_id)
            if opened.is_err():
                return Err(opened.unwrap_err())
            challenge = opened.unwrap()
            selected = self._verifier_for(challenge, factor_type)
            if selected.is_err():
                return Err(selected.unwrap_err())
            started = await selected.unwrap().start(challenge.user_id, challenge.id)

            if factor_type in (FactorType.SMS, FactorType.EMAIL):
                await self._audit.record(
                    AuditEventType.OTP_SENT
                    if started.is_ok()
                    else AuditEventType.OTP_DELIVERY_FAILED,
                    success=started.is_ok(),
                    user_id=challenge.user_id,
                    challenge_id=challenge.id,
                    channel=factor_type.value,
                )
            return started
        except StorageUnavailableError as e:
            logger.error("Storage unavailable starting %s: %s", factor_type.value, e)
            return Err(_STORAGE_DOWN)

    @beartype
    async def verify_challenge(
        self,
        challenge_id: str,
        factor_type: FactorType,
        proof: dict[str, Any],
        ctx: AuthContext,
    ) -> Result[VerificationResult, AuthError]:
        """Submit one factor against a live challenge.

        Args:
            challenge_id: Id returned by ``authenticate``
            factor_type: Factor being proven
            proof: Factor-specific proof (``code``, ``credential``)
            ctx: Context of this request; the session is bound to it

        Returns:
            Result containing ``complete`` (with a session),
            ``additional_verification_required`` or ``retry``; terminal
            outcomes are errors
        """
        try:
            return await self._verify_challenge(challenge_id, factor_type, proof, ctx)
        except StorageUnavailableError as e:
            logger.error("Storage unavailable verifying challenge: %s", e)
            return Err(_STORAGE_DOWN)

    async def _verify_challenge(
        self,
        challenge_id: str,
        factor_type: FactorType,
        proof: dict[str, Any],
        ctx: AuthContext,
    ) -> Result[VerificationResult, AuthError]:
        opened = await self._open_challenge(challenge_id)
        if opened.is_err():
            return Err(opened.unwrap_err())
        challenge = opened.unwrap()
        selected = self._verifier_for(challenge, factor_type)
        if selected.is_err():
            return Err(selected.unwrap_err())
        checked = await selected.unwrap().verify(challenge.user_id, proof)
        if checked.is_err():
            return Err(checked.unwrap_err())

        await self._audit.record(
            AuditEventType.MFA_VERIFICATION,
            success=checked.unwrap(),
            user_id=challenge.user_id,
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
            challenge_id=challenge.id,
            factor_type=factor_type.value,
        )

        if not checked.unwrap():
            return await self._record_failure(challenge, ctx)
        return await self._record_success(challenge, factor_type, ctx)

    async def _satisfied(self, challenge_id: str) -> list[FactorType]:
        rows = await self._storage.select(
            RecordSet.CHALLENGE_VERIFICATIONS,
            {"challenge_id": challenge_id},
            order_by="verified_at",
        )
        satisfied: list[FactorType] = []
        for row in rows:
            factor_type = FactorType(row["factor_type"])
            if factor_type not in satisfied:
                satisfied.append(factor_type)
        return satisfied

    async def _record_failure(
        self, challenge: Challenge, ctx: AuthContext
    ) -> Result[VerificationResult, AuthError]:
        updated = await self._storage.increment(
            RecordSet.CHALLENGES, {"id": challenge.id}, "failed_attempts"
        )
        await self._history.record_failure(ctx, challenge.user_id)
        if updated is None:
            return Err(await self._terminal_error(challenge.id))

        attempts = int(updated["failed_attempts"])
        if attempts >= self._max_attempts:
            await self._close(challenge, TerminalReason.MAX_ATTEMPTS)
            logger.warning(
                "Challenge %s for user %s closed after %d failed attempts",
                challenge.id,
                challenge.user_id,
                attempts,
            )
            return Err(AuthError(AuthErrorCode.MAX_ATTEMPTS_EXCEEDED))

        satisfied = await self._satisfied(challenge.id)
        return Ok(
            VerificationResult(
                status=VerificationStatus.RETRY,
                challenge_id=challenge.id,
                satisfied_factors=satisfied,
                remaining_factors=max(0, challenge.factor_count - len(satisfied)),
                remaining_attempts=self._max_attempts - attempts,
            )
        )

    async def _record_success(
        self, challenge: Challenge, factor_type: FactorType, ctx: AuthContext
    ) -> Result[VerificationResult, AuthError]:
        verification_id = str(uuid4())
        await self._storage.insert(
            RecordSet.CHALLENGE_VERIFICATIONS,
            {
                "id": verification_id,
                "challenge_id": challenge.id,
                "factor_type": factor_type.value,
                "verified_at": self._clock(),
            },
        )
        if await self._storage.select_one(RecordSet.CHALLENGES, {"id": challenge.id}) is None:
            # Closed while the proof was being checked.
            await self._storage.delete(
                RecordSet.CHALLENGE_VERIFICATIONS, {"id": verification_id}
            )
            return Err(await self._terminal_error(challenge.id))

        low_backup_codes = False
        if factor_type is FactorType.BACKUP_CODE:
            low_backup_codes = await self._backup_codes.is_low(challenge.user_id)
            if low_backup_codes:
                await self._audit.record(
                    AuditEventType.BACKUP_CODES_LOW,
                    success=True,
                    user_id=challenge.user_id,
                    remaining=await self._backup_codes.remaining(challenge.user_id),
                )

        satisfied = await self._satisfied(challenge.id)
        if len(satisfied) < challenge.factor_count:
            return Ok(
                VerificationResult(
                    status=VerificationStatus.ADDITIONAL_VERIFICATION_REQUIRED,
                    challenge_id=challenge.id,
                    satisfied_factors=satisfied,
                    remaining_factors=challenge.factor_count - len(satisfied),
                    low_backup_codes=low_backup_codes,
                )
            )

        if not await self._close(challenge, TerminalReason.COMPLETED):
            # Another request completed or closed this challenge first.
            return Err(await self._terminal_error(challenge.id))

        user = await self._passwords.get_user(challenge.user_id)
        bound = ctx.for_user(challenge.user_id, user["email"] if user else None)
        session = await self._complete_login(challenge.user_id, bound)
        return Ok(
            VerificationResult(
                status=VerificationStatus.COMPLETE,
                challenge_id=challenge.id,
                session=session,
                satisfied_factors=satisfied,
                low_backup_codes=low_backup_codes,
            )
        )

    # ------------------------------------------------------------------
    # Factor management
    # ------------------------------------------------------------------

    @beartype
    async def enroll_factor(
        self, user_id: str, factor_type: FactorType, data: dict[str, Any]
    ) -> Result[EnrollmentResult, AuthError]:
        """Enroll (or confirm) a factor for a user.

        The first confirmed enrollment of any other factor also issues a
        batch of backup codes when the user holds none.
        """
        try:
            return await self._enroll_factor(user_id, factor_type, data)
        except StorageUnavailableError as e:
            logger.error("Storage unavailable during enrollment: %s", e)
            return Err(_STORAGE_DOWN)

    async def _enroll_factor(
        self, user_id: str, factor_type: FactorType, data: dict[str, Any]
    ) -> Result[EnrollmentResult, AuthError]:
        verifier = self._registry.get(factor_type)
        if verifier is None:
            return Err(AuthError(AuthErrorCode.UNSUPPORTED_FACTOR))
        if await self._passwords.get_user(user_id) is None:
            return Err(AuthError(AuthErrorCode.INVALID_ENROLLMENT, "Unknown user"))

        adds_factor = factor_type not in (FactorType.PASSWORD, FactorType.BACKUP_CODE)
        confirming = any(key in data for key in _CONFIRMATION_KEYS)
        if adds_factor and not confirming:
            if await self._factors.count(user_id) >= self._settings.max_factors_per_user:
                return Err(AuthError(AuthErrorCode.FACTOR_LIMIT_REACHED))

        enrolled = await verifier.enroll(user_id, data)
        if enrolled.is_err():
            await self._audit.record(
                AuditEventType.MFA_FACTOR_ENROLLED,
                success=False,
                user_id=user_id,
                factor_type=factor_type.value,
                reason=enrolled.unwrap_err().code.value,
            )
            return enrolled

        result = enrolled.unwrap()
        if result.pending:
            return Ok(result)

        if factor_type is FactorType.PASSWORD:
            await self._audit.record(AuditEventType.PASSWORD_CHANGED, success=True, user_id=user_id)
            return Ok(result)

        if factor_type is FactorType.BACKUP_CODE:
            await self._audit.record(
                AuditEventType.BACKUP_CODES_GENERATED,
                success=True,
                user_id=user_id,
                count=len(result.backup_codes),
            )
            return Ok(result)

        await self._audit.record(
            AuditEventType.MFA_FACTOR_ENROLLED,
            success=True,
            user_id=user_id,
            factor_type=factor_type.value,
            factor_id=result.factor.id if result.factor else None,
        )
        if await self._backup_codes.remaining(user_id) == 0:
            codes = await self._backup_codes.generate(user_id)
            await self._audit.record(
                AuditEventType.BACKUP_CODES_GENERATED,
                success=True,
                user_id=user_id,
                count=len(codes),
            )
            result = result.model_copy(update={"backup_codes": codes})
        return Ok(result)

    @beartype
    async def remove_factor(
        self, user_id: str, factor_id: str, proof: dict[str, Any]
    ) -> Result[EnrolledFactor, AuthError]:
        """Remove a factor after the user proves possession of an enrolled one.

        ``proof`` names the proving factor in ``factor_type`` (defaulting to
        the factor being removed) plus that factor's proof fields. Removing
        the last confirmed factor is refused while policy requires MFA.
        """
        try:
            return await self._remove_factor(user_id, factor_id, proof)
        except StorageUnavailableError as e:
            logger.error("Storage unavailable removing factor: %s", e)
            return Err(_STORAGE_DOWN)

    async def _remove_factor(
        self, user_id: str, factor_id: str, proof: dict[str, Any]
    ) -> Result[EnrolledFactor, AuthError]:
        row = await self._factors.get(user_id, factor_id)
        if row is None:
            return Err(AuthError(AuthErrorCode.FACTOR_NOT_FOUND))
        factor_type = FactorType(row["factor_type"])

        user = await self._passwords.get_user(user_id)
        user_policy, org_policy = await self._policies.policies_for(
            user_id, user.get("organization_id") if user else None
        )
        requirement = self._resolver.resolve(None, user_policy, org_policy)
        enrolled = await self._factors.list_for_user(user_id)
        others = [
            factor for factor in await self._usable_factors(user_id) if factor.id != factor_id
        ]
        if requirement.required and row.get("verified_at") is not None and not others:
            await self._audit.record(
                AuditEventType.MFA_FACTOR_REMOVED,
                success=False,
                user_id=user_id,
                factor_id=factor_id,
                reason=AuthErrorCode.LAST_FACTOR_REMOVAL_DENIED.value,
            )
            return Err(AuthError(AuthErrorCode.LAST_FACTOR_REMOVAL_DENIED))

        try:
            proving_type = FactorType(proof.get("factor_type") or factor_type.value)
        except ValueError:
            return Err(AuthError(AuthErrorCode.UNSUPPORTED_FACTOR))
        proving_types = {factor.factor_type for factor in enrolled} | {FactorType.PASSWORD}
        verifier = self._registry.get(proving_type)
        if verifier is None or proving_type not in proving_types:
            return Err(AuthError(AuthErrorCode.UNSUPPORTED_FACTOR))

        checked = await verifier.verify(user_id, proof)
        if checked.is_err():
            return Err(checked.unwrap_err())
        if not checked.unwrap():
            await self._audit.record(
                AuditEventType.MFA_FACTOR_REMOVED,
                success=False,
                user_id=user_id,
                factor_id=factor_id,
                reason=AuthErrorCode.VERIFICATION_FAILED.value,
            )
            return Err(AuthError(AuthErrorCode.VERIFICATION_FAILED))

        if not await self._factors.remove(user_id, factor_id):
            return Err(AuthError(AuthErrorCode.FACTOR_NOT_FOUND))
        registered = self._registry.get(factor_type)
        if registered is not None:
            await registered.cleanup(user_id, row)

        await self._audit.record(
            AuditEventType.MFA_FACTOR_REMOVED,
            success=True,
            user_id=user_id,
            factor_id=factor_id,
            factor_type=factor_type.value,
        )
        return Ok(
            EnrolledFactor(
                id=row["id"],
                user_id=row["user_id"],
                factor_type=factor_type,
                display_name=row["display_name"],
                is_primary=bool(row.get("is_primary")),
                created_at=row["created_at"],
                last_used_at=row.get("last_used_at"),
                verified_at=row.get("verified_at"),
            )
        )

    @beartype
    async def list_factors(self, user_id: str) -> Result[list[EnrolledFactor], AuthError]:
        """Confirmed factors for a user, oldest first."""
        try:
            return Ok(await self._factors.list_for_user(user_id))
        except StorageUnavailableError as e:
            logger.error("Storage unavailable listing factors: %s", e)
            return Err(_STORAGE_DOWN)

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    @beartype
    async def sweep_expired(self, now: datetime | None = None) -> dict[str, int]:
        """Delete expired challenges, tombstones, codes and ceremonies.

        Expired challenges are tombstoned first so a late verification still
        reports ``challenge_expired``.

        Returns:
            Rows removed per record set
        """
        now = now or self._clock()
        removed: dict[str, int] = {}

        expired = await self._storage.select(
            RecordSet.CHALLENGES, window=TimeWindow("expires_at", until=now)
        )
        closed = 0
        for row in expired:
            if await self._close(_challenge_from_row(row), TerminalReason.EXPIRED):
                closed += 1
        removed[RecordSet.CHALLENGES.value] = closed

        # No live challenge is older than the challenge TTL, so neither are
        # its verifications.
        removed[RecordSet.CHALLENGE_VERIFICATIONS.value] = await self._storage.delete(
            RecordSet.CHALLENGE_VERIFICATIONS,
            window=TimeWindow("verified_at", until=now - self._challenge_ttl),
        )

        for records in (
            RecordSet.CHALLENGE_TOMBSTONES,
            RecordSet.ONE_TIME_CODES,
            RecordSet.WEBAUTHN_CEREMONIES,
        ):
            removed[records.value] = await self._storage.delete(
                records, window=TimeWindow("expires_at", until=now)
            )

        logger.info("Expired record sweep removed %s", removed)
        return removed
