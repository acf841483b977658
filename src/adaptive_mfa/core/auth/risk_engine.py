# AdaptiveMFA - Risk-Adaptive MFA Orchestration Core
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Risk-based authentication engine.

Five weighted sub-assessments (device, location, behavioral, velocity,
threat) are combined into a 0-100 score. Every time window is measured back
from ``ctx.timestamp`` so an assessment is a function of its input and the
stored history only.
"""

import asyncio
import logging
from collections.abc import Awaitable
from datetime import timedelta, timezone
from typing import Any
from uuid import uuid4

from beartype import beartype
from redis.exceptions import RedisError

from adaptive_mfa.core.cache import Cache
from adaptive_mfa.core.config import Settings
from adaptive_mfa.storage.base import RecordSet, Storage, StorageUnavailableError

from .audit import AuditEventType, AuditTrail
from .models import (
    AuthContext,
    FactorType,
    GeoLocation,
    MFARecommendation,
    RiskFactor,
    RiskLevel,
    RiskScore,
)
from .reputation import GeoResolver, ReputationService
from .signals import LoginHistory

logger = logging.getLogger(__name__)

DEVICE = "device"
LOCATION = "location"
BEHAVIORAL = "behavioral"
VELOCITY = "velocity"
THREAT = "threat"

# Sub-assessment constants
NEW_USER_DEVICE_SCORE = 30
NEW_USER_LOCATION_SCORE = 20
UNKNOWN_DEVICE_PENALTY = 40
RECENT_DEVICE_PENALTY = 20
UNTRUSTED_DEVICE_PENALTY = 25
RECENT_DEVICE_AGE = timedelta(days=7)

NEW_COUNTRY_PENALTY = 40
IMPOSSIBLE_TRAVEL_PENALTY = 50
HIGH_RISK_COUNTRY_PENALTY = 30
TRAVEL_FEASIBILITY = timedelta(hours=2)
LOCATION_HISTORY_DEPTH = 10

ATYPICAL_HOUR_PENALTY = 25
LOGIN_BURST_PENALTY = 30
PASSWORD_CHURN_PENALTY = 35
LOGIN_BURST_THRESHOLD = 10
PASSWORD_CHURN_THRESHOLD = 2

ADDRESS_HOPPING_PENALTY = 40
FAILED_ATTEMPTS_PENALTY = 50
ADDRESS_HOPPING_THRESHOLD = 3
FAILED_ATTEMPTS_THRESHOLD = 5

ANONYMIZER_PENALTY = 30
TOR_PENALTY = 50
THREAT_SCORE_PENALTY = 40
DISPOSABLE_DOMAIN_PENALTY = 35
THREAT_SCORE_THRESHOLD = 70

_RECOMMENDATIONS: dict[RiskLevel, MFARecommendation] = {
    RiskLevel.LOW: MFARecommendation(required=False, factors=[], min_factors=1),
    RiskLevel.MEDIUM: MFARecommendation(
        required=True, factors=[FactorType.TOTP, FactorType.EMAIL], min_factors=1
    ),
    RiskLevel.HIGH: MFARecommendation(
        required=True, factors=[FactorType.WEBAUTHN, FactorType.TOTP], min_factors=1
    ),
    RiskLevel.CRITICAL: MFARecommendation(
        required=True,
        factors=[FactorType.WEBAUTHN, FactorType.TOTP, FactorType.EMAIL],
        min_factors=2,
    ),
}


def _cap(score: int) -> int:
    return max(0, min(100, score))


class RiskEngine:
    """Risk assessment engine for adaptive MFA."""

    def __init__(
        self,
        storage: Storage,
        settings: Settings,
        *,
        reputation: ReputationService,
        geo: GeoResolver,
        audit: AuditTrail | None = None,
        cache: Cache | None = None,
    ) -> None:
        """Initialize risk engine."""
        self._storage = storage
        self._history = LoginHistory(storage)
        self._settings = settings
        self._reputation = reputation
        self._geo = geo
        self._audit = audit
        self._cache = cache if settings.risk_cache_enabled else None

        self._weights: dict[str, float] = {
            DEVICE: settings.risk_weight_device,
            LOCATION: settings.risk_weight_location,
            BEHAVIORAL: settings.risk_weight_behavioral,
            VELOCITY: settings.risk_weight_velocity,
            THREAT: settings.risk_weight_threat,
        }
        self._thresholds: dict[RiskLevel, float] = {
            RiskLevel.MEDIUM: settings.risk_threshold_medium,
            RiskLevel.HIGH: settings.risk_threshold_high,
            RiskLevel.CRITICAL: settings.risk_threshold_critical,
        }
        self._high_risk_countries = set(settings.risk_high_risk_countries)

        if logger.isEnabledFor(logging.INFO):
            logger.info(
                "RiskEngine initialized with thresholds=%s weights=%s",
                {k.value: v for k, v in self._thresholds.items()},
                self._weights,
            )

    @beartype
    async def assess(self, ctx: AuthContext) -> RiskScore:
        """Score one authentication attempt.

        Args:
            ctx: Attempt context, with ``user_id`` set once the user is known

        Returns:
            The aggregate risk score with its five contributing factors
        """
        factors = list(
            await asyncio.gather(
                self._guarded(DEVICE, self._assess_device(ctx)),
                self._guarded(LOCATION, self._assess_location(ctx)),
                self._guarded(BEHAVIORAL, self._assess_behavioral(ctx)),
                self._guarded(VELOCITY, self._assess_velocity(ctx)),
                self._guarded(THREAT, self._assess_threat(ctx)),
            )
        )

        total = sum(factor.weighted for factor in factors)
        level = self._determine_risk_level(total)
        risk = RiskScore(
            score=round(total, 2),
            level=level,
            factors=factors,
            recommendation=_RECOMMENDATIONS[level],
            assessed_at=ctx.timestamp,
        )

        if ctx.user_id is not None:
            await self._record(ctx, ctx.user_id, risk)
        return risk

    @beartype
    def recommendation_for(self, level: RiskLevel) -> MFARecommendation:
        return _RECOMMENDATIONS[level]

    @beartype
    async def locate(self, ctx: AuthContext) -> GeoLocation | None:
        """Location reported with the attempt, else resolved from its address."""
        return ctx.location or await self._geo.resolve(ctx.ip_address)

    @beartype
    def _determine_risk_level(self, score: float) -> RiskLevel:
        if score >= self._thresholds[RiskLevel.CRITICAL]:
            return RiskLevel.CRITICAL
        if score >= self._thresholds[RiskLevel.HIGH]:
            return RiskLevel.HIGH
        if score >= self._thresholds[RiskLevel.MEDIUM]:
            return RiskLevel.MEDIUM
        return RiskLevel.LOW

    async def _guarded(
        self, name: str, assessment: Awaitable[tuple[int, dict[str, Any]]]
    ) -> RiskFactor:
        """Run one sub-assessment, substituting a cautious score if history is unreadable."""
        try:
            score, evidence = await assessment
        except StorageUnavailableError as e:
            logger.warning("Risk signal %s degraded: %s", name, e)
            score = self._settings.risk_degraded_score
            evidence = {"degraded": True}
        return RiskFactor(
            name=name,
            score=_cap(score),
            weight=self._weights[name],
            evidence=evidence,
        )

    async def _assess_device(self, ctx: AuthContext) -> tuple[int, dict[str, Any]]:
        if ctx.user_id is None:
            return NEW_USER_DEVICE_SCORE, {"reason": "new_user"}

        score = 0
        fingerprint = ctx.fingerprint()
        evidence: dict[str, Any] = {"fingerprint": fingerprint}
        known = await self._history.known_device(ctx.user_id, fingerprint)
        if known is None:
            score += UNKNOWN_DEVICE_PENALTY
            evidence["unknown_device"] = True
        elif ctx.timestamp - known["first_seen_at"] < RECENT_DEVICE_AGE:
            score += RECENT_DEVICE_PENALTY
            evidence["recent_device"] = True

        if ctx.device.is_trusted is False:
            score += UNTRUSTED_DEVICE_PENALTY
            evidence["untrusted"] = True
        return score, evidence

    async def _assess_location(self, ctx: AuthContext) -> tuple[int, dict[str, Any]]:
        if ctx.user_id is None:
            return NEW_USER_LOCATION_SCORE, {"reason": "new_user"}

        location = await self.locate(ctx)
        if location is None:
            return self._settings.risk_unresolved_location_score, {"unresolved": True}

        score = 0
        evidence: dict[str, Any] = {"country": location.country}
        recent = await self._history.recent_locations(
            ctx.user_id, LOCATION_HISTORY_DEPTH
        )
        if location.country not in {row["country"] for row in recent}:
            score += NEW_COUNTRY_PENALTY
            evidence["new_country"] = True

        if recent:
            last = recent[0]
            elapsed = ctx.timestamp - last["created_at"]
            if last["country"] != location.country and elapsed < TRAVEL_FEASIBILITY:
                score += IMPOSSIBLE_TRAVEL_PENALTY
                evidence["impossible_travel"] = {
                    "from": last["country"],
                    "minutes": int(elapsed.total_seconds() // 60),
                }

        if location.country in self._high_risk_countries:
            score += HIGH_RISK_COUNTRY_PENALTY
            evidence["high_risk_country"] = True
        return score, evidence

    async def _assess_behavioral(self, ctx: AuthContext) -> tuple[int, dict[str, Any]]:
        if ctx.user_id is None:
            return 0, {}

        score = 0
        evidence: dict[str, Any] = {}
        hour = ctx.timestamp.astimezone(timezone.utc).hour
        if hour not in await self._history.common_login_hours(ctx.user_id):
            score += ATYPICAL_HOUR_PENALTY
            evidence["atypical_hour"] = hour

        logins = await self._history.login_count(
            ctx.user_id, ctx.timestamp - timedelta(hours=24)
        )
        if logins > LOGIN_BURST_THRESHOLD:
            score += LOGIN_BURST_PENALTY
            evidence["logins_24h"] = logins

        changes = await self._history.password_change_count(
            ctx.user_id, ctx.timestamp - timedelta(days=7)
        )
        if changes > PASSWORD_CHURN_THRESHOLD:
            score += PASSWORD_CHURN_PENALTY
            evidence["password_changes_7d"] = changes
        return score, evidence

    async def _assess_velocity(self, ctx: AuthContext) -> tuple[int, dict[str, Any]]:
        if ctx.user_id is None:
            return 0, {}

        score = 0
        evidence: dict[str, Any] = {}
        addresses = await self._history.distinct_addresses(
            ctx.user_id, ctx.timestamp - timedelta(minutes=60)
        )
        if addresses > ADDRESS_HOPPING_THRESHOLD:
            score += ADDRESS_HOPPING_PENALTY
            evidence["addresses_1h"] = addresses

        failures = await self._history.failed_attempt_count(
            ctx.user_id, ctx.timestamp - timedelta(minutes=30)
        )
        if failures > FAILED_ATTEMPTS_THRESHOLD:
            score += FAILED_ATTEMPTS_PENALTY
            evidence["failures_30m"] = failures
        return score, evidence

    async def _assess_threat(self, ctx: AuthContext) -> tuple[int, dict[str, Any]]:
        score = 0
        evidence: dict[str, Any] = {}

        ip_result = await self._reputation.lookup_ip(ctx.ip_address)
        if ip_result.is_err():
            logger.warning("IP reputation unavailable: %s", ip_result.err_value)
            score += self._settings.risk_degraded_score
            evidence["degraded"] = True
        else:
            reputation = ip_result.unwrap()
            if reputation.is_vpn or reputation.is_proxy:
                score += ANONYMIZER_PENALTY
                evidence["anonymizer"] = True
            if reputation.is_tor:
                score += TOR_PENALTY
                evidence["tor"] = True
            if reputation.threat_score > THREAT_SCORE_THRESHOLD:
                score += THREAT_SCORE_PENALTY
                evidence["threat_score"] = reputation.threat_score

        if ctx.email and "@" in ctx.email:
            domain = ctx.email.rsplit("@", 1)[1]
            domain_result = await self._reputation.lookup_domain(domain)
            if domain_result.is_err():
                logger.warning("Domain reputation unavailable: %s", domain_result.err_value)
                if not evidence.get("degraded"):
                    score += self._settings.risk_degraded_score
                evidence["degraded"] = True
            elif domain_result.unwrap().is_disposable:
                score += DISPOSABLE_DOMAIN_PENALTY
                evidence["disposable_domain"] = domain
        return score, evidence

    async def _record(self, ctx: AuthContext, user_id: str, risk: RiskScore) -> None:
        """Persist the assessment and publish it to the advisory cache."""
        await self._storage.insert(
            RecordSet.RISK_ASSESSMENTS,
            {
                "id": str(uuid4()),
                "user_id": user_id,
                "ip_address": ctx.ip_address,
                "score": risk.score,
                "level": risk.level.value,
                "factors": [factor.model_dump() for factor in risk.factors],
                "created_at": risk.assessed_at,
            },
        )
        if self._audit is not None:
            await self._audit.record(
                AuditEventType.RISK_ASSESSED,
                success=True,
                user_id=user_id,
                email=ctx.email,
                ip_address=ctx.ip_address,
                user_agent=ctx.user_agent,
                risk_score=risk.score,
                level=risk.level.value,
            )
        if self._cache is not None:
            try:
                await self._cache.publish_risk(
                    user_id, risk.model_dump(mode="json"), risk.assessed_at
                )
            except (RedisError, RuntimeError) as e:
                logger.warning("Risk cache write failed: %s", e)
