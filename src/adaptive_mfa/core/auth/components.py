# AdaptiveMFA - Risk-Adaptive MFA Orchestration Core
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Wiring of the authentication components over one storage backend."""

from collections.abc import Callable
from datetime import datetime, timezone

from attrs import frozen

from adaptive_mfa.core.cache import Cache
from adaptive_mfa.core.config import Settings
from adaptive_mfa.core.crypto import SecretBox
from adaptive_mfa.storage.base import Storage

from .audit import AuditTrail
from .factors import (
    BackupCodeVerifier,
    DeliveryChannel,
    EmailVerifier,
    FactorRegistry,
    FactorStore,
    LoggingDeliveryChannel,
    PasswordVerifier,
    SMSVerifier,
    TOTPVerifier,
    WebAuthnVerifier,
    WebhookDeliveryChannel,
)
from .orchestrator import ChallengeOrchestrator
from .policy import PolicyResolver, PolicyStore
from .reputation import (
    GeoResolver,
    HttpReputationService,
    ReputationService,
    StaticGeoResolver,
    StaticReputationService,
)
from .risk_engine import RiskEngine
from .sessions import SessionIssuer


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def delivery_channel(name: str, url: str | None, settings: Settings) -> DeliveryChannel:
    """Webhook channel when a gateway is configured, logging channel otherwise."""
    if url:
        return WebhookDeliveryChannel(url, timeout=settings.delivery_timeout_seconds)
    return LoggingDeliveryChannel(name)


def reputation_service(settings: Settings) -> ReputationService:
    if settings.reputation_service_url:
        return HttpReputationService(
            settings.reputation_service_url,
            settings.risk_disposable_domains,
            timeout=settings.reputation_timeout_seconds,
        )
    return StaticReputationService.from_settings(settings)


@frozen
class AuthComponents:
    """Every collaborator of the orchestrator, for callers that need one directly."""

    settings: Settings
    storage: Storage
    clock: Callable[[], datetime]
    audit: AuditTrail
    factors: FactorStore
    registry: FactorRegistry
    passwords: PasswordVerifier
    totp: TOTPVerifier
    sms: SMSVerifier
    email: EmailVerifier
    webauthn: WebAuthnVerifier
    backup_codes: BackupCodeVerifier
    risk_engine: RiskEngine
    policy_store: PolicyStore
    policy_resolver: PolicyResolver
    sessions: SessionIssuer
    orchestrator: ChallengeOrchestrator


def build_components(
    settings: Settings,
    storage: Storage,
    *,
    clock: Callable[[], datetime] = utc_now,
    reputation: ReputationService | None = None,
    geo: GeoResolver | None = None,
    sms_channel: DeliveryChannel | None = None,
    email_channel: DeliveryChannel | None = None,
    cache: Cache | None = None,
) -> AuthComponents:
    """Assemble the components; collaborators left as None come from settings."""
    box = SecretBox(settings)
    audit = AuditTrail(storage, clock)
    factors = FactorStore(storage, clock)

    passwords = PasswordVerifier(storage, settings, factors, clock)
    totp = TOTPVerifier(storage, settings, factors, clock, box)
    sms = SMSVerifier(
        storage,
        settings,
        factors,
        clock,
        box,
        sms_channel or delivery_channel("SMS", settings.sms_gateway_url, settings),
    )
    email = EmailVerifier(
        storage,
        settings,
        factors,
        clock,
        box,
        email_channel or delivery_channel("Email", settings.email_gateway_url, settings),
    )
    webauthn = WebAuthnVerifier(storage, settings, factors, clock)
    backup_codes = BackupCodeVerifier(storage, settings, factors, clock)
    registry = FactorRegistry([passwords, totp, sms, email, webauthn, backup_codes])

    risk_engine = RiskEngine(
        storage,
        settings,
        reputation=reputation or reputation_service(settings),
        geo=geo or StaticGeoResolver(),
        audit=audit,
        cache=cache,
    )
    policy_store = PolicyStore(storage)
    policy_resolver = PolicyResolver(settings)
    sessions = SessionIssuer(storage, settings, clock, audit)

    orchestrator = ChallengeOrchestrator(
        storage,
        settings,
        risk_engine=risk_engine,
        policy_resolver=policy_resolver,
        policy_store=policy_store,
        registry=registry,
        factors=factors,
        sessions=sessions,
        audit=audit,
        clock=clock,
    )
    return AuthComponents(
        settings=settings,
        storage=storage,
        clock=clock,
        audit=audit,
        factors=factors,
        registry=registry,
        passwords=passwords,
        totp=totp,
        sms=sms,
        email=email,
        webauthn=webauthn,
        backup_codes=backup_codes,
        risk_engine=risk_engine,
        policy_store=policy_store,
        policy_resolver=policy_resolver,
        sessions=sessions,
        orchestrator=orchestrator,
    )
