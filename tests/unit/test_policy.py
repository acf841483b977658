"""Unit tests for MFA policy storage and resolution."""

import pytest

from adaptive_mfa.core.auth.models import (
    Enforcement,
    FactorType,
    MFAPolicy,
    MFARecommendation,
    RiskLevel,
    RiskScore,
)
from adaptive_mfa.core.auth.policy import PolicyResolver, PolicyStore

from conftest import START

DEFAULT_FACTORS = [
    FactorType.TOTP,
    FactorType.SMS,
    FactorType.EMAIL,
    FactorType.WEBAUTHN,
    FactorType.BACKUP_CODE,
]


def _risk(level: RiskLevel, recommendation: MFARecommendation) -> RiskScore:
    return RiskScore(
        score={RiskLevel.LOW: 10.0, RiskLevel.HIGH: 65.0, RiskLevel.CRITICAL: 90.0}[level],
        level=level,
        factors=[],
        recommendation=recommendation,
        assessed_at=START,
    )


LOW = _risk(RiskLevel.LOW, MFARecommendation(required=False))
HIGH = _risk(
    RiskLevel.HIGH,
    MFARecommendation(required=True, factors=[FactorType.WEBAUTHN, FactorType.TOTP]),
)
CRITICAL = _risk(
    RiskLevel.CRITICAL,
    MFARecommendation(
        required=True,
        factors=[FactorType.WEBAUTHN, FactorType.TOTP, FactorType.EMAIL],
        min_factors=2,
    ),
)


@pytest.fixture
def resolver(settings) -> PolicyResolver:
    return PolicyResolver(settings)


class TestPolicyResolver:
    """Tests for merging user, organization and risk requirements."""

    def test_defaults_at_low_risk(self, resolver):
        """Test an optional default policy needs no MFA at low risk."""
        requirement = resolver.resolve(LOW, None, None)

        assert not requirement.required
        assert requirement.factor_count == 1
        assert requirement.allowed_factors == DEFAULT_FACTORS
        assert requirement.enforcement is Enforcement.OPTIONAL

    def test_user_policy_requires(self, resolver):
        """Test a REQUIRED user policy demands MFA regardless of risk."""
        requirement = resolver.resolve(LOW, MFAPolicy(enforcement=Enforcement.REQUIRED), None)

        assert requirement.required
        assert requirement.enforcement is Enforcement.REQUIRED

    def test_risk_alone_requires(self, resolver):
        """Test risk can demand MFA even when policy disables it."""
        requirement = resolver.resolve(HIGH, MFAPolicy(enforcement=Enforcement.DISABLED), None)

        assert requirement.required
        assert requirement.enforcement is Enforcement.DISABLED
        assert requirement.allowed_factors == [
            FactorType.TOTP,
            FactorType.WEBAUTHN,
            FactorType.BACKUP_CODE,
        ]

    def test_critical_needs_two_factors(self, resolver):
        """Test the CRITICAL recommendation raises the factor count."""
        requirement = resolver.resolve(CRITICAL, None, None)

        assert requirement.required
        assert requirement.factor_count == 2
        assert FactorType.SMS not in requirement.allowed_factors

    def test_largest_count_and_strictest_enforcement_win(self, resolver):
        """Test organization policy can only tighten the user's."""
        requirement = resolver.resolve(
            LOW,
            MFAPolicy(enforcement=Enforcement.DISABLED, min_factors=1),
            MFAPolicy(enforcement=Enforcement.REQUIRED, min_factors=2),
        )

        assert requirement.required
        assert requirement.factor_count == 2
        assert requirement.enforcement is Enforcement.REQUIRED

    def test_allowed_sets_intersect(self, resolver):
        """Test allowed factors are the intersection across sources."""
        requirement = resolver.resolve(
            None,
            MFAPolicy(allowed_factors=[FactorType.TOTP, FactorType.SMS, FactorType.EMAIL]),
            MFAPolicy(allowed_factors=[FactorType.EMAIL, FactorType.TOTP]),
        )

        assert requirement.allowed_factors == [FactorType.TOTP, FactorType.EMAIL]

    def test_disjoint_sets_fall_back_to_user_policy(self, resolver):
        """Test an empty intersection keeps the user's own factors."""
        requirement = resolver.resolve(
            None,
            MFAPolicy(allowed_factors=[FactorType.SMS]),
            MFAPolicy(allowed_factors=[FactorType.WEBAUTHN]),
        )

        assert requirement.allowed_factors == [FactorType.SMS]

    def test_password_never_fills_a_second_factor_slot(self, resolver):
        """Test the primary credential is dropped from allowed factors."""
        requirement = resolver.resolve(
            None, MFAPolicy(allowed_factors=[FactorType.PASSWORD, FactorType.TOTP]), None
        )

        assert requirement.allowed_factors == [FactorType.TOTP]


class TestPolicyStore:
    """Tests for policy persistence."""

    async def test_missing_policies(self, storage):
        """Test absent rows come back as None."""
        store = PolicyStore(storage)

        assert await store.policies_for("u1", None) == (None, None)
        assert await store.org_policy("org-1") is None

    async def test_save_and_update(self, storage):
        """Test saving twice updates the same row."""
        store = PolicyStore(storage)
        await store.save_user_policy("u1", MFAPolicy(enforcement=Enforcement.REQUIRED))
        await store.save_user_policy(
            "u1",
            MFAPolicy(
                enforcement=Enforcement.REQUIRED,
                min_factors=2,
                allowed_factors=[FactorType.TOTP],
            ),
        )
        await store.save_org_policy("org-1", MFAPolicy(enforcement=Enforcement.OPTIONAL))

        user_policy, org_policy = await store.policies_for("u1", "org-1")

        assert user_policy == MFAPolicy(
            enforcement=Enforcement.REQUIRED, min_factors=2, allowed_factors=[FactorType.TOTP]
        )
        assert org_policy is not None and org_policy.enforcement is Enforcement.OPTIONAL
