# AdaptiveMFA - Risk-Adaptive MFA Orchestration Core
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""MFA policy lookup and resolution.

Three sources decide what an attempt must prove: the user's own policy, the
organization's policy and the risk engine's recommendation. Resolution never
lowers safety: any source can demand MFA, the largest factor count wins and
the most restrictive enforcement wins.
"""

import logging
from typing import Any

from beartype import beartype

from adaptive_mfa.core.config import Settings
from adaptive_mfa.storage.base import RecordSet, Row, Storage

from .models import Enforcement, FactorType, MFAPolicy, MFARequirement, RiskScore

logger = logging.getLogger(__name__)

# Factors that can fill a second-factor slot; the password is the primary check.
MFA_FACTORS: tuple[FactorType, ...] = (
    FactorType.TOTP,
    FactorType.SMS,
    FactorType.EMAIL,
    FactorType.WEBAUTHN,
    FactorType.BACKUP_CODE,
)


def _policy_from_row(row: Row) -> MFAPolicy:
    return MFAPolicy(
        enforcement=Enforcement(row.get("enforcement") or Enforcement.OPTIONAL.value),
        min_factors=int(row.get("min_factors") or 1),
        allowed_factors=[FactorType(value) for value in row.get("allowed_factors") or []],
    )


class PolicyStore:
    """Loads user and organization MFA policies from storage."""

    def __init__(self, storage: Storage) -> None:
        self._storage = storage

    @beartype
    async def user_policy(self, user_id: str) -> MFAPolicy | None:
        row = await self._storage.select_one(
            RecordSet.USER_MFA_SETTINGS, {"user_id": user_id}
        )
        return _policy_from_row(row) if row is not None else None

    @beartype
    async def org_policy(self, organization_id: str | None) -> MFAPolicy | None:
        if organization_id is None:
            return None
        row = await self._storage.select_one(
            RecordSet.ORG_MFA_POLICIES, {"organization_id": organization_id}
        )
        return _policy_from_row(row) if row is not None else None

    @beartype
    async def policies_for(
        self, user_id: str, organization_id: str | None
    ) -> tuple[MFAPolicy | None, MFAPolicy | None]:
        """User and organization policy for one user."""
        return await self.user_policy(user_id), await self.org_policy(organization_id)

    @beartype
    async def save_user_policy(self, user_id: str, policy: MFAPolicy) -> None:
        await self._save(RecordSet.USER_MFA_SETTINGS, {"user_id": user_id}, policy)

    @beartype
    async def save_org_policy(self, organization_id: str, policy: MFAPolicy) -> None:
        await self._save(
            RecordSet.ORG_MFA_POLICIES, {"organization_id": organization_id}, policy
        )

    async def _save(
        self, records: RecordSet, key: dict[str, Any], policy: MFAPolicy
    ) -> None:
        values = {
            "enforcement": policy.enforcement.value,
            "min_factors": policy.min_factors,
            "allowed_factors": [factor.value for factor in policy.allowed_factors],
        }
        if await self._storage.update(records, key, values) == 0:
            await self._storage.insert(records, {**key, **values})


class PolicyResolver:
    """Merge user policy, organization policy and risk into one requirement."""

    def __init__(self, settings: Settings) -> None:
        self._default_policy = MFAPolicy(
            enforcement=Enforcement(settings.default_enforcement),
            min_factors=1,
            allowed_factors=[FactorType(value) for value in settings.default_allowed_factors],
        )

    @property
    def default_policy(self) -> MFAPolicy:
        return self._default_policy

    @beartype
    def resolve(
        self,
        risk: RiskScore | None,
        user_policy: MFAPolicy | None,
        org_policy: MFAPolicy | None,
    ) -> MFARequirement:
        """Resolve the requirement for one attempt.

        Args:
            risk: Risk assessment, or None when only policy matters (factor removal)
            user_policy: The user's own policy; the configured default when None
            org_policy: The organization policy, if the user belongs to one

        Returns:
            The merged requirement
        """
        user = user_policy or self._default_policy
        policies = [user] + ([org_policy] if org_policy is not None else [])
        recommendation = risk.recommendation if risk is not None else None

        required = any(p.enforcement is Enforcement.REQUIRED for p in policies) or (
            recommendation is not None and recommendation.required
        )

        factor_count = max(p.min_factors for p in policies)
        if recommendation is not None and recommendation.required:
            factor_count = max(factor_count, recommendation.min_factors)

        enforcement = max((p.enforcement for p in policies), key=lambda e: e.rank)

        return MFARequirement(
            required=required,
            factor_count=factor_count,
            allowed_factors=self._allowed(user, org_policy, recommendation),
            enforcement=enforcement,
        )

    def _allowed(
        self,
        user: MFAPolicy,
        org: MFAPolicy | None,
        recommendation: Any,
    ) -> list[FactorType]:
        first = _mfa_only(user.allowed_factors) or _mfa_only(
            self._default_policy.allowed_factors
        )
        sources: list[list[FactorType]] = [first]
        if org is not None and _mfa_only(org.allowed_factors):
            sources.append(_mfa_only(org.allowed_factors))
        if recommendation is not None and recommendation.factors:
            # Recovery codes stay usable as the fallback for any risk level.
            sources.append([*recommendation.factors, FactorType.BACKUP_CODE])

        allowed = [
            factor for factor in first if all(factor in source for source in sources[1:])
        ]
        if not allowed:
            logger.warning(
                "Allowed factor sets do not intersect, falling back to %s",
                [factor.value for factor in first],
            )
            return list(first)
        return allowed


def _mfa_only(factors: list[FactorType]) -> list[FactorType]:
    return [factor for factor in factors if factor in MFA_FACTORS]
