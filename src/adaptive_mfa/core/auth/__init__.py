# AdaptiveMFA - Risk-Adaptive MFA Orchestration Core
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Risk-adaptive multi-factor authentication.

- Risk engine scoring each attempt from device, location, behavior,
  velocity and threat signals
- Policy resolution across user, organization and risk
- Challenge orchestration with multi-factor requirements
- Factor verifiers and opaque session issuance
"""

from .components import AuthComponents, build_components
from .errors import AuthError, AuthErrorCode
from .orchestrator import ChallengeOrchestrator
from .policy import PolicyResolver, PolicyStore
from .risk_engine import RiskEngine
from .sessions import SessionIssuer

__all__ = [
    "AuthComponents",
    "AuthError",
    "AuthErrorCode",
    "ChallengeOrchestrator",
    "PolicyResolver",
    "PolicyStore",
    "RiskEngine",
    "SessionIssuer",
    "build_components",
]
