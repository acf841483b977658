# AdaptiveMFA - Risk-Adaptive MFA Orchestration Core
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Factor verifiers.

Every factor type enrolls and verifies through the same contract:
- Password (bcrypt, strength rules, reuse history, lockout)
- TOTP (authenticator apps, replay-protected time steps)
- SMS and email one-time codes
- WebAuthn/FIDO2 security keys
- Backup recovery codes
"""

from .backup_codes import BackupCodeVerifier
from .base import FactorRegistry, FactorStore, FactorVerifier, factor_from_row
from .delivery import (
    DeliveryChannel,
    LoggingDeliveryChannel,
    WebhookDeliveryChannel,
    mask_destination,
)
from .otp import EmailVerifier, OneTimeCodeVerifier, SMSVerifier
from .password import PasswordStrength, PasswordVerifier
from .totp import TOTPVerifier
from .webauthn import WebAuthnVerifier

__all__ = [
    "BackupCodeVerifier",
    "DeliveryChannel",
    "EmailVerifier",
    "FactorRegistry",
    "FactorStore",
    "FactorVerifier",
    "LoggingDeliveryChannel",
    "OneTimeCodeVerifier",
    "PasswordStrength",
    "PasswordVerifier",
    "SMSVerifier",
    "TOTPVerifier",
    "WebAuthnVerifier",
    "WebhookDeliveryChannel",
    "factor_from_row",
    "mask_destination",
]
