# AdaptiveMFA - Risk-Adaptive MFA Orchestration Core
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Shared cryptographic helpers.

Token and code generation, one-way hashing, constant-time comparison,
encryption of secrets at rest and device fingerprinting. Every comparison of
a secret-derived value in the package goes through ``constant_time_equals``.
"""

import base64
import hashlib
import hmac
import json
import secrets
from collections.abc import Mapping

from beartype import beartype
from cryptography.fernet import Fernet, InvalidToken

from .config import Settings

__all__ = [
    "SecretBox",
    "constant_time_equals",
    "device_fingerprint",
    "generate_numeric_code",
    "generate_token",
    "hash_code",
    "hash_token",
]

FINGERPRINT_FIELDS = (
    "user_agent",
    "screen_resolution",
    "timezone",
    "language",
    "platform",
)


@beartype
def generate_token(nbytes: int = 32) -> str:
    """Return a URL-safe random token with ``nbytes`` of entropy."""
    return secrets.token_urlsafe(nbytes)


@beartype
def generate_numeric_code(length: int = 6) -> str:
    """Return a uniformly random zero-padded decimal code."""
    return f"{secrets.randbelow(10**length):0{length}d}"


@beartype
def hash_token(token: str) -> str:
    """SHA-256 hex digest of a bearer token."""
    return hashlib.sha256(token.encode()).hexdigest()


@beartype
def hash_code(code: str, pepper: str) -> str:
    """HMAC-SHA256 of a short code keyed with the server pepper.

    Short codes have too little entropy for a bare hash, so the key keeps an
    attacker holding only the database from brute forcing them offline.
    """
    return hmac.new(pepper.encode(), code.encode(), hashlib.sha256).hexdigest()


@beartype
def constant_time_equals(left: str, right: str) -> bool:
    """Compare two strings in time independent of where they differ."""
    return hmac.compare_digest(left.encode(), right.encode())


@beartype
def device_fingerprint(attributes: Mapping[str, str | None]) -> str:
    """Stable SHA-256 over the canonical JSON of the device attributes."""
    canonical = {name: attributes.get(name) or "" for name in FINGERPRINT_FIELDS}
    payload = json.dumps(canonical, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(payload.encode()).hexdigest()


class SecretBox:
    """Fernet envelope for factor secrets and delivery destinations."""

    def __init__(self, settings: Settings) -> None:
        self._fernet = Fernet(self._derive_key(settings))

    @staticmethod
    def _derive_key(settings: Settings) -> bytes:
        if settings.encryption_key:
            return settings.encryption_key.encode()
        digest = hashlib.sha256(settings.secret_key.encode()).digest()
        return base64.urlsafe_b64encode(digest)

    @beartype
    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode()).decode()

    @beartype
    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a stored value.

        Raises:
            ValueError: If the ciphertext was not produced with this key.
        """
        try:
            return self._fernet.decrypt(ciphertext.encode()).decode()
        except InvalidToken as e:
            raise ValueError("Stored secret could not be decrypted") from e
