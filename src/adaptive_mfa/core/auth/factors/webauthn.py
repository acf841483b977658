# AdaptiveMFA - Risk-Adaptive MFA Orchestration Core
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""WebAuthn/FIDO2 security key factor."""

import json
import logging
from datetime import timedelta
from typing import Any
from uuid import uuid4

from beartype import beartype
from webauthn import (
    generate_authentication_options,
    generate_registration_options,
    options_to_json,
    verify_authentication_response,
    verify_registration_response,
)
from webauthn.helpers import base64url_to_bytes, bytes_to_base64url
from webauthn.helpers.exceptions import (
    InvalidAuthenticationResponse,
    InvalidJSONStructure,
    InvalidRegistrationResponse,
)
from webauthn.helpers.structs import (
    AttestationConveyancePreference,
    AuthenticatorSelectionCriteria,
    PublicKeyCredentialDescriptor,
    UserVerificationRequirement,
)

from adaptive_mfa.core.auth.errors import AuthError, AuthErrorCode
from adaptive_mfa.core.auth.models import (
    EnrollmentResult,
    FactorStartResult,
    FactorType,
)
from adaptive_mfa.core.result_types import Err, Ok, Result
from adaptive_mfa.storage.base import RecordSet, Row

from .base import FactorVerifier, Proof

logger = logging.getLogger(__name__)

REGISTRATION = "registration"
AUTHENTICATION = "authentication"

_TIMEOUT_MS = 60000


class WebAuthnVerifier(FactorVerifier):
    """Security keys and platform authenticators.

    Each ceremony challenge is stored server side and can be redeemed once.
    An assertion must carry a sign counter above the stored one unless the
    authenticator does not implement counters (both values zero).
    """

    factor_type = FactorType.WEBAUTHN

    @property
    def _rp_id(self) -> str:
        return self._settings.webauthn_rp_id

    @property
    def _origin(self) -> str:
        return self._settings.webauthn_origin.rstrip("/")

    async def credentials_for(self, user_id: str) -> list[Row]:
        return await self._storage.select(
            RecordSet.WEBAUTHN_CREDENTIALS, {"user_id": user_id}, order_by="created_at"
        )

    async def _open_ceremony(
        self, user_id: str, purpose: str, challenge: bytes, challenge_id: str | None = None
    ) -> None:
        # One outstanding ceremony per user and purpose.
        await self._storage.delete(
            RecordSet.WEBAUTHN_CEREMONIES, {"user_id": user_id, "purpose": purpose}
        )
        now = self._clock()
        await self._storage.insert(
            RecordSet.WEBAUTHN_CEREMONIES,
            {
                "id": str(uuid4()),
                "user_id": user_id,
                "purpose": purpose,
                "challenge": bytes_to_base64url(challenge),
                "challenge_id": challenge_id,
                "created_at": now,
                "expires_at": now
                + timedelta(seconds=self._settings.webauthn_ceremony_ttl_seconds),
            },
        )

    async def _redeem_ceremony(self, user_id: str, purpose: str) -> bytes | None:
        """Claim the outstanding ceremony challenge, if it is still live."""
        row = await self._storage.select_one(
            RecordSet.WEBAUTHN_CEREMONIES, {"user_id": user_id, "purpose": purpose}
        )
        if row is None:
            return None
        claimed = await self._storage.delete(RecordSet.WEBAUTHN_CEREMONIES, {"id": row["id"]})
        if claimed != 1 or self._clock() >= row["expires_at"]:
            return None
        return base64url_to_bytes(row["challenge"])

    @staticmethod
    def _descriptors(rows: list[Row]) -> list[PublicKeyCredentialDescriptor]:
        return [
            PublicKeyCredentialDescriptor(id=base64url_to_bytes(row["credential_id"]))
            for row in rows
        ]

    @beartype
    async def enroll(
        self, user_id: str, data: dict[str, Any]
    ) -> Result[EnrollmentResult, AuthError]:
        """Issue registration options, or verify the authenticator's response.

        Args:
            user_id: Enrolling user
            data: Empty (or ``user_name``) to begin; ``credential`` with the
                browser's registration response to finish

        Returns:
            Result containing options (pending) or the new factor
        """
        if "credential" in data:
            return await self._finish_registration(user_id, data)

        user = await self._storage.select_one(RecordSet.USERS, {"id": user_id})
        user_name = str(data.get("user_name") or (user["email"] if user else user_id))
        existing = await self.credentials_for(user_id)

        options = generate_registration_options(
            rp_id=self._rp_id,
            rp_name=self._settings.webauthn_rp_name,
            user_id=user_id.encode(),
            user_name=user_name,
            user_display_name=str(data.get("display_name") or user_name),
            exclude_credentials=self._descriptors(existing),
            authenticator_selection=AuthenticatorSelectionCriteria(
                user_verification=UserVerificationRequirement.PREFERRED,
            ),
            attestation=AttestationConveyancePreference.NONE,
            timeout=_TIMEOUT_MS,
        )
        await self._open_ceremony(user_id, REGISTRATION, options.challenge)
        return Ok(
            EnrollmentResult(
                factor_type=FactorType.WEBAUTHN,
                pending=True,
                options=json.loads(options_to_json(options)),
            )
        )

    async def _finish_registration(
        self, user_id: str, data: dict[str, Any]
    ) -> Result[EnrollmentResult, AuthError]:
        challenge = await self._redeem_ceremony(user_id, REGISTRATION)
        if challenge is None:
            return Err(
                AuthError(
                    AuthErrorCode.INVALID_ENROLLMENT,
                    "Registration ceremony not found or expired",
                )
            )

        try:
            verification = verify_registration_response(
                credential=data["credential"],
                expected_challenge=challenge,
                expected_origin=self._origin,
                expected_rp_id=self._rp_id,
            )
        except (InvalidRegistrationResponse, InvalidJSONStructure, ValueError) as e:
            logger.info("WebAuthn registration rejected for user %s: %s", user_id, e)
            return Err(AuthError(AuthErrorCode.VERIFICATION_FAILED, str(e)))

        credential_id = bytes_to_base64url(verification.credential_id)
        duplicate = await self._storage.select_one(
            RecordSet.WEBAUTHN_CREDENTIALS, {"credential_id": credential_id}
        )
        if duplicate is not None:
            return Err(
                AuthError(AuthErrorCode.INVALID_ENROLLMENT, "Credential already registered")
            )

        factor = await self._factors.add(
            user_id,
            FactorType.WEBAUTHN,
            str(data.get("display_name") or "Security key"),
        )
        await self._storage.insert(
            RecordSet.WEBAUTHN_CREDENTIALS,
            {
                "id": str(uuid4()),
                "user_id": user_id,
                "factor_id": factor.id,
                "credential_id": credential_id,
                "public_key": bytes_to_base64url(verification.credential_public_key),
                "sign_count": verification.sign_count,
                "aaguid": str(verification.aaguid) if verification.aaguid else None,
                "created_at": self._clock(),
                "last_used_at": None,
            },
        )
        return Ok(EnrollmentResult(factor=factor, factor_type=FactorType.WEBAUTHN))

    @beartype
    async def start(
        self, user_id: str, challenge_id: str
    ) -> Result[FactorStartResult, AuthError]:
        """Issue assertion options for the user's registered credentials."""
        credentials = await self.credentials_for(user_id)
        if not credentials:
            return Err(AuthError(AuthErrorCode.FACTOR_NOT_FOUND))

        options = generate_authentication_options(
            rp_id=self._rp_id,
            allow_credentials=self._descriptors(credentials),
            user_verification=UserVerificationRequirement.PREFERRED,
            timeout=_TIMEOUT_MS,
        )
        await self._open_ceremony(user_id, AUTHENTICATION, options.challenge, challenge_id)
        return Ok(
            FactorStartResult(
                challenge_id=challenge_id,
                factor_type=FactorType.WEBAUTHN,
                options=json.loads(options_to_json(options)),
            )
        )

    @beartype
    async def verify(self, user_id: str, proof: Proof) -> Result[bool, AuthError]:
        credential = proof.get("credential")
        if not isinstance(credential, dict):
            return Ok(False)

        stored = await self._storage.select_one(
            RecordSet.WEBAUTHN_CREDENTIALS,
            {"user_id": user_id, "credential_id": str(credential.get("id", ""))},
        )
        if stored is None:
            return Ok(False)

        challenge = await self._redeem_ceremony(user_id, AUTHENTICATION)
        if challenge is None:
            return Ok(False)

        try:
            verification = verify_authentication_response(
                credential=credential,
                expected_challenge=challenge,
                expected_origin=self._origin,
                expected_rp_id=self._rp_id,
                credential_public_key=base64url_to_bytes(stored["public_key"]),
                credential_current_sign_count=stored["sign_count"],
            )
        except (InvalidAuthenticationResponse, InvalidJSONStructure, ValueError) as e:
            logger.info("WebAuthn assertion rejected for user %s: %s", user_id, e)
            return Ok(False)

        new_count = verification.new_sign_count
        old_count = stored["sign_count"]
        if (new_count or old_count) and new_count <= old_count:
            logger.warning(
                "Sign counter did not advance for credential %s (%d -> %d)",
                stored["id"],
                old_count,
                new_count,
            )
            return Ok(False)

        claimed = await self._storage.update(
            RecordSet.WEBAUTHN_CREDENTIALS,
            {"id": stored["id"], "sign_count": old_count},
            {"sign_count": new_count, "last_used_at": self._clock()},
        )
        if claimed != 1:
            return Ok(False)
        await self._factors.touch(stored["factor_id"])
        return Ok(True)

    async def cleanup(self, user_id: str, factor_row: Row) -> None:
        await self._storage.delete(
            RecordSet.WEBAUTHN_CREDENTIALS, {"factor_id": factor_row["id"]}
        )
