# AdaptiveMFA - Risk-Adaptive MFA Orchestration Core
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Authentication and MFA endpoints."""

import logging
from typing import Annotated, Any, NoReturn

from beartype import beartype
from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, ConfigDict, Field, StringConstraints

from ...core.auth.components import AuthComponents
from ...core.auth.errors import AuthError, AuthErrorCode
from ...core.auth.models import (
    AuthenticationResult,
    DeviceInfo,
    EnrolledFactor,
    EnrollmentResult,
    FactorStartResult,
    FactorType,
    SessionRecord,
    VerificationResult,
)
from ..dependencies import build_context, get_components, get_current_session

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

_STATUS_BY_CODE: dict[AuthErrorCode, int] = {
    AuthErrorCode.INVALID_CREDENTIALS: status.HTTP_401_UNAUTHORIZED,
    AuthErrorCode.VERIFICATION_FAILED: status.HTTP_401_UNAUTHORIZED,
    AuthErrorCode.ACCOUNT_LOCKED: status.HTTP_423_LOCKED,
    AuthErrorCode.CHALLENGE_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    AuthErrorCode.FACTOR_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    AuthErrorCode.CHALLENGE_EXPIRED: status.HTTP_410_GONE,
    AuthErrorCode.MAX_ATTEMPTS_EXCEEDED: status.HTTP_410_GONE,
    AuthErrorCode.RATE_LIMITED: status.HTTP_429_TOO_MANY_REQUESTS,
    AuthErrorCode.UNSUPPORTED_FACTOR: status.HTTP_400_BAD_REQUEST,
    AuthErrorCode.INVALID_ENROLLMENT: status.HTTP_400_BAD_REQUEST,
    AuthErrorCode.WEAK_PASSWORD: status.HTTP_400_BAD_REQUEST,
    AuthErrorCode.PASSWORD_REUSED: status.HTTP_400_BAD_REQUEST,
    AuthErrorCode.ENROLLMENT_REQUIRED: status.HTTP_403_FORBIDDEN,
    AuthErrorCode.LAST_FACTOR_REMOVAL_DENIED: status.HTTP_409_CONFLICT,
    AuthErrorCode.FACTOR_LIMIT_REACHED: status.HTTP_409_CONFLICT,
    AuthErrorCode.STORAGE_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
    AuthErrorCode.DELIVERY_FAILURE: status.HTTP_502_BAD_GATEWAY,
}


def _raise(error: AuthError) -> NoReturn:
    status_code = _STATUS_BY_CODE.get(error.code, status.HTTP_400_BAD_REQUEST)
    if status_code >= 500:
        logger.warning("Request failed upstream: %s", error)
    raise HTTPException(
        status_code=status_code,
        detail={
            "code": error.code.value,
            "message": error.message,
            "restart": error.is_terminal,
            **error.details,
        },
    )


# Request models


@beartype
class LoginRequest(BaseModel):
    """Primary credentials plus the client's device description."""

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        validate_assignment=True,
        validate_default=True,
    )

    email: Annotated[str, StringConstraints(strip_whitespace=True, min_length=3, max_length=320)]
    # Passwords are compared exactly as typed.
    password: str = Field(..., min_length=1, max_length=1024)
    device: DeviceInfo | None = None


@beartype
class StartFactorRequest(BaseModel):
    """Factor to prepare inside a challenge."""

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        validate_assignment=True,
        str_strip_whitespace=True,
        validate_default=True,
    )

    factor_type: FactorType


@beartype
class VerifyChallengeRequest(BaseModel):
    """One factor proof submitted against a challenge."""

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        validate_assignment=True,
        str_strip_whitespace=True,
        validate_default=True,
    )

    factor_type: FactorType
    proof: dict[str, Any] = Field(default_factory=dict)
    device: DeviceInfo | None = None


@beartype
class EnrollFactorRequest(BaseModel):
    """Factor enrollment (or confirmation) for the session's user."""

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        validate_assignment=True,
        str_strip_whitespace=True,
        validate_default=True,
    )

    factor_type: FactorType
    data: dict[str, Any] = Field(default_factory=dict)


@beartype
class RemoveFactorRequest(BaseModel):
    """Proof of possession required to remove a factor."""

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        validate_assignment=True,
        str_strip_whitespace=True,
        validate_default=True,
    )

    proof: dict[str, Any] = Field(default_factory=dict)


# Endpoints


@router.post("/login", response_model=AuthenticationResult)
async def login(
    body: LoginRequest,
    request: Request,
    components: AuthComponents = Depends(get_components),
) -> AuthenticationResult:
    """Check primary credentials and decide whether MFA is needed."""
    ctx = build_context(request, components, body.device, body.email)
    result = await components.orchestrator.authenticate(body.email, body.password, ctx)
    if result.is_err():
        _raise(result.unwrap_err())
    return result.unwrap()


@router.post("/challenges/{challenge_id}/start", response_model=FactorStartResult)
async def start_factor(
    challenge_id: str,
    body: StartFactorRequest,
    components: AuthComponents = Depends(get_components),
) -> FactorStartResult:
    """Send a code or issue assertion options for one factor of a challenge."""
    result = await components.orchestrator.start_factor(challenge_id, body.factor_type)
    if result.is_err():
        _raise(result.unwrap_err())
    return result.unwrap()


@router.post("/challenges/{challenge_id}/verify", response_model=VerificationResult)
async def verify_challenge(
    challenge_id: str,
    body: VerifyChallengeRequest,
    request: Request,
    components: AuthComponents = Depends(get_components),
) -> VerificationResult:
    """Submit one factor; the final factor returns the session."""
    ctx = build_context(request, components, body.device)
    result = await components.orchestrator.verify_challenge(
        challenge_id, body.factor_type, body.proof, ctx
    )
    if result.is_err():
        _raise(result.unwrap_err())
    return result.unwrap()


@router.post("/factors", response_model=EnrollmentResult, status_code=status.HTTP_201_CREATED)
async def enroll_factor(
    body: EnrollFactorRequest,
    session: SessionRecord = Depends(get_current_session),
    components: AuthComponents = Depends(get_components),
) -> EnrollmentResult:
    """Enroll or confirm a factor for the authenticated user."""
    result = await components.orchestrator.enroll_factor(
        session.user_id, body.factor_type, body.data
    )
    if result.is_err():
        _raise(result.unwrap_err())
    return result.unwrap()


@router.get("/factors/{user_id}", response_model=list[EnrolledFactor])
async def list_factors(
    user_id: str,
    session: SessionRecord = Depends(get_current_session),
    components: AuthComponents = Depends(get_components),
) -> list[EnrolledFactor]:
    """Confirmed factors of the authenticated user."""
    if session.user_id != user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": "forbidden", "message": "Cannot list another user's factors"},
        )
    result = await components.orchestrator.list_factors(user_id)
    if result.is_err():
        _raise(result.unwrap_err())
    return result.unwrap()


@router.delete("/factors/{factor_id}", response_model=EnrolledFactor)
async def remove_factor(
    factor_id: str,
    body: RemoveFactorRequest,
    session: SessionRecord = Depends(get_current_session),
    components: AuthComponents = Depends(get_components),
) -> EnrolledFactor:
    """Remove a factor after re-verification."""
    result = await components.orchestrator.remove_factor(
        session.user_id, factor_id, body.proof
    )
    if result.is_err():
        _raise(result.unwrap_err())
    return result.unwrap()
