# AdaptiveMFA - Risk-Adaptive MFA Orchestration Core
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""FastAPI dependencies for the authentication components and caller sessions.

Components are built once in the application lifespan and kept on
``app.state``; endpoints receive them through these dependencies.
"""

from beartype import beartype
from fastapi import Depends, HTTPException, Request, Security, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..core.auth.components import AuthComponents
from ..core.auth.models import AuthContext, DeviceInfo, SessionRecord

# Security scheme
security = HTTPBearer()


def get_components(request: Request) -> AuthComponents:
    """Provide the authentication components for dependency injection.

    Raises:
        HTTPException: If the application has not finished starting
    """
    components = getattr(request.app.state, "components", None)
    if components is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"code": "storage_unavailable", "message": "Service not ready"},
        )
    return components


@beartype
def client_address(request: Request) -> str:
    """Originating address, honouring the first ``X-Forwarded-For`` hop."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client is not None and request.client.host:
        return request.client.host
    return "unknown"


def build_context(
    request: Request,
    components: AuthComponents,
    device: DeviceInfo | None = None,
    email: str | None = None,
) -> AuthContext:
    """Authentication context for the current request."""
    return AuthContext(
        email=email,
        ip_address=client_address(request),
        user_agent=request.headers.get("user-agent", ""),
        device=device or DeviceInfo(),
        timestamp=components.clock(),
    )


async def get_current_session(
    credentials: HTTPAuthorizationCredentials = Security(security),
    components: AuthComponents = Depends(get_components),
) -> SessionRecord:
    """Resolve the bearer access token to a live session.

    Raises:
        HTTPException: If the token is unknown, expired or revoked
    """
    session = await components.sessions.resolve(credentials.credentials)
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "invalid_credentials", "message": "Invalid or expired session"},
            headers={"WWW-Authenticate": "Bearer"},
        )
    return session
