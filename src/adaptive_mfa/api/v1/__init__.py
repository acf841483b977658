# AdaptiveMFA - Risk-Adaptive MFA Orchestration Core
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""API v1 router aggregation."""

from fastapi import APIRouter

from .auth import router as auth_router

# Create main v1 router
router = APIRouter(prefix="/api/v1")

router.include_router(auth_router)


__all__ = ["router"]
