"""API v1 router aggregator.

URL structure with /api/v1 prefix. All v1 endpoint routers are included here.
"""

from fastapi import APIRouter

from app.api.v1 import admin, features

router = APIRouter()

# =============================================================================
# Tenant-facing features
# =============================================================================

router.include_router(features.router, prefix="/features", tags=["features"])

# =============================================================================
# Admin
# =============================================================================

router.include_router(admin.router, prefix="/admin", tags=["admin"])
