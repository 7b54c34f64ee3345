"""Root API router with the /api/v1 prefix and middleware registration."""

from fastapi import APIRouter, FastAPI

from portal_rbac.api.middleware import (
    AccessLogMiddleware,
    RateLimitMiddleware,
    SecurityHeadersMiddleware,
    setup_cors,
)
from portal_rbac.core.config import Settings


def create_router(settings: Settings) -> APIRouter:
    """Create the root API router with all sub-routers included."""
    from portal_rbac.api.v1.audit import audit_router
    from portal_rbac.api.v1.auth import router as auth_router
    from portal_rbac.api.v1.roles import roles_router

    root_router = APIRouter(prefix=settings.api_v1_prefix)
    root_router.include_router(auth_router)
    root_router.include_router(roles_router)
    root_router.include_router(audit_router)
    return root_router


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Register all middleware on the FastAPI app."""
    setup_cors(app, settings)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        RateLimitMiddleware,
        requests_per_minute=settings.rate_limit_per_minute,
        trusted_proxy_headers=settings.trusted_proxy_header_list,
    )
    app.add_middleware(AccessLogMiddleware)
