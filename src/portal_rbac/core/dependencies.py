"""FastAPI dependency injection for sessions, identity, permissions and services.

Provides get_async_session, get_current_actor, the require_permission factory
and per-request constructors for the role engine and the audit trail.
"""

from collections.abc import AsyncGenerator, Callable
from typing import Annotated, Any

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from portal_rbac.api.middleware import get_client_ip
from portal_rbac.core.config import Settings, get_settings
from portal_rbac.core.database import get_session_factory
from portal_rbac.core.errors import PermissionDenied, Unauthenticated
from portal_rbac.models.audit_log import BLOCKED
from portal_rbac.services.assignment_service import AssignmentEngine
from portal_rbac.services.audit_service import AuditTrail
from portal_rbac.services.identity import IdentityProvider, JWTIdentityProvider
from portal_rbac.services.permission_gate import LevelPermissionGate, PermissionGate
from portal_rbac.services.role_catalog import RoleCatalog
from portal_rbac.services.types import Actor, DenialReason, RequestContext, RiskLevel, ValidationResult

bearer_scheme = HTTPBearer(auto_error=False)


async def get_async_session() -> AsyncGenerator[AsyncSession]:
    """Yield an async database session with per-request lifecycle."""
    factory = get_session_factory()
    async with factory() as session:
        yield session


def get_request_context(
    request: Request,
    settings: Annotated[Settings, Depends(get_settings)],
) -> RequestContext:
    """Capture the transport details recorded on audit entries."""
    user_agent = request.headers.get("user-agent")
    return RequestContext(
        ip_address=get_client_ip(request, settings.trusted_proxy_header_list)[:45],
        user_agent=user_agent[:512] if user_agent else None,
        path=request.url.path,
        method=request.method,
    )


async def get_current_actor(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    session: Annotated[AsyncSession, Depends(get_async_session)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> Actor:
    """Resolve the bearer token to an Actor.

    Raises:
        Unauthenticated: If no valid bearer token was presented.
    """
    if credentials is None:
        msg = "Not authenticated"
        raise Unauthenticated(msg)
    provider: IdentityProvider = JWTIdentityProvider(session, settings.jwt_secret_key, settings.jwt_algorithm)
    return await provider.resolve_actor(credentials.credentials)


def get_permission_gate(session: Annotated[AsyncSession, Depends(get_async_session)]) -> PermissionGate:
    """Return the permission gate for this request."""
    return LevelPermissionGate(RoleCatalog(session))


def get_assignment_engine(
    session: Annotated[AsyncSession, Depends(get_async_session)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> AssignmentEngine:
    """Return a role engine bound to the request's session."""
    return AssignmentEngine(
        session,
        batch_max_items=settings.batch_max_items,
        batch_approval_threshold=settings.batch_approval_threshold,
    )


def get_audit_trail(session: Annotated[AsyncSession, Depends(get_async_session)]) -> AuditTrail:
    """Return the audit trail bound to the request's session."""
    return AuditTrail(session)


def require_permission(resource: str, action: str) -> Callable[..., Any]:
    """Factory that creates a dependency requiring ``resource:action``.

    A refused check is recorded as a ``blocked`` audit entry before the 403
    is returned.

    Args:
        resource: Resource name (e.g. ``roles``).
        action: Action name (e.g. ``manage``).

    Returns:
        A FastAPI dependency that yields the permitted Actor.
    """

    async def permission_checker(
        actor: Annotated[Actor, Depends(get_current_actor)],
        gate: Annotated[PermissionGate, Depends(get_permission_gate)],
        audit: Annotated[AuditTrail, Depends(get_audit_trail)],
        context: Annotated[RequestContext, Depends(get_request_context)],
    ) -> Actor:
        if await gate.has_permission(actor, resource, action):
            return actor
        validation = ValidationResult.deny(DenialReason.PERMISSION_DENIED, RiskLevel.HIGH)
        await audit.record_denial(
            actor_id=actor.id,
            target_user_id=actor.id,
            sentinel=BLOCKED,
            reason=f"Permission {resource}:{action} denied",
            validation=validation,
            context=context,
            metadata={"resource": resource, "action": action},
        )
        msg = f"Missing permission {resource}:{action}"
        raise PermissionDenied(
            msg,
            code=DenialReason.PERMISSION_DENIED.value,
            risk_level=validation.risk_level.value,
            requires_approval=validation.requires_approval,
        )

    return permission_checker
