"""Service and identity endpoints.

GET /health, GET /info, GET /auth/me.
"""

from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from portal_rbac import __version__
from portal_rbac.core.config import Settings, get_settings
from portal_rbac.core.dependencies import get_assignment_engine, get_current_actor
from portal_rbac.schemas.roles import RoleResponse
from portal_rbac.services.assignment_service import AssignmentEngine
from portal_rbac.services.types import Actor

router = APIRouter(tags=["auth"])


class MeResponse(BaseModel):
    """The authenticated actor and the role the store says they hold."""

    user_id: str
    role: RoleResponse | None = None
    assignable_roles: list[RoleResponse]


@router.get("/health", status_code=200)
async def health_check() -> dict:
    """Health check endpoint (no authentication required)."""
    return {"status": "healthy"}


@router.get("/info", status_code=200)
async def info(
    settings: Annotated[Settings, Depends(get_settings)],
) -> dict:
    """Return application version and environment."""
    return {
        "version": __version__,
        "environment": settings.environment,
        "batch_max_items": settings.batch_max_items,
        "batch_approval_threshold": settings.batch_approval_threshold,
    }


@router.get("/auth/me", response_model=MeResponse)
async def get_me(
    actor: Annotated[Actor, Depends(get_current_actor)],
    engine: Annotated[AssignmentEngine, Depends(get_assignment_engine)],
) -> MeResponse:
    """Return the current actor with their role and the roles they may grant."""
    role = await engine.catalog.get_actor_role(actor)
    assignable = await engine.catalog.list_assignable_roles(actor)
    return MeResponse(
        user_id=actor.id,
        role=RoleResponse.model_validate(role) if role is not None else None,
        assignable_roles=[RoleResponse.model_validate(r) for r in assignable],
    )
