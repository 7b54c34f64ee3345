"""Role and role assignment endpoints."""

import uuid
from dataclasses import asdict
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse

from portal_rbac.core.dependencies import get_assignment_engine, get_request_context, require_permission
from portal_rbac.models.user_role import UserRole
from portal_rbac.schemas.common import ErrorResponse, PaginationMeta
from portal_rbac.schemas.roles import (
    AssignmentResponse,
    AssignmentResultResponse,
    AssignRoleRequest,
    BatchAssignRequest,
    BatchResultResponse,
    ChangeRoleRequest,
    RoleResponse,
    ValidateAssignmentRequest,
    ValidationResultResponse,
)
from portal_rbac.services.assignment_service import AssignmentEngine
from portal_rbac.services.types import Actor, AssignmentOutcome, RequestContext

roles_router = APIRouter(prefix="/roles", tags=["roles"])

ERROR_RESPONSES: dict[int | str, dict] = {
    401: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


def _assignment_to_response(assignment: UserRole) -> AssignmentResponse:
    return AssignmentResponse(
        user_id=assignment.user_id,
        role_id=assignment.role_id,
        role_name=assignment.role.name,
        role_level=assignment.role.level,
        assigned_by=assignment.assigned_by,
        reason=assignment.reason,
        assigned_at=assignment.assigned_at,
        metadata=assignment.assignment_metadata,
    )


def _outcome_to_response(outcome: AssignmentOutcome) -> AssignmentResultResponse:
    return AssignmentResultResponse(
        user_id=outcome.user_id,
        role_id=outcome.role_id,
        role_name=outcome.role_name,
        role_before=outcome.role_before,
        assigned_by=outcome.assigned_by,
        reason=outcome.reason,
        assigned_at=outcome.assigned_at,
        audit_log_id=outcome.audit_log_id,
        risk_level=outcome.risk_level.value,
    )


@roles_router.get("", response_model=list[RoleResponse])
async def list_roles(
    engine: Annotated[AssignmentEngine, Depends(get_assignment_engine)],
    _actor: Annotated[Actor, Depends(require_permission("roles", "read"))],
) -> list[RoleResponse]:
    """List every role, lowest level first."""
    roles = await engine.catalog.list_roles()
    return [RoleResponse.model_validate(r) for r in roles]


@roles_router.get("/assignable", response_model=list[RoleResponse])
async def list_assignable_roles(
    engine: Annotated[AssignmentEngine, Depends(get_assignment_engine)],
    actor: Annotated[Actor, Depends(require_permission("users", "manage"))],
) -> list[RoleResponse]:
    """Roles the current actor may offer when assigning."""
    roles = await engine.catalog.list_assignable_roles(actor)
    return [RoleResponse.model_validate(r) for r in roles]


@roles_router.post("/validate-assignment", response_model=ValidationResultResponse)
async def validate_assignment(
    request: ValidateAssignmentRequest,
    engine: Annotated[AssignmentEngine, Depends(get_assignment_engine)],
    actor: Annotated[Actor, Depends(require_permission("users", "manage"))],
) -> ValidationResultResponse:
    """Dry-run the hierarchy checks for an assignment. Nothing is written."""
    result = await engine.validate_assignment(actor, request.user_id, request.role_id)
    return ValidationResultResponse(**result.as_dict())


@roles_router.post(
    "/assign",
    response_model=AssignmentResultResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
)
async def assign_role(
    request: AssignRoleRequest,
    engine: Annotated[AssignmentEngine, Depends(get_assignment_engine)],
    actor: Annotated[Actor, Depends(require_permission("users", "manage"))],
    context: Annotated[RequestContext, Depends(get_request_context)],
) -> AssignmentResultResponse:
    """Grant a role to a user who holds none."""
    outcome = await engine.assign_role(
        actor,
        request.user_id,
        request.role_id,
        request.reason,
        context=context,
        metadata=request.metadata,
    )
    return _outcome_to_response(outcome)


@roles_router.post("/batch-assign", response_model=BatchResultResponse)
async def batch_assign(
    request: BatchAssignRequest,
    engine: Annotated[AssignmentEngine, Depends(get_assignment_engine)],
    actor: Annotated[Actor, Depends(require_permission("roles", "manage"))],
    context: Annotated[RequestContext, Depends(get_request_context)],
) -> BatchResultResponse | JSONResponse:
    """Assign roles to many users in one transaction.

    Returns 200 when the batch committed, 400 when no item was valid and 500
    when a storage failure rolled the batch back; the per-item breakdown is
    included in every case.
    """
    result = await engine.assign_roles_batch(actor, request.assignments, context=context, metadata=request.metadata)
    body = BatchResultResponse.model_validate(asdict(result))
    if result.valid_count == 0:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=body.model_dump(mode="json"))
    if not result.committed:
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=body.model_dump(mode="json"))
    return body


@roles_router.get("/assignments")
async def list_assignments(
    engine: Annotated[AssignmentEngine, Depends(get_assignment_engine)],
    _actor: Annotated[Actor, Depends(require_permission("roles", "read"))],
    role_id: uuid.UUID | None = None,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=100, ge=1, le=1000),
) -> dict:
    """List current assignments in the list envelope."""
    assignments, total = await engine.list_assignments(role_id=role_id, page=page, page_size=page_size)
    return {
        "success": True,
        "data": [_assignment_to_response(a).model_dump(mode="json") for a in assignments],
        "pagination": PaginationMeta.build(total, page, page_size).model_dump(),
    }


@roles_router.get("/assignments/{user_id}", response_model=AssignmentResponse)
async def get_assignment(
    user_id: str,
    engine: Annotated[AssignmentEngine, Depends(get_assignment_engine)],
    _actor: Annotated[Actor, Depends(require_permission("roles", "read"))],
) -> AssignmentResponse:
    """Return a user's current role."""
    return _assignment_to_response(await engine.get_assignment(user_id))


@roles_router.put("/assignments/{user_id}", response_model=AssignmentResultResponse, responses=ERROR_RESPONSES)
async def change_role(
    user_id: str,
    request: ChangeRoleRequest,
    engine: Annotated[AssignmentEngine, Depends(get_assignment_engine)],
    actor: Annotated[Actor, Depends(require_permission("users", "manage"))],
    context: Annotated[RequestContext, Depends(get_request_context)],
) -> AssignmentResultResponse:
    """Replace a user's role."""
    outcome = await engine.change_role(
        actor,
        user_id,
        request.role_id,
        request.reason,
        context=context,
        metadata=request.metadata,
    )
    return _outcome_to_response(outcome)


@roles_router.delete("/assignments/{user_id}", response_model=AssignmentResultResponse, responses=ERROR_RESPONSES)
async def unassign_role(
    user_id: str,
    engine: Annotated[AssignmentEngine, Depends(get_assignment_engine)],
    actor: Annotated[Actor, Depends(require_permission("users", "manage"))],
    context: Annotated[RequestContext, Depends(get_request_context)],
    reason: str = Query(default="unassignment", min_length=1, max_length=200),
) -> AssignmentResultResponse:
    """Remove a user's role."""
    outcome = await engine.unassign_role(actor, user_id, reason, context=context)
    return _outcome_to_response(outcome)
