"""Audit log endpoints: listing, search, statistics, dashboard and export."""

import uuid
from datetime import UTC, datetime
from typing import Annotated, Literal

from fastapi import APIRouter, Depends, Query, Response

from portal_rbac.core.config import Settings, get_settings
from portal_rbac.core.dependencies import get_audit_trail, require_permission
from portal_rbac.schemas.audit import AuditFilters, AuditLogListResponse, AuditLogResponse, AuditSearchResponse
from portal_rbac.schemas.common import PaginationMeta
from portal_rbac.services.audit_service import AuditTrail
from portal_rbac.services.types import Actor

audit_router = APIRouter(prefix="/audit", tags=["audit"])

AuditReader = Annotated[Actor, Depends(require_permission("audit", "read"))]


def get_audit_filters(
    user_id: str | None = None,
    performed_by: str | None = None,
    role_before: str | None = None,
    role_after: str | None = None,
    start_time: datetime | None = None,
    end_time: datetime | None = None,
    reason: str | None = None,
) -> AuditFilters:
    """Collect the shared filter query parameters."""
    return AuditFilters(
        user_id=user_id,
        performed_by=performed_by,
        role_before=role_before,
        role_after=role_after,
        start_time=start_time,
        end_time=end_time,
        reason=reason,
    )


@audit_router.get("/logs", response_model=AuditLogListResponse)
async def list_audit_logs(
    filters: Annotated[AuditFilters, Depends(get_audit_filters)],
    audit: Annotated[AuditTrail, Depends(get_audit_trail)],
    settings: Annotated[Settings, Depends(get_settings)],
    _actor: AuditReader,
    page: int = Query(default=1, ge=1),
    page_size: int | None = Query(default=None, ge=1, le=1000),
) -> AuditLogListResponse:
    """List audit entries, newest first."""
    size = page_size or settings.audit_default_page_size
    entries, total = await audit.list_entries(filters, page=page, page_size=size)
    return AuditLogListResponse(
        data=[AuditLogResponse.model_validate(e) for e in entries],
        pagination=PaginationMeta.build(total, page, size),
    )


@audit_router.get("/logs/{entry_id}", response_model=AuditLogResponse)
async def get_audit_log(
    entry_id: uuid.UUID,
    audit: Annotated[AuditTrail, Depends(get_audit_trail)],
    _actor: AuditReader,
) -> AuditLogResponse:
    """Return one audit entry."""
    return AuditLogResponse.model_validate(await audit.get_entry(entry_id))


@audit_router.get("/search", response_model=AuditSearchResponse)
async def search_audit_logs(
    filters: Annotated[AuditFilters, Depends(get_audit_filters)],
    audit: Annotated[AuditTrail, Depends(get_audit_trail)],
    _actor: AuditReader,
    q: str = Query(min_length=1, max_length=200, description="Search term"),
    limit: int = Query(default=100, ge=1, le=1000),
) -> AuditSearchResponse:
    """Case-insensitive search across reasons, identities, roles and client details."""
    entries = await audit.search(q, filters, limit=limit)
    return AuditSearchResponse(
        data=[AuditLogResponse.model_validate(e) for e in entries],
        total=len(entries),
        search_term=q,
    )


@audit_router.get("/statistics")
async def audit_statistics(
    audit: Annotated[AuditTrail, Depends(get_audit_trail)],
    _actor: AuditReader,
    user_id: str | None = Query(default=None, description="Only entries where this user is target or actor"),
) -> dict:
    """Aggregate counts over the audit log."""
    return {"success": True, "data": await audit.statistics(user_id)}


@audit_router.get("/dashboard")
async def audit_dashboard(
    audit: Annotated[AuditTrail, Depends(get_audit_trail)],
    _actor: AuditReader,
    user_id: str | None = None,
    top: int = Query(default=5, ge=1, le=50),
) -> dict:
    """Summary figures, top users and transitions, and the latest entries."""
    return {"success": True, "data": await audit.dashboard(user_id, top=top)}


@audit_router.get("/export")
async def export_audit_logs(
    filters: Annotated[AuditFilters, Depends(get_audit_filters)],
    audit: Annotated[AuditTrail, Depends(get_audit_trail)],
    settings: Annotated[Settings, Depends(get_settings)],
    _actor: AuditReader,
    export_format: Literal["csv", "json"] = Query(default="csv", alias="format"),
) -> Response:
    """Download matching entries as CSV or JSON."""
    result = await audit.export(filters, export_format, max_records=settings.export_max_records)
    filename = f"audit_log_{datetime.now(UTC).date().isoformat()}.{result.file_extension}"
    return Response(
        content=result.content,
        media_type=result.content_type,
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
            "X-Record-Count": str(result.record_count),
        },
    )
