"""Audit trail Pydantic v2 schemas."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from portal_rbac.schemas.common import PaginationMeta


class AuditFilters(BaseModel):
    """Filter criteria shared by listing, search, statistics and export."""

    user_id: str | None = Field(default=None, max_length=64, description="Target user of the change")
    performed_by: str | None = Field(default=None, max_length=64, description="Actor who performed it")
    role_before: str | None = Field(default=None, max_length=50)
    role_after: str | None = Field(default=None, max_length=50)
    start_time: datetime | None = Field(default=None, description="Entries at or after this instant")
    end_time: datetime | None = Field(default=None, description="Entries at or before this instant")
    reason: str | None = Field(default=None, max_length=200, description="Substring of the reason")

    @model_validator(mode="after")
    def check_time_range(self) -> "AuditFilters":
        if self.start_time and self.end_time and self.start_time > self.end_time:
            msg = "start_time must not be after end_time"
            raise ValueError(msg)
        return self


class AuditLogResponse(BaseModel):
    """One audit entry."""

    id: UUID
    timestamp: datetime
    user_id: str
    role_before: str | None = None
    role_after: str
    performed_by: str
    reason: str
    ip_address: str | None = None
    user_agent: str | None = None
    metadata: dict[str, Any] | None = Field(default=None, validation_alias="entry_metadata")

    model_config = {"from_attributes": True, "populate_by_name": True}


class AuditLogListResponse(BaseModel):
    """Paginated audit listing in the portal's list envelope."""

    success: bool = True
    data: list[AuditLogResponse]
    pagination: PaginationMeta


class AuditSearchResponse(BaseModel):
    """Search results with the term echoed back."""

    success: bool = True
    data: list[AuditLogResponse]
    total: int
    search_term: str

