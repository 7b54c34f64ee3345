"""Role and role assignment Pydantic v2 schemas.

Every engine operation takes one of these typed requests; they are validated
once at the HTTP boundary.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

USER_ID_MAX_LENGTH = 64
REASON_MAX_LENGTH = 200


class RoleResponse(BaseModel):
    """Role reference data."""

    id: UUID
    name: str
    level: int
    description: str | None = None

    model_config = {"from_attributes": True}


class AssignRoleRequest(BaseModel):
    """Grant a role to a user who holds none."""

    user_id: str = Field(min_length=1, max_length=USER_ID_MAX_LENGTH)
    role_id: UUID
    reason: str = Field(default="manual_assignment", min_length=1, max_length=REASON_MAX_LENGTH)
    metadata: dict[str, Any] | None = None


class ChangeRoleRequest(BaseModel):
    """Replace the role a user already holds."""

    role_id: UUID
    reason: str = Field(default="role_change", min_length=1, max_length=REASON_MAX_LENGTH)
    metadata: dict[str, Any] | None = None


class ValidateAssignmentRequest(BaseModel):
    """Dry-run check of an assignment."""

    user_id: str = Field(min_length=1, max_length=USER_ID_MAX_LENGTH)
    role_id: UUID


class BatchAssignmentItem(BaseModel):
    """One item of a batch assignment."""

    target_user_id: str = Field(min_length=1, max_length=USER_ID_MAX_LENGTH)
    target_role_id: UUID
    reason: str = Field(default="batch_assignment", min_length=1, max_length=REASON_MAX_LENGTH)


class BatchAssignRequest(BaseModel):
    """Ordered list of assignments processed as one unit.

    The size cap is enforced by the engine's bulk gate rather than here, so
    oversized batches are answered with ``BatchTooLarge``.
    """

    assignments: list[BatchAssignmentItem]
    metadata: dict[str, Any] | None = None

    @model_validator(mode="after")
    def check_not_empty(self) -> "BatchAssignRequest":
        if not self.assignments:
            msg = "At least one assignment is required"
            raise ValueError(msg)
        return self


class ValidationResultResponse(BaseModel):
    """Outcome of a privilege validation."""

    valid: bool
    reason: str | None = None
    risk_level: str
    requires_approval: bool


class AssignmentResponse(BaseModel):
    """A user's current role assignment."""

    user_id: str
    role_id: UUID
    role_name: str
    role_level: int
    assigned_by: str
    reason: str
    assigned_at: datetime
    metadata: dict[str, Any] | None = None


class AssignmentResultResponse(BaseModel):
    """Result of a grant, change or removal."""

    user_id: str
    role_id: UUID | None
    role_name: str | None
    role_before: str | None = None
    assigned_by: str
    reason: str
    assigned_at: datetime
    audit_log_id: UUID
    risk_level: str


class BatchItemResponse(BaseModel):
    """Per-item breakdown of a batch."""

    index: int
    target_user_id: str
    target_role_id: UUID
    outcome: str
    reason: str | None = None
    risk_level: str | None = None
    audit_log_id: UUID | None = None


class BatchResultResponse(BaseModel):
    """Summary of a batch assignment."""

    batch_id: UUID
    total_attempted: int
    valid_count: int
    invalid_count: int
    executed_count: int
    succeeded_count: int
    failed_count: int
    committed: bool
    per_item_detail: list[BatchItemResponse]
    errors: list[dict[str, Any]]

    model_config = {"from_attributes": True}
