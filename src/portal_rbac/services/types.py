"""Value types passed between the role engine, the validator and the audit trail."""

import enum
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any


class RiskLevel(enum.StrEnum):
    """Risk attached to an assignment decision."""

    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"
    CRITICAL = "critical"


class DenialReason(enum.StrEnum):
    """Machine-readable reasons produced by the validators and batch pre-validation."""

    ROLE_NOT_FOUND = "RoleNotFound"
    SELF_ASSIGNMENT = "SelfAssignment"
    LEVEL_TOO_HIGH_OR_EQUAL = "LevelTooHighOrEqual"
    TARGET_OUTRANKS_ACTOR = "TargetOutranksActor"
    BATCH_TOO_LARGE = "BatchTooLarge"
    BATCH_REQUIRES_APPROVAL = "BatchRequiresApproval"
    ALREADY_ASSIGNED = "AlreadyAssigned"
    DUPLICATE_IN_BATCH = "DuplicateInBatch"
    PERMISSION_DENIED = "PermissionDenied"


@dataclass(frozen=True)
class Actor:
    """Authenticated entity performing an operation.

    ``role_id`` is None for authenticated users who hold no role yet.
    """

    id: str
    role_id: uuid.UUID | None = None


@dataclass(frozen=True)
class RequestContext:
    """Transport details recorded on every audit entry."""

    ip_address: str | None = None
    user_agent: str | None = None
    path: str | None = None
    method: str | None = None

    def as_metadata(self) -> dict[str, Any]:
        return {"path": self.path, "method": self.method}


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of a privilege or bulk validation. Never persisted on its own."""

    valid: bool
    risk_level: RiskLevel
    reason: str | None = None
    requires_approval: bool = False

    @classmethod
    def allow(cls, risk_level: RiskLevel, *, requires_approval: bool | None = None) -> "ValidationResult":
        if requires_approval is None:
            requires_approval = risk_level is RiskLevel.CRITICAL
        return cls(valid=True, risk_level=risk_level, requires_approval=requires_approval)

    @classmethod
    def deny(cls, reason: str, risk_level: RiskLevel) -> "ValidationResult":
        return cls(
            valid=False,
            reason=reason,
            risk_level=risk_level,
            requires_approval=risk_level is RiskLevel.CRITICAL,
        )

    def as_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["risk_level"] = self.risk_level.value
        return data


@dataclass
class AssignmentOutcome:
    """A committed role change together with the audit entry that records it.

    For an unassignment ``role_id`` is None and ``role_name`` is ``unassigned``.
    """

    user_id: str
    role_id: uuid.UUID | None
    role_name: str
    assigned_by: str
    reason: str
    assigned_at: datetime
    audit_log_id: uuid.UUID
    role_before: str | None = None
    risk_level: RiskLevel = RiskLevel.LOW


class ItemOutcome(enum.StrEnum):
    """Final state of one batch item."""

    SUCCEEDED = "succeeded"
    INVALID = "invalid"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


@dataclass
class BatchItemResult:
    """Per-item breakdown returned for every input item of a batch."""

    index: int
    target_user_id: str
    target_role_id: uuid.UUID
    outcome: ItemOutcome
    reason: str | None = None
    risk_level: RiskLevel | None = None
    audit_log_id: uuid.UUID | None = None


@dataclass
class BatchResult:
    """Summary of a batch assignment."""

    batch_id: uuid.UUID
    total_attempted: int
    valid_count: int = 0
    invalid_count: int = 0
    executed_count: int = 0
    succeeded_count: int = 0
    failed_count: int = 0
    committed: bool = False
    per_item_detail: list[BatchItemResult] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)
