"""Error taxonomy shared by the role engine, the audit trail and the HTTP layer.

Every error carries the HTTP status it maps to, a machine-readable ``code``
and, for security denials, the computed risk level.  The app factory renders
any ``RbacError`` through ``to_payload()``.
"""

from typing import Any


class RbacError(Exception):
    """Base class for all role administration errors."""

    status_code: int = 500
    default_code: str = "InternalError"

    def __init__(
        self,
        detail: str,
        *,
        code: str | None = None,
        risk_level: str | None = None,
        requires_approval: bool | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(detail)
        self.detail = detail
        self.code = code or self.default_code
        self.risk_level = risk_level
        self.requires_approval = requires_approval
        self.extra = extra or {}

    def to_payload(self) -> dict[str, Any]:
        """Build the JSON body returned to API callers."""
        payload: dict[str, Any] = {"detail": self.detail, "code": self.code}
        if self.risk_level is not None:
            payload["risk_level"] = self.risk_level
        if self.requires_approval is not None:
            payload["requires_approval"] = self.requires_approval
        payload.update(self.extra)
        return payload


class ValidationError(RbacError):
    """Malformed request shape, rejected before any lookup."""

    status_code = 400
    default_code = "ValidationError"


class Unauthenticated(RbacError):
    """No valid credential was presented."""

    status_code = 401
    default_code = "Unauthenticated"


class PermissionDenied(RbacError):
    """The permission gate refused the action."""

    status_code = 403
    default_code = "PermissionDenied"


class HierarchyViolation(PermissionDenied):
    """Self-assignment or an attempt to grant a role at or above the actor's level."""

    default_code = "HierarchyViolation"


class NotFound(RbacError):
    """Role, assignment or audit entry does not exist."""

    status_code = 404
    default_code = "NotFound"


class Conflict(RbacError):
    """The target user already holds a role."""

    status_code = 409
    default_code = "Conflict"


class TransactionFailure(RbacError):
    """A storage write failed mid-operation and was rolled back."""

    status_code = 500
    default_code = "TransactionFailure"


class InternalError(RbacError):
    """Unexpected failure."""
