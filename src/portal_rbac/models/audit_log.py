"""AuditLog model for the immutable role change and security denial trail."""

from datetime import datetime

from sqlalchemy import DateTime, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from portal_rbac.models.base import Base, JSONType, UUIDMixin, utcnow

# Sentinel role_after values for entries that record something other than a grant
ATTEMPT_FAILED = "attempt_failed"
BLOCKED = "blocked"
UNASSIGNED = "unassigned"

DENIAL_SENTINELS = frozenset({ATTEMPT_FAILED, BLOCKED})


class AuditLog(Base, UUIDMixin):
    """Immutable record of a role change or denied attempt. Write-only (no updates or deletes)."""

    __tablename__ = "audit_log"

    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
        index=True,
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    role_before: Mapped[str | None] = mapped_column(String(50), nullable=True)
    role_after: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    performed_by: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
    entry_metadata: Mapped[dict | None] = mapped_column("metadata", JSONType, nullable=True)
