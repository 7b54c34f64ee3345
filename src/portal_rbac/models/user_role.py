"""UserRole model: the single role binding held by a user."""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from portal_rbac.models.base import Base, JSONType, UUIDMixin, utcnow
from portal_rbac.models.role import Role


class UserRole(Base, UUIDMixin):
    """Role assignment. At most one row per user, enforced by a unique constraint.

    Rows are never updated in place: a role change deletes and re-inserts.
    """

    __tablename__ = "user_roles"

    user_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    role_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("roles.id", ondelete="RESTRICT"), nullable=False, index=True)
    assigned_by: Mapped[str] = mapped_column(String(64), nullable=False)
    reason: Mapped[str] = mapped_column(String(200), nullable=False)
    assigned_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )
    assignment_metadata: Mapped[dict | None] = mapped_column("metadata", JSONType, nullable=True)

    role: Mapped[Role] = relationship(lazy="joined")
