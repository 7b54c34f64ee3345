"""ORM model registry: import all models so Alembic autogenerate discovers them."""

from portal_rbac.models.audit_log import AuditLog
from portal_rbac.models.role import Role
from portal_rbac.models.user_role import UserRole

__all__ = [
    "AuditLog",
    "Role",
    "UserRole",
]
