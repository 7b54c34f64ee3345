"""Permission gate consulted by the HTTP layer before engine and audit calls."""

from typing import Protocol

from portal_rbac.services.role_catalog import RoleCatalog
from portal_rbac.services.types import Actor

# Minimum role level for each resource:action pair.
DEFAULT_PERMISSION_LEVELS: dict[str, int] = {
    "users:manage": 3,
    "roles:read": 3,
    "roles:manage": 4,
    "audit:read": 3,
}


class PermissionGate(Protocol):
    async def has_permission(self, actor: Actor, resource: str, action: str) -> bool: ...


class LevelPermissionGate:
    """Grants a permission when the actor's role level reaches the configured minimum.

    Unknown permissions and actors without a role are refused.
    """

    def __init__(self, catalog: RoleCatalog, levels: dict[str, int] | None = None) -> None:
        self._catalog = catalog
        self._levels = levels if levels is not None else DEFAULT_PERMISSION_LEVELS

    async def has_permission(self, actor: Actor, resource: str, action: str) -> bool:
        required = self._levels.get(f"{resource}:{action}")
        if required is None:
            return False
        role = await self._catalog.get_actor_role(actor)
        return role is not None and role.level >= required
