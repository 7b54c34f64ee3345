"""Role catalog: read-only access to role definitions and the hierarchy."""

import uuid

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from portal_rbac.core.errors import NotFound
from portal_rbac.models.role import Role
from portal_rbac.models.user_role import UserRole
from portal_rbac.services.types import Actor


class RoleCatalog:
    """Lookups over the ``roles`` table plus the actor's current role."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def list_roles(self) -> list[Role]:
        """Return every role ordered from the lowest to the highest level."""
        result = await self._session.execute(select(Role).order_by(Role.level, Role.name))
        return list(result.scalars().all())

    async def find_role(self, role_id: uuid.UUID) -> Role | None:
        """Return the role with the given ID, or None."""
        return await self._session.get(Role, role_id)

    async def get_role(self, role_id: uuid.UUID) -> Role:
        """Return the role with the given ID.

        Raises:
            NotFound: If no such role exists.
        """
        role = await self.find_role(role_id)
        if role is None:
            raise NotFound(f"Role {role_id} not found", code="RoleNotFound")
        return role

    async def get_role_by_name(self, name: str) -> Role | None:
        result = await self._session.execute(select(Role).where(Role.name == name))
        return result.scalar_one_or_none()

    async def max_level(self) -> int:
        """Return the highest level defined, or 0 when the catalog is empty."""
        result = await self._session.execute(select(func.max(Role.level)))
        return result.scalar_one_or_none() or 0

    async def get_actor_role(self, actor: Actor) -> Role | None:
        """Resolve the role the actor currently holds.

        The assignment store is authoritative; ``actor.role_id`` is only a hint
        carried from authentication and is ignored if it disagrees.
        """
        result = await self._session.execute(select(UserRole).where(UserRole.user_id == actor.id))
        assignment = result.unique().scalar_one_or_none()
        if assignment is None:
            return None
        return assignment.role

    async def list_assignable_roles(self, actor: Actor) -> list[Role]:
        """Roles the actor may offer in a picker.

        Presentation only: authorization is re-run by the privilege validator
        at assignment time.

        Args:
            actor: The requesting actor.

        Returns:
            Roles strictly below the actor's level, or every role except the
            actor's own when the actor holds the maximum level.
        """
        actor_role = await self.get_actor_role(actor)
        if actor_role is None:
            return []
        roles = await self.list_roles()
        top_level = max((r.level for r in roles), default=0)
        if actor_role.level >= top_level:
            return [r for r in roles if r.id != actor_role.id]
        return [r for r in roles if r.level < actor_role.level]


# (name, level, description) for a fresh install.
DEFAULT_ROLES: tuple[tuple[str, int, str], ...] = (
    ("student", 1, "Regular portal user"),
    ("moderator", 2, "Moderates community content"),
    ("admin", 3, "Manages users and reads the audit trail"),
    ("superadmin", 4, "Full administrative access"),
)


async def seed_default_roles(session: AsyncSession) -> list[Role]:
    """Insert any missing default role, matched by name.

    Returns:
        The roles that were created.
    """
    existing = set((await session.execute(select(Role.name))).scalars().all())
    created = [
        Role(name=name, level=level, description=description)
        for name, level, description in DEFAULT_ROLES
        if name not in existing
    ]
    session.add_all(created)
    await session.commit()
    return created
