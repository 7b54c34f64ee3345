"""Identity resolution: credential in, Actor out."""

from typing import Protocol

import jwt
from sqlalchemy.ext.asyncio import AsyncSession

from portal_rbac.core.errors import Unauthenticated
from portal_rbac.core.security import ACCESS_TOKEN_TYPE, decode_token
from portal_rbac.services.role_catalog import RoleCatalog
from portal_rbac.services.types import Actor


class IdentityProvider(Protocol):
    """Resolves a bearer credential to the acting user."""

    async def resolve_actor(self, credential: str) -> Actor: ...


class JWTIdentityProvider:
    """Signed JWT bearer tokens; the role comes from ``user_roles``, not the token."""

    def __init__(self, session: AsyncSession, secret_key: str, algorithm: str = "HS256") -> None:
        self._catalog = RoleCatalog(session)
        self._secret_key = secret_key
        self._algorithm = algorithm

    async def resolve_actor(self, credential: str) -> Actor:
        """Decode the token and look up the actor's current role.

        Raises:
            Unauthenticated: If the token is missing, invalid, expired or has
                no subject.
        """
        if not credential:
            msg = "Missing credentials"
            raise Unauthenticated(msg)
        try:
            payload = decode_token(credential, self._secret_key, self._algorithm)
        except jwt.InvalidTokenError as exc:
            msg = "Could not validate credentials"
            raise Unauthenticated(msg) from exc

        subject = payload.get("sub")
        if not subject or payload.get("type", ACCESS_TOKEN_TYPE) != ACCESS_TOKEN_TYPE:
            msg = "Could not validate credentials"
            raise Unauthenticated(msg)

        actor = Actor(id=str(subject))
        role = await self._catalog.get_actor_role(actor)
        return Actor(id=actor.id, role_id=role.id if role is not None else None)
