"""Role model: immutable reference data defining the privilege hierarchy."""

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from portal_rbac.models.base import Base, UUIDMixin


class Role(Base, UUIDMixin):
    """Named privilege tier. ``level`` imposes a total order; the highest level is unrestricted."""

    __tablename__ = "roles"

    name: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    level: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(String(255), nullable=True)
