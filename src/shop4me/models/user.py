"""Principal model mirrored from the external identity provider."""

from __future__ import annotations

from uuid import UUID, uuid4

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from shop4me.models.base import Base, TimestampMixin
from shop4me.models.enums import UserRole
from shop4me.models.order import status_enum


class User(Base, TimestampMixin):
    """Local record of an identity-provider user."""

    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    provider_id: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    name: Mapped[str | None] = mapped_column(String, nullable=True)
    email: Mapped[str | None] = mapped_column(String, unique=True, nullable=True)
    phone: Mapped[str | None] = mapped_column(String, unique=True, nullable=True)
    role: Mapped[UserRole] = mapped_column(
        status_enum(UserRole, "user_role"),
        nullable=False,
        default=UserRole.CUSTOMER,
    )
