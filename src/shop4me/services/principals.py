"""Principals: local users mirrored from the identity provider, with roles."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from shop4me.database import atomic
from shop4me.errors import AuthenticationError, AuthorizationError, ConflictError, ValidationError
from shop4me.models import User, UserRole

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    """Claims forwarded by the identity provider."""

    provider_id: str
    email: str | None = None
    name: str | None = None
    phone: str | None = None


@dataclass(frozen=True)
class Principal:
    """Resolved actor for a request."""

    user_id: UUID
    role: UserRole
    name: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


def require_admin(principal: Principal | None) -> Principal:
    """Return the principal if it is an admin, else raise."""
    if principal is None:
        raise AuthenticationError("Sign in required")
    if not principal.is_admin:
        raise AuthorizationError("Unauthorized: Admin access required")
    return principal


class PrincipalProvider:
    """Upserts identity-provider users and resolves their role.

    The first user ever registered becomes ADMIN; everyone after that is a
    CUSTOMER until promoted.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def ensure_principal(self, identity: Identity) -> Principal:
        """Create or refresh the local user for ``identity``. Idempotent."""
        if not identity.provider_id:
            raise AuthenticationError("Sign in required")
        if not identity.email and not identity.phone:
            raise ValidationError(
                "User has no email or phone number",
                {"email": "An email address or phone number is required"},
            )

        try:
            async with atomic(self.session):
                user = await self._upsert(identity)
        except IntegrityError:
            # Lost a race with a concurrent first sign-in, or the email/phone
            # belongs to another account
            user = await self._find(identity.provider_id)
            if user is None:
                raise ConflictError(
                    "Email or phone number is already linked to another account"
                ) from None

        return Principal(user_id=user.id, role=user.role, name=user.name)

    async def get_principal(self, provider_id: str) -> Principal | None:
        """Resolve an already registered user without writing."""
        user = await self._find(provider_id)
        if user is None:
            return None
        return Principal(user_id=user.id, role=user.role, name=user.name)

    async def _find(self, provider_id: str) -> User | None:
        result = await self.session.execute(
            select(User)
            .where(User.provider_id == provider_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _upsert(self, identity: Identity) -> User:
        user = await self._find(identity.provider_id)
        if user is not None:
            changed = False
            for attr in ("email", "name", "phone"):
                value = getattr(identity, attr)
                if value and getattr(user, attr) != value:
                    setattr(user, attr, value)
                    changed = True
            if changed:
                await self.session.flush()
            return user

        count = await self.session.execute(select(func.count()).select_from(User))
        role = UserRole.ADMIN if count.scalar_one() == 0 else UserRole.CUSTOMER
        user = User(
            provider_id=identity.provider_id,
            email=identity.email,
            name=identity.name,
            phone=identity.phone,
            role=role,
        )
        self.session.add(user)
        await self.session.flush()
        if role == UserRole.ADMIN:
            logger.info("First user %s registered as admin", identity.provider_id)
        return user
