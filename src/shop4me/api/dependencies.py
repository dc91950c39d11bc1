"""FastAPI dependencies for dependency injection."""

from collections.abc import AsyncGenerator
from datetime import datetime
from typing import Annotated, Callable

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from shop4me.config import Settings, get_settings
from shop4me.database import init_db
from shop4me.errors import AuthenticationError
from shop4me.models import utcnow
from shop4me.providers import PushPaymentProvider, build_provider
from shop4me.services.principals import Identity, Principal, PrincipalProvider, require_admin


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency."""
    _, factory = init_db()
    async with factory() as session:
        try:
            yield session
        finally:
            await session.close()


def get_app_settings() -> Settings:
    return get_settings()


def get_clock() -> Callable[[], datetime]:
    return utcnow


def get_provider(
    request: Request, settings: Annotated[Settings, Depends(get_app_settings)]
) -> PushPaymentProvider:
    """Provider created at startup, or built lazily when running without lifespan."""
    provider = getattr(request.app.state, "provider", None)
    if provider is None:
        provider = build_provider(settings.mpesa)
        request.app.state.provider = provider
    return provider


def get_identity(
    x_user_id: Annotated[str | None, Header()] = None,
    x_user_email: Annotated[str | None, Header()] = None,
    x_user_name: Annotated[str | None, Header()] = None,
    x_user_phone: Annotated[str | None, Header()] = None,
) -> Identity | None:
    """Identity claims set by the identity provider's gateway."""
    if not x_user_id:
        return None
    return Identity(
        provider_id=x_user_id,
        email=x_user_email or None,
        name=x_user_name or None,
        phone=x_user_phone or None,
    )


async def get_principal(
    db: Annotated[AsyncSession, Depends(get_db_session)],
    identity: Annotated[Identity | None, Depends(get_identity)],
) -> Principal | None:
    """Resolve (and register on first sight) the calling user."""
    if identity is None:
        return None
    return await PrincipalProvider(db).ensure_principal(identity)


async def require_principal(
    principal: Annotated[Principal | None, Depends(get_principal)],
) -> Principal:
    if principal is None:
        raise AuthenticationError("You must be signed in to continue")
    return principal


async def require_admin_principal(
    principal: Annotated[Principal | None, Depends(get_principal)],
) -> Principal:
    return require_admin(principal)


# Type aliases for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db_session)]
AppSettings = Annotated[Settings, Depends(get_app_settings)]
Clock = Annotated[Callable[[], datetime], Depends(get_clock)]
Provider = Annotated[PushPaymentProvider, Depends(get_provider)]
CurrentPrincipal = Annotated[Principal, Depends(require_principal)]
AdminPrincipal = Annotated[Principal, Depends(require_admin_principal)]
