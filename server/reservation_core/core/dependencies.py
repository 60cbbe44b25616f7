"""FastAPI dependencies for database, authentication, clock and payment provider."""

from functools import lru_cache
from typing import Callable, Optional

import jwt
from fastapi import Depends, Header
from jwt import PyJWTError

from ..schemas.common import Actor, ActorRole
from ..services.payment_provider import PaymentProvider, build_provider
from .clock import Clock, system_clock
from .config import settings
from .database import get_db
from .exceptions import AuthenticationError, AuthorizationError


def get_clock() -> Clock:
    """Clock used by services; overridden in tests to pin time."""
    return system_clock


@lru_cache
def get_payment_provider() -> PaymentProvider:
    """Provider client configured for this deployment."""
    return build_provider(settings)


def decode_actor(token: str) -> Actor:
    """
    Decode a bearer token into the acting identity.

    Args:
        token: HS256 JWT signed with the bearer token secret

    Returns:
        Actor: Identity recorded on audit entries

    Raises:
        AuthenticationError: If the token is invalid, expired or incomplete
    """
    try:
        payload = jwt.decode(
            token,
            settings.bearer_token_secret,
            algorithms=["HS256"]
        )
    except jwt.ExpiredSignatureError:
        raise AuthenticationError(detail="Token has expired")
    except PyJWTError as e:
        raise AuthenticationError(detail=f"Token validation failed: {e}")

    actor_id = payload.get("sub")
    role = payload.get("role")
    if not actor_id or not role:
        raise AuthenticationError(detail="Invalid token payload")

    try:
        actor_role = ActorRole(str(role).upper())
    except ValueError:
        raise AuthenticationError(detail=f"Unknown role '{role}'")

    return Actor(
        id=str(actor_id),
        name=payload.get("name") or str(actor_id),
        role=actor_role,
    )


async def get_current_actor(
    authorization: Optional[str] = Header(None, alias="Authorization")
) -> Actor:
    """
    Authentication dependency that validates Bearer tokens.

    Args:
        authorization: Authorization header with Bearer token

    Returns:
        Actor: Identity of the caller

    Raises:
        AuthenticationError: If token is invalid or missing
    """
    if not authorization:
        raise AuthenticationError(detail="Authorization header missing")

    try:
        scheme, token = authorization.split()
    except ValueError:
        raise AuthenticationError(detail="Invalid authorization header format")

    if scheme.lower() != "bearer":
        raise AuthenticationError(detail="Invalid authentication scheme")

    return decode_actor(token)


def require_roles(*roles: ActorRole) -> Callable:
    """Build a dependency that admits only callers holding one of ``roles``."""
    allowed = set(roles)

    async def dependency(actor: Actor = Depends(get_current_actor)) -> Actor:
        if actor.role not in allowed:
            raise AuthorizationError(required_roles=sorted(role.value for role in allowed))
        return actor

    return dependency


CurrentActor = Depends(get_current_actor)
StaffActor = Depends(require_roles(ActorRole.CASHIER, ActorRole.SUPERADMIN))
ProviderActor = Depends(require_roles(ActorRole.SYSTEM, ActorRole.SUPERADMIN))
SuperAdminActor = Depends(require_roles(ActorRole.SUPERADMIN))
DatabaseSession = Depends(get_db)
ClockDependency = Depends(get_clock)
ProviderDependency = Depends(get_payment_provider)
