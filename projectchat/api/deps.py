"""FastAPI dependencies for authentication, upstream clients and the realtime engine."""

from functools import lru_cache
from typing import Annotated

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from projectchat.core.config import get_settings
from projectchat.core.database import async_session_factory, get_session
from projectchat.realtime.engine import ChatEngine
from projectchat.realtime.rooms import RoomRegistry
from projectchat.services.identity import IdentityClient, VerifiedUser, get_identity_client
from projectchat.services.membership import MembershipClient, get_membership_client
from projectchat.services.rate_limiter import (
    RouteRateLimit,
    SocketRateLimiter,
    general_limit,
    get_socket_limiter,
)

bearer_scheme = HTTPBearer(auto_error=False)


class AuthContext:
    """Resolved identity carried through a request."""

    __slots__ = ("user_id", "user", "token")

    def __init__(self, user: VerifiedUser, token: str) -> None:
        self.user_id = user.id
        self.user = user
        self.token = token


Identity = Annotated[IdentityClient, Depends(get_identity_client)]
Membership = Annotated[MembershipClient, Depends(get_membership_client)]


async def get_auth_context(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    identity: Identity,
) -> AuthContext:
    """Verify the bearer token with the auth service."""
    token = credentials.credentials if credentials else None
    user = await identity.verify(token)
    return AuthContext(user=user, token=token or "")


# Typed shorthand for use in route signatures
Auth = Annotated[AuthContext, Depends(get_auth_context)]
Session = Annotated[AsyncSession, Depends(get_session)]


def rate_limit(rule: RouteRateLimit):
    """Route dependency applying ``rule`` per authenticated user."""

    async def dependency(auth: Auth) -> None:
        rule.check(auth.user_id)

    return Depends(dependency)


async def limit_general(request: Request) -> None:
    """Blanket per-client limit for every ``/api`` request."""
    client = request.client.host if request.client else "unknown"
    general_limit.check(client)


# ── Realtime singletons ──────────────────────────────────────

@lru_cache
def get_room_registry() -> RoomRegistry:
    return RoomRegistry()


@lru_cache
def get_chat_engine() -> ChatEngine:
    settings = get_settings()
    return ChatEngine(
        identity=get_identity_client(),
        membership=get_membership_client(),
        limiter=get_socket_limiter(),
        registry=get_room_registry(),
        session_factory=async_session_factory,
        broadcast_leave_on_disconnect=settings.broadcast_leave_on_disconnect,
        outbox_size=settings.socket_outbox_size,
    )


Limiter = Annotated[SocketRateLimiter, Depends(get_socket_limiter)]
Registry = Annotated[RoomRegistry, Depends(get_room_registry)]
Engine = Annotated[ChatEngine, Depends(get_chat_engine)]
