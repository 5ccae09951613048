"""Shared test fixtures — async SQLite in-memory DB, fake upstreams + test client."""

from collections.abc import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel

# Import all models so metadata is populated
import projectchat.models  # noqa: F401
from projectchat.api.deps import get_chat_engine, get_room_registry
from projectchat.core.database import get_session
from projectchat.core.errors import NotFound, Unauthorized
from projectchat.main import app
from projectchat.realtime.engine import ChatEngine
from projectchat.realtime.rooms import RoomRegistry
from projectchat.services.identity import VerifiedUser, get_identity_client
from projectchat.services.membership import ProjectSnapshot, get_membership_client
from projectchat.services.rate_limiter import (
    SocketRateLimiter,
    get_socket_limiter,
    reset_route_limits,
)

ALICE, BOB, CAROL = 1, 2, 3
TOKENS = {ALICE: "alice-token", BOB: "bob-token", CAROL: "carol-token"}

# Project 10: Alice owns, Bob is a member. Project 20: Carol only.
ALPHA, GAMMA = 10, 20


def auth_headers(user_id: int) -> dict:
    return {"Authorization": f"Bearer {TOKENS[user_id]}"}


class FakeIdentity:
    """Stands in for the auth service: a fixed token -> user table."""

    def __init__(self) -> None:
        self.users = {
            token: VerifiedUser(id=uid, username=f"user{uid}") for uid, token in TOKENS.items()
        }
        self.error: Exception | None = None

    async def verify(self, token: str | None) -> VerifiedUser:
        if self.error is not None:
            raise self.error
        if not token:
            raise Unauthorized("Authorization token required")
        user = self.users.get(token)
        if user is None:
            raise Unauthorized("Invalid or expired token")
        return user


class FakeMembership:
    """Stands in for the project service, with mutable membership."""

    def __init__(self, identity: FakeIdentity) -> None:
        self.identity = identity
        self.projects: dict[int, ProjectSnapshot] = {}
        self.calls = 0

    def add_project(self, project_id: int, owner: int, members=(), name: str | None = None) -> None:
        self.projects[project_id] = ProjectSnapshot.model_validate({
            "id": project_id,
            "name": name or f"Project {project_id}",
            "owner": {"authId": owner},
            "members": [{"user": {"authId": m}} for m in members],
        })

    def remove_member(self, project_id: int, user_id: int) -> None:
        project = self.projects[project_id]
        project.members = [m for m in project.members if m.user and m.user.auth_id != user_id]

    async def get_project(self, project_id: int, token: str) -> ProjectSnapshot:
        project = self.projects.get(project_id)
        if project is None:
            raise NotFound("Project not found")
        return project

    async def list_user_projects(self, token: str) -> list[ProjectSnapshot]:
        user = self.identity.users[token]
        return [p for p in self.projects.values() if p.has_member(user.id)]

    async def is_member(self, user_id: int, project_id: int, token: str) -> bool:
        self.calls += 1
        project = self.projects.get(project_id)
        return project is not None and project.has_member(user_id)


@pytest.fixture
async def engine():
    eng = create_async_engine("sqlite+aiosqlite://", echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def test_session_factory(engine):
    """Session factory bound to the test SQLite engine."""
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(test_session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with test_session_factory() as sess:
        yield sess
        await sess.rollback()


@pytest.fixture
def identity() -> FakeIdentity:
    return FakeIdentity()


@pytest.fixture
def membership(identity) -> FakeMembership:
    fake = FakeMembership(identity)
    fake.add_project(ALPHA, owner=ALICE, members=[BOB], name="Alpha")
    fake.add_project(GAMMA, owner=CAROL, name="Gamma")
    return fake


@pytest.fixture
def limiter() -> SocketRateLimiter:
    return SocketRateLimiter()


@pytest.fixture
def registry() -> RoomRegistry:
    return RoomRegistry()


@pytest.fixture
def chat_engine(identity, membership, limiter, registry, test_session_factory) -> ChatEngine:
    return ChatEngine(identity, membership, limiter, registry, test_session_factory)


@pytest.fixture(autouse=True)
def _reset_route_limits():
    reset_route_limits()
    yield
    reset_route_limits()


@pytest.fixture
def overrides(session, identity, membership, limiter, registry, chat_engine):
    """Point every app dependency at the test doubles."""

    async def _override_session():
        yield session

    app.dependency_overrides[get_session] = _override_session
    app.dependency_overrides[get_identity_client] = lambda: identity
    app.dependency_overrides[get_membership_client] = lambda: membership
    app.dependency_overrides[get_socket_limiter] = lambda: limiter
    app.dependency_overrides[get_room_registry] = lambda: registry
    app.dependency_overrides[get_chat_engine] = lambda: chat_engine
    yield
    app.dependency_overrides.clear()


@pytest.fixture
async def client(overrides) -> AsyncGenerator[AsyncClient, None]:
    """HTTPX async test client with DB session and upstream overrides."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
