"""Membership oracle client — project lookups against the project service.

The project service is the single source of truth for who belongs to a
project. Nothing here is cached: membership can change between a join and
the next send, so every gate is a fresh upstream request.
"""

import logging
from functools import lru_cache

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from projectchat.core.config import get_settings
from projectchat.core.errors import (
    UPSTREAM_FAILURES,
    GatewayTimeout,
    InternalError,
    NotFound,
    ServiceUnavailable,
)

logger = logging.getLogger(__name__)


class ProjectUser(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    auth_id: int | None = Field(default=None, alias="authId")


class ProjectMember(BaseModel):
    model_config = ConfigDict(extra="allow")

    user: ProjectUser | None = None


class ProjectSnapshot(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: int
    name: str = ""
    owner: ProjectUser | None = None
    members: list[ProjectMember] = Field(default_factory=list)

    @property
    def owner_id(self) -> int | None:
        return self.owner.auth_id if self.owner else None

    @property
    def member_ids(self) -> list[int]:
        return [m.user.auth_id for m in self.members if m.user and m.user.auth_id is not None]

    def has_member(self, user_id: int) -> bool:
        """True iff the user owns the project or is in its member list."""
        if self.owner_id is not None and self.owner_id == user_id:
            return True
        return user_id in self.member_ids


class MembershipClient:
    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def _get(self, path: str, token: str) -> httpx.Response:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                return await client.get(path, headers={"Authorization": f"Bearer {token}"})
        except httpx.TimeoutException as exc:
            raise GatewayTimeout("Project service timeout") from exc
        except (httpx.ConnectError, httpx.RemoteProtocolError) as exc:
            raise ServiceUnavailable("Project service unavailable") from exc
        except httpx.HTTPError as exc:
            raise InternalError(f"Project service error: {exc}") from exc

    @staticmethod
    def _data(resp: httpx.Response):
        if resp.status_code >= 500:
            raise ServiceUnavailable("Project service unavailable")
        try:
            body = resp.json()
        except ValueError as exc:
            raise InternalError("Project service returned a malformed response") from exc
        if not isinstance(body, dict):
            raise InternalError("Project service returned a malformed response")
        return body

    async def get_project(self, project_id: int, token: str) -> ProjectSnapshot:
        resp = await self._get(f"/api/project/{project_id}", token)
        if resp.status_code == 404:
            raise NotFound("Project not found")
        body = self._data(resp)
        if resp.status_code >= 400 or not body.get("success") or not body.get("data"):
            raise NotFound("Project not found")
        try:
            return ProjectSnapshot.model_validate(body["data"])
        except ValidationError as exc:
            raise InternalError("Project service returned a malformed project") from exc

    async def list_user_projects(self, token: str) -> list[ProjectSnapshot]:
        """Projects the token's owner belongs to."""
        resp = await self._get("/api/project", token)
        body = self._data(resp)
        if resp.status_code >= 400 or not body.get("success"):
            raise InternalError("Failed to fetch projects")
        data = body.get("data") or {}
        projects = data.get("projects") if isinstance(data, dict) else data
        try:
            return [ProjectSnapshot.model_validate(p) for p in projects or []]
        except ValidationError as exc:
            raise InternalError("Project service returned a malformed project") from exc

    async def is_member(self, user_id: int, project_id: int, token: str) -> bool:
        """Access gate: never raises, denies on any doubt."""
        try:
            project = await self.get_project(project_id, token)
        except NotFound:
            return False
        except UPSTREAM_FAILURES as exc:
            # Fail closed: an unreachable or broken oracle means no access
            logger.warning(
                "Membership check failed closed for user %s project %s: %s",
                user_id, project_id, exc.message,
            )
            return False
        return project.has_member(user_id)


@lru_cache
def get_membership_client() -> MembershipClient:
    settings = get_settings()
    return MembershipClient(settings.db_service_url, timeout=settings.upstream_timeout_seconds)
