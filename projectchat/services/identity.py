"""Identity gateway client — verifies bearer tokens against the auth service."""

import logging
from functools import lru_cache

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError

from projectchat.core.config import get_settings
from projectchat.core.errors import (
    GatewayTimeout,
    InternalError,
    ServiceUnavailable,
    Unauthorized,
)

logger = logging.getLogger(__name__)

VERIFY_PATH = "/local/token/verify"


class VerifiedUser(BaseModel):
    """Identity returned by the auth service; unknown claims are kept."""

    model_config = ConfigDict(extra="allow")

    id: int
    email: str | None = None
    username: str | None = None


class IdentityClient:
    """Thin client for ``POST /local/token/verify``.

    Every failure mode surfaces as a distinct error type so callers can tell
    a bad credential (re-login) from an unreachable or slow auth service
    (retry later).
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def verify(self, token: str | None) -> VerifiedUser:
        if not token:
            raise Unauthorized("Authorization token required")

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                resp = await client.post(
                    VERIFY_PATH,
                    json={},
                    headers={"Authorization": f"Bearer {token}"},
                )
        except httpx.TimeoutException as exc:
            logger.error("Auth service timeout: %s", exc)
            raise GatewayTimeout("Authentication service timeout") from exc
        except (httpx.ConnectError, httpx.RemoteProtocolError) as exc:
            logger.error("Auth service is not available: %s", exc)
            raise ServiceUnavailable("Authentication service unavailable") from exc
        except httpx.HTTPError as exc:
            logger.error("Auth service error: %s", exc)
            raise InternalError("Internal authentication error") from exc

        if resp.status_code >= 500:
            logger.error("Auth service answered HTTP %s", resp.status_code)
            raise ServiceUnavailable("Authentication service unavailable")

        if resp.status_code >= 400:
            raise Unauthorized(_upstream_error(resp) or "Invalid or expired token")

        try:
            body = resp.json()
        except ValueError as exc:
            raise InternalError("Internal authentication error") from exc
        if not isinstance(body, dict):
            raise InternalError("Internal authentication error")

        data = body.get("data")
        if not body.get("success") or not isinstance(data, dict) or not data.get("valid"):
            raise Unauthorized("Invalid or expired token")

        try:
            return VerifiedUser.model_validate(data.get("user") or {})
        except ValidationError as exc:
            logger.error("Auth service returned a malformed user: %s", exc)
            raise InternalError("Internal authentication error") from exc


def _upstream_error(resp: httpx.Response) -> str | None:
    """Pull the ``error`` string out of an upstream error body, if any."""
    try:
        body = resp.json()
    except ValueError:
        return None
    if isinstance(body, dict) and isinstance(body.get("error"), str):
        return body["error"]
    return None


@lru_cache
def get_identity_client() -> IdentityClient:
    settings = get_settings()
    return IdentityClient(settings.auth_service_url, timeout=settings.auth_timeout_seconds)
