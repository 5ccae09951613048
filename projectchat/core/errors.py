"""Error taxonomy shared by the REST surface and the realtime engine.

Every error carries the status code REST callers see, the close code a
refused socket handshake uses, and renders into the uniform
``{success: false, error, details?}`` envelope.
"""

from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException


class ChatServiceError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    close_code: int = 4500
    default_message: str = "Internal server error"

    def __init__(self, message: str | None = None, details: Any = None) -> None:
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_payload(self) -> dict:
        payload: dict[str, Any] = {"success": False, "error": self.message}
        if self.details is not None:
            payload["details"] = jsonable_encoder(self.details)
        return payload


class Unauthorized(ChatServiceError):
    status_code = status.HTTP_401_UNAUTHORIZED
    close_code = 4401
    default_message = "Invalid or expired token"


class Forbidden(ChatServiceError):
    status_code = status.HTTP_403_FORBIDDEN
    close_code = 4403
    default_message = "Access denied"


class NotFound(ChatServiceError):
    status_code = status.HTTP_404_NOT_FOUND
    close_code = 4404
    default_message = "Not found"


class Conflict(ChatServiceError):
    status_code = status.HTTP_409_CONFLICT
    close_code = 4409
    default_message = "Resource already exists"


class ValidationFailed(ChatServiceError):
    status_code = status.HTTP_400_BAD_REQUEST
    close_code = 4400
    default_message = "Validation failed"


class RateLimited(ChatServiceError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    close_code = 4429
    default_message = "Too many requests, please try again later"


class ServiceUnavailable(ChatServiceError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    close_code = 4503
    default_message = "Upstream service unavailable"


class GatewayTimeout(ChatServiceError):
    status_code = status.HTTP_504_GATEWAY_TIMEOUT
    close_code = 4504
    default_message = "Upstream service timeout"


class InternalError(ChatServiceError):
    pass


# Failures of an upstream call itself, as opposed to an upstream answer.
UPSTREAM_FAILURES = (ServiceUnavailable, GatewayTimeout, InternalError)


def validation_details(errors: list[dict]) -> list[dict]:
    """Reduce pydantic error dicts to ``{field, message}`` pairs."""
    details = []
    for err in errors:
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        details.append({"field": ".".join(loc), "message": err.get("msg", "")})
    return details


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ChatServiceError)
    async def _chat_service_error(_request: Request, exc: ChatServiceError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(RequestValidationError)
    async def _request_validation_error(
        _request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "success": False,
                "error": "Validation failed",
                "details": validation_details(exc.errors()),
            },
        )

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": str(exc.detail)},
            headers=getattr(exc, "headers", None),
        )
