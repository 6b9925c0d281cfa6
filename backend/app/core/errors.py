"""
Structured API errors and the exception handlers that render them.

Every rejection path returns the same JSON envelope:

    {"code": 42901, "message": "Too many requests. Please try again later."}

Codes are five digits: HTTP status followed by a two-digit discriminator.
Services raise their own domain exceptions; routers and dependencies
translate them into one of the ApiError subclasses below.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Base class for errors surfaced to callers with a stable code."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: int = 50001
    message: str = "Internal server error"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: int | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        if message is not None:
            self.message = message
        if code is not None:
            self.code = code
        self.headers: dict[str, str] = dict(headers or {})
        super().__init__(self.message)

    def to_response(self, base_headers: Mapping[str, str] | None = None) -> JSONResponse:
        """base_headers go out first; the error's own headers win on overlap."""
        headers = {**(base_headers or {}), **self.headers}
        return JSONResponse(
            status_code=self.status_code,
            content={"code": self.code, "message": self.message},
            headers=headers or None,
        )


class InvalidRequest(ApiError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = 40001
    message = "Validation error"


class CredentialInvalid(ApiError):
    """Unknown, inactive or quota-exhausted API key."""

    status_code = status.HTTP_401_UNAUTHORIZED
    code = 40101
    message = "Invalid or expired API key"


class AdminAccessRequired(CredentialInvalid):
    message = "Admin access required"


class PaidTierRequired(ApiError):
    status_code = status.HTTP_403_FORBIDDEN
    code = 40301
    message = "This endpoint requires a paid API key"


class TimeoutExceeded(ApiError):
    status_code = status.HTTP_408_REQUEST_TIMEOUT
    code = 40801
    message = "Request timed out. Please try again later."


class AdmissionRejected(ApiError):
    """Quota exceeded for the caller's tier."""

    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    code = 42901
    message = "Too many requests. Please try again later."


# Pydantic error types → our 400 discriminators
_VALIDATION_CODES = {
    "missing": 40002,
    "string_too_short": 40002,
    "too_short": 40002,
    "string_too_long": 40003,
    "too_long": 40003,
}

ValidationHook = Callable[[Request], Awaitable[None]]


def _quota_headers(request: Request) -> Mapping[str, str]:
    # Set by the rate-limit dependency once a request is admitted.
    return getattr(request.state, "quota_headers", None) or {}


def register_exception_handlers(
    app: FastAPI,
    *,
    on_validation_error: ValidationHook | None = None,
) -> None:
    """
    Install handlers so no fault leaves the app as an opaque 500 page.

    on_validation_error runs before the 400 is rendered; the app uses it
    to refund the admission counter for requests that did no real work.
    """

    @app.exception_handler(ApiError)
    async def _api_error(request: Request, exc: ApiError) -> JSONResponse:
        return exc.to_response(_quota_headers(request))

    @app.exception_handler(RequestValidationError)
    async def _validation_error(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        if on_validation_error is not None:
            await on_validation_error(request)

        issues = exc.errors()
        first = issues[0] if issues else {}
        code = _VALIDATION_CODES.get(first.get("type", ""), 40001)
        message = first.get("msg") or "Validation error"
        return InvalidRequest(message, code=code).to_response(_quota_headers(request))

    @app.exception_handler(Exception)
    async def _unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return ApiError().to_response(_quota_headers(request))
