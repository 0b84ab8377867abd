"""Error taxonomy and uniform error responses.

Every error body leaving the API is built here so the shape is the same
everywhere: ``{"error": <message>}`` plus ``details`` for itemized
validation failures.

Kinds:
- ValidationFailure     -> 400 (415 for the wrong media type), client-caused
- AuthenticationFailure -> 401, signature missing or mismatched
- DependencyFailure     -> 503, store unavailable, sender should retry
- HandlerFailure        -> never surfaced, logged after persistence
Duplicate deliveries are not errors: they answer 200 with alreadyProcessed.
"""

from __future__ import annotations

import logging
import uuid
from enum import StrEnum
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ErrorKind(StrEnum):
    """Closed set of error kinds an API response can carry."""

    VALIDATION = "validation"
    UNSUPPORTED_MEDIA_TYPE = "unsupported_media_type"
    AUTHENTICATION = "authentication"
    DEPENDENCY = "dependency"
    INTERNAL = "internal"


_STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.UNSUPPORTED_MEDIA_TYPE: 415,
    ErrorKind.AUTHENTICATION: 401,
    ErrorKind.DEPENDENCY: 503,
    ErrorKind.INTERNAL: 500,
}


class StorefrontError(Exception):
    """Base for errors that map onto an API response."""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str, details: list[dict[str, str]] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationFailure(StorefrontError):
    kind = ErrorKind.VALIDATION


class UnsupportedMediaType(ValidationFailure):
    kind = ErrorKind.UNSUPPORTED_MEDIA_TYPE


class AuthenticationFailure(StorefrontError):
    kind = ErrorKind.AUTHENTICATION


class DependencyFailure(StorefrontError):
    """The durable store could not be reached. Retryable."""

    kind = ErrorKind.DEPENDENCY


class HandlerFailure(StorefrontError):
    """A post-persistence side effect failed. Logged, never returned."""


def error_response(
    kind: ErrorKind,
    message: str,
    details: list[dict[str, str]] | None = None,
) -> JSONResponse:
    """Build the JSON error response for *kind*."""
    body: dict[str, Any] = {"error": message}
    if details is not None:
        body["details"] = details
    return JSONResponse(body, status_code=_STATUS_BY_KIND[kind])


_REQUEST_LOCATIONS = {"body", "query", "path", "header"}


def format_validation_errors(
    errors: list[dict[str, Any]],
    strip_leading: frozenset[str] | set[str] = frozenset(),
    tag_field: str = "type",
) -> list[dict[str, str]]:
    """Flatten pydantic error dicts into ``[{field, message}]``.

    A leading location part found in *strip_leading* (a union tag) is
    dropped so nested fields read as ``amounts.total.value``. Errors with no
    location are reported against the *tag_field* discriminator.
    """
    details = []
    for err in errors:
        loc = [str(part) for part in err.get("loc", ())]
        if loc and (loc[0] in _REQUEST_LOCATIONS or loc[0] in strip_leading):
            loc = loc[1:]
        details.append({
            "field": ".".join(loc) or tag_field,
            "message": err.get("msg", "Invalid value"),
        })
    return details


def install_error_handlers(app: FastAPI) -> None:
    """Route every raised error through :func:`error_response`."""

    @app.exception_handler(StorefrontError)
    async def _storefront_error(request: Request, exc: StorefrontError) -> JSONResponse:
        if exc.kind is ErrorKind.DEPENDENCY:
            logger.warning("Dependency failure on %s: %s", request.url.path, exc.message)
        return error_response(exc.kind, exc.message, exc.details)

    @app.exception_handler(RequestValidationError)
    async def _request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
        return error_response(
            ErrorKind.VALIDATION,
            "Invalid request",
            format_validation_errors(list(exc.errors())),
        )

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception) -> JSONResponse:
        correlation_id = uuid.uuid4().hex[:12]
        logger.exception("[%s] Unhandled error on %s %s", correlation_id, request.method, request.url.path)
        return error_response(ErrorKind.INTERNAL, "Internal server error")
