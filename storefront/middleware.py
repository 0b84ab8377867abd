"""HTTP middleware for the storefront API: CORS and rate limiting.

Middleware ordering (outermost first):
1. CORS -- handles OPTIONS preflight from the storefront origin
2. Rate limiting -- per-client limits on the public tracking endpoints

The webhook endpoint is not rate limited: the sender retries on any
non-2xx and signature verification already gates it.
"""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from storefront.config import settings


def _get_client_ip(request: Request) -> str:
    """Client IP, honoring X-Forwarded-For only behind a trusted proxy."""
    if settings.trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()
    return get_remote_address(request)


limiter = Limiter(key_func=_get_client_ip, enabled=settings.rate_limit_enabled)


def _rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    retry_after = getattr(exc, "retry_after", 60)
    return JSONResponse(
        {"error": "Rate limit exceeded"},
        status_code=429,
        headers={"Retry-After": str(retry_after)},
    )


def install_middleware(app: FastAPI) -> None:
    """Install rate limiting and CORS.  Last added = outermost."""
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )
