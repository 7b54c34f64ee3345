"""CORS, rate limiting, security headers and access logging middleware."""

import time
from collections import defaultdict
from typing import Any

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from portal_rbac.core.config import Settings

_DEFAULT_TRUSTED_HEADERS = ["CF-Connecting-IP", "X-Forwarded-For", "X-Real-IP"]

# Probes are never rate limited.
_UNLIMITED_SUFFIXES = ("/health",)


def get_client_ip(request: Request, trusted_headers: list[str] | None = None) -> str:
    """Extract the real client IP from proxy headers or the direct connection.

    Headers are checked in priority order; for X-Forwarded-For the leftmost
    address is used.

    Args:
        request: The incoming Starlette request.
        trusted_headers: Ordered list of header names to check.

    Returns:
        The client IP address string, or "unknown" if not determinable.
    """
    headers = trusted_headers if trusted_headers is not None else _DEFAULT_TRUSTED_HEADERS

    for header in headers:
        value = request.headers.get(header, "").strip()
        if not value:
            continue
        # "client, proxy1, proxy2"
        if header.lower() == "x-forwarded-for":
            return value.split(",")[0].strip()
        return value

    if request.client:
        return request.client.host
    return "unknown"


def setup_cors(app: FastAPI, settings: Settings) -> None:
    """Configure CORS middleware when origins are configured."""
    kwargs: dict[str, Any] = {
        "allow_credentials": True,
        "allow_methods": ["GET", "POST", "PUT", "DELETE"],
        "allow_headers": ["Authorization", "Content-Type"],
        "expose_headers": ["Content-Disposition"],
    }
    if settings.cors_origin_list:
        kwargs["allow_origins"] = settings.cors_origin_list
    if settings.cors_origin_regex.strip():
        kwargs["allow_origin_regex"] = settings.cors_origin_regex.strip()
    app.add_middleware(CORSMiddleware, **kwargs)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses.

    Responses carry role and audit data, so they are also marked uncacheable.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        response.headers["Cache-Control"] = "no-store"
        return response


class AccessLogMiddleware(BaseHTTPMiddleware):
    """Log one line per request with status and duration."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(f"{request.method} {request.url.path} -> {response.status_code} ({elapsed_ms:.1f} ms)")
        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """In-memory per-IP rate limiting over a sliding one-minute window."""

    def __init__(
        self,
        app: ASGIApp,
        requests_per_minute: int = 60,
        trusted_proxy_headers: list[str] | None = None,
    ) -> None:
        super().__init__(app)
        self.requests_per_minute = requests_per_minute
        self.trusted_proxy_headers = trusted_proxy_headers
        self._request_counts: dict[str, list[float]] = defaultdict(list)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        """Return 429 once the client has used up its window."""
        if request.url.path.endswith(_UNLIMITED_SUFFIXES):
            return await call_next(request)

        client_ip = get_client_ip(request, self.trusted_proxy_headers)
        now = time.time()
        window_start = now - 60.0
        recent = [t for t in self._request_counts[client_ip] if t > window_start]
        self._request_counts[client_ip] = recent

        if len(recent) >= self.requests_per_minute:
            retry_after = max(1, int(recent[0] + 60.0 - now))
            logger.warning(f"Rate limit exceeded for {client_ip} on {request.url.path}")
            return Response(
                content='{"detail":"Rate limit exceeded","code":"RateLimited"}',
                status_code=429,
                media_type="application/json",
                headers={"Retry-After": str(retry_after)},
            )

        recent.append(now)
        return await call_next(request)
