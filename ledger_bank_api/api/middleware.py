"""FastAPI middleware for request tracing, metrics, security headers and rate limiting"""

import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from ledger_bank_api.config import settings
from ledger_bank_api.domain.exceptions import DomainException
from ledger_bank_api.infrastructure.observability.metrics import rate_limited_counter, request_duration_histogram

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "geolocation=(), microphone=(), camera=()",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
}

RATE_LIMIT_EXEMPT_PREFIXES = ("/api/health", "/metrics", "/docs", "/openapi.json", "/redoc")


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Add unique request ID to each request for distributed tracing"""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class MetricsMiddleware(BaseHTTPMiddleware):
    """Record HTTP request metrics"""

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()

        response = await call_next(request)

        duration = time.time() - start_time
        route = request.scope.get("route")
        request_duration_histogram.labels(
            method=request.method,
            endpoint=getattr(route, "path", request.url.path),
            status=response.status_code,
        ).observe(duration)

        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Set browser hardening headers; HSTS only in production"""

    async def dispatch(self, request: Request, call_next):
        response: Response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        if settings.is_production:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Fixed-window request limit per client address, counted in the app cache"""

    def __init__(self, app, max_requests: int | None = None, window_seconds: int | None = None):
        super().__init__(app)
        self.max_requests = max_requests or settings.rate_limit_requests
        self.window_seconds = window_seconds or settings.rate_limit_window_seconds

    async def dispatch(self, request: Request, call_next):
        if request.url.path.startswith(RATE_LIMIT_EXEMPT_PREFIXES):
            return await call_next(request)

        client = request.client.host if request.client else "unknown"
        now = int(time.time())
        window_start = now // self.window_seconds * self.window_seconds
        key = f"rate_limit:{client}:{window_start}"
        count = request.app.state.cache.incr(key, self.window_seconds)

        remaining = max(0, self.max_requests - count)
        retry_after = window_start + self.window_seconds - now
        if count > self.max_requests:
            rate_limited_counter.inc()
            error = DomainException(
                "rate_limit_exceeded",
                "Too many requests",
                {"limit": self.max_requests, "window_seconds": self.window_seconds, "retry_after": retry_after},
            )
            return JSONResponse(
                status_code=error.http_status,
                content=error.to_response(),
                headers={"Retry-After": str(retry_after), "X-RateLimit-Limit": str(self.max_requests), "X-RateLimit-Remaining": "0"},
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(self.max_requests)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        return response
