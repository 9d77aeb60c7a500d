"""
HTTP middleware: hardening headers on every response and throttling of
the auth endpoints.
"""
from typing import Callable, Optional, Tuple
from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp
import logging

from services.errors import AuthServiceError, ErrorKind
from services.rate_limiter import InMemoryRateLimiter, RateLimit
from services.security import SecurityConfig, SecurityUtils

logger = logging.getLogger(__name__)

AUTH_PATH_PREFIX = "/api/auth/"
EXEMPT_PATHS = {"/health", "/health/live", "/docs", "/redoc", "/openapi.json"}

# Responses carry tokens and masked contacts; nothing may be cached or framed
SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none';",
    "Referrer-Policy": "no-referrer",
    "Cache-Control": "no-store",
}


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp, enabled: bool = True):
        super().__init__(app)
        self.enabled = enabled
        self.security_headers = dict(SECURITY_HEADERS)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)
        if self.enabled:
            response.headers.update(self.security_headers)
            if "server" in response.headers:
                del response.headers["server"]
        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Auth endpoints get the tighter budget, counted separately per endpoint
    so that failed logins do not use up the allowance for code requests.
    Every other route shares one budget per client.
    """

    def __init__(self, app: ASGIApp, rate_limiter: InMemoryRateLimiter, config: SecurityConfig):
        super().__init__(app)
        self.rate_limiter = rate_limiter
        self.enabled = config.rate_limit_enabled
        self.auth_limit = RateLimit(config.rate_limit_auth_requests, config.rate_limit_auth_window_seconds)
        self.default_limit = RateLimit(config.rate_limit_requests, config.rate_limit_window_seconds)
        self.trusted_proxies = config.trusted_proxies

    def limit_for(self, path: str) -> RateLimit:
        return self.auth_limit if path.startswith(AUTH_PATH_PREFIX) else self.default_limit

    def bucket_for(self, request: Request) -> Optional[Tuple[str, RateLimit]]:
        """Limiter key and budget for a request, or None when it is not throttled."""
        path = request.url.path
        if not self.enabled or path in EXEMPT_PATHS:
            return None
        client_ip = SecurityUtils.get_client_ip(request, self.trusted_proxies)
        limit = self.limit_for(path)
        if limit is self.auth_limit:
            return f"auth:{client_ip}:{path}", limit
        return f"api:{client_ip}", limit

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        bucket = self.bucket_for(request)
        if bucket is None:
            return await call_next(request)

        key, limit = bucket
        result = await self.rate_limiter.hit(key, limit)
        if not result.allowed:
            SecurityUtils.log_security_event(
                "blocked_request_rate_limit",
                {"path": request.url.path, "method": request.method},
                client_ip=SecurityUtils.get_client_ip(request, self.trusted_proxies)
            )
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={"error": AuthServiceError(ErrorKind.RATE_LIMITED).to_dict()},
                headers=result.headers(),
            )

        response = await call_next(request)
        response.headers.update(result.headers())
        return response
