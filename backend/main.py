from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy import text
from contextlib import asynccontextmanager
from typing import Optional
import asyncio
import logging
from api import auth
from middleware.security import SecurityHeadersMiddleware, RateLimitMiddleware
from services.container import build_services
from services.db import create_db_engine, create_session_factory
from services.errors import AuthServiceError, ErrorKind
from services.rate_limiter import InMemoryRateLimiter, cleanup_rate_limiter
from services.security import SecurityConfig, SecurityUtils

logger = logging.getLogger(__name__)

HTTP_STATUS_KINDS = {
    400: ErrorKind.VALIDATION,
    401: ErrorKind.UNAUTHORIZED,
    403: ErrorKind.UNAUTHORIZED,
    404: ErrorKind.NOT_FOUND,
    409: ErrorKind.CONFLICT,
    429: ErrorKind.RATE_LIMITED,
}

def error_response(error: AuthServiceError, status_code: Optional[int] = None, headers: Optional[dict] = None):
    return JSONResponse(
        status_code=status_code or error.status_code,
        content={"error": error.to_dict()},
        headers=headers,
    )

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the database engine and services once, and run the rate limiter cleanup task."""
    config: SecurityConfig = app.state.config
    db_engine = None

    if getattr(app.state, "services", None) is None:
        db_engine = create_db_engine(config.database_url)
        app.state.session_factory = create_session_factory(db_engine)
        app.state.services = build_services(config, app.state.session_factory)

    cleanup_task = asyncio.create_task(cleanup_rate_limiter(app.state.rate_limiter))

    logger.info(f"Starting {config.app_name} auth service")
    logger.info(f"  - Rate limiting: {config.rate_limit_enabled}")
    logger.info(f"  - Security headers: {config.enable_security_headers}")
    logger.info(f"  - SMS provider: {config.sms_provider}")
    logger.info(f"  - Verification codes: {config.verification_code_length} digits, "
                f"{config.verification_code_ttl_minutes} min, {config.verification_max_attempts} attempts")

    yield

    cleanup_task.cancel()
    try:
        await cleanup_task
    except asyncio.CancelledError:
        logger.info("Background tasks stopped")

    if db_engine is not None:
        await db_engine.dispose()
    logger.info("Shutdown complete")

def create_app(config: Optional[SecurityConfig] = None) -> FastAPI:
    config = config or SecurityConfig()

    app = FastAPI(
        title=f"{config.app_name} Auth API",
        description="Account signup, login, contact verification and recovery",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.config = config
    app.state.services = None
    app.state.rate_limiter = InMemoryRateLimiter()

    # Last added is executed first
    app.add_middleware(SecurityHeadersMiddleware, enabled=config.enable_security_headers)
    app.add_middleware(RateLimitMiddleware, rate_limiter=app.state.rate_limiter, config=config)

    app.include_router(auth.router, prefix="/api/auth", tags=["auth"])

    @app.get("/health")
    async def health_check(request: Request):
        """Health check including a database round trip."""
        try:
            async with request.app.state.session_factory() as db:
                await db.execute(text("SELECT 1"))
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            return JSONResponse(
                status_code=503,
                content={"status": "unhealthy", "checks": {"database": "unavailable"}}
            )
        return {
            "status": "healthy",
            "timestamp": SecurityUtils.get_utc_now().isoformat(),
            "version": "1.0.0",
            "checks": {"database": "healthy"}
        }

    @app.get("/health/live")
    def liveness_check():
        """Liveness check for container orchestration."""
        return {
            "status": "alive",
            "timestamp": SecurityUtils.get_utc_now().isoformat()
        }

    @app.exception_handler(AuthServiceError)
    async def auth_service_error_handler(request: Request, exc: AuthServiceError):
        if exc.status_code >= 500:
            logger.error(f"{exc.kind.value} on {request.method} {request.url.path}: {exc.message}")
        return error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle validation errors with security logging."""
        errors = exc.errors()
        SecurityUtils.log_security_event(
            "request_validation_error",
            {
                "path": request.url.path,
                "method": request.method,
                "fields": [".".join(str(p) for p in err.get("loc", ())) for err in errors]
            },
            client_ip=SecurityUtils.get_client_ip(request, request.app.state.config.trusted_proxies)
        )
        first = errors[0] if errors else {}
        field = first.get("loc", ("", ""))[-1]
        message = f"Invalid {field}: {first.get('msg', 'invalid value')}" if first else None
        return error_response(AuthServiceError(ErrorKind.VALIDATION, message), status_code=422)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """Handle HTTP exceptions with security logging."""
        if exc.status_code in [400, 401, 403, 404, 429]:
            SecurityUtils.log_security_event(
                "http_exception",
                {
                    "status_code": exc.status_code,
                    "path": request.url.path,
                    "method": request.method
                },
                client_ip=SecurityUtils.get_client_ip(request, request.app.state.config.trusted_proxies)
            )

        default_kind = ErrorKind.VALIDATION if exc.status_code < 500 else ErrorKind.INTERNAL
        kind = HTTP_STATUS_KINDS.get(exc.status_code, default_kind)
        message = exc.detail if isinstance(exc.detail, str) else None
        if exc.status_code == 401:
            # Missing bearer token
            message = None
        return error_response(
            AuthServiceError(kind, message),
            status_code=exc.status_code,
            headers=getattr(exc, "headers", None)
        )

    @app.exception_handler(Exception)
    async def internal_server_error_handler(request: Request, exc: Exception):
        """Handle internal server errors with security logging."""
        SecurityUtils.log_security_event(
            "internal_server_error",
            {
                "path": request.url.path,
                "method": request.method,
                "error_type": type(exc).__name__
            },
            client_ip=SecurityUtils.get_client_ip(request, request.app.state.config.trusted_proxies)
        )

        logger.exception(f"Internal server error: {exc}")

        return error_response(AuthServiceError(ErrorKind.INTERNAL))

    return app

_config = SecurityConfig()

logging.basicConfig(
    level=getattr(logging, _config.log_level, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

app = create_app(_config)
