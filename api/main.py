"""
api/main.py -- FastAPI application entry point for storekeep.

Exposes the credential lifecycle (register, login, refresh, logout) and the
authorization dependency that every protected store route uses.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan builds the process-wide services once (store, signer, auth service,
authorizer) and hands them to request handlers through app.state. A signing
key pair that cannot be loaded aborts startup.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, FieldError, HealthResponse
from api.routes.auth import router as auth_router
from auth.dependencies import Authorizer
from auth.errors import AuthError, SigningKeyError
from auth.service import AuthService
from auth.signing import TokenSigner
from auth.store import UserStore
from core.config import get_settings

VERSION = "1.0.0"

_settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=_settings.log_level,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("storekeep.api")

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI, interval: int) -> None:
    """Delete expired refresh tokens every interval seconds.

    Optional: expiry is already enforced lazily when a token is presented.
    The sweep only keeps abandoned rows from piling up. CancelledError from
    task.cancel() during shutdown propagates out of asyncio.sleep.
    """
    while True:
        await asyncio.sleep(interval)
        try:
            await asyncio.to_thread(app.state.auth_service.purge_expired)
        except SQLAlchemyError:
            logger.exception("Refresh token purge failed")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build process-wide services on startup; release them on shutdown.

    Startup order matters:
      1. Signing keys first -- if they are unusable nothing else should start.
      2. Store second -- creates tables on first run.
      3. Services last -- they hold references to both.
    """
    settings = get_settings()
    logger.info("storekeep API starting up")
    try:
        signer = TokenSigner.from_files(settings.private_key_path, settings.public_key_path, settings.jwt_algorithm)
    except SigningKeyError:
        logger.critical("Cannot start without a usable signing key pair")
        raise
    store = UserStore(settings.database_url)
    app.state.user_store = store
    app.state.signer = signer
    app.state.auth_service = AuthService.from_settings(settings, store, signer)
    app.state.authorizer = Authorizer(
        signer,
        store,
        algorithms=[settings.jwt_algorithm],
        trust_forwarded_for=settings.trust_forwarded_for,
    )
    logger.info(
        "Auth initialized (logout_policy=%s, rotate_refresh_tokens=%s, bind_refresh_to_origin=%s)",
        settings.logout_policy,
        settings.rotate_refresh_tokens,
        settings.bind_refresh_to_origin,
    )

    purge_task = None
    if settings.refresh_token_purge_interval_seconds > 0:
        purge_task = asyncio.create_task(_purge_loop(app, settings.refresh_token_purge_interval_seconds))

    yield

    # Shutdown
    if purge_task is not None:
        purge_task.cancel()
    app.state.user_store.close()
    logger.info("storekeep API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="storekeep API",
    description="Authentication and authorization for the store-management backend.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

if _settings.cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_settings.cors_origins,
        allow_methods=["GET", "POST", "PATCH", "DELETE"],
        allow_headers=["Content-Type", "Authorization"],
        max_age=3600,
    )

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log one line per request. The Authorization header is never logged."""
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info(
        "%s %s -> %d (%.1fms, peer=%s)",
        request.method,
        request.url.path,
        response.status_code,
        elapsed_ms,
        request.client.host if request.client else "-",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api", tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every handler returns the same failure envelope
#   {"status": false, "error": {"message": ...}}
# so clients parse errors uniformly. The status code comes from the error
# itself (AuthError.status_code, HTTPException.status_code) and defaults to 500.
# ---------------------------------------------------------------------------


def _error_response(status_code: int, message: str, fields: list[FieldError] | None = None, headers=None):
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(message=message, fields=fields)).to_content(),
        headers=headers,
    )


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Map any AuthError subclass to its carried status code and message."""
    log = logger.error if exc.status_code >= 500 else logger.info
    log("%s %s -> %d %s", request.method, request.url.path, exc.status_code, exc.message)
    return _error_response(exc.status_code, exc.message, headers=exc.headers or None)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with field-level messages when the body or params fail validation."""
    fields = []
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p != "body"]
        message = str(err.get("msg", "Invalid value")).removeprefix("Value error, ")
        fields.append(FieldError(field=".".join(loc) or "body", message=message))
    return _error_response(400, "Validation failed", fields=fields)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with Retry-After when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    return _error_response(429, "Too many requests.", headers={"Retry-After": str(retry_after)})


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Wrap framework HTTP errors (404 unknown route, 405 wrong method) in the envelope."""
    return _error_response(exc.status_code, str(exc.detail), headers=getattr(exc, "headers", None))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is logged server-side only, never written to the
    response body. The client receives only a generic message.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "Something went wrong")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable.
# No auth and no rate limit -- load balancers must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version and database reachability."""
    try:
        request.app.state.user_store.ping()
        database = "ok"
    except SQLAlchemyError:
        logger.exception("Health check: database unreachable")
        database = "error"
    return HealthResponse(version=VERSION, components={"app": "ok", "database": database})
