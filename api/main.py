"""
api/main.py -- FastAPI application entry point for TenantAuth.

Exposes the auth core over HTTP: account signup, credential login, token
refresh, logout, password reset, session listing and user administration.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost; Starlette wraps the last registered
middleware around everything registered before it):
  1. log_requests          -- one log line per request with latency
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. TrustedHostMiddleware -- rejects requests with unexpected Host headers

Rate limiting is not a middleware here: credential routes declare
Depends(rate_limit(bucket)) so each bucket keeps its own window.

Lifespan handles startup (store, components, purge task) and shutdown
(cancel purge task, close DB connection) symmetrically.
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
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.users import router as users_router
from auth.errors import AuthError, RateLimited
from auth.gate import AuthGate, RateLimitRule
from auth.passwords import PasswordHasher
from auth.ratelimit import RateLimiter
from auth.service import AuthService
from auth.sessions import SessionStore
from auth.store import AuthStore
from auth.tokens import TokenService
from core.clock import Clock, system_clock
from core.config import Settings, get_settings

API_VERSION = "0.1.0"

_settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=_settings.log_level.upper(),
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("tenantauth.api")

# ---------------------------------------------------------------------------
# Component wiring
# ---------------------------------------------------------------------------


def rate_limit_rules(settings: Settings) -> dict[str, RateLimitRule]:
    """Build the per-bucket throttling rules. Windows are configured in milliseconds."""
    return {
        "login": RateLimitRule(
            settings.login_rate_limit_attempts,
            settings.login_rate_limit_window_ms / 1000,
        ),
        "signup": RateLimitRule(
            settings.signup_rate_limit_attempts,
            settings.signup_rate_limit_window_ms / 1000,
        ),
        "forgot_password": RateLimitRule(
            settings.forgot_password_rate_limit_attempts,
            settings.forgot_password_rate_limit_window_ms / 1000,
        ),
    }


def init_state(app: FastAPI, settings: Settings, clock: Clock = system_clock, store: AuthStore | None = None) -> None:
    """Construct every auth component from settings and attach them to app.state.

    One instance of each component is shared by all requests. Tests call this
    directly with a fake clock and an isolated store.
    """
    store = store or AuthStore(db_url=settings.database_url, clock=clock)
    hasher = PasswordHasher(
        time_cost=settings.hash_time_cost,
        memory_cost=settings.hash_memory_cost,
        parallelism=settings.hash_parallelism,
    )
    tokens = TokenService(
        settings.secret_key,
        access_ttl=settings.access_token_ttl,
        refresh_ttl=settings.refresh_token_ttl,
        clock=clock,
    )
    sessions = SessionStore(store, tokens, clock=clock)
    limiter = RateLimiter(clock=clock)

    app.state.settings = settings
    app.state.clock = clock
    app.state.store = store
    app.state.tokens = tokens
    app.state.sessions = sessions
    app.state.rate_limiter = limiter
    app.state.gate = AuthGate(tokens, limiter, rate_limit_rules(settings))
    app.state.auth_service = AuthService(
        store,
        hasher,
        tokens,
        sessions,
        clock=clock,
        reset_ttl=settings.password_reset_ttl,
    )


def purge_expired(app: FastAPI) -> None:
    """Drop expired sessions, reset tokens and rate-limit windows.

    Expiry is enforced at read time everywhere; this only reclaims space.
    """
    sessions = app.state.sessions.purge_expired()
    resets = app.state.store.purge_expired_resets(app.state.clock())
    windows = app.state.rate_limiter.purge_expired()
    logger.info("Purged expired records sessions=%d resets=%d rate_windows=%d", sessions, resets, windows)


# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI, interval: float) -> None:
    """Compact expired state every interval seconds.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine.
    """
    while True:
        await asyncio.sleep(interval)
        try:
            purge_expired(app)
        except Exception:
            logger.exception("Purge of expired records failed")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build components on startup; stop the purge task and close the store on shutdown."""
    logger.info("TenantAuth API starting up")
    init_state(app, _settings)
    logger.info(
        "Auth initialized (access_ttl=%ds refresh_ttl=%ds)",
        _settings.access_token_ttl,
        _settings.refresh_token_ttl,
    )
    app.state.purge_task = asyncio.create_task(_purge_loop(app, _settings.purge_interval_seconds))

    yield

    app.state.purge_task.cancel()
    app.state.store.close()
    logger.info("TenantAuth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="TenantAuth API",
    description="Accounts, sessions and role-based access for a multi-tenant API.",
    version=API_VERSION,
    lifespan=lifespan,
    docs_url="/docs" if _settings.debug else None,
    redoc_url="/redoc" if _settings.debug else None,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=_settings.allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(users_router, prefix="/api/v1", tags=["Users"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every handler renders the ErrorResponse envelope: {"error": {code, message, detail}}.
# ---------------------------------------------------------------------------


def _error_response(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render an AuthError with its status and code.

    Responses to credential requests must never be cached, including the
    failures, so every AuthError carries Cache-Control: no-store. A 429 also
    tells the client how long to wait.
    """
    response = _error_response(exc.status_code, exc.code, exc.message, exc.detail)
    response.headers["Cache-Control"] = "no-store"
    if isinstance(exc, RateLimited):
        response.headers["Retry-After"] = str(exc.retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return _error_response(422, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Return a structured error for FastAPI/Starlette HTTP exceptions (404 routes, 405 methods)."""
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    This is also where a failed KDF computation ends up: it is a server error,
    never "invalid credentials".
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Lives on the app itself, outside the v1 routers.
# Never authenticated or throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version and database reachability."""
    database = "ok"
    try:
        with request.app.state.store.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("Health check: database unreachable")
        database = "error"
    return HealthResponse(
        status="healthy" if database == "ok" else "degraded",
        version=API_VERSION,
        components={"app": "ok", "database": database},
    )
