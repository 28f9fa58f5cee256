"""
api/main.py -- FastAPI application entry point for authgate.

Run with:  python main.py serve
           uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. CORSMiddleware  -- adds CORS headers for allowed browser origins
  2. log_requests    -- method, path, status, latency, client host
  3. access_guard    -- AccessGuard.check(); attaches request.state.identity

Rate limits are applied per route by @limiter.limit (api/routes/v1/auth.py).

Lifespan builds the store, background worker, mailer, hasher, token codec,
AuthService and AccessGuard from settings and tears them down symmetrically.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.guard import AccessGuard
from auth.mailer import LogMailer
from auth.passwords import BcryptHasher
from auth.service import AuthService
from auth.store import AuthStore
from auth.tokens import TokenCodec
from core.background import BackgroundWorker
from core.config import get_settings
from core.errors import AppError, InternalFailure

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("authgate.api")

settings = get_settings()
logging.getLogger("authgate").setLevel(settings.log_level.upper())


# ---------------------------------------------------------------------------
# Composition
# ---------------------------------------------------------------------------


def build_service(store: AuthStore, worker: BackgroundWorker) -> AuthService:
    """Wire an AuthService from settings around an existing store and worker.

    Shared by the lifespan below and by main.py's operator commands.
    """
    cfg = get_settings()
    return AuthService(
        store=store,
        hasher=BcryptHasher(rounds=cfg.bcrypt_rounds),
        codec=TokenCodec(cfg.secret_key),
        mailer=LogMailer(cfg.public_base_url, logger=logging.getLogger("authgate.mailer")),
        worker=worker,
        access_ttl=cfg.access_token_ttl,
        refresh_ttl=cfg.refresh_token_ttl,
        registration_ttl=cfg.registration_ttl,
        resend_window=cfg.resend_window,
        logger=logging.getLogger("authgate.auth"),
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order: store first (creates tables), then the worker that detached
    tasks run on, then the service and guard that use both. Shutdown drains
    the worker before disposing of the engine so a pending last-login touch
    still has a connection.
    """
    cfg = get_settings()
    logger.info("authgate API starting up")
    app.state.auth_store = AuthStore(
        db_url=cfg.database_url,
        timeout_seconds=cfg.db_timeout_seconds,
        logger=logging.getLogger("authgate.store"),
    )
    app.state.worker = BackgroundWorker(
        max_workers=cfg.background_workers,
        logger=logging.getLogger("authgate.background"),
    )
    app.state.auth_service = build_service(app.state.auth_store, app.state.worker)
    app.state.guard = AccessGuard(app.state.auth_service, logger=logging.getLogger("authgate.guard"))
    logger.info("Auth initialized (database=%s)", app.state.auth_store.engine.url.render_as_string())

    yield

    app.state.worker.shutdown(wait=True)
    app.state.auth_store.close()
    logger.info("authgate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="authgate",
    description="Email/password registration, login and refresh-token sessions.",
    version=VERSION,
    lifespan=lifespan,
    docs_url=None,
    redoc_url=None,
    openapi_url=None,
)


def _error_response(exc: AppError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse.of(exc.type, exc.message).model_dump(),
    )


# ---------------------------------------------------------------------------
# Middleware stack
#
# Starlette wraps each add_middleware() / @app.middleware() call around the
# ones registered before it, so the LAST registration is the OUTERMOST layer.
# Registration below is innermost first: guard, logging, CORS.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def access_guard(request: Request, call_next):
    """Reject unauthenticated / unauthorized requests before routing.

    AppErrors are rendered here: exceptions raised inside a middleware do not
    reach the app's exception handlers.
    """
    guard: AccessGuard = request.app.state.guard
    try:
        identity = guard.check(request.method, request.url.path, request.headers.get("Authorization"))
    except AppError as exc:
        return _error_response(exc)
    request.state.identity = identity
    return await call_next(request)


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


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

# The @limiter.limit wrapper looks up app.state.limiter on every call.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Render a classified error. Only exc.message reaches the client."""
    if isinstance(exc, InternalFailure):
        logger.error(
            "Internal failure on %s %s: %s",
            request.method,
            request.url.path,
            exc,
            exc_info=exc,
        )
    else:
        logger.info("%s %s -> %s %s", request.method, request.url.path, exc.status_code, exc)
    return _error_response(exc)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    logger.warning(
        "Rate limit exceeded on %s from %s",
        request.url.path,
        request.client.host if request.client else "unknown",
    )
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse.of("RATE_LIMITED", "Too many requests").model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed body, path or query parameters -> 400 VALIDATION_FAILURE."""
    logger.info(
        "Request validation failed on %s at %s",
        request.url.path,
        [err.get("loc") for err in exc.errors()],
    )
    return JSONResponse(
        status_code=400,
        content=ErrorResponse.of("VALIDATION_FAILURE", "Invalid request").model_dump(),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Routing errors (404 unknown path, 405 wrong method) in the same envelope."""
    error_type = {404: "NOT_FOUND", 405: "METHOD_NOT_ALLOWED"}.get(exc.status_code, f"HTTP_{exc.status_code}")
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse.of(error_type, str(exc.detail)).model_dump(),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse.of("INTERNAL", InternalFailure.default_message).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. Public and not rate limited.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version and database reachability."""
    db_ok = request.app.state.auth_store.ping()
    return HealthResponse(
        status="healthy" if db_ok else "degraded",
        version=VERSION,
        components={"app": "ok", "database": "ok" if db_ok else "error"},
    )
