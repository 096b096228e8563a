"""
api/main.py -- FastAPI application entry point for the staff training portal.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. log_requests      -- one log line per request, including gate redirects
  2. edge_access_gate  -- handshake detection + session/role/admin checks
  3. SlowAPIMiddleware -- enforces per-route rate limits from api.limiter

Lifespan builds the per-process services (user store, directory client,
session manager) and hangs them on app.state. Nothing is constructed at
import time; handlers reach services through auth.dependencies.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, RedirectResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.admin_users import router as admin_users_router
from api.routes.session import router as session_router
from api.routes.verify import router as verify_router
from auth.gate import GateOutcome, evaluate, is_excluded
from auth.session import SessionManager
from auth.store import UserStore
from core.config import get_settings
from core.directory import DirectoryClient

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("training.api")


# ---------------------------------------------------------------------------
# Lifespan -- startup / shutdown
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build per-process services on startup; release them on shutdown.

    get_settings() runs first so a production deployment missing its secrets
    fails here, before the first request.
    """
    cfg = get_settings()
    logger.info("Training portal starting up (debug=%s)", cfg.debug)
    app.state.user_store = UserStore(cfg.database_url)
    app.state.directory = DirectoryClient.from_settings()
    app.state.session_manager = SessionManager.from_settings()
    if not cfg.schoolbox_configured:
        logger.warning("Schoolbox directory API not configured -- sign-in and staff sync will fail")
    logger.info("Services initialized (%d local users)", app.state.user_store.count_users())

    yield

    app.state.directory.close()
    app.state.user_store.close()
    logger.info("Training portal shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Staff Training Portal",
    description="Staff training portal embedded in Schoolbox via Remote Services SSO.",
    version=__version__,
    lifespan=lifespan,
    docs_url=None,
    redoc_url=None,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Edge access gate
#
# Runs before any route handler on every path except is_excluded() ones.
# The decision logic lives in auth/gate.py; this coroutine only applies it.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def edge_access_gate(request: Request, call_next):
    path = request.url.path
    if is_excluded(path):
        return await call_next(request)

    manager: SessionManager = request.app.state.session_manager
    decision = evaluate(path, request.query_params, request.cookies.get(manager.cookie_name), manager)
    if decision.outcome is GateOutcome.PROCEED:
        return await call_next(request)

    resp = RedirectResponse(decision.location, status_code=302)
    if decision.clear_cookie:
        manager.clear(resp)
    return resp


# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


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

app.include_router(verify_router, tags=["Sign-in"])
app.include_router(session_router, prefix="/api", tags=["Session"])
app.include_router(admin_users_router, prefix="/api", tags=["Admin"])
# Web UI router is mounted by asgi.py, not here.


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly.
# ---------------------------------------------------------------------------


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests.",
                detail=str(exc),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Structured dict details are passed through as the error field."""
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected server errors. Details go to the log only."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Excluded from the edge gate so load balancers can poll it without a session.
# ---------------------------------------------------------------------------


@app.get("/api/health", tags=["Health"])
async def health() -> HealthResponse:
    """Return liveness and current version."""
    return HealthResponse(version=__version__)
