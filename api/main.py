"""
api/main.py -- FastAPI application entry point for Cryptify.

Run with:      uvicorn asgi:app
               python main.py --port 3450

Middleware stack (outermost to innermost; the last one registered wraps the rest):
  1. log_requests      -- method, path, status, latency and client IP
  2. security_headers  -- helmet-style hardening headers on every response
  3. CORSMiddleware    -- CORS headers for browser clients (no credentials)

Lifespan handles startup (settings, engine, schema, services) and shutdown
(HTTP client, connection pool) symmetrically. Settings are loaded inside the
lifespan, so a missing JWT_SECRET / GOOGLE_CLIENT_ID / database parameter
aborts startup before the server accepts a single request.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.models import DbTimeResponse, ErrorResponse, HealthResponse
from api.routes.auth import router as auth_router
from api.routes.balances import router as balances_router
from auth.errors import AuthFlowError, NotFoundError
from auth.federation import GoogleIdentityVerifier
from auth.hashing import CredentialHasher
from auth.service import AuthService
from auth.store import UserStore
from auth.tokens import SessionTokenIssuer
from balances.store import BalanceStore
from core.config import Settings, get_settings
from core.database import create_engine_from_settings

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

LOG_FORMAT = "%(asctime)s %(levelname)-5s %(name)s %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

logging.basicConfig(level=logging.INFO, format=LOG_FORMAT, datefmt=LOG_DATEFMT)
logger = logging.getLogger("cryptify.api")


def _attach_file_log(settings: Settings) -> logging.Handler | None:
    """Mirror the cryptify.* loggers into LOG_FILE, at LOG_LEVEL."""
    app_logger = logging.getLogger("cryptify")
    app_logger.setLevel(settings.log_level.upper())
    if not settings.log_file:
        return None
    handler = logging.FileHandler(settings.log_file, encoding="utf-8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT))
    app_logger.addHandler(handler)
    return handler


# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------


async def init_state(
    app: FastAPI,
    settings: Settings,
    verifier: GoogleIdentityVerifier | None = None,
    hasher: CredentialHasher | None = None,
) -> AsyncEngine:
    """Build every service from Settings and attach it to app.state.

    Tests call this from a patched lifespan with a SQLite URL and a verifier
    backed by a mock transport. Returns the engine so the caller can dispose
    of it on shutdown.
    """
    engine = create_engine_from_settings(settings)
    user_store = UserStore(engine)
    balance_store = BalanceStore(engine)
    await user_store.create_schema()
    await balance_store.create_schema()

    issuer = SessionTokenIssuer(settings.jwt_secret, settings.token_expire_seconds)
    if verifier is None:
        verifier = GoogleIdentityVerifier(
            client_id=settings.google_client_id,
            certs_url=settings.google_certs_url,
            timeout=settings.google_http_timeout,
        )

    app.state.settings = settings
    app.state.user_store = user_store
    app.state.balance_store = balance_store
    app.state.token_issuer = issuer
    app.state.verifier = verifier
    app.state.auth_service = AuthService(
        store=user_store,
        hasher=hasher or CredentialHasher(),
        issuer=issuer,
        verifier=verifier,
    )
    return engine


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order:
      1. Settings -- validation failure raises here and stops the process.
      2. File logging.
      3. Engine, schema, services.
    """
    settings = get_settings()
    file_handler = _attach_file_log(settings)
    logger.info("Cryptify API starting up")
    engine = await init_state(app, settings)
    logger.info("Auth initialized (token lifetime %ds)", settings.token_expire_seconds)

    yield

    await app.state.verifier.aclose()
    await engine.dispose()
    logger.info("Cryptify API shutdown complete")
    if file_handler is not None:
        logging.getLogger("cryptify").removeHandler(file_handler)
        file_handler.close()


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Cryptify API",
    description="User registration, password and Google sign-in, and balance lookup.",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

_SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "SAMEORIGIN",
    "Referrer-Policy": "no-referrer",
    "Strict-Transport-Security": "max-age=15552000; includeSubDomains",
    "Cross-Origin-Opener-Policy": "same-origin",
    "X-DNS-Prefetch-Control": "off",
}


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    for name, value in _SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    return response


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Every request passes through this coroutine before reaching any route
# handler. 4xx responses log at WARNING, 5xx at ERROR, the rest at INFO.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    if response.status_code >= 500:
        level = logging.ERROR
    elif response.status_code >= 400:
        level = logging.WARNING
    else:
        level = logging.INFO
    logger.log(
        level,
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

app.include_router(auth_router, prefix="/api", tags=["Auth"])
app.include_router(balances_router, prefix="/api", tags=["Balances"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every error leaves the process as {"status": <code>, "message": <text>}
# (plus isNewUser on the Google 404). Causes are logged, never returned.
# ---------------------------------------------------------------------------


def _error_response(status_code: int, message: str, is_new_user: bool | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(status=status_code, message=message, is_new_user=is_new_user).model_dump(
            by_alias=True, exclude_none=True
        ),
    )


@app.exception_handler(AuthFlowError)
async def auth_flow_error_handler(request: Request, exc: AuthFlowError) -> JSONResponse:
    """Render a flow failure raised by AuthService or an auth dependency."""
    is_new_user = exc.is_new_user if isinstance(exc, NotFoundError) and exc.is_new_user else None
    response = _error_response(exc.status_code, exc.message, is_new_user)
    response.headers["Cache-Control"] = "no-store"
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed JSON or wrongly typed fields. Missing fields never get here."""
    logger.info("Request validation failed on %s: %s", request.url.path, exc.errors())
    return _error_response(400, "Invalid request body")


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Route-level HTTPExceptions and framework 404/405s, in the common envelope."""
    return _error_response(exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "An unexpected error occurred")


# ---------------------------------------------------------------------------
# Health and diagnostics
# ---------------------------------------------------------------------------


@app.get("/", response_model=HealthResponse, tags=["Health"])
async def health() -> HealthResponse:
    """Liveness probe."""
    return HealthResponse()


@app.get("/api/test", response_model=DbTimeResponse, include_in_schema=False)
async def db_time(request: Request) -> DbTimeResponse:
    """Database round trip for local development. 404 unless DEBUG=true."""
    if not request.app.state.settings.debug:
        raise HTTPException(status_code=404, detail="Not Found")
    try:
        current = await request.app.state.user_store.ping()
    except (SQLAlchemyError, OSError) as exc:
        logger.error("Error getting current time: %s", exc)
        raise HTTPException(status_code=500, detail="Failed to get current time from DB") from exc
    return DbTimeResponse(current_time=str(current))
