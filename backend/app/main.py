"""FastAPI application factory for the Tenantry backend."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api import auth, orgs
from app.config import Settings, get_settings
from app.db import engine as _db_engine_mod
from app.exceptions import AppError, ValidationFailed
from app.middleware.auth import SessionAuthMiddleware
from app.middleware.cors_preflight import CORSPreflightMiddleware
from app.middleware.rate_limit import RateLimiter, RateLimitMiddleware, log_limit_reached
from app.services.redis_client import RedisConnection

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


def build_rate_limiters(settings: Settings, redis: RedisConnection) -> dict[str, RateLimiter]:
    """The register and login budgets, keyed by the path they guard."""
    return {
        "/auth/register": RateLimiter(
            window_ms=settings.rate_limit_window_ms,
            limit=settings.rate_limit_max_register,
            key_prefix="register",
            redis=redis,
            on_limit_reached=log_limit_reached,
        ),
        "/auth/login": RateLimiter(
            window_ms=settings.rate_limit_window_ms,
            limit=settings.rate_limit_max_login,
            key_prefix="login",
            redis=redis,
            on_limit_reached=log_limit_reached,
        ),
    }


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: connect Redis if configured. Shutdown: close Redis and the DB pool."""
    await app.state.redis.connect()

    yield

    await app.state.redis.close()
    await _db_engine_mod.engine.dispose()


async def _app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    return exc.to_response()


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")}
        for err in exc.errors()
    ]
    return ValidationFailed().to_response({"details": errors})


def create_app(redis: RedisConnection | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        redis: Connection holder to use instead of one built from REDIS_URL.
    """
    settings = get_settings()
    app = FastAPI(
        title="Tenantry API",
        version=VERSION,
        description="Multi-tenant SaaS backend - sessions, organizations, memberships.",
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )
    app.state.redis = redis if redis is not None else RedisConnection(settings.redis_url)
    app.state.rate_limiters = build_rate_limiters(settings, app.state.redis)

    app.add_exception_handler(AppError, _app_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)

    # CORS: last added runs first. Preflight handles OPTIONS with 200; CORSMiddleware adds headers to other responses.
    origins = settings.get_cors_origins()
    allow_credentials = True
    if origins == ["*"]:
        allow_credentials = False  # Browser forbids * with credentials
        logger.warning("CORS_ORIGINS=* disables credentials; use exact origins in production")

    # Rate limiting runs before session resolution so rejected requests never touch the DB.
    app.add_middleware(SessionAuthMiddleware)
    app.add_middleware(RateLimitMiddleware, rules=app.state.rate_limiters)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(
        CORSPreflightMiddleware,
        allow_origins=origins,
        allow_credentials=allow_credentials,
    )

    # Routers
    app.include_router(auth.router, prefix="/auth", tags=["auth"])
    app.include_router(orgs.router, prefix="/orgs", tags=["organizations"])

    @app.get("/health")
    async def health():
        redis_ok = await app.state.redis.ping()
        return {
            "status": "ok",
            "version": VERSION,
            "redis": "connected" if redis_ok else "unavailable",
        }

    return app


app = create_app()
