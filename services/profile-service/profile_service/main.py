"""FastAPI application wiring for the profile service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import redis
import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from psycopg_pool import ConnectionPool

from .api.routes import router as v1_router
from .config import Settings, get_settings
from .domain.service import AuthService
from .repository import (
    AccountDirectory,
    AccountRepository,
    InMemoryAccountRepository,
    PostgresSessionStore,
)
from .security.passwords import PasswordHasher
from .security.sessions import InMemorySessionStore, RedisSessionStore, SessionStore
from .security.tokens import TokenIssuer

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def build_accounts(settings: Settings, pool: ConnectionPool | None) -> AccountDirectory:
    """Instantiate the configured account directory backend."""
    if settings.store_backend == "postgres":
        if pool is None:
            raise ValueError("postgres store backend requires a connection pool")
        repository = AccountRepository(pool)
        repository.ensure_schema()
        logger.info("account directory using postgres backend")
        return repository
    if settings.store_backend == "memory":
        logger.info("account directory using in-memory backend")
        return InMemoryAccountRepository()
    raise ValueError(f"unknown STORE_BACKEND {settings.store_backend!r}")


def build_sessions(settings: Settings, pool: ConnectionPool | None) -> SessionStore:
    """Instantiate the configured session store, next to the accounts unless Redis is requested."""
    if settings.session_backend == "redis":
        if not settings.redis_url:
            raise ValueError("SESSION_BACKEND=redis requires REDIS_URL")
        client = redis.from_url(settings.redis_url)
        logger.info("session store configured for redis backend")
        return RedisSessionStore(client, ttl_seconds=settings.refresh_ttl_seconds)
    if settings.session_backend == "store":
        if pool is not None:
            logger.info("session store using the accounts table")
            return PostgresSessionStore(pool)
        logger.info("session store using in-memory backend")
        return InMemorySessionStore()
    raise ValueError(f"unknown SESSION_BACKEND {settings.session_backend!r}")


def build_service(settings: Settings, pool: ConnectionPool | None = None) -> AuthService:
    """Assemble the authentication service from configuration."""
    return AuthService(
        build_accounts(settings, pool),
        build_sessions(settings, pool),
        PasswordHasher(rounds=settings.bcrypt_rounds),
        TokenIssuer(settings.token_settings()),
        rotate_refresh_tokens=settings.rotate_refresh_tokens,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialise shared resources (Postgres pool, services) for the app lifecycle."""
    pool: ConnectionPool | None = None
    if settings.store_backend == "postgres":
        pool = ConnectionPool(settings.database_url, open=False)
        pool.open()
    app.state.pool = pool
    try:
        app.state.auth_service = build_service(settings, pool)
        yield
    finally:
        if pool is not None:
            pool.close()


app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    max_age=600,
)


@app.exception_handler(Exception)
async def unhandled_error(request: Request, exc: Exception) -> JSONResponse:
    """Answer unexpected failures without leaking internals outside debug mode."""
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    body: dict[str, str] = {"detail": "Server error"}
    if settings.debug:
        body["error"] = str(exc)
    return JSONResponse(status_code=500, content=body)


@app.get("/healthz", tags=["health"])
def healthz() -> dict[str, str]:
    """Return a minimal readiness indicator used by orchestration systems."""
    return {"status": "ok"}


@app.get("/metrics")
def metrics() -> Response:
    """Expose Prometheus metrics for scrapes."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


app.include_router(v1_router)


def run() -> None:
    """Serve the application with uvicorn on the configured host and port."""
    uvicorn.run(app, host=settings.http_host, port=settings.http_port)
