"""
Credentia — Application Entry Point

FastAPI application exposing the reviewer workflow and the public
verification endpoint.

`uvicorn credentia.main:app`
"""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import Any

import structlog
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

# Load .env file before any configuration is loaded
load_dotenv()

from credentia.api.routers.reviews import router as reviews_router
from credentia.api.routers.verification import router as verification_router
from credentia.clients.memory_store import InMemoryDocumentStore
from credentia.clients.notifications import NotificationSender, create_notification_sender
from credentia.clients.redis import RedisClient, RedisDocumentStore
from credentia.clients.store import DocumentStore
from credentia.config import CredentiaConfig, load_config
from credentia.errors import (
    CredentiaError,
    InvalidTransition,
    NotFoundError,
    StoreUnavailable,
    ValidationError,
)
from credentia.primitives.common import new_id
from credentia.systems.issuance.minter import CertificateMinter
from credentia.systems.issuance.resolver import IdentityResolver
from credentia.systems.issuance.workflow import ApprovalWorkflow
from credentia.systems.verification.service import VerificationService
from credentia.telemetry.logging import bind_request_context, clear_request_context, setup_logging

logger = structlog.get_logger()


# ─── Service Wiring ──────────────────────────────────────────────


def build_services(
    app: FastAPI,
    config: CredentiaConfig,
    store: DocumentStore,
    notifier: NotificationSender,
) -> None:
    """Construct every service and hang it on app.state."""
    app.state.config = config
    app.state.store = store
    app.state.notifier = notifier

    resolver = IdentityResolver(store, config.issuance)
    minter = CertificateMinter(config.issuance, config.verification)
    app.state.workflow = ApprovalWorkflow(store, resolver, minter, notifier, config.issuance)
    app.state.verification = VerificationService(store)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup and shutdown sequence.
    """
    # ── 1. Load configuration ─────────────────────────────────
    config_path = os.environ.get("CREDENTIA_CONFIG_PATH", "config/default.yaml")
    config = load_config(config_path)

    # ── 2. Set up logging ─────────────────────────────────────
    setup_logging(config.logging)
    logger.info("credentia_starting", config_path=config_path, store=config.store.backend)

    # ── 3. Connect to the document store ──────────────────────
    redis_client: RedisClient | None = None
    store: DocumentStore
    if config.store.backend == "redis":
        redis_client = RedisClient(config.redis)
        await redis_client.connect()
        store = RedisDocumentStore(redis_client)
    else:
        store = InMemoryDocumentStore()

    # ── 4. Services ───────────────────────────────────────────
    notifier = create_notification_sender(config.notifications)
    build_services(app, config, store, notifier)
    logger.info("credentia_ready")

    yield

    # ── Shutdown ──────────────────────────────────────────────
    logger.info("credentia_shutting_down")
    await app.state.workflow.drain()
    await notifier.close()
    if redis_client is not None:
        await redis_client.close()
    logger.info("credentia_shutdown_complete")


# ─── FastAPI Application ─────────────────────────────────────────

app = FastAPI(
    title="Credentia",
    description="Certificate issuance and verification",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS for frontend
_cors_origins = ["http://localhost:3000"]
# Allow additional origins via env var (comma-separated)
_extra_origins = os.environ.get("CORS_ALLOWED_ORIGINS", "")
if _extra_origins:
    _cors_origins.extend(o.strip() for o in _extra_origins.split(",") if o.strip())

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(reviews_router)
app.include_router(verification_router)


# ─── Error Mapping ────────────────────────────────────────────────

_STATUS_BY_ERROR: list[tuple[type[CredentiaError], int]] = [
    (ValidationError, 422),
    (NotFoundError, 404),
    (InvalidTransition, 409),
    (StoreUnavailable, 503),
]


@app.exception_handler(CredentiaError)
async def credentia_error_handler(request: Request, exc: CredentiaError) -> JSONResponse:
    status_code = next(
        (code for error_type, code in _STATUS_BY_ERROR if isinstance(exc, error_type)),
        500,
    )
    if status_code >= 500:
        logger.error("request_failed", path=request.url.path, code=exc.code, error=exc.message)
    else:
        logger.info("request_rejected", path=request.url.path, code=exc.code)

    return JSONResponse(
        status_code=status_code,
        content={"error": exc.message, "code": exc.code, "details": _safe_extra(exc.extra)},
    )


def _safe_extra(extra: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in extra.items() if isinstance(v, str | int | float | bool | None)}


# ─── Authentication ───────────────────────────────────────────────


class APIKeyMiddleware(BaseHTTPMiddleware):
    """
    Validates API key from X-Credentia-API-Key header or Authorization Bearer token.

    Protected paths: /api/v1/*
    Public paths: /health, /docs, /openapi.json, /redoc, /api/v1/verify
    """

    async def dispatch(self, request: Request, call_next):
        path = request.url.path

        # Public endpoints: no auth required
        if path in ("/health", "/docs", "/openapi.json", "/redoc", "/api/v1/verify"):
            return await call_next(request)

        # Only protect /api/v1/* paths
        if not path.startswith("/api/v1/"):
            return await call_next(request)

        # Check if auth is configured
        config = getattr(request.app.state, "config", None)
        if config is None or not config.server.api_keys:
            # Dev mode: no keys configured, allow all
            return await call_next(request)

        # Extract API key from header or Authorization bearer
        api_key = request.headers.get(config.server.api_key_header, "")
        if not api_key:
            auth_header = request.headers.get("authorization", "")
            if auth_header.startswith("Bearer "):
                api_key = auth_header[7:]

        if not api_key or api_key not in config.server.api_keys:
            return JSONResponse(
                status_code=401,
                content={"error": "Invalid or missing API key"},
            )

        return await call_next(request)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Tags every log line emitted while serving a request with its id."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("x-request-id") or new_id()
        bind_request_context(request_id=request_id, path=request.url.path)
        try:
            response = await call_next(request)
        finally:
            clear_request_context()
        response.headers["x-request-id"] = request_id
        return response


app.add_middleware(APIKeyMiddleware)
app.add_middleware(RequestContextMiddleware)


# ─── Health ───────────────────────────────────────────────────────


@app.get("/health")
async def health() -> dict[str, Any]:
    """System health check."""
    store = getattr(app.state, "store", None)
    if store is None:
        return {"status": "starting", "store": {"status": "not_initialized"}}

    store_health = await store.health_check()
    workflow = app.state.workflow
    overall = "healthy" if store_health.get("status") == "connected" else "degraded"
    return {
        "status": overall,
        "store": store_health,
        "notifications": {"failures": workflow.notification_failures},
    }
