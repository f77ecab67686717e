"""
FastAPI application main module.
Wires the classify -> debounce -> dispatch pipeline to the webhook routes, with
request logging, error envelopes and health checks.
"""
from fastapi import Depends, FastAPI, Request, Response
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import time
import os
from contextlib import asynccontextmanager
from typing import Optional

from webhook_bridge import __version__
from webhook_bridge.api.deps import get_ingest_service
from webhook_bridge.api.v1 import api_router
from webhook_bridge.api.v1.endpoints.webhooks import handle_webhook
from webhook_bridge.config import DEBOUNCE_SETTINGS, PORT, QUEUE_SETTINGS
from webhook_bridge.jobs.store import create_job_store
from webhook_bridge.middleware import request_context_middleware
from webhook_bridge.models.events import SourceChannel
from webhook_bridge.services.debounce import DebounceCoordinator
from webhook_bridge.services.dispatcher import IdempotentDispatcher
from webhook_bridge.services.ingest import IngestService
from webhook_bridge.utils import setup_logging, get_logger

# Setup logging before creating the app
setup_logging(
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    log_file=os.getenv("LOG_FILE") or None,
    enable_console=True
)

logger = get_logger(__name__)


def build_pipeline(app: FastAPI, store, *, debounce_enabled: Optional[bool] = None) -> IngestService:
    """Create dispatcher, optional debounce coordinator and ingest service on app.state."""
    if debounce_enabled is None:
        debounce_enabled = bool(DEBOUNCE_SETTINGS.get("enabled", True))
    dispatcher = IdempotentDispatcher(store)
    coordinator = DebounceCoordinator(dispatcher) if debounce_enabled else None
    ingest = IngestService(dispatcher, coordinator)
    app.state.job_store = store
    app.state.dispatcher = dispatcher
    app.state.debounce_coordinator = coordinator
    app.state.ingest_service = ingest
    return ingest


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Builds the job store and pipeline on startup; on shutdown drops un-fired
    debounce windows, waits for in-flight dispatches and closes the store.
    """
    logger.info("Application startup initiated")
    store = await create_job_store()
    build_pipeline(app, store)
    logger.info(
        "Webhook pipeline ready",
        backend=store.backend,
        debounce_enabled=app.state.debounce_coordinator is not None,
        debounce_window_seconds=DEBOUNCE_SETTINGS.get("window_seconds"),
    )
    try:
        yield
    finally:
        logger.info("Application shutdown initiated")
        coordinator = getattr(app.state, "debounce_coordinator", None)
        if coordinator is not None:
            await coordinator.shutdown()
        await store.close()
        logger.info("Application shutdown completed")


app = FastAPI(
    title="Webhook Bridge",
    description="""
    Turns ERP record-change webhooks, mail-platform push notifications and
    quote / quote-approval webhooks into deduplicated jobs on a durable queue.

    * **Debounce** - bursts of ERP updates to the same record produce one job
    * **Idempotent enqueue** - job ids are derived from business identifiers
    * **Handshake** - mail validation tokens are echoed as text/plain
    """,
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/api/v1/openapi.json",
    lifespan=lifespan,
)


# Request ID, log context and timing
app.middleware("http")(request_context_middleware)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle Pydantic validation errors."""
    request_id = getattr(request.state, "request_id", "unknown")

    logger.warning(
        "Request validation failed",
        errors=exc.errors(),
        request_id=request_id,
        path=request.url.path,
        method=request.method
    )

    return JSONResponse(
        status_code=422,
        content={
            "success": False,
            "message": "Request validation failed",
            "details": exc.errors(),
            "request_id": request_id
        }
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions."""
    request_id = getattr(request.state, "request_id", "unknown")

    logger.warning(
        "HTTP exception",
        status_code=exc.status_code,
        detail=exc.detail,
        request_id=request_id,
        path=request.url.path,
        method=request.method
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "message": exc.detail,
            "request_id": request_id
        }
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    request_id = getattr(request.state, "request_id", "unknown")

    logger.error(
        "Unhandled exception",
        error=str(exc),
        error_type=type(exc).__name__,
        request_id=request_id,
        path=request.url.path,
        method=request.method,
        exc_info=True
    )

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "message": "Internal server error",
            "request_id": request_id
        }
    )


# Legacy ERP endpoint kept at the root path ERP subscriptions were registered with.
@app.post("/webhook", tags=["webhooks"], summary="ERP record-change webhook (legacy path)")
async def legacy_erp_webhook(request: Request, ingest: IngestService = Depends(get_ingest_service)) -> Response:
    return await handle_webhook(SourceChannel.ERP, request, ingest)


@app.get("/health", tags=["health"], summary="Basic health check")
async def health_check():
    """Basic health check endpoint for load balancers."""
    store = getattr(app.state, "job_store", None)
    return {
        "status": "ok",
        "service": "webhook-bridge",
        "version": __version__,
        "timestamp": time.time(),
        "queue_backend": store.backend if store is not None else None,
    }


@app.get("/health/detailed", tags=["health"], summary="Detailed health check")
async def detailed_health_check():
    """Detailed health check with job store reachability and debounce state."""
    health_status = {
        "status": "ok",
        "service": "webhook-bridge",
        "version": __version__,
        "timestamp": time.time(),
        "checks": {}
    }

    store = getattr(app.state, "job_store", None)
    if store is None:
        health_status["checks"]["job_store"] = "not initialized"
        health_status["status"] = "degraded"
    else:
        healthy = await store.health_check()
        health_status["checks"]["job_store"] = {"backend": store.backend, "healthy": healthy}
        if not healthy:
            health_status["status"] = "degraded"
        elif store.backend == "memory" and QUEUE_SETTINGS.get("use_redis", False):
            # Redis was requested but unreachable at startup.
            health_status["status"] = "degraded"

    coordinator = getattr(app.state, "debounce_coordinator", None)
    if coordinator is not None:
        health_status["checks"]["debounce"] = coordinator.snapshot()

    status_code = 200 if health_status["status"] == "ok" else 503
    return JSONResponse(status_code=status_code, content=health_status)


@app.get("/", tags=["root"])
async def root():
    """API root endpoint with basic information."""
    return {
        "message": "Webhook Bridge API",
        "version": __version__,
        "documentation": "/docs",
        "health_check": "/health",
        "api_base": "/api/v1"
    }


app.include_router(api_router, prefix="/api/v1")

# Development server configuration
if __name__ == "__main__":
    import uvicorn

    logger.info("Starting development server", port=PORT)

    uvicorn.run(
        "webhook_bridge.main:app",
        host="0.0.0.0",
        port=PORT,
        reload=True,
        reload_dirs=["webhook_bridge"],
        log_level="info",
        access_log=True
    )
