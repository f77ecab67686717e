"""
Dependencies resolving the pipeline components the lifespan stored on app.state.
"""
from fastapi import HTTPException, Request, status

from webhook_bridge.jobs.store import JobStore
from webhook_bridge.services.debounce import DebounceCoordinator
from webhook_bridge.services.ingest import IngestService
from webhook_bridge.utils import get_logger

logger = get_logger(__name__)


def _state_attr(request: Request, name: str):
    value = getattr(request.app.state, name, None)
    if value is None:
        logger.error("Pipeline component not initialized", component=name)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{name} not initialized",
        )
    return value


def get_ingest_service(request: Request) -> IngestService:
    return _state_attr(request, "ingest_service")


def get_job_store(request: Request) -> JobStore:
    return _state_attr(request, "job_store")


def get_debounce_coordinator(request: Request) -> DebounceCoordinator | None:
    # Debounce may be disabled by configuration.
    return getattr(request.app.state, "debounce_coordinator", None)
