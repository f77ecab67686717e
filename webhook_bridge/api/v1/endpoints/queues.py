"""
Queue inspection endpoints (job store + debounce state).
"""
from fastapi import APIRouter, Depends

from webhook_bridge.api.deps import get_debounce_coordinator, get_job_store
from webhook_bridge.jobs.store import JobStore
from webhook_bridge.models.schemas import ResponseBase
from webhook_bridge.services.debounce import DebounceCoordinator

router = APIRouter()


@router.get("/", response_model=ResponseBase, summary="Job store and debounce snapshot")
async def queue_snapshot(
    store: JobStore = Depends(get_job_store),
    coordinator: DebounceCoordinator | None = Depends(get_debounce_coordinator),
) -> ResponseBase:
    return ResponseBase(
        data={
            "store": await store.snapshot(),
            "debounce": coordinator.snapshot() if coordinator is not None else None,
        }
    )
