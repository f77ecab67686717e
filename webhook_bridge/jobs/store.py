"""Job store contract and backend selection."""
from __future__ import annotations

from typing import TYPE_CHECKING, Any, Mapping, Optional, Protocol, Union

from webhook_bridge.config import QUEUE_SETTINGS
from webhook_bridge.jobs.job import JobRecord
from webhook_bridge.jobs.memory_store import InMemoryJobStore
from webhook_bridge.models.events import EnqueueResult, RetentionPolicy
from webhook_bridge.utils import get_logger

if TYPE_CHECKING:
    from webhook_bridge.jobs.redis_store import RedisJobStore

logger = get_logger(__name__)


class JobStore(Protocol):
    backend: str

    async def enqueue(
        self,
        queue_name: str,
        job_type: str,
        job_id: str,
        payload: Mapping[str, Any],
        policy: RetentionPolicy,
    ) -> EnqueueResult: ...
    async def dequeue(self, queue_name: str) -> Optional[JobRecord]: ...
    async def complete(self, queue_name: str, job_id: str) -> None: ...
    async def fail(self, queue_name: str, job_id: str, reason: str) -> str: ...
    async def get_job(self, queue_name: str, job_id: str) -> Optional[JobRecord]: ...
    async def health_check(self) -> bool: ...
    async def depth(self, queue_name: Optional[str] = None) -> int: ...
    async def snapshot(self) -> dict: ...
    async def purge(self) -> None: ...
    async def close(self) -> None: ...


async def create_job_store() -> Union[InMemoryJobStore, "RedisJobStore"]:
    """Create the configured store; Redis when enabled and reachable at startup."""
    use_redis = bool(QUEUE_SETTINGS.get("use_redis", False))

    if use_redis:
        from webhook_bridge.jobs.redis_store import RedisJobStore
        redis_store = RedisJobStore()
        if await redis_store.health_check():
            logger.info("Using Redis-backed job store")
            return redis_store
        logger.warning("Redis is enabled but unreachable at startup; using in-memory job store")
        await redis_store.close()

    logger.info("Using in-memory job store")
    return InMemoryJobStore()


__all__ = ["JobStore", "create_job_store"]
