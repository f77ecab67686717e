"""Idempotent dispatcher: DispatchRequest -> job store.

The dedupe key is submitted as the job id and the store's atomic create-if-absent
absorbs redeliveries. No existence check is made here; correctness rests on
key determinism alone. Store failures surface as SubmissionError and are
not retried; retry of the *job* is the broker's attempts/backoff policy.
"""
from __future__ import annotations

import time
from typing import Iterable, Optional

from webhook_bridge.errors import JobStoreError, SubmissionError
from webhook_bridge.jobs.store import JobStore
from webhook_bridge.models.events import DispatchRequest, EnqueueResult
from webhook_bridge.utils import audit_event, get_logger, log_context

logger = get_logger(__name__)


class IdempotentDispatcher:
    def __init__(self, store: JobStore) -> None:
        self.store = store

    async def dispatch(self, request: DispatchRequest, *, request_id: Optional[str] = None) -> EnqueueResult:
        """Submit one request. Raises SubmissionError if the store refuses or is unreachable."""
        with log_context(request_id=request_id, job_id=request.dedupe_key, queue=request.queue_name):
            start_time = time.time()
            try:
                result = await self.store.enqueue(
                    request.queue_name,
                    request.job_type,
                    request.dedupe_key,
                    request.payload,
                    request.policy,
                )
            except JobStoreError as e:
                logger.error("Failed to enqueue job", job_type=request.job_type, error=str(e))
                raise SubmissionError(request.queue_name, request.dedupe_key, str(e)) from e

            duration_ms = round((time.time() - start_time) * 1000, 2)
            if result.duplicate:
                logger.info("Duplicate job absorbed", backend=self.store.backend, duration_ms=duration_ms)
            else:
                audit_event(
                    "job_enqueued",
                    job_type=request.job_type,
                    family=request.family.value,
                    backend=self.store.backend,
                    duration_ms=duration_ms,
                )
            return result

    async def dispatch_many(
        self,
        requests: Iterable[DispatchRequest],
        *,
        request_id: Optional[str] = None,
    ) -> list[EnqueueResult]:
        """Submit sequentially; the first SubmissionError stops the batch and propagates."""
        results: list[EnqueueResult] = []
        for request in requests:
            results.append(await self.dispatch(request, request_id=request_id))
        return results


__all__ = ["IdempotentDispatcher"]
