"""In-memory job store (single-process; tests and local development).

Mirrors the Redis store's contract:
- Job id is the identity. A second enqueue for an id that is still waiting,
  active, delayed or retained after finishing is absorbed as a duplicate.
- FIFO per queue, plus a delayed heap for retries scheduled by ``fail``.
- Finished jobs are kept or dropped per the job's own retention options.

Two structures per queue:
 1. waiting deque: job ids ready to lease
 2. delayed heap: (ready_at_ts, seq, job_id) for retry backoff

On dequeue:
  - Promote delayed entries whose ready_at <= now.
  - Pop the oldest waiting id.

Everything runs on one event loop, so no locking is needed.
"""
from __future__ import annotations

import copy
import heapq
import json
import time
from collections import OrderedDict, defaultdict, deque
from typing import Any, Callable, Mapping, Optional

from webhook_bridge.config import QUEUE_SETTINGS
from webhook_bridge.errors import JobStoreError
from webhook_bridge.jobs.job import ACTIVE, COMPLETED, DELAYED, FAILED, WAITING, JobRecord
from webhook_bridge.models.events import EnqueueResult, JobRetention, RetentionPolicy
from webhook_bridge.utils import get_logger
from webhook_bridge.utils.time import epoch_ms

logger = get_logger(__name__)


class InMemoryJobStore:
    backend = "memory"

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._warn_depth = int(QUEUE_SETTINGS.get("warn_depth", 1000))  # type: ignore[arg-type]
        self._jobs: dict[str, dict[str, JobRecord]] = defaultdict(dict)
        self._waiting: dict[str, deque[str]] = defaultdict(deque)
        self._delayed: dict[str, list[tuple[float, int, str]]] = defaultdict(list)
        # queue -> job id -> expiry ts (None = no age limit), oldest first
        self._completed: dict[str, OrderedDict[str, Optional[float]]] = defaultdict(OrderedDict)
        self._failed: dict[str, OrderedDict[str, Optional[float]]] = defaultdict(OrderedDict)
        self._seq_counter = 0
        self._closed = False

    # ----------------------------- internal helpers ----------------------------- #
    def _next_seq(self) -> int:
        self._seq_counter += 1
        return self._seq_counter

    def _promote_delayed(self, queue_name: str) -> None:
        now_ts = self._clock()
        heap = self._delayed[queue_name]
        while heap and heap[0][0] <= now_ts:
            _, _, job_id = heapq.heappop(heap)
            record = self._jobs[queue_name].get(job_id)
            if record is None:
                continue
            record.state = WAITING
            self._waiting[queue_name].append(job_id)

    def _expire_finished(self, queue_name: str) -> None:
        now_ts = self._clock()
        for finished in (self._completed[queue_name], self._failed[queue_name]):
            for job_id, expires_at in list(finished.items()):
                if expires_at is not None and expires_at <= now_ts:
                    del finished[job_id]
                    self._jobs[queue_name].pop(job_id, None)

    def _retain(self, record: JobRecord, retention: JobRetention, finished: OrderedDict[str, Optional[float]]) -> None:
        if retention.remove_immediately:
            self._jobs[record.queue_name].pop(record.id, None)
            return
        expires_at = None
        if retention.age_seconds is not None:
            expires_at = self._clock() + retention.age_seconds
        finished[record.id] = expires_at
        self._expire_finished(record.queue_name)
        if retention.count is not None:
            while len(finished) > retention.count:
                old_id, _ = finished.popitem(last=False)
                self._jobs[record.queue_name].pop(old_id, None)

    def _require_active(self, queue_name: str, job_id: str) -> JobRecord:
        record = self._jobs[queue_name].get(job_id)
        if record is None or record.state != ACTIVE:
            raise JobStoreError(f"Job {job_id} on {queue_name} is not active")
        return record

    # ----------------------------- public API ----------------------------- #
    async def enqueue(
        self,
        queue_name: str,
        job_type: str,
        job_id: str,
        payload: Mapping[str, Any],
        policy: RetentionPolicy,
    ) -> EnqueueResult:
        if self._closed:
            raise JobStoreError("Job store closed")
        self._expire_finished(queue_name)
        jobs = self._jobs[queue_name]
        if job_id in jobs:
            return EnqueueResult(accepted=True, queue_name=queue_name, job_id=job_id, duplicate=True)
        data = copy.deepcopy(dict(payload))
        try:
            json.dumps(data)
        except (TypeError, ValueError) as e:
            raise JobStoreError(f"Payload is not JSON serializable: {e}") from e
        jobs[job_id] = JobRecord(
            id=job_id,
            queue_name=queue_name,
            name=job_type,
            data=data,
            opts=policy.to_job_options(),
            timestamp=epoch_ms(self._clock()),
        )
        self._waiting[queue_name].append(job_id)
        depth = self._queue_depth(queue_name)
        if depth >= self._warn_depth:
            logger.warning("Queue depth warning", queue=queue_name, depth=depth)
        return EnqueueResult(accepted=True, queue_name=queue_name, job_id=job_id)

    async def dequeue(self, queue_name: str) -> Optional[JobRecord]:
        """Lease the next ready job, or None when nothing is ready."""
        self._promote_delayed(queue_name)
        waiting = self._waiting[queue_name]
        while waiting:
            job_id = waiting.popleft()
            record = self._jobs[queue_name].get(job_id)
            if record is None:
                continue
            record.state = ACTIVE
            record.processed_on = epoch_ms(self._clock())
            return record
        return None

    async def complete(self, queue_name: str, job_id: str) -> None:
        record = self._require_active(queue_name, job_id)
        record.state = COMPLETED
        record.finished_on = epoch_ms(self._clock())
        self._retain(record, record.policy.remove_on_complete, self._completed[queue_name])

    async def fail(self, queue_name: str, job_id: str, reason: str) -> str:
        """Record a failed attempt. Returns the job's new state (delayed or failed)."""
        record = self._require_active(queue_name, job_id)
        policy = record.policy
        record.attempts_made += 1
        record.failed_reason = reason
        if record.attempts_made < policy.attempts:
            ready_at = self._clock() + policy.delay_for_attempt(record.attempts_made)
            record.state = DELAYED
            heapq.heappush(self._delayed[queue_name], (ready_at, self._next_seq(), job_id))
            return DELAYED
        record.state = FAILED
        record.finished_on = epoch_ms(self._clock())
        self._retain(record, policy.remove_on_fail, self._failed[queue_name])
        return FAILED

    async def get_job(self, queue_name: str, job_id: str) -> Optional[JobRecord]:
        self._expire_finished(queue_name)
        return self._jobs[queue_name].get(job_id)

    async def health_check(self) -> bool:
        return not self._closed

    async def close(self) -> None:
        self._closed = True

    # ----------------------------- test utilities ----------------------------- #
    async def purge(self) -> None:
        """Remove all jobs. Intended for test isolation only."""
        self._jobs.clear()
        self._waiting.clear()
        self._delayed.clear()
        self._completed.clear()
        self._failed.clear()

    # ----------------------------- inspection ----------------------------- #
    def _queue_depth(self, queue_name: str) -> int:
        return len(self._waiting[queue_name]) + len(self._delayed[queue_name])

    async def depth(self, queue_name: Optional[str] = None) -> int:
        names = [queue_name] if queue_name else list(self._jobs)
        return sum(self._queue_depth(name) for name in names)

    async def snapshot(self) -> dict:
        queues = {}
        for name, jobs in self._jobs.items():
            self._expire_finished(name)
            queues[name] = {
                "waiting": len(self._waiting[name]),
                "delayed": len(self._delayed[name]),
                "active": sum(1 for r in jobs.values() if r.state == ACTIVE),
                "completed": len(self._completed[name]),
                "failed": len(self._failed[name]),
            }
        return {"backend": self.backend, "closed": self._closed, "queues": queues}


__all__ = ["InMemoryJobStore"]
