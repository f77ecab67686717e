"""Redis-backed job store.

Features:
- Job id = dedupe key; ``SET NX`` on the job key is the only identity check, so
  concurrent or repeated submissions of the same id create exactly one job.
- FIFO per queue (LPUSH on enqueue, RPOP on lease).
- Retry backoff through a delayed sorted set, promoted on dequeue.
- Completed / failed retention by age (key TTL) and count (sorted-set trim).
- Persistence across application restarts.

Data structures in Redis (``<p>`` = key prefix, ``<q>`` = queue name):
 1. String: <p>:<q>:job:<id>   - serialized JobRecord
 2. List:   <p>:<q>:wait       - job ids ready to lease
 3. ZSet:   <p>:<q>:delayed    - score = ready_at_ts
 4. Set:    <p>:<q>:active     - leased job ids
 5. ZSet:   <p>:<q>:completed / <p>:<q>:failed - score = finished_at_ts
 6. Set:    <p>:queues         - known queue names (for snapshots)

Redis errors surface as JobStoreError; there is no silent fallback once running.
"""
from __future__ import annotations

import time
from typing import Any, Mapping, Optional

import redis
import redis.asyncio as aioredis

from webhook_bridge.config import QUEUE_SETTINGS
from webhook_bridge.errors import JobStoreError
from webhook_bridge.jobs.job import ACTIVE, COMPLETED, DELAYED, FAILED, JobRecord
from webhook_bridge.models.events import EnqueueResult, JobRetention, RetentionPolicy
from webhook_bridge.utils import get_logger
from webhook_bridge.utils.time import epoch_ms

logger = get_logger(__name__)


class RedisJobStore:
    backend = "redis"

    def __init__(self, redis_url: Optional[str] = None, *, key_prefix: Optional[str] = None) -> None:
        self._redis_url: str = redis_url or str(QUEUE_SETTINGS.get("redis_url", "redis://localhost:6379/0"))
        self._prefix: str = key_prefix or str(QUEUE_SETTINGS.get("redis_key_prefix", "bridge"))
        self._health_check_timeout = float(QUEUE_SETTINGS.get("redis_health_check_timeout", 2.0))  # type: ignore[arg-type]
        self._warn_depth = int(QUEUE_SETTINGS.get("warn_depth", 1000))  # type: ignore[arg-type]
        self._client: Optional[aioredis.Redis] = None
        self._is_redis_active = False
        self._init_redis_client()

    def _init_redis_client(self) -> None:
        kwargs: dict[str, Any] = {"socket_connect_timeout": self._health_check_timeout}
        if self._redis_url.startswith("rediss://") and not QUEUE_SETTINGS.get("redis_tls_verify", False):
            kwargs["ssl_cert_reqs"] = "none"
        self._client = aioredis.from_url(self._redis_url, **kwargs)

    # ----------------------------- keys ----------------------------- #
    def _key(self, queue_name: str, suffix: str) -> str:
        return f"{self._prefix}:{queue_name}:{suffix}"

    def _job_key(self, queue_name: str, job_id: str) -> str:
        return self._key(queue_name, f"job:{job_id}")

    @property
    def _queues_key(self) -> str:
        return f"{self._prefix}:queues"

    def _client_or_raise(self) -> aioredis.Redis:
        if self._client is None:
            raise JobStoreError("Redis client not initialized")
        return self._client

    # ----------------------------- health ----------------------------- #
    async def health_check(self) -> bool:
        """Ping Redis and track availability transitions."""
        try:
            await self._client_or_raise().ping()
        except (redis.RedisError, JobStoreError, OSError) as e:
            if self._is_redis_active:
                logger.warning("Redis connection lost", error=str(e))
            self._is_redis_active = False
            return False
        if not self._is_redis_active:
            logger.info("Connected to Redis successfully", url=self._redis_url)
        self._is_redis_active = True
        return True

    # ----------------------------- helpers ----------------------------- #
    async def _load(self, client: aioredis.Redis, queue_name: str, job_id: str) -> Optional[JobRecord]:
        raw = await client.get(self._job_key(queue_name, job_id))
        if raw is None:
            return None
        return JobRecord.from_json(raw)

    async def _promote_delayed(self, client: aioredis.Redis, queue_name: str) -> None:
        delayed_key = self._key(queue_name, "delayed")
        ready = await client.zrangebyscore(delayed_key, 0, time.time())
        for job_id in ready or []:
            job_str = job_id.decode("utf-8") if isinstance(job_id, bytes) else str(job_id)
            # Only the caller that removes the member promotes it.
            if await client.zrem(delayed_key, job_str):
                await client.lpush(self._key(queue_name, "wait"), job_str)
        if ready:
            logger.debug("Promoted delayed jobs to wait list", queue=queue_name, count=len(ready))

    async def _retain(
        self,
        client: aioredis.Redis,
        record: JobRecord,
        retention: JobRetention,
        finished_suffix: str,
    ) -> None:
        job_key = self._job_key(record.queue_name, record.id)
        if retention.remove_immediately or retention.age_seconds == 0:
            await client.delete(job_key)
            return
        finished_key = self._key(record.queue_name, finished_suffix)
        now_ts = time.time()
        await client.set(job_key, record.to_json(), ex=retention.age_seconds)
        await client.zadd(finished_key, {record.id: now_ts})
        if retention.age_seconds is not None:
            await client.zremrangebyscore(finished_key, "-inf", now_ts - retention.age_seconds)
        if retention.count is not None:
            overflow = await client.zrange(finished_key, 0, -(retention.count + 1))
            for old in overflow or []:
                old_id = old.decode("utf-8") if isinstance(old, bytes) else str(old)
                await client.delete(self._job_key(record.queue_name, old_id))
                await client.zrem(finished_key, old_id)

    def _safe_int_conversion(self, value: Any) -> int:
        """Safely convert a value to int, handling various Redis response types."""
        if value is None:
            return 0
        try:
            if isinstance(value, bytes):
                value = value.decode('utf-8')
            return int(value)
        except (ValueError, TypeError, AttributeError) as e:
            logger.warning(f"Failed to convert {type(value)} to int", error=str(e))
            return 0

    # ----------------------------- public API ----------------------------- #
    async def enqueue(
        self,
        queue_name: str,
        job_type: str,
        job_id: str,
        payload: Mapping[str, Any],
        policy: RetentionPolicy,
    ) -> EnqueueResult:
        record = JobRecord(
            id=job_id,
            queue_name=queue_name,
            name=job_type,
            data=dict(payload),
            opts=policy.to_job_options(),
        )
        try:
            serialized = record.to_json()
        except (TypeError, ValueError) as e:
            raise JobStoreError(f"Payload is not JSON serializable: {e}") from e

        client = self._client_or_raise()
        job_key = self._job_key(queue_name, job_id)
        try:
            created = await client.set(job_key, serialized, nx=True)
            if not created:
                return EnqueueResult(accepted=True, queue_name=queue_name, job_id=job_id, duplicate=True)
            try:
                await client.lpush(self._key(queue_name, "wait"), job_id)
                await client.sadd(self._queues_key, queue_name)
            except redis.RedisError:
                # Unqueued job key would absorb every redelivery; drop it.
                await client.delete(job_key)
                raise
        except redis.RedisError as e:
            logger.error("Redis error during enqueue", queue=queue_name, job_id=job_id, error=str(e))
            self._is_redis_active = False
            raise JobStoreError(str(e)) from e

        # The job is stored; the depth read below is advisory.
        try:
            depth = await self.depth(queue_name)
        except JobStoreError as e:
            logger.warning("Queue depth check failed after enqueue", queue=queue_name, job_id=job_id, error=str(e))
        else:
            if depth >= self._warn_depth:
                logger.warning("Queue depth warning", queue=queue_name, depth=depth)
        return EnqueueResult(accepted=True, queue_name=queue_name, job_id=job_id)

    async def dequeue(self, queue_name: str) -> Optional[JobRecord]:
        """Lease the next ready job, or None when nothing is ready."""
        client = self._client_or_raise()
        try:
            await self._promote_delayed(client, queue_name)
            while True:
                raw_id = await client.rpop(self._key(queue_name, "wait"))
                if raw_id is None:
                    return None
                job_id = raw_id.decode("utf-8") if isinstance(raw_id, bytes) else str(raw_id)
                record = await self._load(client, queue_name, job_id)
                if record is None:
                    logger.warning("Skipping wait entry without job record", queue=queue_name, job_id=job_id)
                    continue
                record.state = ACTIVE
                record.processed_on = epoch_ms()
                await client.set(self._job_key(queue_name, job_id), record.to_json())
                await client.sadd(self._key(queue_name, "active"), job_id)
                return record
        except redis.RedisError as e:
            logger.error("Redis error during dequeue", queue=queue_name, error=str(e))
            self._is_redis_active = False
            raise JobStoreError(str(e)) from e

    async def _load_active(self, client: aioredis.Redis, queue_name: str, job_id: str) -> JobRecord:
        record = await self._load(client, queue_name, job_id)
        if record is None or record.state != ACTIVE:
            raise JobStoreError(f"Job {job_id} on {queue_name} is not active")
        await client.srem(self._key(queue_name, "active"), job_id)
        return record

    async def complete(self, queue_name: str, job_id: str) -> None:
        client = self._client_or_raise()
        try:
            record = await self._load_active(client, queue_name, job_id)
            record.state = COMPLETED
            record.finished_on = epoch_ms()
            await self._retain(client, record, record.policy.remove_on_complete, "completed")
        except redis.RedisError as e:
            logger.error("Redis error completing job", queue=queue_name, job_id=job_id, error=str(e))
            raise JobStoreError(str(e)) from e

    async def fail(self, queue_name: str, job_id: str, reason: str) -> str:
        """Record a failed attempt. Returns the job's new state (delayed or failed)."""
        client = self._client_or_raise()
        try:
            record = await self._load_active(client, queue_name, job_id)
            policy = record.policy
            record.attempts_made += 1
            record.failed_reason = reason
            if record.attempts_made < policy.attempts:
                record.state = DELAYED
                ready_at = time.time() + policy.delay_for_attempt(record.attempts_made)
                await client.set(self._job_key(queue_name, job_id), record.to_json())
                await client.zadd(self._key(queue_name, "delayed"), {job_id: ready_at})
                return DELAYED
            record.state = FAILED
            record.finished_on = epoch_ms()
            await self._retain(client, record, policy.remove_on_fail, "failed")
            return FAILED
        except redis.RedisError as e:
            logger.error("Redis error failing job", queue=queue_name, job_id=job_id, error=str(e))
            raise JobStoreError(str(e)) from e

    async def get_job(self, queue_name: str, job_id: str) -> Optional[JobRecord]:
        try:
            return await self._load(self._client_or_raise(), queue_name, job_id)
        except redis.RedisError as e:
            raise JobStoreError(str(e)) from e

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def purge(self) -> None:
        """Remove all queued jobs (for testing)."""
        client = self._client_or_raise()
        try:
            for queue_name in await self._queue_names(client):
                keys = [self._key(queue_name, s) for s in ("wait", "delayed", "active", "completed", "failed")]
                async for job_key in client.scan_iter(match=self._job_key(queue_name, "*")):
                    keys.append(job_key)
                await client.delete(*keys)
            await client.delete(self._queues_key)
            logger.info("Redis job store purged")
        except redis.RedisError as e:
            logger.error("Error purging Redis job store", error=str(e))
            raise JobStoreError(str(e)) from e

    # ----------------------------- inspection ----------------------------- #
    async def _queue_names(self, client: aioredis.Redis) -> list[str]:
        members = await client.smembers(self._queues_key)
        return sorted(m.decode("utf-8") if isinstance(m, bytes) else str(m) for m in members or [])

    async def depth(self, queue_name: Optional[str] = None) -> int:
        client = self._client_or_raise()
        try:
            names = [queue_name] if queue_name else await self._queue_names(client)
            total = 0
            for name in names:
                total += self._safe_int_conversion(await client.llen(self._key(name, "wait")))
                total += self._safe_int_conversion(await client.zcard(self._key(name, "delayed")))
            return total
        except redis.RedisError as e:
            logger.error("Error getting queue depth", error=str(e))
            raise JobStoreError(str(e)) from e

    async def snapshot(self) -> dict:
        client = self._client_or_raise()
        try:
            queues = {}
            for name in await self._queue_names(client):
                queues[name] = {
                    "waiting": self._safe_int_conversion(await client.llen(self._key(name, "wait"))),
                    "delayed": self._safe_int_conversion(await client.zcard(self._key(name, "delayed"))),
                    "active": self._safe_int_conversion(await client.scard(self._key(name, "active"))),
                    "completed": self._safe_int_conversion(await client.zcard(self._key(name, "completed"))),
                    "failed": self._safe_int_conversion(await client.zcard(self._key(name, "failed"))),
                }
        except redis.RedisError as e:
            logger.error("Error getting job store snapshot", error=str(e))
            raise JobStoreError(str(e)) from e
        return {"backend": self.backend, "redis_active": self._is_redis_active, "queues": queues}


__all__ = ["RedisJobStore"]
