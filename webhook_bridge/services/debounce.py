"""Debounce coordinator: coalesce bursts of same-record events into one dispatch.

Per correlation key at most one timer is armed. A new event for the key cancels
the armed timer, replaces the stored request and restarts the quiescence window.
When the window elapses the stored (latest) request is dispatched as a
fire-and-forget task; the map entry is removed only after that attempt resolves,
and only if the map still holds the same entry.

A same-key event that arrives while a dispatch is in flight starts a fresh,
independent cycle. Pending (un-fired) entries live only in this process: a
restart drops them. The job store is the durable layer, not this map.

``submit`` never awaits, so read-cancel-overwrite of an entry is atomic on the
event loop.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Optional

from webhook_bridge.config import DEBOUNCE_SETTINGS
from webhook_bridge.errors import SubmissionError
from webhook_bridge.models.events import DispatchRequest
from webhook_bridge.services.dispatcher import IdempotentDispatcher
from webhook_bridge.utils import audit_event, get_logger, log_context

logger = get_logger(__name__)


@dataclass(slots=True)
class PendingDebounce:
    key: str
    request: DispatchRequest
    fire_at: float  # loop.time() deadline
    timer: Optional[asyncio.TimerHandle] = None
    superseded: int = 0  # earlier events this entry replaced
    task: Optional[asyncio.Task] = field(default=None, repr=False)

    @property
    def firing(self) -> bool:
        return self.timer is None and self.task is not None


class DebounceCoordinator:
    def __init__(self, dispatcher: IdempotentDispatcher, *, window_seconds: Optional[float] = None) -> None:
        self.dispatcher = dispatcher
        self.window_seconds = float(
            window_seconds if window_seconds is not None else DEBOUNCE_SETTINGS["window_seconds"]  # type: ignore[arg-type]
        )
        if self.window_seconds < 0:
            raise ValueError("window_seconds must be >= 0")
        self._pending: dict[str, PendingDebounce] = {}
        self._in_flight: set[asyncio.Task] = set()
        self.fired_count = 0
        self.failed_count = 0

    # ----------------------------- public API ----------------------------- #
    def submit(self, correlation_key: str, request: DispatchRequest) -> PendingDebounce:
        """Arm (or re-arm) the window for ``correlation_key`` with ``request``.

        Must be called from a running event loop.
        """
        loop = asyncio.get_running_loop()
        superseded = 0
        existing = self._pending.get(correlation_key)
        if existing is not None and existing.timer is not None:
            existing.timer.cancel()
            existing.timer = None
            superseded = existing.superseded + 1
            logger.debug(
                "Debounce window reset",
                key=correlation_key,
                superseded=superseded,
                replaced_job_id=existing.request.dedupe_key,
            )
        elif existing is not None:
            logger.info("Dispatch in flight for key; starting independent debounce cycle", key=correlation_key)

        entry = PendingDebounce(
            key=correlation_key,
            request=request,
            fire_at=loop.time() + self.window_seconds,
            superseded=superseded,
        )
        entry.timer = loop.call_later(self.window_seconds, self._fire, entry)
        self._pending[correlation_key] = entry
        return entry

    def is_pending(self, correlation_key: str) -> bool:
        return correlation_key in self._pending

    def pending_keys(self) -> list[str]:
        return list(self._pending)

    def snapshot(self) -> dict:
        return {
            "window_seconds": self.window_seconds,
            "pending": sum(1 for e in self._pending.values() if e.timer is not None),
            "in_flight": len(self._in_flight),
            "fired": self.fired_count,
            "failed": self.failed_count,
        }

    async def drain(self) -> None:
        """Wait for every dispatch that has already fired."""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    async def shutdown(self) -> int:
        """Drop un-fired windows, then drain in-flight dispatches. Returns the dropped count."""
        dropped = 0
        for key, entry in list(self._pending.items()):
            if entry.timer is not None:
                entry.timer.cancel()
                entry.timer = None
                del self._pending[key]
                dropped += 1
        if dropped:
            audit_event("debounce_dropped", count=dropped)
            logger.warning("Dropped pending debounced dispatches on shutdown", count=dropped)
        await self.drain()
        return dropped

    # ----------------------------- internal ----------------------------- #
    def _fire(self, entry: PendingDebounce) -> None:
        entry.timer = None
        task = asyncio.get_running_loop().create_task(self._run(entry), name=f"debounce:{entry.key}")
        entry.task = task
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def _run(self, entry: PendingDebounce) -> None:
        with log_context(debounce_key=entry.key):
            try:
                result = await self.dispatcher.dispatch(entry.request)
                self.fired_count += 1
                logger.info(
                    "Debounced dispatch fired",
                    job_id=result.job_id,
                    duplicate=result.duplicate,
                    superseded=entry.superseded,
                )
            except SubmissionError as e:
                # No caller to report to; the log is the only channel.
                self.failed_count += 1
                logger.error("Debounced dispatch failed", job_id=entry.request.dedupe_key, error=str(e))
            except Exception as e:
                self.failed_count += 1
                logger.error("Unexpected error in debounced dispatch", error=str(e), exc_info=True)
            finally:
                if self._pending.get(entry.key) is entry:
                    del self._pending[entry.key]


__all__ = ["DebounceCoordinator", "PendingDebounce"]
