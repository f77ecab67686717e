"""Stored job structure shared by the job store backends."""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Optional

from webhook_bridge.models.events import DispatchRequest, RetentionPolicy
from webhook_bridge.utils.time import epoch_ms

WAITING = "waiting"
ACTIVE = "active"
DELAYED = "delayed"
COMPLETED = "completed"
FAILED = "failed"


@dataclass(slots=True)
class JobRecord:
    id: str
    queue_name: str
    name: str
    data: dict[str, Any]
    opts: dict[str, Any]
    state: str = WAITING
    attempts_made: int = 0
    timestamp: int = field(default_factory=epoch_ms)  # epoch ms
    processed_on: Optional[int] = None
    finished_on: Optional[int] = None
    failed_reason: Optional[str] = None

    @property
    def policy(self) -> RetentionPolicy:
        return RetentionPolicy.from_job_options(self.opts)

    @classmethod
    def from_request(cls, request: DispatchRequest, *, now_ms: Optional[int] = None) -> "JobRecord":
        return cls(
            id=request.dedupe_key,
            queue_name=request.queue_name,
            name=request.job_type,
            data=request.payload_dict(),
            opts=request.policy.to_job_options(),
            timestamp=now_ms if now_ms is not None else epoch_ms(),
        )

    def to_json(self) -> str:
        return json.dumps({
            "id": self.id,
            "queueName": self.queue_name,
            "name": self.name,
            "data": self.data,
            "opts": self.opts,
            "state": self.state,
            "attemptsMade": self.attempts_made,
            "timestamp": self.timestamp,
            "processedOn": self.processed_on,
            "finishedOn": self.finished_on,
            "failedReason": self.failed_reason,
        })

    @classmethod
    def from_json(cls, raw: str | bytes) -> "JobRecord":
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        doc = json.loads(raw)
        return cls(
            id=doc["id"],
            queue_name=doc["queueName"],
            name=doc["name"],
            data=doc.get("data") or {},
            opts=doc.get("opts") or {},
            state=doc.get("state", WAITING),
            attempts_made=int(doc.get("attemptsMade", 0)),
            timestamp=int(doc.get("timestamp", 0)),
            processed_on=doc.get("processedOn"),
            finished_on=doc.get("finishedOn"),
            failed_reason=doc.get("failedReason"),
        )


__all__ = ["JobRecord", "WAITING", "ACTIVE", "DELAYED", "COMPLETED", "FAILED"]
