"""Canonical event, dispatch request and retention policy structures.

Everything here is immutable once built: a DispatchRequest is handed to the job
store as-is and its RetentionPolicy is the contract downstream consumers read
back from the stored job options.
"""
from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional, Union

from webhook_bridge.config import JOB_TYPES, QUEUE_NAMES, RETENTION_POLICIES
from webhook_bridge.utils.backoff import compute_backoff_seconds, compute_fixed_seconds
from webhook_bridge.utils.time import utc_now


class SourceChannel(str, Enum):
    ERP = "erp"
    MAIL = "mail"
    QUOTE = "quote"
    RFQ_APPROVAL = "rfq_approval"


class JobFamily(str, Enum):
    ERP_SYNC = "erp_sync"
    RFQ = "rfq"
    EMAIL_REPLY = "email_reply"
    QUOTE_INGESTION = "quote_ingestion"


# ------------------------------ Retention --------------------------------- #

@dataclass(frozen=True, slots=True)
class JobRetention:
    """How long a finished job stays visible. No limits means kept forever."""
    remove_immediately: bool = False
    age_seconds: Optional[int] = None
    count: Optional[int] = None

    def __post_init__(self) -> None:
        if self.age_seconds is not None and self.age_seconds < 0:
            raise ValueError("retention age must be >= 0")
        if self.count is not None and self.count < 0:
            raise ValueError("retention count must be >= 0")

    @property
    def keeps_forever(self) -> bool:
        return not self.remove_immediately and self.age_seconds is None and self.count is None

    @classmethod
    def from_option(cls, value: Any) -> "JobRetention":
        # Broker convention: True drops, False keeps, int keeps N, dict keeps by age/count.
        if value is True:
            return cls(remove_immediately=True)
        if value is False or value is None:
            return cls()
        if isinstance(value, int):
            return cls(count=value)
        if isinstance(value, Mapping):
            age = value.get("age")
            count = value.get("count")
            return cls(
                age_seconds=int(age) if age is not None else None,
                count=int(count) if count is not None else None,
            )
        raise ValueError(f"Unsupported retention option: {value!r}")

    def to_option(self) -> bool | dict[str, int]:
        if self.remove_immediately:
            return True
        if self.keeps_forever:
            return False
        option: dict[str, int] = {}
        if self.age_seconds is not None:
            option["age"] = self.age_seconds
        if self.count is not None:
            option["count"] = self.count
        return option


@dataclass(frozen=True, slots=True)
class BackoffSpec:
    type: str = "exponential"
    delay_ms: int = 2000

    def __post_init__(self) -> None:
        if self.type not in ("exponential", "fixed"):
            raise ValueError(f"Unknown backoff type '{self.type}'")
        if self.delay_ms < 0:
            raise ValueError("backoff delay must be >= 0")


@dataclass(frozen=True, slots=True)
class RetentionPolicy:
    attempts: int
    backoff: BackoffSpec
    remove_on_complete: JobRetention
    remove_on_fail: JobRetention

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError("attempts must be >= 1")

    def delay_for_attempt(self, attempt: int) -> float:
        """Seconds to wait before retry number ``attempt`` (1-based)."""
        base = self.backoff.delay_ms / 1000.0
        if self.backoff.type == "fixed":
            return compute_fixed_seconds(base)
        return compute_backoff_seconds(attempt, base=base)

    def to_job_options(self) -> dict[str, Any]:
        return {
            "attempts": self.attempts,
            "backoff": {"type": self.backoff.type, "delay": self.backoff.delay_ms},
            "removeOnComplete": self.remove_on_complete.to_option(),
            "removeOnFail": self.remove_on_fail.to_option(),
        }

    @classmethod
    def from_job_options(cls, options: Mapping[str, Any]) -> "RetentionPolicy":
        backoff = options.get("backoff") or {}
        if isinstance(backoff, (int, float)):
            backoff = {"type": "fixed", "delay": backoff}
        return cls(
            attempts=int(options.get("attempts", 1)),
            backoff=BackoffSpec(type=str(backoff.get("type", "exponential")), delay_ms=int(backoff.get("delay", 0))),
            remove_on_complete=JobRetention.from_option(options.get("removeOnComplete", False)),
            remove_on_fail=JobRetention.from_option(options.get("removeOnFail", False)),
        )

    @classmethod
    def for_family(cls, family: JobFamily) -> "RetentionPolicy":
        return cls.from_job_options(RETENTION_POLICIES[family.value])


# ------------------------------- Dispatch --------------------------------- #

@dataclass(frozen=True, slots=True)
class DispatchRequest:
    family: JobFamily
    queue_name: str
    job_type: str
    dedupe_key: str
    payload: Mapping[str, Any]
    policy: RetentionPolicy

    def __post_init__(self) -> None:
        if not self.dedupe_key:
            raise ValueError("dedupe_key must not be empty")
        object.__setattr__(self, "payload", MappingProxyType(copy.deepcopy(dict(self.payload))))

    def payload_dict(self) -> dict[str, Any]:
        """Mutable deep copy for serialization."""
        return copy.deepcopy(dict(self.payload))

    @classmethod
    def for_family(cls, family: JobFamily, dedupe_key: str, payload: Mapping[str, Any]) -> "DispatchRequest":
        return cls(
            family=family,
            queue_name=QUEUE_NAMES[family.value],
            job_type=JOB_TYPES[family.value],
            dedupe_key=dedupe_key,
            payload=payload,
            policy=RetentionPolicy.for_family(family),
        )


@dataclass(frozen=True, slots=True)
class NormalizedEvent:
    source: SourceChannel
    request: DispatchRequest
    correlation_key: Optional[str] = None


@dataclass(frozen=True, slots=True)
class EnqueueResult:
    accepted: bool
    queue_name: str
    job_id: str
    duplicate: bool = False


# ------------------------------- Inbound ---------------------------------- #

@dataclass(frozen=True, slots=True)
class InboundEvent:
    source: SourceChannel
    body: Any
    query_params: Mapping[str, str] = field(default_factory=dict)
    received_at: datetime = field(default_factory=utc_now)


@dataclass(frozen=True, slots=True)
class SkippedRecord:
    index: int
    reason: str


@dataclass(frozen=True, slots=True)
class Accepted:
    events: tuple[NormalizedEvent, ...]
    skipped: tuple[SkippedRecord, ...] = ()
    ignored: int = 0


@dataclass(frozen=True, slots=True)
class Rejected:
    reason: str
    missing_fields: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class Handshake:
    """Echo ``token`` as plain text; nothing is enqueued."""
    token: str


ClassificationOutcome = Union[Accepted, Rejected, Handshake]


__all__ = [
    "SourceChannel",
    "JobFamily",
    "JobRetention",
    "BackoffSpec",
    "RetentionPolicy",
    "DispatchRequest",
    "NormalizedEvent",
    "EnqueueResult",
    "InboundEvent",
    "SkippedRecord",
    "Accepted",
    "Rejected",
    "Handshake",
    "ClassificationOutcome",
]
