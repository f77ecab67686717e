"""Domain structures (events, dispatch requests, policies) and inbound source shapes."""
from .events import (
    Accepted,
    BackoffSpec,
    ClassificationOutcome,
    DispatchRequest,
    EnqueueResult,
    Handshake,
    InboundEvent,
    JobFamily,
    JobRetention,
    NormalizedEvent,
    Rejected,
    RetentionPolicy,
    SkippedRecord,
    SourceChannel,
)

__all__ = [
    "Accepted",
    "BackoffSpec",
    "ClassificationOutcome",
    "DispatchRequest",
    "EnqueueResult",
    "Handshake",
    "InboundEvent",
    "JobFamily",
    "JobRetention",
    "NormalizedEvent",
    "Rejected",
    "RetentionPolicy",
    "SkippedRecord",
    "SourceChannel",
]
