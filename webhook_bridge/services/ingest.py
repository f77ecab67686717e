"""Inbound pipeline: classify -> (debounce | dispatch)."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional

from webhook_bridge.config import DEBOUNCE_SETTINGS
from webhook_bridge.models.events import (
    Accepted,
    ClassificationOutcome,
    EnqueueResult,
    InboundEvent,
    NormalizedEvent,
    SourceChannel,
)
from webhook_bridge.services.classifier import classify
from webhook_bridge.services.debounce import DebounceCoordinator
from webhook_bridge.services.dispatcher import IdempotentDispatcher


@dataclass(slots=True)
class IngestResult:
    outcome: ClassificationOutcome
    enqueued: list[EnqueueResult] = field(default_factory=list)
    debounced: list[str] = field(default_factory=list)  # correlation keys armed


class IngestService:
    def __init__(
        self,
        dispatcher: IdempotentDispatcher,
        coordinator: Optional[DebounceCoordinator] = None,
        *,
        debounce_sources: Optional[Iterable[SourceChannel | str]] = None,
    ) -> None:
        self.dispatcher = dispatcher
        self.coordinator = coordinator
        if debounce_sources is None:
            debounce_sources = DEBOUNCE_SETTINGS.get("sources", [])  # type: ignore[assignment]
        self.debounce_sources = {SourceChannel(s) for s in debounce_sources}  # type: ignore[union-attr]

    def _should_debounce(self, normalized: NormalizedEvent) -> bool:
        return (
            self.coordinator is not None
            and normalized.correlation_key is not None
            and normalized.source in self.debounce_sources
        )

    async def ingest(self, event: InboundEvent, *, request_id: Optional[str] = None) -> IngestResult:
        """Classify and route one inbound event.

        Raises SubmissionError when an immediate dispatch fails; debounced
        dispatches report failures through logging only.
        """
        outcome = classify(event)
        result = IngestResult(outcome=outcome)
        if not isinstance(outcome, Accepted):
            return result
        immediate = []
        for normalized in outcome.events:
            if self._should_debounce(normalized):
                self.coordinator.submit(normalized.correlation_key, normalized.request)  # type: ignore[union-attr,arg-type]
                result.debounced.append(normalized.correlation_key)  # type: ignore[arg-type]
            else:
                immediate.append(normalized.request)
        result.enqueued = await self.dispatcher.dispatch_many(immediate, request_id=request_id)
        return result


__all__ = ["IngestService", "IngestResult"]
