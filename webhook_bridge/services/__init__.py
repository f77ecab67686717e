"""Classification, debounce and dispatch services."""
from .classifier import classify
from .debounce import DebounceCoordinator, PendingDebounce
from .dispatcher import IdempotentDispatcher
from .ingest import IngestResult, IngestService

__all__ = [
    "classify",
    "DebounceCoordinator",
    "PendingDebounce",
    "IdempotentDispatcher",
    "IngestResult",
    "IngestService",
]
