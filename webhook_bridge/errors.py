"""Error taxonomy for the classify -> debounce -> dispatch pipeline.

- ShapeError: required fields absent. Becomes a rejection, never enqueued.
- PartialBatchError: one record of a batch is unusable. Skipped and logged.
- SubmissionError: the job store refused or could not be reached.
- JobStoreError: raised by store backends; the dispatcher wraps it.
"""
from __future__ import annotations

from typing import Iterable


class BridgeError(Exception):
    """Base class for bridge errors."""


class ShapeError(BridgeError):
    def __init__(self, reason: str, missing_fields: Iterable[str] = ()) -> None:
        self.reason = reason
        self.missing_fields = tuple(missing_fields)
        detail = f"{reason}: {', '.join(self.missing_fields)}" if self.missing_fields else reason
        super().__init__(detail)


class PartialBatchError(BridgeError):
    def __init__(self, index: int, reason: str) -> None:
        self.index = index
        self.reason = reason
        super().__init__(f"record {index}: {reason}")


class JobStoreError(BridgeError):
    """Backend could not persist or read a job."""


class SubmissionError(BridgeError):
    def __init__(self, queue_name: str, job_id: str, cause: str) -> None:
        self.queue_name = queue_name
        self.job_id = job_id
        self.cause = cause
        super().__init__(f"Failed to enqueue job {job_id} on {queue_name}: {cause}")


__all__ = [
    "BridgeError",
    "ShapeError",
    "PartialBatchError",
    "JobStoreError",
    "SubmissionError",
]
