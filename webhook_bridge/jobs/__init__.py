"""Job store backends (broker adapters)."""
from .job import JobRecord
from .memory_store import InMemoryJobStore
from .store import JobStore, create_job_store

__all__ = ["JobRecord", "InMemoryJobStore", "JobStore", "create_job_store"]
