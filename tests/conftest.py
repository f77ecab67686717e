"""Pytest fixtures and factories.

The production app builds its job store and pipeline in the lifespan. Tests bypass
the lifespan (TestClient is used without a context manager) and install an
in-memory pipeline on app.state instead.
"""
import sys
from pathlib import Path
import pytest
from fastapi.testclient import TestClient

# Ensure project root on sys.path so 'webhook_bridge' resolves without an install
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from webhook_bridge.main import app, build_pipeline  # type: ignore
from webhook_bridge.errors import JobStoreError  # type: ignore
from webhook_bridge.jobs.memory_store import InMemoryJobStore  # type: ignore
from webhook_bridge.models.events import DispatchRequest, EnqueueResult, JobFamily  # type: ignore
from webhook_bridge.services.identity import erp_sync_key  # type: ignore


class FakeClock:
    """Manually advanced replacement for time.time."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class UnavailableJobStore(InMemoryJobStore):
    """Store whose broker is unreachable for every submission."""

    async def enqueue(self, queue_name, job_type, job_id, payload, policy) -> EnqueueResult:
        raise JobStoreError("Connection refused")


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def unavailable_store():
    return UnavailableJobStore()


@pytest.fixture()
def job_store():
    return InMemoryJobStore()


@pytest.fixture()
def client(job_store):
    build_pipeline(app, job_store)
    yield TestClient(app)
    for name in ("job_store", "dispatcher", "debounce_coordinator", "ingest_service"):
        setattr(app.state, name, None)


@pytest.fixture()
def client_factory():
    """Build a client over a specific store, optionally with debounce disabled."""
    def _create(store, *, debounce_enabled: bool = True) -> TestClient:
        build_pipeline(app, store, debounce_enabled=debounce_enabled)
        return TestClient(app)
    yield _create
    for name in ("job_store", "dispatcher", "debounce_coordinator", "ingest_service"):
        setattr(app.state, name, None)


# ---------- Data factory helpers ----------

@pytest.fixture()
def erp_payload():
    def _create(no: str = "X1", price: float = 10, *, table: str = "Item", action: str = "update", **extra):
        data = {"No.": no, "price": price, **extra}
        return {"table": table, "action": action, "data": data}
    return _create


@pytest.fixture()
def erp_request(erp_payload):
    def _create(no: str = "X1", price: float = 10) -> DispatchRequest:
        payload = erp_payload(no, price)
        key = erp_sync_key(payload["table"], no, payload["action"], payload["data"])
        return DispatchRequest.for_family(JobFamily.ERP_SYNC, key, payload)
    return _create


@pytest.fixture()
def rfq_approval_payload():
    def _create(**overrides):
        body = {
            "mpRfqId": "RFQ-1001",
            "rfqLineNo": 10000,
            "vendorNo": "V0042",
            "systemId": "5f1e4c2a-0000-4b8e-9a4e-1d2c3b4a5e6f",
            "unitPrice": 12.5,
            "quantity": 4,
        }
        body.update(overrides)
        return body
    return _create


@pytest.fixture()
def mail_record():
    def _create(message_id: str | None = "AAMkAD1", *, change_type: str = "created", resource: str | None = None):
        record = {
            "subscriptionId": "sub-1",
            "changeType": change_type,
            "resource": resource or (f"Users/u-1/Messages/{message_id}" if message_id else "Users/u-1/Messages"),
            "tenantId": "tenant-1",
        }
        if message_id is not None:
            record["resourceData"] = {"@odata.type": "#Microsoft.Graph.Message", "id": message_id}
        return record
    return _create
