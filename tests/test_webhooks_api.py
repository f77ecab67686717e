import asyncio

from fastapi.testclient import TestClient

from webhook_bridge.config import QUEUE_NAMES
from webhook_bridge.main import app

ERP_URL = "/api/v1/webhooks/erp"
MAIL_URL = "/api/v1/webhooks/mail"
QUOTES_URL = "/api/v1/webhooks/quotes"
RFQ_URL = "/api/v1/webhooks/rfq-approvals"


def _ack(response):
    body = response.json()
    assert body["success"] is True
    return body["data"]


# ---------------------------------- ERP ----------------------------------- #

def test_erp_event_is_debounced(client, job_store, erp_payload):
    r = client.post(ERP_URL, json=erp_payload("X1", 10))
    assert r.status_code == 202
    ack = _ack(r)
    assert ack["debounced"] == ["Item:X1"]
    assert ack["enqueued"] == []
    assert app.state.debounce_coordinator.is_pending("Item:X1")
    assert asyncio.run(job_store.depth()) == 0


def test_erp_burst_keeps_single_pending_entry(client, erp_payload):
    for price in (10, 11, 12):
        assert client.post(ERP_URL, json=erp_payload("X1", price)).status_code == 202
    coordinator = app.state.debounce_coordinator
    assert coordinator.pending_keys() == ["Item:X1"]
    assert coordinator._pending["Item:X1"].request.payload["data"]["price"] == 12


def test_erp_event_dispatched_when_debounce_disabled(client_factory, job_store, erp_payload):
    client = client_factory(job_store, debounce_enabled=False)
    r = client.post(ERP_URL, json=erp_payload("X1", 10))
    assert r.status_code == 202
    enqueued = _ack(r)["enqueued"]
    assert len(enqueued) == 1
    assert enqueued[0]["queue"] == QUEUE_NAMES["erp_sync"]
    assert enqueued[0]["job_id"].startswith("erp-sync-Item-X1-")
    again = client.post(ERP_URL, json=erp_payload("X1", 10))
    assert _ack(again)["enqueued"][0]["duplicate"] is True


def test_erp_missing_fields_rejected(client, erp_payload):
    body = erp_payload()
    del body["data"]
    r = client.post(ERP_URL, json=body)
    assert r.status_code == 400
    payload = r.json()
    assert payload["success"] is False
    assert payload["message"] == "invalid payload shape"
    assert payload["missing_fields"] == ["data"]


def test_erp_non_json_body_rejected(client):
    r = client.post(ERP_URL, content=b"hello", headers={"Content-Type": "text/plain"})
    assert r.status_code == 400


def test_broker_unavailable_returns_500(client_factory, unavailable_store, erp_payload):
    client = client_factory(unavailable_store, debounce_enabled=False)
    r = client.post(ERP_URL, json=erp_payload("X1", 10))
    assert r.status_code == 500
    assert r.json()["success"] is False
    assert r.json()["message"] == "Failed to enqueue job"


def test_legacy_erp_path(client, erp_payload):
    r = client.post("/webhook", json=erp_payload("X9", 1))
    assert r.status_code == 202
    assert _ack(r)["debounced"] == ["Item:X9"]


# ---------------------------------- Mail ---------------------------------- #

def test_mail_handshake_via_query(client, job_store):
    r = client.get(MAIL_URL, params={"validationToken": "Validation: Token 123"})
    assert r.status_code == 200
    assert r.text == "Validation: Token 123"
    assert r.headers["content-type"].startswith("text/plain")
    r = client.post(MAIL_URL, params={"validationToken": "abc"})
    assert r.status_code == 200
    assert r.text == "abc"
    assert asyncio.run(job_store.depth()) == 0


def test_mail_handshake_via_text_body(client):
    r = client.post(MAIL_URL, content=b"token-42", headers={"Content-Type": "text/plain"})
    assert r.status_code == 200
    assert r.text == "token-42"


def test_mail_batch_skips_bad_record(client, job_store, mail_record):
    body = {"value": [mail_record("m-1"), mail_record(None), mail_record("m-3")]}
    r = client.post(MAIL_URL, json=body)
    assert r.status_code == 202
    ack = _ack(r)
    assert [j["job_id"] for j in ack["enqueued"]] == ["email-reply-m%2D1", "email-reply-m%2D3"]
    assert ack["skipped"] == [{"index": 1, "reason": "missing message id"}]
    assert ack["debounced"] == []
    assert asyncio.run(job_store.depth(QUEUE_NAMES["email_reply"])) == 2


def test_mail_redelivery_is_absorbed(client, job_store, mail_record):
    body = {"value": [mail_record("m-1")]}
    client.post(MAIL_URL, json=body)
    r = client.post(MAIL_URL, json=body)
    assert _ack(r)["enqueued"][0]["duplicate"] is True
    assert asyncio.run(job_store.depth()) == 1


def test_mail_non_created_notifications_ignored(client, job_store, mail_record):
    r = client.post(MAIL_URL, json={"value": [mail_record("m-1", change_type="updated")]})
    assert r.status_code == 202
    ack = _ack(r)
    assert ack["enqueued"] == []
    assert ack["ignored"] == 1
    assert asyncio.run(job_store.depth()) == 0


def test_mail_body_without_records_rejected(client):
    r = client.post(MAIL_URL, json={"something": "else"})
    assert r.status_code == 400
    assert r.json()["missing_fields"] == ["value"]


# --------------------------------- Quotes --------------------------------- #

def test_quote_ingestion_enqueued_with_defaults(client, job_store):
    r = client.post(QUOTES_URL, json={"quoteNumber": "SQ-1001", "opportunityId": "OPP-7"})
    assert r.status_code == 202
    job_id = _ack(r)["enqueued"][0]["job_id"]
    job = asyncio.run(job_store.get_job(QUEUE_NAMES["quote_ingestion"], job_id))
    assert job.data["convertToOrder"] is True
    assert job.data["validityDays"] == 30
    assert job.name == "quote-ingestion"


def test_rfq_approval_missing_fields(client, rfq_approval_payload):
    body = rfq_approval_payload()
    del body["mpRfqId"]
    r = client.post(RFQ_URL, json=body)
    assert r.status_code == 400
    assert r.json()["missing_fields"] == ["mpRfqId"]
    assert r.json()["message"] == "missing required fields"


def test_rfq_approval_duplicate_creates_one_job(client, job_store, rfq_approval_payload):
    first = client.post(RFQ_URL, json=rfq_approval_payload())
    second = client.post(RFQ_URL, json=rfq_approval_payload(rfqLineNo="10000"))
    assert first.status_code == second.status_code == 202
    first_job = _ack(first)["enqueued"][0]
    second_job = _ack(second)["enqueued"][0]
    assert first_job["job_id"] == second_job["job_id"]
    assert second_job["duplicate"] is True
    job = asyncio.run(job_store.get_job(QUEUE_NAMES["rfq"], first_job["job_id"]))
    assert job.name == "rfq-vendor-quote-approval"
    assert job.opts["attempts"] == 3
    assert job.opts["removeOnFail"] == {"age": 604800, "count": 500}
    assert job.data["lineAmount"] == 50.0


# --------------------------- Health / inspection --------------------------- #

def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"
    assert r.json()["queue_backend"] == "memory"


def test_detailed_health(client):
    r = client.get("/health/detailed")
    assert r.status_code == 200
    checks = r.json()["checks"]
    assert checks["job_store"] == {"backend": "memory", "healthy": True}
    assert checks["debounce"]["pending"] == 0


def test_detailed_health_degraded_when_store_closed(client, job_store):
    asyncio.run(job_store.close())
    r = client.get("/health/detailed")
    assert r.status_code == 503
    assert r.json()["status"] == "degraded"


def test_queue_snapshot(client, erp_payload, mail_record):
    client.post(ERP_URL, json=erp_payload("X1", 10))
    client.post(MAIL_URL, json={"value": [mail_record("m-1")]})
    r = client.get("/api/v1/queues/")
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["store"]["backend"] == "memory"
    assert data["store"]["queues"][QUEUE_NAMES["email_reply"]]["waiting"] == 1
    assert data["debounce"]["pending"] == 1


def test_request_id_echoed(client, erp_payload):
    r = client.post(ERP_URL, json=erp_payload(), headers={"X-Request-ID": "req-123"})
    assert r.headers["X-Request-ID"] == "req-123"
    assert r.json()["request_id"] == "req-123"


def test_pipeline_not_initialized_returns_503(erp_payload):
    for name in ("job_store", "dispatcher", "debounce_coordinator", "ingest_service"):
        setattr(app.state, name, None)
    r = TestClient(app).post(ERP_URL, json=erp_payload())
    assert r.status_code == 503
    assert r.json()["success"] is False
