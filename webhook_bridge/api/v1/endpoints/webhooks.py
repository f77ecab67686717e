"""
Inbound webhook endpoints.
Each route tags the raw body with its source channel and hands it to the ingest
pipeline; the HTTP layer only maps pipeline outcomes to status codes:

  Handshake -> 200 text/plain echo of the validation token
  Rejected  -> 400 with the missing / invalid field names
  Accepted  -> 202 with enqueued job ids, debounced keys and skipped records
  SubmissionError -> 500
"""
import json
from typing import Any

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import JSONResponse, PlainTextResponse

from webhook_bridge.api.deps import get_ingest_service
from webhook_bridge.errors import SubmissionError
from webhook_bridge.models.events import Accepted, Handshake, InboundEvent, Rejected, SourceChannel
from webhook_bridge.models.schemas import (
    EnqueuedJob,
    RejectionResponse,
    ResponseBase,
    SkippedRecordRead,
    WebhookAck,
)
from webhook_bridge.services.ingest import IngestResult, IngestService
from webhook_bridge.utils import get_logger
from webhook_bridge.middleware import ensure_request_id

router = APIRouter()
logger = get_logger(__name__)


async def _read_body(request: Request) -> Any:
    """JSON when it parses, otherwise the decoded text (validation tokens arrive as text)."""
    raw = await request.body()
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return raw.decode("utf-8", errors="replace")


def _accepted(result: IngestResult, outcome: Accepted, request_id: str) -> JSONResponse:
    ack = WebhookAck(
        enqueued=[EnqueuedJob(queue=r.queue_name, job_id=r.job_id, duplicate=r.duplicate) for r in result.enqueued],
        debounced=result.debounced,
        skipped=[SkippedRecordRead(index=s.index, reason=s.reason) for s in outcome.skipped],
        ignored=outcome.ignored,
    )
    body = ResponseBase(message="accepted", data=ack.model_dump(), request_id=request_id)
    return JSONResponse(status_code=status.HTTP_202_ACCEPTED, content=body.model_dump(mode="json"))


def _rejected(outcome: Rejected, request_id: str) -> JSONResponse:
    body = RejectionResponse(message=outcome.reason, missing_fields=list(outcome.missing_fields), request_id=request_id)
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=body.model_dump(mode="json"))


async def handle_webhook(source: SourceChannel, request: Request, ingest: IngestService) -> Response:
    request_id = getattr(request.state, "request_id", None) or ensure_request_id(request.headers)
    event = InboundEvent(
        source=source,
        body=await _read_body(request),
        query_params=dict(request.query_params),
    )

    try:
        result = await ingest.ingest(event, request_id=request_id)
    except SubmissionError as e:
        logger.error("Webhook submission failed", source=source.value, error=str(e), request_id=request_id)
        body = ResponseBase(success=False, message="Failed to enqueue job", request_id=request_id)
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=body.model_dump(mode="json"))

    outcome = result.outcome
    if isinstance(outcome, Handshake):
        logger.info("Validation handshake echoed", source=source.value, request_id=request_id)
        return PlainTextResponse(outcome.token, status_code=status.HTTP_200_OK)
    if isinstance(outcome, Rejected):
        return _rejected(outcome, request_id)
    if isinstance(outcome, Accepted):
        logger.info(
            "Webhook accepted",
            source=source.value,
            enqueued=len(result.enqueued),
            debounced=len(result.debounced),
            skipped=len(outcome.skipped),
            request_id=request_id,
        )
        return _accepted(result, outcome, request_id)
    raise TypeError(f"Unhandled classification outcome: {type(outcome).__name__}")


@router.post(
    "/erp",
    status_code=status.HTTP_202_ACCEPTED,
    summary="ERP record-change webhook",
    description="Accepts {table, action, data}; bursts for the same record are debounced",
)
async def erp_webhook(request: Request, ingest: IngestService = Depends(get_ingest_service)) -> Response:
    return await handle_webhook(SourceChannel.ERP, request, ingest)


@router.api_route(
    "/mail",
    methods=["GET", "POST"],
    status_code=status.HTTP_202_ACCEPTED,
    summary="Mail-platform push notifications",
    description="Echoes validationToken handshakes; enqueues one job per newly created message",
)
async def mail_webhook(request: Request, ingest: IngestService = Depends(get_ingest_service)) -> Response:
    return await handle_webhook(SourceChannel.MAIL, request, ingest)


@router.post(
    "/quotes",
    status_code=status.HTTP_202_ACCEPTED,
    summary="Quote ingestion webhook",
)
async def quote_webhook(request: Request, ingest: IngestService = Depends(get_ingest_service)) -> Response:
    return await handle_webhook(SourceChannel.QUOTE, request, ingest)


@router.post(
    "/rfq-approvals",
    status_code=status.HTTP_202_ACCEPTED,
    summary="Vendor quote approval webhook",
)
async def rfq_approval_webhook(request: Request, ingest: IngestService = Depends(get_ingest_service)) -> Response:
    return await handle_webhook(SourceChannel.RFQ_APPROVAL, request, ingest)
