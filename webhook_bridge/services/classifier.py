"""Source classifier: raw inbound body -> normalized dispatch tuples.

``classify`` never raises for malformed input. Every channel maps to exactly one
classifier function and one pydantic shape; the outcome is one of:

- ``Accepted``  - zero or more NormalizedEvents (plus skipped/ignored counts for batches)
- ``Rejected``  - shape error with the offending field names
- ``Handshake`` - mail-platform validation token to echo back; nothing is enqueued
"""
from __future__ import annotations

import json
import re
from typing import Any, Callable, Mapping, Optional

from pydantic import BaseModel, ValidationError

from webhook_bridge.config import ERP_SETTINGS, MAIL_SETTINGS
from webhook_bridge.errors import PartialBatchError, ShapeError
from webhook_bridge.models.events import (
    Accepted,
    ClassificationOutcome,
    DispatchRequest,
    Handshake,
    InboundEvent,
    JobFamily,
    NormalizedEvent,
    Rejected,
    SkippedRecord,
    SourceChannel,
)
from webhook_bridge.models.sources import (
    ErpChangeEvent,
    MailNotificationRecord,
    QuoteIngestionEvent,
    VendorQuoteApprovalEvent,
    required_fields,
)
from webhook_bridge.services.identity import (
    email_reply_key,
    erp_correlation_key,
    erp_sync_key,
    quote_ingestion_key,
    rfq_approval_key,
)
from webhook_bridge.utils import get_logger

logger = get_logger(__name__)

INVALID_SHAPE = "invalid payload shape"
MISSING_IDENTIFIER = "missing identifying field"
MISSING_REQUIRED = "missing required fields"

# Matches ".../messages/<id>" and ".../Messages('<id>')".
_MESSAGE_RESOURCE = re.compile(r"(?:^|/)messages(?:/(?P<path_id>[^/?]+)|\('(?P<quoted_id>[^']+)'\))?(?=$|[/?])", re.IGNORECASE)


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _validate(model: type[BaseModel], body: Any, *, missing_reason: str = MISSING_REQUIRED) -> Any:
    if not isinstance(body, Mapping):
        raise ShapeError(INVALID_SHAPE)
    missing = [name for name in required_fields(model) if _is_blank(body.get(name))]
    if missing:
        raise ShapeError(missing_reason, missing)
    try:
        return model.model_validate(dict(body))
    except ValidationError as exc:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in exc.errors() if err["loc"]})
        raise ShapeError(INVALID_SHAPE, fields) from exc


# ---------------------------------- ERP ----------------------------------- #

def _erp_business_key(data: Mapping[str, Any]) -> Optional[str]:
    for field_name in ERP_SETTINGS["business_key_fields"]:  # type: ignore[union-attr]
        value = data.get(field_name)
        if isinstance(value, bool) or _is_blank(value) or isinstance(value, (dict, list)):
            continue
        return str(value).strip()
    return None


def _classify_erp(event: InboundEvent) -> ClassificationOutcome:
    change: ErpChangeEvent = _validate(ErpChangeEvent, event.body, missing_reason=INVALID_SHAPE)
    business_key = _erp_business_key(change.data)
    if business_key is None:
        raise ShapeError(MISSING_IDENTIFIER, [f"data.{f}" for f in ERP_SETTINGS["business_key_fields"]])  # type: ignore[union-attr]
    request = DispatchRequest.for_family(
        JobFamily.ERP_SYNC,
        erp_sync_key(change.table, business_key, change.action, change.data),
        dict(event.body),
    )
    return Accepted(events=(
        NormalizedEvent(
            source=SourceChannel.ERP,
            request=request,
            correlation_key=erp_correlation_key(change.table, business_key),
        ),
    ))


# ---------------------------------- Mail ---------------------------------- #

def _validation_token(event: InboundEvent) -> Optional[str]:
    token = event.query_params.get(str(MAIL_SETTINGS["validation_token_param"]))
    if token:
        return token
    body = event.body
    if isinstance(body, bytes):
        body = body.decode("utf-8", errors="replace")
    if not isinstance(body, str) or not body.strip():
        return None
    try:
        json.loads(body)
    except ValueError:
        if len(body) < int(MAIL_SETTINGS["validation_token_max_length"]):  # type: ignore[arg-type]
            return body
    return None


def _notification_records(body: Any) -> list[Any]:
    if isinstance(body, (str, bytes)):
        try:
            body = json.loads(body)
        except ValueError:
            raise ShapeError(INVALID_SHAPE, ["value"]) from None
    if isinstance(body, Mapping) and isinstance(body.get("value"), list):
        return list(body["value"])
    if isinstance(body, list):
        return body
    raise ShapeError(INVALID_SHAPE, ["value"])


def _message_id(record: MailNotificationRecord) -> Optional[str]:
    resource_data = record.resourceData or {}
    candidate = resource_data.get("id")
    if isinstance(candidate, str) and candidate.strip():
        return candidate.strip()
    match = _MESSAGE_RESOURCE.search(record.resource)
    if match:
        return match.group("path_id") or match.group("quoted_id")
    return None


def _classify_mail_record(index: int, raw: Any) -> Optional[NormalizedEvent]:
    """Returns None for records that are valid but not dispatch-worthy."""
    if not isinstance(raw, Mapping):
        raise PartialBatchError(index, "record is not an object")
    try:
        record = MailNotificationRecord.model_validate(dict(raw))
    except ValidationError as exc:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in exc.errors() if err["loc"]})
        raise PartialBatchError(index, f"invalid record: {', '.join(fields)}") from exc

    is_message = _MESSAGE_RESOURCE.search(record.resource) is not None
    if record.changeType.strip().lower() != MAIL_SETTINGS["created_change_type"] or not is_message:
        return None

    message_id = _message_id(record)
    if not message_id:
        raise PartialBatchError(index, "missing message id")

    payload = record.model_dump(exclude_none=True)
    payload["messageId"] = message_id
    return NormalizedEvent(
        source=SourceChannel.MAIL,
        request=DispatchRequest.for_family(JobFamily.EMAIL_REPLY, email_reply_key(message_id), payload),
    )


def _classify_mail(event: InboundEvent) -> ClassificationOutcome:
    token = _validation_token(event)
    if token is not None:
        return Handshake(token=token)

    records = _notification_records(event.body)
    events: list[NormalizedEvent] = []
    skipped: list[SkippedRecord] = []
    ignored = 0
    seen: set[str] = set()
    for index, raw in enumerate(records):
        try:
            normalized = _classify_mail_record(index, raw)
        except PartialBatchError as exc:
            logger.warning("Skipping notification record", index=exc.index, reason=exc.reason)
            skipped.append(SkippedRecord(index=exc.index, reason=exc.reason))
            continue
        if normalized is None:
            ignored += 1
            continue
        if normalized.request.dedupe_key in seen:
            logger.debug("Duplicate notification in batch", index=index, job_id=normalized.request.dedupe_key)
            ignored += 1
            continue
        seen.add(normalized.request.dedupe_key)
        events.append(normalized)

    logger.info(
        "Notification batch classified",
        records=len(records),
        dispatchable=len(events),
        skipped=len(skipped),
        ignored=ignored,
    )
    return Accepted(events=tuple(events), skipped=tuple(skipped), ignored=ignored)


# --------------------------------- Quotes --------------------------------- #

def _classify_quote(event: InboundEvent) -> ClassificationOutcome:
    quote: QuoteIngestionEvent = _validate(QuoteIngestionEvent, event.body)
    request = DispatchRequest.for_family(
        JobFamily.QUOTE_INGESTION,
        quote_ingestion_key(quote.quoteNumber, quote.opportunityId),
        quote.model_dump(),
    )
    return Accepted(events=(NormalizedEvent(source=SourceChannel.QUOTE, request=request),))


def _classify_rfq_approval(event: InboundEvent) -> ClassificationOutcome:
    approval: VendorQuoteApprovalEvent = _validate(VendorQuoteApprovalEvent, event.body)
    request = DispatchRequest.for_family(
        JobFamily.RFQ,
        rfq_approval_key(approval.mpRfqId, approval.rfqLineNo, approval.vendorNo, approval.systemId),
        approval.model_dump(),
    )
    return Accepted(events=(NormalizedEvent(source=SourceChannel.RFQ_APPROVAL, request=request),))


_CLASSIFIERS: dict[SourceChannel, Callable[[InboundEvent], ClassificationOutcome]] = {
    SourceChannel.ERP: _classify_erp,
    SourceChannel.MAIL: _classify_mail,
    SourceChannel.QUOTE: _classify_quote,
    SourceChannel.RFQ_APPROVAL: _classify_rfq_approval,
}

_unhandled = set(SourceChannel) - set(_CLASSIFIERS)
if _unhandled:  # pragma: no cover
    raise RuntimeError(f"No classifier registered for: {sorted(c.value for c in _unhandled)}")


def classify(event: InboundEvent) -> ClassificationOutcome:
    """Classify one inbound event. Malformed input yields ``Rejected``, never an exception."""
    try:
        return _CLASSIFIERS[event.source](event)
    except ShapeError as exc:
        logger.warning(
            "Inbound event rejected",
            source=event.source.value,
            reason=exc.reason,
            missing_fields=list(exc.missing_fields) or None,
        )
        return Rejected(reason=exc.reason, missing_fields=exc.missing_fields)


__all__ = ["classify", "INVALID_SHAPE", "MISSING_IDENTIFIER", "MISSING_REQUIRED"]
