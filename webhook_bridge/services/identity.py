"""Deterministic job identities and correlation keys.

A dedupe key is the broker's job id: ``<family-prefix>-<part>[-<part>...]``.
Parts are percent-encoded (including '-') so that different identity tuples can
never collapse onto the same key, and equal tuples always produce byte-equal keys.
"""
from __future__ import annotations

import hashlib
import json
from typing import Any, Mapping
from urllib.parse import quote

ERP_SYNC_PREFIX = "erp-sync"
EMAIL_REPLY_PREFIX = "email-reply"
QUOTE_INGESTION_PREFIX = "quote-ingestion"
RFQ_APPROVAL_PREFIX = "rfq-approval"


def _encode_part(value: Any) -> str:
    text = str(value).strip()
    if not text:
        raise ValueError("identity parts must not be empty")
    return quote(text, safe="._~").replace("-", "%2D")


def dedupe_key(prefix: str, *parts: Any) -> str:
    if not parts:
        raise ValueError("at least one identity part is required")
    return "-".join([prefix, *(_encode_part(p) for p in parts)])


def content_digest(value: Any, *, length: int = 16) -> str:
    """Short hash of a JSON value, independent of key order."""
    canonical = json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:length]


def erp_correlation_key(table: str, business_key: Any) -> str:
    return f"{str(table).strip()}:{str(business_key).strip()}"


def erp_sync_key(table: str, business_key: Any, action: str, data: Mapping[str, Any]) -> str:
    # Same record + same action + same field values = same change, redelivered.
    return dedupe_key(ERP_SYNC_PREFIX, table, business_key, content_digest({"action": action, "data": data}))


def email_reply_key(message_id: str) -> str:
    return dedupe_key(EMAIL_REPLY_PREFIX, message_id)


def quote_ingestion_key(quote_number: str, opportunity_id: str) -> str:
    return dedupe_key(QUOTE_INGESTION_PREFIX, quote_number, opportunity_id)


def rfq_approval_key(mp_rfq_id: str, rfq_line_no: str, vendor_no: str, system_id: str) -> str:
    return dedupe_key(RFQ_APPROVAL_PREFIX, mp_rfq_id, rfq_line_no, vendor_no, system_id)


__all__ = [
    "dedupe_key",
    "content_digest",
    "erp_correlation_key",
    "erp_sync_key",
    "email_reply_key",
    "quote_ingestion_key",
    "rfq_approval_key",
]
