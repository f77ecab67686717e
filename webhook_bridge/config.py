"""Core bridge configuration & tunable dispatch rules.

Queue names, job types, per-family retention policies, the debounce window and
the per-source field conventions are centralized here so they can be adjusted
without diving into classifier or dispatcher logic. Values are read from the
environment once at import time; tests monkeypatch the dicts directly.
"""
from __future__ import annotations

import os


def _env_bool(name: str, default: bool) -> bool:
	raw = os.getenv(name)
	if raw is None or not raw.strip():
		return default
	return raw.strip().lower() in ("1", "true", "yes", "on")


# Upstash deployments export UPSTASH_REDIS_URL; plain deployments REDIS_URL.
REDIS_URL: str | None = os.getenv("REDIS_URL") or os.getenv("UPSTASH_REDIS_URL") or None

PORT: int = int(os.getenv("PORT", "3000"))

# --------------------------------- Queue ---------------------------------- #
QUEUE_SETTINGS: dict[str, str | int | float | bool] = {
	"use_redis": _env_bool("USE_REDIS", REDIS_URL is not None),
	"redis_url": REDIS_URL or "redis://localhost:6379/0",
	# Managed Redis (rediss://) often presents certificates we cannot verify.
	"redis_tls_verify": _env_bool("REDIS_TLS_VERIFY", False),
	"redis_key_prefix": os.getenv("REDIS_KEY_PREFIX", "bridge"),
	"redis_health_check_timeout": float(os.getenv("REDIS_HEALTH_CHECK_TIMEOUT", "2.0")),
	"warn_depth": 1000,
}

# Family -> queue name. QUEUE_NAME is the historical ERP queue variable.
QUEUE_NAMES: dict[str, str] = {
	"erp_sync": os.getenv("QUEUE_NAME", "bc-events"),
	"rfq": os.getenv("RFQ_QUEUE_NAME", "rfq-events"),
	"email_reply": os.getenv("EMAIL_REPLY_QUEUE_NAME", "email-replies"),
	"quote_ingestion": os.getenv("QUOTE_QUEUE_NAME", "quote-ingestion"),
}

# Family -> job name consumers switch on.
JOB_TYPES: dict[str, str] = {
	"erp_sync": "bc-sync",
	"rfq": "rfq-vendor-quote-approval",
	"email_reply": "email-reply",
	"quote_ingestion": "quote-ingestion",
}

# ------------------------------ Retention --------------------------------- #
# Broker job options per family. Downstream consumers rely on these values.
# removeOn*: True = drop immediately, False = keep forever, dict = age (s) / count.
_DEFAULT_JOB_OPTIONS: dict[str, object] = {
	"attempts": 5,
	"backoff": {"type": "exponential", "delay": 2000},
	"removeOnComplete": True,
	"removeOnFail": False,
}

RETENTION_POLICIES: dict[str, dict[str, object]] = {
	"erp_sync": dict(_DEFAULT_JOB_OPTIONS),
	"rfq": {
		"attempts": 3,
		"backoff": {"type": "exponential", "delay": 1000},
		"removeOnComplete": {"age": 24 * 3600, "count": 500},
		"removeOnFail": {"age": 7 * 24 * 3600, "count": 500},
	},
	# Inherit the queue defaults.
	"email_reply": dict(_DEFAULT_JOB_OPTIONS),
	"quote_ingestion": dict(_DEFAULT_JOB_OPTIONS),
}

# --------------------------------- Backoff -------------------------------- #
BACKOFF_POLICY: dict[str, int | float] = {
	"factor": 2,            # Exponential factor
	"max_seconds": 3600,    # Cap for a single retry delay
}

# -------------------------------- Debounce -------------------------------- #
DEBOUNCE_SETTINGS: dict[str, object] = {
	"enabled": _env_bool("DEBOUNCE_ENABLED", True),
	"window_seconds": float(os.getenv("DEBOUNCE_WINDOW_SECONDS", "10")),
	# Source channels whose events carry a correlation key worth coalescing.
	"sources": ["erp"],
}

# ---------------------------------- ERP ----------------------------------- #
ERP_SETTINGS: dict[str, object] = {
	# Candidate natural identifiers inside `data`, first non-empty wins.
	"business_key_fields": ["No.", "no", "number", "Code", "code", "systemId", "id"],
}

# ---------------------------------- Mail ---------------------------------- #
MAIL_SETTINGS: dict[str, object] = {
	"validation_token_param": "validationToken",
	# Plain-text bodies shorter than this are treated as a handshake token.
	"validation_token_max_length": 200,
	"created_change_type": "created",
	"message_segment": "messages",
}

# --------------------------------- Quotes --------------------------------- #
QUOTE_DEFAULTS: dict[str, object] = {
	"convert_to_order": True,
	"validity_days": 30,
}

__all__ = [
	"REDIS_URL",
	"PORT",
	"QUEUE_SETTINGS",
	"QUEUE_NAMES",
	"JOB_TYPES",
	"RETENTION_POLICIES",
	"BACKOFF_POLICY",
	"DEBOUNCE_SETTINGS",
	"ERP_SETTINGS",
	"MAIL_SETTINGS",
	"QUOTE_DEFAULTS",
]
