"""
Request context middleware.

Assigns each inbound request an id (the caller's ``X-Request-ID`` when present),
binds it into the log context for everything the request triggers, and logs
request start / completion with timing.
"""
import time
import uuid
from typing import Mapping

from fastapi import Request

from webhook_bridge.utils import bind_log_context, get_logger, reset_log_context

REQUEST_ID_HEADER = "X-Request-ID"

logger = get_logger(__name__)


def ensure_request_id(headers: Mapping[str, str]) -> str:
    return headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())


async def request_context_middleware(request: Request, call_next):
    request_id = ensure_request_id(request.headers)
    request.state.request_id = request_id
    start_time = time.time()
    token = bind_log_context(request_id=request_id)
    try:
        logger.info(
            "Request started",
            method=request.method,
            path=request.url.path,
            remote_addr=request.client.host if request.client else "unknown",
        )

        response = await call_next(request)

        process_time_ms = round((time.time() - start_time) * 1000, 2)
        response.headers[REQUEST_ID_HEADER] = request_id
        response.headers["X-Process-Time"] = str(process_time_ms)
        logger.info(
            "Request completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            process_time_ms=process_time_ms,
        )
        return response
    finally:
        reset_log_context(token)


__all__ = ["REQUEST_ID_HEADER", "ensure_request_id", "request_context_middleware"]
