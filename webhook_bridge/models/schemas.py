"""
Response schemas used by the webhook endpoints.
"""
from datetime import datetime
from typing import Optional, Any, Dict, List
from pydantic import BaseModel, Field, ConfigDict

from webhook_bridge.utils.time import utc_now


class ResponseBase(BaseModel):
    """Base response envelope with an optional arbitrary data payload."""
    success: bool = True
    message: Optional[str] = None
    timestamp: datetime = Field(default_factory=utc_now)
    data: Optional[Dict[str, Any]] = None
    request_id: Optional[str] = None

    model_config = ConfigDict(arbitrary_types_allowed=True)


class EnqueuedJob(BaseModel):
    queue: str
    job_id: str
    duplicate: bool = False


class SkippedRecordRead(BaseModel):
    index: int
    reason: str


class WebhookAck(BaseModel):
    """Body of ``data`` for an accepted webhook."""
    status: str = "accepted"
    enqueued: List[EnqueuedJob] = Field(default_factory=list)
    debounced: List[str] = Field(default_factory=list, description="Correlation keys awaiting the quiescence window")
    skipped: List[SkippedRecordRead] = Field(default_factory=list)
    ignored: int = 0


class RejectionResponse(ResponseBase):
    success: bool = False
    missing_fields: List[str] = Field(default_factory=list)
