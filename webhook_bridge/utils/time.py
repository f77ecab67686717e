"""Time utilities (UTC now, epoch milliseconds for job timestamps)."""
from __future__ import annotations
import time
from datetime import datetime, timezone

def utc_now() -> datetime:
    return datetime.now(timezone.utc)

def epoch_ms(ts: float | None = None) -> int:
    """Epoch milliseconds, the unit job records carry for timestamps."""
    return int((time.time() if ts is None else ts) * 1000)

__all__ = ["utc_now", "epoch_ms"]
