"""Retry delays for the broker's backoff policy. Delays are deterministic."""
from __future__ import annotations

from typing import Optional

from webhook_bridge.config import BACKOFF_POLICY


def compute_backoff_seconds(attempt: int, *, base: float, factor: Optional[int] = None, max_seconds: Optional[float] = None) -> float:
    """Compute exponential backoff delay (base * factor^(attempt-1)), capped at max_seconds."""
    if attempt < 1:
        attempt = 1
    factor = int(factor if factor is not None else BACKOFF_POLICY["factor"])
    max_seconds = float(max_seconds if max_seconds is not None else BACKOFF_POLICY["max_seconds"])

    delay = base * (factor ** (attempt - 1))
    return max(min(delay, max_seconds), 0.0)


def compute_fixed_seconds(base: float, *, max_seconds: Optional[float] = None) -> float:
    max_seconds = float(max_seconds if max_seconds is not None else BACKOFF_POLICY["max_seconds"])
    return max(min(base, max_seconds), 0.0)


__all__ = ["compute_backoff_seconds", "compute_fixed_seconds"]
