"""Webhook bridge package initialization.

Turns ERP change webhooks, mail push notifications and quote webhooks into
deduplicated jobs on a durable queue.
"""

__version__ = "1.0.0"

__all__: list[str] = ["__version__"]
