"""
Utilities package initialization.
"""
from .logger import audit_event, bind_log_context, get_logger, log_context, reset_log_context, setup_logging

__all__ = ["audit_event", "bind_log_context", "get_logger", "log_context", "reset_log_context", "setup_logging"]
