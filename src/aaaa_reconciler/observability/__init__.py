"""Logging for the reconciler."""

from .logger import LogContext, bind_record_context, configure_logging

__all__ = ["LogContext", "bind_record_context", "configure_logging"]
