"""Apply orchestration."""

from .runner import ApplyRunner

__all__ = ["ApplyRunner"]
