"""Persistence layer for tracked record state."""

from .state_store import StateStore

__all__ = ["StateStore"]
