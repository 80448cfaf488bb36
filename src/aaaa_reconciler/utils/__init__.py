"""Utility functions and exceptions."""

from .exceptions import (
    AllocationExhausted,
    AmbiguousMatchError,
    GatewayAuthenticationError,
    GatewayError,
    NotFoundError,
    ReconcilerError,
    SchemaValidationError,
    TransientGatewayError,
    ValidationError,
    ViewUpdateNotAllowedError,
)

__all__ = [
    "ReconcilerError",
    "ValidationError",
    "SchemaValidationError",
    "ViewUpdateNotAllowedError",
    "NotFoundError",
    "AmbiguousMatchError",
    "AllocationExhausted",
    "GatewayError",
    "TransientGatewayError",
    "GatewayAuthenticationError",
]
