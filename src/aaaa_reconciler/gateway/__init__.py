"""Remote Record Gateway: contract and WAPI implementation."""

from .base import RecordGateway
from .client import WAPIClient

__all__ = ["RecordGateway", "WAPIClient"]
