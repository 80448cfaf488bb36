"""AAAA Record Reconciler - declarative IPv6 host records for Infoblox-style WAPI."""

from .config import Settings
from .core.reconciler import RecordReconciler

__version__ = "0.1.0"
__all__ = ["RecordReconciler", "Settings"]
