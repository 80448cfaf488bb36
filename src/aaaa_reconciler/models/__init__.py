"""Data models for the AAAA record reconciler."""

from .addressing import (
    Addressing,
    AddressingMode,
    CidrAllocation,
    FilterDiscovery,
    FixedAddress,
)
from .record import DeclaredRecord, RemoteRecord, flatten_extattrs, nest_extattrs
from .results import (
    ApplySummary,
    FieldChange,
    PlannedChange,
    ReconcileAction,
    ReconcileResult,
)
from .state import LookupState, RecordState

__all__ = [
    # Addressing
    "Addressing",
    "AddressingMode",
    "CidrAllocation",
    "FilterDiscovery",
    "FixedAddress",
    # Records
    "DeclaredRecord",
    "RemoteRecord",
    "flatten_extattrs",
    "nest_extattrs",
    # State
    "LookupState",
    "RecordState",
    # Results
    "ApplySummary",
    "FieldChange",
    "PlannedChange",
    "ReconcileAction",
    "ReconcileResult",
]
