"""Plan and result models."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .state import RecordState


class ReconcileAction(str, Enum):
    """What the orchestrator does (or did) for one record."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    NOOP = "noop"


@dataclass
class FieldChange:
    """
    Represents a change to a single field.

    Attributes:
        field_name: Name of the field being changed.
        old_value: The tracked value.
        new_value: The declared value.
    """

    field_name: str
    old_value: Any
    new_value: Any

    def __str__(self) -> str:
        return f"{self.field_name}: {self.old_value} -> {self.new_value}"


@dataclass
class PlannedChange:
    """Offline comparison of one declaration against its tracked state."""

    name: str
    action: ReconcileAction
    field_changes: list[FieldChange] = field(default_factory=list)
    error: str | None = None

    @property
    def valid(self) -> bool:
        return self.error is None


@dataclass
class ReconcileResult:
    """
    Outcome of reconciling one record.

    Attributes:
        name: Record name in the declaration file
        action: Action that was attempted
        success: Whether it completed
        state: Tracked state after the action (None after delete or failure)
        error_message: Error details if failed
        attempts: Number of attempts, including retries of transient errors
        duration_ms: Wall-clock duration
    """

    name: str
    action: ReconcileAction
    success: bool
    state: RecordState | None = None
    error_message: str | None = None
    attempts: int = 1
    duration_ms: float = 0.0


@dataclass
class ApplySummary:
    """Aggregated results of one apply run."""

    results: list[ReconcileResult] = field(default_factory=list)

    @property
    def failed(self) -> list[ReconcileResult]:
        return [r for r in self.results if not r.success]

    @property
    def succeeded(self) -> list[ReconcileResult]:
        return [r for r in self.results if r.success]

    def count(self, action: ReconcileAction) -> int:
        return sum(1 for r in self.results if r.success and r.action == action)
