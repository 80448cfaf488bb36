"""Change planner - compare declarations against tracked state offline.

Determines what apply would do for each record without calling the remote
service.
"""

from typing import Any

import structlog

from ..config import ReconcilerConfig
from ..models.addressing import AddressingMode, CidrAllocation, FilterDiscovery, FixedAddress
from ..models.record import DeclaredRecord
from ..models.results import FieldChange, PlannedChange, ReconcileAction
from ..models.state import RecordState
from ..utils.exceptions import ValidationError
from .addressing import canonical_filter_params
from .reconciler import validate_record

logger = structlog.get_logger(__name__)


class ChangePlanner:
    """
    Compute the action apply would take for every record.

    Decision Matrix:
    - Declared, not tracked -> CREATE
    - Declared and tracked with field differences -> UPDATE
    - Declared and tracked, identical -> NOOP
    - Tracked, not declared -> DELETE (only when pruning)

    A declaration that fails validation is reported with its error and never
    stops planning of the other records.
    """

    def __init__(self, config: ReconcilerConfig | None = None) -> None:
        self.config = config or ReconcilerConfig()

    def plan(
        self,
        declared: dict[str, DeclaredRecord],
        tracked: dict[str, RecordState],
        prune: bool = True,
    ) -> list[PlannedChange]:
        """
        Plan changes for a whole declaration file.

        Args:
            declared: Declared records by name
            tracked: Tracked state by name
            prune: Plan deletion of tracked records that are no longer declared

        Returns:
            One PlannedChange per record, declared records first
        """
        changes = [
            self.plan_record(name, record, tracked.get(name)) for name, record in declared.items()
        ]

        if prune:
            for name, state in tracked.items():
                if name not in declared:
                    changes.append(
                        PlannedChange(
                            name=name,
                            action=ReconcileAction.DELETE,
                            field_changes=[FieldChange("fqdn", state.fqdn, None)],
                        )
                    )

        counts = {action.value: 0 for action in ReconcileAction}
        for change in changes:
            counts[change.action.value] += 1
        logger.info("Plan computed", total=len(changes), **counts)
        return changes

    def plan_record(
        self, name: str, declared: DeclaredRecord, current: RecordState | None
    ) -> PlannedChange:
        """Plan one declared record against its tracked state (if any)."""
        declared = declared.with_defaults(
            dns_view=self.config.default_dns_view,
            network_view=self.config.default_network_view,
        )
        action = ReconcileAction.CREATE if current is None else ReconcileAction.UPDATE
        try:
            addressing = validate_record(
                declared, current, reserved_ext_attrs={self.config.internal_id_ea_name}
            )
        except ValidationError as e:
            logger.debug("Declaration invalid", record=name, error=str(e))
            return PlannedChange(name=name, action=action, error=str(e))

        desired = self._desired_fields(declared, addressing)
        if current is None:
            changes = [FieldChange(k, None, v) for k, v in desired.items() if v not in (None, {})]
            return PlannedChange(name=name, action=ReconcileAction.CREATE, field_changes=changes)

        existing = self._tracked_fields(current)
        changes = [
            FieldChange(key, existing.get(key), value)
            for key, value in desired.items()
            if existing.get(key) != value
        ]
        if not changes:
            return PlannedChange(name=name, action=ReconcileAction.NOOP)
        return PlannedChange(name=name, action=ReconcileAction.UPDATE, field_changes=changes)

    def _desired_fields(self, declared: DeclaredRecord, addressing: Any) -> dict[str, Any]:
        use_ttl = declared.effective_use_ttl
        fields: dict[str, Any] = {
            "fqdn": declared.fqdn,
            "mode": addressing.mode.value,
            "dns_view": declared.dns_view,
            "ttl": declared.ttl if use_ttl else None,
            "use_ttl": use_ttl,
            "comment": declared.comment or None,
            "ext_attrs": dict(declared.ext_attrs),
        }
        if isinstance(addressing, FixedAddress):
            fields["ipv6_addr"] = addressing.address
        elif isinstance(addressing, CidrAllocation):
            fields["network_view"] = addressing.network_view
            fields["cidr"] = addressing.cidr
        elif isinstance(addressing, FilterDiscovery):
            fields["filter_params"] = canonical_filter_params(addressing.as_dict())
        return fields

    def _tracked_fields(self, state: RecordState) -> dict[str, Any]:
        fields = state.to_dict()
        if state.mode != AddressingMode.CIDR:
            fields.pop("network_view")
        return fields
