"""Tracked record state and remote lookup states."""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from .addressing import AddressingMode


class LookupState(str, Enum):
    """
    Progress of the two-stage record lookup.

    UNKNOWN -> REFERENCE_VALID                     (found by reference)
    UNKNOWN -> REFERENCE_STALE_LOOKUP_BY_SECONDARY (reference missing or stale)
            -> REFERENCE_VALID                     (found by internal id)
            -> NOT_FOUND                           (neither lookup matched)
    """

    UNKNOWN = "unknown"
    REFERENCE_VALID = "reference_valid"
    REFERENCE_STALE_LOOKUP_BY_SECONDARY = "reference_stale_lookup_by_secondary"
    NOT_FOUND = "not_found"


@dataclass
class RecordState:
    """
    Tracked state of one reconciled record.

    Attributes:
        ref: Opaque WAPI reference of the remote object
        internal_id: Stable local identity, also stored as a reserved EA remotely
        fqdn: Record name
        mode: Addressing mode active when the record was last written
        ipv6_addr: Concrete address (allocated or fixed)
        cidr: Prefix the address was allocated from, remembered for update checks
        filter_params: Discovery predicate, canonical JSON string
        network_view: Network view used for allocation
        dns_view: DNS view the record lives in
        ttl: TTL sent to the remote (None when use_ttl is false)
        use_ttl: Whether the record-level TTL is in effect
        comment: Free-text comment
        ext_attrs: Locally-owned extensible attributes only
    """

    ref: str
    internal_id: str
    fqdn: str
    mode: AddressingMode
    ipv6_addr: str | None = None
    cidr: str | None = None
    filter_params: str | None = None
    network_view: str | None = None
    dns_view: str | None = None
    ttl: int | None = None
    use_ttl: bool = False
    comment: str | None = None
    ext_attrs: dict[str, Any] = field(default_factory=dict)

    def evolve(self, **changes: Any) -> "RecordState":
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert to a plain dictionary for display and persistence.

        Returns:
            dict[str, Any]: All fields, enum values as strings.
        """
        return {
            "ref": self.ref,
            "internal_id": self.internal_id,
            "fqdn": self.fqdn,
            "mode": self.mode.value,
            "ipv6_addr": self.ipv6_addr,
            "cidr": self.cidr,
            "filter_params": self.filter_params,
            "network_view": self.network_view,
            "dns_view": self.dns_view,
            "ttl": self.ttl,
            "use_ttl": self.use_ttl,
            "comment": self.comment,
            "ext_attrs": dict(self.ext_attrs),
        }
