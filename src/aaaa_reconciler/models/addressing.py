"""Addressing modes of an AAAA record.

A validated declaration maps to exactly one variant, so code downstream of
validation never has to look at three optional fields again.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any


class AddressingMode(str, Enum):
    """How the address of a record is obtained."""

    FIXED = "fixed"  # Literal address
    CIDR = "cidr"  # Next available address in a network
    FILTER = "filter"  # Adopt an existing record matched by a predicate


@dataclass(frozen=True)
class FixedAddress:
    """Literal IPv6 address passed through unchanged."""

    address: str
    mode: AddressingMode = AddressingMode.FIXED


@dataclass(frozen=True)
class CidrAllocation:
    """Request for the next available address in ``cidr`` inside ``network_view``."""

    network_view: str
    cidr: str
    mode: AddressingMode = AddressingMode.CIDR


@dataclass(frozen=True)
class FilterDiscovery:
    """Read-only predicate selecting one existing record."""

    filter_params: tuple[tuple[str, Any], ...]
    mode: AddressingMode = AddressingMode.FILTER

    @classmethod
    def from_mapping(cls, filter_params: dict[str, Any]) -> "FilterDiscovery":
        return cls(filter_params=tuple(sorted(filter_params.items())))

    def as_dict(self) -> dict[str, Any]:
        return dict(self.filter_params)


Addressing = FixedAddress | CidrAllocation | FilterDiscovery
