"""Address Resolution Strategy.

Turns a declaration into exactly one addressing variant and resolves that
variant against the remote service:

1. Fixed  - the literal address is passed through unchanged.
2. CIDR   - the next available address in (network view, CIDR) is requested;
            the concrete address becomes record state, the CIDR is only
            remembered locally.
3. Filter - a search predicate is built from ``filter_params`` and must match
            exactly one existing record, which is adopted rather than
            allocated.
"""

import json
from dataclasses import dataclass
from ipaddress import IPv6Address, IPv6Network, ip_address
from typing import Any

import structlog

from ..constants import (
    EA_FILTER_PREFIX,
    MSG_ADDRESSING_CONFLICT,
    MSG_ADDRESSING_REQUIRED,
    RECORD_AAAA,
)
from ..gateway.base import RecordGateway
from ..models.addressing import Addressing, CidrAllocation, FilterDiscovery, FixedAddress
from ..models.record import DeclaredRecord, RemoteRecord, parse_json_object
from ..utils.exceptions import (
    AllocationExhausted,
    AmbiguousMatchError,
    NotFoundError,
    ValidationError,
)

logger = structlog.get_logger(__name__)


def address_in_cidr(address: str, cidr: str) -> bool:
    """
    Check whether an IPv6 address belongs to a prefix.

    Args:
        address: IPv6 address
        cidr: IPv6 prefix, host bits allowed

    Returns:
        bool: False for malformed input or IPv4 addresses
    """
    try:
        parsed = ip_address(address)
        network = IPv6Network(cidr, strict=False)
    except ValueError:
        return False
    return isinstance(parsed, IPv6Address) and parsed in network


def parse_filter_params(value: Any) -> dict[str, Any] | None:
    """
    Parse ``filter_params`` given as a mapping or JSON object string.

    Raises:
        ValidationError: If the value is not a JSON object of scalars
    """
    try:
        return parse_json_object(value, "filter_params") or None
    except ValueError as e:
        raise ValidationError(str(e), field="filter_params") from e


def canonical_filter_params(filter_params: dict[str, Any] | None) -> str | None:
    """
    Render filter parameters as compact JSON with sorted keys.

    ``{"*Site": "Blr"}`` becomes ``'{"*Site":"Blr"}'``. Used to store and
    compare filters independently of key order and whitespace.
    """
    if not filter_params:
        return None
    return json.dumps(filter_params, sort_keys=True, separators=(",", ":"))


def _predicate_value(value: Any) -> str:
    if isinstance(value, bool):
        return str(value).lower()
    return str(value)


def build_search_predicate(filter_params: dict[str, Any]) -> dict[str, str]:
    """
    Build a WAPI search predicate from filter parameters.

    Keys starting with ``*`` select an extensible attribute (``*Site`` matches
    the ``Site`` EA); any other key is a core record field (``name``,
    ``view``, ``comment``...). Values are sent as strings.

    Raises:
        ValidationError: For an empty predicate or a bare ``*`` key
    """
    if not filter_params:
        raise ValidationError("'filter_params' must not be empty", field="filter_params")

    predicate: dict[str, str] = {}
    for key, value in filter_params.items():
        if key.startswith(EA_FILTER_PREFIX) and not key[len(EA_FILTER_PREFIX) :].strip():
            raise ValidationError(
                f"'filter_params' key '{key}' does not name an extensible attribute",
                field="filter_params",
            )
        predicate[key] = _predicate_value(value)
    return predicate


def select_mode(declared: DeclaredRecord) -> Addressing:
    """
    Map a declaration to its single addressing variant.

    Raises:
        ValidationError: If none or more than one of ipv6_addr, cidr and
            filter_params is set
    """
    provided = [
        name
        for name, value in (
            ("ipv6_addr", declared.ipv6_addr),
            ("cidr", declared.cidr),
            ("filter_params", declared.filter_params),
        )
        if value
    ]
    if not provided:
        raise ValidationError(MSG_ADDRESSING_REQUIRED)
    if len(provided) > 1:
        raise ValidationError(MSG_ADDRESSING_CONFLICT)

    if declared.ipv6_addr:
        return FixedAddress(address=declared.ipv6_addr)
    if declared.cidr:
        if not declared.network_view:
            raise ValidationError("'network_view' is required with 'cidr'", field="network_view")
        return CidrAllocation(network_view=declared.network_view, cidr=declared.cidr)
    return FilterDiscovery.from_mapping(declared.filter_params or {})


@dataclass
class ResolvedAddress:
    """
    Outcome of address resolution.

    Attributes:
        addressing: The variant that was resolved
        ipv6_addr: Concrete address to write (None when a record was discovered)
        discovered: Existing record matched by a filter
    """

    addressing: Addressing
    ipv6_addr: str | None = None
    discovered: RemoteRecord | None = None


class AddressResolver:
    """Resolve addressing variants against the remote gateway."""

    def __init__(self, gateway: RecordGateway, kind: str = RECORD_AAAA) -> None:
        self.gateway = gateway
        self.kind = kind

    async def resolve(self, addressing: Addressing) -> ResolvedAddress:
        """
        Produce the concrete address (or discovered record) for a variant.

        Raises:
            AllocationExhausted: No address available in the requested CIDR
            NotFoundError: Filter matched nothing
            AmbiguousMatchError: Filter matched more than one record
        """
        if isinstance(addressing, FixedAddress):
            return ResolvedAddress(addressing=addressing, ipv6_addr=addressing.address)
        if isinstance(addressing, CidrAllocation):
            address = await self.allocate(addressing)
            return ResolvedAddress(addressing=addressing, ipv6_addr=address)
        record = await self.discover(addressing)
        return ResolvedAddress(addressing=addressing, ipv6_addr=record.ipv6addr, discovered=record)

    async def allocate(self, allocation: CidrAllocation) -> str:
        """
        Request the next available address in the allocation's network.

        Raises:
            AllocationExhausted: If the gateway has none or returns one outside the CIDR
        """
        address = await self.gateway.allocate_next_address(
            allocation.network_view, allocation.cidr
        )
        if not address or not address_in_cidr(address, allocation.cidr):
            raise AllocationExhausted(
                allocation.network_view,
                allocation.cidr,
                detail=f"gateway returned {address!r}",
            )
        normalized = str(IPv6Address(address))
        logger.info(
            "Allocated address",
            cidr=allocation.cidr,
            network_view=allocation.network_view,
            address=normalized,
        )
        return normalized

    async def discover(self, discovery: FilterDiscovery) -> RemoteRecord:
        """
        Find the single existing record matching a filter.

        Raises:
            NotFoundError: Zero matches
            AmbiguousMatchError: More than one match
        """
        predicate = build_search_predicate(discovery.as_dict())
        matches = await self.gateway.search(self.kind, predicate)
        if not matches:
            raise NotFoundError(self.kind, f"filter {predicate}")
        if len(matches) > 1:
            raise AmbiguousMatchError(self.kind, predicate, len(matches))
        logger.info("Discovered record", predicate=predicate, ref=matches[0].ref)
        return matches[0]
