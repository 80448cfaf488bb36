"""Remote Record Gateway contract.

The reconciler talks to the remote IPAM/DNS service only through this
protocol. Payloads are WAPI-shaped dicts with a *flat* ``extattrs`` mapping;
implementations translate to and from the wire encoding.

Every method raises from ``aaaa_reconciler.utils.exceptions``:
NotFoundError, AllocationExhausted, TransientGatewayError or GatewayError.
"""

from typing import Any, Protocol, runtime_checkable

from ..models.record import RemoteRecord


@runtime_checkable
class RecordGateway(Protocol):
    """Operations the reconciler needs from the remote service."""

    async def get_by_ref(self, ref: str) -> RemoteRecord:
        """Fetch one object by reference; NotFoundError if it is gone."""
        ...

    async def search(self, kind: str, predicate: dict[str, str]) -> list[RemoteRecord]:
        """Return every object of ``kind`` matching ``predicate`` (possibly none)."""
        ...

    async def create(self, kind: str, payload: dict[str, Any]) -> RemoteRecord:
        """Create an object and return it as stored."""
        ...

    async def update(self, ref: str, payload: dict[str, Any]) -> RemoteRecord:
        """Update the object at ``ref`` and return it as stored (its ref may change)."""
        ...

    async def delete(self, ref: str) -> None:
        """Delete the object at ``ref``; NotFoundError if it is already gone."""
        ...

    async def allocate_next_address(self, network_view: str, cidr: str) -> str:
        """Return the next free address in ``cidr``; AllocationExhausted if none."""
        ...

    async def close(self) -> None:
        """Release connections held by the gateway."""
        ...
