"""Record Reconciler - create, read, update and delete AAAA records.

Orchestrates one record at a time against the remote gateway:

    validate -> resolve address -> write -> merge EAs -> tracked state

Safety Rules:
- Exactly one addressing input; address <-> CIDR switches are rejected.
- DNS view and network view are fixed at creation.
- A new CIDR releases the old address (delete) before allocating again, so the
  remote never holds two claims for the same record.
- Extensible attributes the last declaration did not own are always written
  back untouched.
- Errors are never retried here; they leave with ``fqdn`` and ``operation``
  attached.
"""

import uuid
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

import structlog

from ..config import ReconcilerConfig
from ..constants import MSG_ADDRESSING_UPDATE_CONFLICT, RECORD_AAAA
from ..gateway.base import RecordGateway
from ..models.addressing import (
    Addressing,
    AddressingMode,
    CidrAllocation,
    FilterDiscovery,
    FixedAddress,
)
from ..models.record import DeclaredRecord, RemoteRecord
from ..models.state import RecordState
from ..observability.logger import bind_record_context
from ..utils.exceptions import (
    NotFoundError,
    ReconcilerError,
    ValidationError,
    ViewUpdateNotAllowedError,
)
from .addressing import (
    AddressResolver,
    address_in_cidr,
    canonical_filter_params,
    select_mode,
)
from .ea_merge import AttributeMerger
from .locator import RecordLocator

logger = structlog.get_logger(__name__)


def new_internal_id() -> str:
    """Generate a fresh internal correlation id."""
    return str(uuid.uuid4())


def validate_record(
    declared: DeclaredRecord,
    current: RecordState | None = None,
    reserved_ext_attrs: Iterable[str] = (),
) -> Addressing:
    """
    Validate a declaration whose default views are already filled in.

    On update the address/CIDR switch check runs first, so re-declaring both
    inputs after an allocation reports the update conflict. Attributes named
    in ``reserved_ext_attrs`` may not be declared.
    """
    for key in reserved_ext_attrs:
        if key in declared.ext_attrs:
            raise ValidationError(
                f"'ext_attrs' must not set the reserved attribute '{key}'", field="ext_attrs"
            )

    if current is not None:
        switching_to_cidr = current.mode == AddressingMode.FIXED and declared.cidr
        switching_to_fixed = current.mode == AddressingMode.CIDR and declared.ipv6_addr
        if switching_to_cidr or switching_to_fixed:
            raise ValidationError(MSG_ADDRESSING_UPDATE_CONFLICT)

    addressing = select_mode(declared)

    if current is not None:
        if current.dns_view is not None and declared.dns_view != current.dns_view:
            raise ViewUpdateNotAllowedError("dns_view")
        if current.network_view is not None and declared.network_view != current.network_view:
            raise ViewUpdateNotAllowedError("network_view")

    if declared.use_ttl and declared.ttl is None:
        raise ValidationError("'ttl' is required when 'use_ttl' is true", field="ttl")

    return addressing


@dataclass
class PendingRecreate:
    """
    A CIDR change split into steps that can each be retried on their own.

    Attributes:
        declared: Declaration with default views filled in
        addressing: The new CIDR allocation
        internal_id: Correlation id carried to the new object
        ref: Reference of the object being released
        external: Externally-owned attributes captured before the release
    """

    declared: DeclaredRecord
    addressing: CidrAllocation
    internal_id: str
    ref: str
    external: dict[str, Any] = field(default_factory=dict)


class RecordReconciler:
    """
    Reconcile declared AAAA records with the remote service.

    The reconciler holds no per-record state: everything it needs about the
    past comes in through ``RecordState`` and everything it learned goes back
    out through the returned ``RecordState``.
    """

    def __init__(
        self,
        gateway: RecordGateway,
        config: ReconcilerConfig | None = None,
        kind: str = RECORD_AAAA,
    ) -> None:
        """
        Initialize the reconciler.

        Args:
            gateway: Remote record gateway
            config: Reconciliation settings (defaults if omitted)
            kind: WAPI object type of the managed records
        """
        self.gateway = gateway
        self.config = config or ReconcilerConfig()
        self.kind = kind
        self.ea_name = self.config.internal_id_ea_name
        self.resolver = AddressResolver(gateway, kind)
        self.locator = RecordLocator(gateway, kind, self.ea_name)
        self.merger = AttributeMerger(reserved={self.ea_name})

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def prepare(self, declared: DeclaredRecord) -> DeclaredRecord:
        """Fill in configured default views."""
        return declared.with_defaults(
            dns_view=self.config.default_dns_view,
            network_view=self.config.default_network_view,
        )

    def validate(self, declared: DeclaredRecord, current: RecordState | None = None) -> Addressing:
        """
        Check a declaration, optionally against the state it would update.

        Args:
            declared: Declared record
            current: Tracked state when validating an update

        Returns:
            The single addressing variant of the declaration

        Raises:
            ValidationError: On missing or conflicting addressing inputs, a
                forbidden address/CIDR switch, a view change, use_ttl
                without ttl, or a declared internal-id attribute
        """
        return validate_record(self.prepare(declared), current, reserved_ext_attrs={self.ea_name})

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def create(self, declared: DeclaredRecord, internal_id: str | None = None) -> RecordState:
        """
        Create (or adopt) the remote object for a declaration.

        When ``internal_id`` is given and an object already carries it, that
        object is adopted: it is updated in place and keeps every attribute it
        already has. Filter declarations always adopt the discovered record.

        Args:
            declared: Declared record
            internal_id: Correlation id to reuse (import, recreation)

        Returns:
            RecordState of the written object
        """
        declared = self.prepare(declared)
        with self._operation("create", declared.fqdn):
            addressing = self.validate(declared)

            existing = None
            if internal_id:
                outcome = await self.locator.locate(None, internal_id)
                existing = outcome.record
            internal_id = internal_id or new_internal_id()

            if existing is not None and not isinstance(addressing, FilterDiscovery):
                logger.info("Adopting object carrying internal id", ref=existing.ref)
                address = await self._address_for_existing(addressing, existing)
                return await self._write(existing, declared, addressing, internal_id, {}, address)

            resolved = await self.resolver.resolve(addressing)
            if resolved.discovered is not None:
                self._check_not_managed_elsewhere(resolved.discovered, internal_id)
                return await self._write(
                    resolved.discovered, declared, addressing, internal_id, {}
                )

            ext_attrs = self.merger.merge(declared.ext_attrs, {}, {})
            ext_attrs[self.ea_name] = internal_id
            payload = self._payload(declared, ext_attrs, resolved.ipv6_addr, include_view=True)
            record = await self.gateway.create(self.kind, payload)
            logger.info("Created record", ref=record.ref, address=record.ipv6addr)
            return self._to_state(record, declared, addressing, internal_id)

    async def read(self, state: RecordState) -> RecordState:
        """
        Refresh tracked state from the remote object.

        Raises:
            NotFoundError: If neither the reference nor the internal id resolve;
                the caller should treat the record as deleted
        """
        with self._operation("read", state.fqdn):
            record = await self.lookup(state.ref, state.internal_id)
            ttl, use_ttl = _ttl_from_remote(record)
            return state.evolve(
                ref=record.ref,
                fqdn=record.name or state.fqdn,
                ipv6_addr=record.ipv6addr,
                dns_view=record.view or state.dns_view,
                ttl=ttl,
                use_ttl=use_ttl,
                comment=record.comment or None,
                ext_attrs=self.merger.local_view(record.extattrs, state.ext_attrs.keys()),
            )

    async def lookup(self, ref: str | None, internal_id: str | None) -> RemoteRecord:
        """
        Find the remote object by reference, falling back to the internal id.

        Raises:
            NotFoundError: If neither lookup succeeds
        """
        outcome = await self.locator.locate(ref, internal_id)
        if outcome.record is None:
            raise NotFoundError(self.kind, f"ref={ref!r} internal_id={internal_id!r}")
        if outcome.ref_changed:
            logger.info("Reference refreshed by internal id", old_ref=ref, ref=outcome.record.ref)
        return outcome.record

    async def update(self, current: RecordState, declared: DeclaredRecord) -> RecordState:
        """
        Bring the remote object in line with a new declaration.

        - Same addressing input: field-level update.
        - New CIDR: delete, then allocate and recreate (same internal id,
          external attributes carried over). Callers that retry use
          ``begin_recreate``, ``release`` and ``finish_recreate`` instead.
        - New filter: re-discover; see ``_rediscover``.

        Raises:
            ValidationError: See ``validate``
            NotFoundError: If the object is gone; the caller should recreate it
        """
        declared = self.prepare(declared)
        with self._operation("update", declared.fqdn):
            addressing = self.validate(declared, current)
            remote = await self.lookup(current.ref, current.internal_id)

            if self._is_cidr_change(current, addressing):
                pending = self._capture(current, declared, addressing, remote)
                await self._delete_ref(pending.ref)
                return await self._finish_recreate(pending)

            if isinstance(addressing, FilterDiscovery) and (
                current.mode != AddressingMode.FILTER
                or canonical_filter_params(addressing.as_dict()) != current.filter_params
            ):
                return await self._rediscover(current, declared, addressing, remote)

            address = None
            if isinstance(addressing, FixedAddress):
                address = addressing.address
            elif isinstance(addressing, CidrAllocation) and current.mode != AddressingMode.CIDR:
                address = await self.resolver.allocate(addressing)

            return await self._write(
                remote, declared, addressing, current.internal_id, current.ext_attrs, address
            )

    def needs_recreate(self, current: RecordState, declared: DeclaredRecord) -> bool:
        """
        Whether applying ``declared`` moves a CIDR record to a new prefix.

        Raises:
            ValidationError: See ``validate``
        """
        declared = self.prepare(declared)
        with self._operation("update", declared.fqdn):
            return self._is_cidr_change(current, self.validate(declared, current))

    async def begin_recreate(
        self, current: RecordState, declared: DeclaredRecord
    ) -> PendingRecreate:
        """
        First step of a CIDR change: locate the object and capture what the
        replacement must carry over. Nothing is written.
        """
        declared = self.prepare(declared)
        with self._operation("update", declared.fqdn):
            addressing = self.validate(declared, current)
            if not self._is_cidr_change(current, addressing):
                raise ValidationError(f"'{declared.fqdn}' does not change its CIDR")
            remote = await self.lookup(current.ref, current.internal_id)
            return self._capture(current, declared, addressing, remote)

    async def release(self, pending: PendingRecreate) -> None:
        """Second step of a CIDR change: delete the old object (idempotent)."""
        with self._operation("update", pending.declared.fqdn):
            await self._delete_ref(pending.ref)

    async def finish_recreate(self, pending: PendingRecreate) -> RecordState:
        """Last step of a CIDR change: allocate and create the replacement."""
        with self._operation("update", pending.declared.fqdn):
            return await self._finish_recreate(pending)

    async def delete(self, target: RecordState | str) -> None:
        """
        Delete a record. Already-absent records count as deleted.

        A filter-adopted record was not created here, so it is released
        (its internal-id attribute removed) instead of deleted.

        Args:
            target: Tracked state (located first, so a stale reference is
                followed to the object) or a bare reference
        """
        fqdn = target.fqdn if isinstance(target, RecordState) else None
        with self._operation("delete", fqdn):
            if not isinstance(target, RecordState):
                await self._delete_ref(target)
                return

            outcome = await self.locator.locate(target.ref, target.internal_id)
            if outcome.record is None:
                logger.info("Record already absent", ref=target.ref)
                return
            if target.mode == AddressingMode.FILTER:
                await self._release_adopted(outcome.record)
            else:
                await self._delete_ref(outcome.record.ref)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _delete_ref(self, ref: str) -> None:
        try:
            await self.gateway.delete(ref)
        except NotFoundError:
            logger.info("Record already absent", ref=ref)
            return
        logger.info("Deleted record", ref=ref)

    async def _release_adopted(self, record: RemoteRecord) -> None:
        released = {k: v for k, v in record.extattrs.items() if k != self.ea_name}
        try:
            await self.gateway.update(record.ref, {"extattrs": released})
        except NotFoundError:
            logger.info("Record already absent", ref=record.ref)
            return
        logger.info("Released previously discovered record", ref=record.ref)

    def _is_cidr_change(self, current: RecordState, addressing: Addressing) -> bool:
        return (
            isinstance(addressing, CidrAllocation)
            and current.mode == AddressingMode.CIDR
            and addressing.cidr != current.cidr
        )

    def _capture(
        self,
        current: RecordState,
        declared: DeclaredRecord,
        addressing: CidrAllocation,
        remote: RemoteRecord,
    ) -> PendingRecreate:
        logger.info(
            "CIDR changed, recreating record",
            old_cidr=current.cidr,
            new_cidr=addressing.cidr,
            ref=remote.ref,
        )
        return PendingRecreate(
            declared=declared,
            addressing=addressing,
            internal_id=current.internal_id,
            ref=remote.ref,
            external=self.merger.merge({}, remote.extattrs, current.ext_attrs),
        )

    async def _finish_recreate(self, pending: PendingRecreate) -> RecordState:
        """
        Allocate from the new CIDR and create the replacement.

        An object already carrying the internal id (an earlier attempt whose
        response was lost) is adopted instead of created twice.
        """
        declared, addressing = pending.declared, pending.addressing
        outcome = await self.locator.locate(None, pending.internal_id)
        if outcome.record is not None:
            address = await self._address_for_existing(addressing, outcome.record)
            return await self._write(
                outcome.record, declared, addressing, pending.internal_id, {}, address
            )

        address = await self.resolver.allocate(addressing)
        ext_attrs = self.merger.merge(declared.ext_attrs, pending.external, {})
        ext_attrs[self.ea_name] = pending.internal_id
        payload = self._payload(declared, ext_attrs, address, include_view=True)
        record = await self.gateway.create(self.kind, payload)
        return self._to_state(record, declared, addressing, pending.internal_id)

    async def _rediscover(
        self,
        current: RecordState,
        declared: DeclaredRecord,
        addressing: FilterDiscovery,
        remote: RemoteRecord,
    ) -> RecordState:
        """
        Re-run discovery after the filter (or the mode) changed.

        Same object: update in place. Different object: the old one is
        released (filter-adopted: only the internal-id attribute is removed;
        created by us: deleted) and the new one is adopted.
        """
        discovered = await self.resolver.discover(addressing)
        if discovered.ref == remote.ref:
            return await self._write(
                remote, declared, addressing, current.internal_id, current.ext_attrs
            )

        self._check_not_managed_elsewhere(discovered, current.internal_id)
        if current.mode == AddressingMode.FILTER:
            await self._release_adopted(remote)
        else:
            await self._delete_ref(remote.ref)

        return await self._write(discovered, declared, addressing, current.internal_id, {})

    async def _write(
        self,
        target: RemoteRecord,
        declared: DeclaredRecord,
        addressing: Addressing,
        internal_id: str,
        previous_ext_attrs: dict[str, Any],
        address: str | None = None,
    ) -> RecordState:
        """Field-level update of an existing object with merged attributes."""
        ext_attrs = self.merger.merge(declared.ext_attrs, target.extattrs, previous_ext_attrs)
        ext_attrs[self.ea_name] = internal_id
        if address is not None and address == target.ipv6addr:
            address = None
        payload = self._payload(declared, ext_attrs, address, include_view=False)
        record = await self.gateway.update(target.ref, payload)
        logger.info("Updated record", ref=record.ref, address=record.ipv6addr)
        return self._to_state(record, declared, addressing, internal_id)

    async def _address_for_existing(
        self, addressing: Addressing, existing: RemoteRecord
    ) -> str | None:
        if isinstance(addressing, FixedAddress):
            return addressing.address
        if isinstance(addressing, CidrAllocation):
            # Keep an address that already satisfies the allocation
            if existing.ipv6addr and address_in_cidr(existing.ipv6addr, addressing.cidr):
                return None
            return await self.resolver.allocate(addressing)
        return None

    def _check_not_managed_elsewhere(self, record: RemoteRecord, internal_id: str) -> None:
        tagged = record.extattrs.get(self.ea_name)
        if tagged is not None and str(tagged) != internal_id:
            raise ValidationError(
                f"record '{record.ref}' is already managed under internal id '{tagged}'"
            )

    def _payload(
        self,
        declared: DeclaredRecord,
        ext_attrs: dict[str, Any],
        address: str | None,
        include_view: bool,
    ) -> dict[str, Any]:
        """
        Build the WAPI payload.

        TTL: use_ttl false sends only the cleared flag; use_ttl true sends the
        TTL verbatim, 0 included.
        """
        payload: dict[str, Any] = {"name": declared.fqdn, "extattrs": ext_attrs}
        if address is not None:
            payload["ipv6addr"] = address
        if include_view:
            payload["view"] = declared.dns_view
            if declared.comment is not None:
                payload["comment"] = declared.comment
        else:
            payload["comment"] = declared.comment or ""

        if declared.effective_use_ttl:
            payload["use_ttl"] = True
            payload["ttl"] = declared.ttl
        else:
            payload["use_ttl"] = False
        return payload

    def _to_state(
        self,
        record: RemoteRecord,
        declared: DeclaredRecord,
        addressing: Addressing,
        internal_id: str,
    ) -> RecordState:
        ttl, use_ttl = _ttl_from_remote(record)
        return RecordState(
            ref=record.ref,
            internal_id=internal_id,
            fqdn=record.name or declared.fqdn,
            mode=addressing.mode,
            ipv6_addr=record.ipv6addr,
            cidr=addressing.cidr if isinstance(addressing, CidrAllocation) else None,
            filter_params=(
                canonical_filter_params(addressing.as_dict())
                if isinstance(addressing, FilterDiscovery)
                else None
            ),
            network_view=declared.network_view,
            dns_view=record.view or declared.dns_view,
            ttl=ttl,
            use_ttl=use_ttl,
            comment=record.comment or None,
            ext_attrs=self.merger.local_view(record.extattrs, declared.ext_attrs.keys()),
        )

    @contextmanager
    def _operation(self, operation: str, fqdn: str | None) -> Iterator[None]:
        with bind_record_context(None, fqdn):
            try:
                yield
            except ReconcilerError as e:
                logger.debug("Operation failed", operation=operation, error=str(e))
                raise e.with_context(fqdn, operation)


def _ttl_from_remote(record: RemoteRecord) -> tuple[int | None, bool]:
    use_ttl = bool(record.use_ttl)
    return (record.ttl if use_ttl else None), use_ttl
