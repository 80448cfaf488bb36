"""Two-stage record lookup.

Remote references go stale (a record renamed by another tool gets a new
reference). Each managed record therefore also carries its internal
correlation id as a reserved extensible attribute, and lookups fall back to an
EA search on that id when the reference no longer resolves.
"""

from dataclasses import dataclass, field

import structlog

from ..constants import EA_FILTER_PREFIX
from ..gateway.base import RecordGateway
from ..models.record import RemoteRecord
from ..models.state import LookupState
from ..utils.exceptions import AmbiguousMatchError, NotFoundError

logger = structlog.get_logger(__name__)


@dataclass
class LookupOutcome:
    """
    Result of a lookup.

    Attributes:
        state: Final state (REFERENCE_VALID or NOT_FOUND)
        record: Remote object when found
        transitions: Every state visited, for diagnostics
    """

    state: LookupState
    record: RemoteRecord | None = None
    transitions: list[LookupState] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return self.state == LookupState.REFERENCE_VALID

    @property
    def ref_changed(self) -> bool:
        return LookupState.REFERENCE_STALE_LOOKUP_BY_SECONDARY in self.transitions


class RecordLocator:
    """
    Resolve (reference, internal id) to a remote object.

    UNKNOWN
      -> REFERENCE_VALID when the reference resolves to an object whose
         internal-id EA is absent or matches
      -> REFERENCE_STALE_LOOKUP_BY_SECONDARY otherwise
    REFERENCE_STALE_LOOKUP_BY_SECONDARY
      -> REFERENCE_VALID when exactly one object carries the internal id
      -> NOT_FOUND when none does (or there is no internal id)
    """

    def __init__(self, gateway: RecordGateway, kind: str, internal_id_ea_name: str) -> None:
        self.gateway = gateway
        self.kind = kind
        self.ea_name = internal_id_ea_name

    def internal_id_predicate(self, internal_id: str) -> dict[str, str]:
        return {f"{EA_FILTER_PREFIX}{self.ea_name}": internal_id}

    async def locate(self, ref: str | None, internal_id: str | None) -> LookupOutcome:
        """
        Run the lookup state machine.

        Args:
            ref: Last known reference (may be None or stale)
            internal_id: Internal correlation id (may be None for unmanaged objects)

        Returns:
            LookupOutcome; never raises NotFoundError.

        Raises:
            AmbiguousMatchError: If several objects carry the same internal id
        """
        outcome = LookupOutcome(state=LookupState.UNKNOWN)
        outcome.transitions.append(LookupState.UNKNOWN)

        while outcome.state not in (LookupState.REFERENCE_VALID, LookupState.NOT_FOUND):
            if outcome.state == LookupState.UNKNOWN:
                record = await self._by_reference(ref, internal_id)
                if record is not None:
                    self._advance(outcome, LookupState.REFERENCE_VALID, record)
                else:
                    self._advance(outcome, LookupState.REFERENCE_STALE_LOOKUP_BY_SECONDARY)
            else:
                record = await self._by_internal_id(internal_id)
                if record is not None:
                    self._advance(outcome, LookupState.REFERENCE_VALID, record)
                else:
                    self._advance(outcome, LookupState.NOT_FOUND)

        logger.debug(
            "Record lookup finished",
            ref=ref,
            internal_id=internal_id,
            state=outcome.state.value,
            transitions=[s.value for s in outcome.transitions],
        )
        return outcome

    def _advance(
        self, outcome: LookupOutcome, state: LookupState, record: RemoteRecord | None = None
    ) -> None:
        outcome.state = state
        outcome.record = record
        outcome.transitions.append(state)

    async def _by_reference(self, ref: str | None, internal_id: str | None) -> RemoteRecord | None:
        if not ref:
            return None
        try:
            record = await self.gateway.get_by_ref(ref)
        except NotFoundError:
            logger.info("Reference is stale", ref=ref)
            return None

        tagged = record.extattrs.get(self.ea_name)
        if internal_id and tagged is not None and str(tagged) != internal_id:
            logger.warning(
                "Reference points at a different object",
                ref=ref,
                expected_internal_id=internal_id,
                found_internal_id=tagged,
            )
            return None
        return record

    async def _by_internal_id(self, internal_id: str | None) -> RemoteRecord | None:
        if not internal_id:
            return None
        predicate = self.internal_id_predicate(internal_id)
        matches = await self.gateway.search(self.kind, predicate)
        if len(matches) > 1:
            raise AmbiguousMatchError(self.kind, predicate, len(matches))
        return matches[0] if matches else None


async def search_by_alt_id(
    gateway: RecordGateway,
    kind: str,
    ref: str | None,
    internal_id: str | None,
    internal_id_ea_name: str,
) -> RemoteRecord:
    """
    Find an object by reference, falling back to its internal-id EA.

    Args:
        gateway: Remote record gateway
        kind: WAPI object type
        ref: Last known reference
        internal_id: Internal correlation id
        internal_id_ea_name: Name of the reserved EA holding the internal id

    Returns:
        RemoteRecord

    Raises:
        NotFoundError: If neither lookup finds the object
    """
    outcome = await RecordLocator(gateway, kind, internal_id_ea_name).locate(ref, internal_id)
    if outcome.record is None:
        raise NotFoundError(kind, f"ref={ref!r} internal_id={internal_id!r}")
    return outcome.record
