"""Attribute Merge Engine - reconcile declared and remote extensible attributes.

Other tools edit extensible attributes (EAs) on the same objects this tool
manages. Ownership is decided by the previous local declaration:

- a key the previous declaration did not contain is externally owned and is
  written back exactly as the remote holds it;
- a key the previous declaration contained is locally owned: it takes the
  currently declared value, or is dropped if no longer declared;
- a key declared for the first time takes the declared value (and becomes
  locally owned from then on).

There is no optimistic locking: "never delete what you didn't declare" is what
makes concurrent external edits safe.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

import structlog

logger = structlog.get_logger(__name__)


def merge_ext_attrs(
    declared: Mapping[str, Any],
    remote: Mapping[str, Any],
    previous_declared: Mapping[str, Any],
) -> dict[str, Any]:
    """
    Compute the attribute set to send on the next write.

    Args:
        declared: Attributes in the current declaration
        remote: Attributes currently on the remote object
        previous_declared: Attributes of the last applied declaration

    Returns:
        New dict; none of the inputs is modified.
    """
    merged: dict[str, Any] = {
        key: value for key, value in remote.items() if key not in previous_declared
    }
    merged.update(declared)
    return merged


def locally_owned(remote: Mapping[str, Any], declared: Iterable[str]) -> dict[str, Any]:
    """
    Project the remote attributes onto the locally-owned keys.

    This is what reads report back to the configuration surface, so keys added
    by other tools never show up as drift. A locally-owned key whose value was
    changed remotely is reported with the remote value.

    Args:
        remote: Attributes on the remote object
        declared: Locally-owned key names

    Returns:
        dict with the locally-owned keys present remotely
    """
    keys = set(declared)
    return {key: value for key, value in remote.items() if key in keys}


def strip_reserved(attrs: Mapping[str, Any], reserved: Iterable[str]) -> dict[str, Any]:
    """Return a copy of ``attrs`` without the reserved keys."""
    reserved_keys = set(reserved)
    return {key: value for key, value in attrs.items() if key not in reserved_keys}


@dataclass
class AttributeChangeSet:
    """
    Key-level summary of a merge, used for logging and plan output.

    Attributes:
        added: Keys written that the remote did not have
        changed: Keys whose value differs from the remote
        removed: Locally-owned keys dropped by the merge
        preserved: Externally-owned keys carried through unchanged
    """

    added: list[str] = field(default_factory=list)
    changed: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    preserved: list[str] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.changed or self.removed)


def describe_merge(
    merged: Mapping[str, Any],
    remote: Mapping[str, Any],
    previous_declared: Mapping[str, Any],
) -> AttributeChangeSet:
    """
    Compare a merge result with the remote set it was computed from.

    Args:
        merged: Result of merge_ext_attrs
        remote: Remote attributes before the write
        previous_declared: Previous local declaration

    Returns:
        AttributeChangeSet with sorted key lists
    """
    changes = AttributeChangeSet()
    for key in sorted(merged):
        if key not in remote:
            changes.added.append(key)
        elif merged[key] != remote[key]:
            changes.changed.append(key)
        elif key not in previous_declared:
            changes.preserved.append(key)
    changes.removed = sorted(key for key in remote if key not in merged)
    return changes


class AttributeMerger:
    """
    Merge engine bound to the reserved attribute names of one deployment.

    Reserved keys (the internal correlation id) are never part of the
    declared/remote comparison: they are stripped from every input and the
    caller adds them back explicitly.
    """

    def __init__(self, reserved: Iterable[str] = ()) -> None:
        self.reserved = frozenset(reserved)

    def merge(
        self,
        declared: Mapping[str, Any],
        remote: Mapping[str, Any],
        previous_declared: Mapping[str, Any],
    ) -> dict[str, Any]:
        """
        Merge with reserved keys removed from all inputs.

        Returns:
            Attribute set without reserved keys.
        """
        declared = strip_reserved(declared, self.reserved)
        remote = strip_reserved(remote, self.reserved)
        previous = strip_reserved(previous_declared, self.reserved)

        merged = merge_ext_attrs(declared, remote, previous)
        changes = describe_merge(merged, remote, previous)
        if changes.has_changes or changes.preserved:
            logger.debug(
                "Merged extensible attributes",
                added=changes.added,
                changed=changes.changed,
                removed=changes.removed,
                preserved=changes.preserved,
            )
        return merged

    def local_view(self, remote: Mapping[str, Any], declared: Iterable[str]) -> dict[str, Any]:
        """Locally-owned subset of ``remote``, never including reserved keys."""
        return strip_reserved(locally_owned(remote, declared), self.reserved)
