"""Pytest configuration and shared fixtures.

This module provides reusable fixtures for testing the AAAA record reconciler.
Fixtures are organized by category:
- Fake gateway: an in-memory stand-in for the WAPI service
- Reconciler fixtures: configured reconciler, state store, retry policy
- Data fixtures: sample declarations
"""

import itertools
from ipaddress import IPv6Address, IPv6Network
from pathlib import Path
from typing import Any

import pytest

from aaaa_reconciler.config import ReconcilerConfig, RetryConfig
from aaaa_reconciler.constants import DEFAULT_INTERNAL_ID_EA_NAME, RECORD_AAAA
from aaaa_reconciler.core.reconciler import RecordReconciler
from aaaa_reconciler.models.record import DeclaredRecord, RemoteRecord
from aaaa_reconciler.persistence.state_store import StateStore
from aaaa_reconciler.utils.exceptions import AllocationExhausted, NotFoundError

# =============================================================================
# Fake Gateway
# =============================================================================


class FakeGateway:
    """
    In-memory Remote Record Gateway.

    Behaves like WAPI where the reconciler can observe it:
    - references encode the name, so renaming an object changes its reference
    - PUT replaces the whole extattrs set
    - next_available_ip returns the lowest unused host address of a network
    - ``*Key`` predicates match extensible attributes, other keys match fields

    Every call is recorded in ``calls`` as ``(method, args)``.
    """

    def __init__(self) -> None:
        self.objects: dict[str, dict[str, Any]] = {}
        self.networks: set[tuple[str, str]] = set()
        self.exhausted: set[tuple[str, str]] = set()
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.failures: dict[str, list[Exception]] = {}
        self._ids = itertools.count(1)

    # -- test helpers ---------------------------------------------------------

    def add_network(self, cidr: str, network_view: str = "default") -> None:
        self.networks.add((network_view, str(IPv6Network(cidr, strict=False))))

    def seed(
        self,
        name: str,
        ipv6addr: str,
        extattrs: dict[str, Any] | None = None,
        view: str = "default",
        **fields: Any,
    ) -> str:
        """Create an object behind the reconciler's back and return its ref."""
        ref = self._new_ref(name, view)
        self.objects[ref] = {
            "name": name,
            "ipv6addr": str(IPv6Address(ipv6addr)),
            "view": view,
            "use_ttl": False,
            "extattrs": dict(extattrs or {}),
            **fields,
        }
        return ref

    def external_edit(self, ref: str, **fields: Any) -> str:
        """Modify an object as another tool would; returns the (possibly new) ref."""
        return self._apply(ref, fields)

    def set_ea(self, ref: str, key: str, value: Any) -> None:
        self.objects[ref]["extattrs"][key] = value

    def remove_ea(self, ref: str, key: str) -> None:
        self.objects[ref]["extattrs"].pop(key, None)

    def rotate_ref(self, ref: str) -> str:
        """Give an object a new reference without changing its content."""
        body = self.objects.pop(ref)
        new_ref = self._new_ref(body["name"], body["view"])
        self.objects[new_ref] = body
        return new_ref

    def fail_next(self, method: str, *errors: Exception) -> None:
        """Make the next calls to ``method`` raise the given errors, in order."""
        self.failures.setdefault(method, []).extend(errors)

    def find(self, name: str) -> list[RemoteRecord]:
        return [self._record(ref) for ref, body in self.objects.items() if body["name"] == name]

    def methods(self) -> list[str]:
        return [method for method, _ in self.calls]

    # -- gateway protocol -----------------------------------------------------

    async def get_by_ref(self, ref: str) -> RemoteRecord:
        self._enter("get_by_ref", ref)
        if ref not in self.objects:
            raise NotFoundError(RECORD_AAAA, ref)
        return self._record(ref)

    async def search(self, kind: str, predicate: dict[str, str]) -> list[RemoteRecord]:
        self._enter("search", kind, dict(predicate))
        return [
            self._record(ref)
            for ref, body in self.objects.items()
            if all(self._matches(body, key, value) for key, value in predicate.items())
        ]

    async def create(self, kind: str, payload: dict[str, Any]) -> RemoteRecord:
        self._enter("create", kind, _copy(payload))
        view = payload.get("view", "default")
        ref = self._new_ref(payload["name"], view)
        self.objects[ref] = {
            "name": payload["name"],
            "ipv6addr": payload["ipv6addr"],
            "view": view,
            "use_ttl": payload.get("use_ttl", False),
            "ttl": payload.get("ttl"),
            "comment": payload.get("comment"),
            "extattrs": dict(payload.get("extattrs", {})),
        }
        return self._record(ref)

    async def update(self, ref: str, payload: dict[str, Any]) -> RemoteRecord:
        self._enter("update", ref, _copy(payload))
        if ref not in self.objects:
            raise NotFoundError(RECORD_AAAA, ref)
        new_ref = self._apply(ref, payload)
        return self._record(new_ref)

    async def delete(self, ref: str) -> None:
        self._enter("delete", ref)
        if ref not in self.objects:
            raise NotFoundError(RECORD_AAAA, ref)
        del self.objects[ref]

    async def allocate_next_address(self, network_view: str, cidr: str) -> str:
        self._enter("allocate_next_address", network_view, cidr)
        key = (network_view, cidr)
        if key not in self.networks:
            raise NotFoundError("ipv6network", f"{cidr} in network view '{network_view}'")
        if key in self.exhausted:
            raise AllocationExhausted(network_view, cidr)
        used = {body["ipv6addr"] for body in self.objects.values()}
        network = IPv6Network(cidr)
        for offset in range(1, 1024):
            candidate = str(network[offset])
            if candidate not in used:
                return candidate
        raise AllocationExhausted(network_view, cidr)

    async def close(self) -> None:
        self._enter("close")

    # -- internals ------------------------------------------------------------

    def _enter(self, method: str, *args: Any) -> None:
        self.calls.append((method, args))
        pending = self.failures.get(method)
        if pending:
            raise pending.pop(0)

    def _new_ref(self, name: str, view: str) -> str:
        return f"{RECORD_AAAA}/ZG5z{next(self._ids)}:{name}/{view}"

    def _apply(self, ref: str, fields: dict[str, Any]) -> str:
        body = self.objects[ref]
        for key, value in fields.items():
            body[key] = dict(value) if key == "extattrs" else value
        if "use_ttl" in fields and not fields["use_ttl"]:
            body.pop("ttl", None)
        if "name" in fields and not ref.rsplit(":", 1)[1].startswith(f"{fields['name']}/"):
            del self.objects[ref]
            ref = self._new_ref(body["name"], body["view"])
            self.objects[ref] = body
        return ref

    def _record(self, ref: str) -> RemoteRecord:
        body = self.objects[ref]
        return RemoteRecord.model_validate(
            {
                "_ref": ref,
                **{k: v for k, v in body.items() if k != "extattrs"},
                "extattrs": {k: {"value": v} for k, v in body["extattrs"].items()},
            }
        )

    @staticmethod
    def _matches(body: dict[str, Any], key: str, value: str) -> bool:
        if key.startswith("*"):
            actual = body["extattrs"].get(key[1:])
        else:
            actual = body.get(key)
        if actual is None:
            return False
        if isinstance(actual, bool):
            actual = str(actual).lower()
        return str(actual) == value


def _copy(payload: dict[str, Any]) -> dict[str, Any]:
    copied = dict(payload)
    if "extattrs" in copied:
        copied["extattrs"] = dict(copied["extattrs"])
    return copied


# =============================================================================
# Reconciler Fixtures
# =============================================================================


@pytest.fixture
def gateway() -> FakeGateway:
    """In-memory gateway with a /64 registered in the default network view."""
    fake = FakeGateway()
    fake.add_network("2001:db8:1::/64")
    fake.add_network("2001:db8:2::/64")
    return fake


@pytest.fixture
def reconciler_config(tmp_path: Path) -> ReconcilerConfig:
    return ReconcilerConfig(state_file=tmp_path / "state.db")


@pytest.fixture
def reconciler(gateway: FakeGateway, reconciler_config: ReconcilerConfig) -> RecordReconciler:
    return RecordReconciler(gateway, reconciler_config)


@pytest.fixture
def store(tmp_path: Path):
    """State store in a temporary directory, closed after the test."""
    state_store = StateStore(tmp_path / "state.db")
    yield state_store
    state_store.close()


@pytest.fixture
def fast_retry() -> RetryConfig:
    """Retry policy without waiting between attempts."""
    return RetryConfig(max_attempts=3, multiplier=0, wait_min=0, wait_max=0)


@pytest.fixture
def ea_name() -> str:
    return DEFAULT_INTERNAL_ID_EA_NAME


# =============================================================================
# Data Fixtures
# =============================================================================


@pytest.fixture
def fixed_record() -> DeclaredRecord:
    return DeclaredRecord(fqdn="web.example.com", ipv6_addr="2001:db8::10", ttl=300)


@pytest.fixture
def cidr_record() -> DeclaredRecord:
    return DeclaredRecord(
        fqdn="api.example.com",
        cidr="2001:db8:1::/64",
        network_view="default",
        ext_attrs={"Owner": "team-a"},
    )


@pytest.fixture
def declarations_file(tmp_path: Path) -> Path:
    """A small declaration file with one record per addressing mode."""
    path = tmp_path / "records.yaml"
    path.write_text(
        """
records:
  web:
    fqdn: web.example.com
    address: "2001:db8::10"
    ttl: 300
  api:
    fqdn: api.example.com
    cidr: "2001:db8:1::/64"
    network_view: default
    ext_attrs:
      Owner: team-a
  legacy:
    fqdn: legacy.example.com
    filter_params: '{"*Site": "Blr"}'
""",
        encoding="utf-8",
    )
    return path
