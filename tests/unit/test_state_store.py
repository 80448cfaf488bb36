"""Unit tests for the tracked-state store."""

import sqlite3

import pytest

from aaaa_reconciler.models import AddressingMode, RecordState
from aaaa_reconciler.persistence import StateStore


def make_state(**overrides):
    fields = {
        "ref": "record:aaaa/ZG5z1:web.example.com/default",
        "internal_id": "id-1",
        "fqdn": "web.example.com",
        "mode": AddressingMode.CIDR,
        "ipv6_addr": "2001:db8:1::1",
        "cidr": "2001:db8:1::/64",
        "network_view": "default",
        "dns_view": "default",
        "ttl": 0,
        "use_ttl": True,
        "comment": "frontend",
        "ext_attrs": {"Owner": "team-a", "Rack": 4},
    }
    fields.update(overrides)
    return RecordState(**fields)


class TestStateStore:
    """Test StateStore class."""

    @pytest.fixture(autouse=True)
    def setup_method(self, tmp_path):
        """Set up test fixtures."""
        self.db_path = tmp_path / "nested" / "state.db"
        self.store = StateStore(self.db_path)

        yield

        self.store.close()

    def test_init(self):
        """Test initialization creates parent directory and table."""
        assert self.db_path.exists()

        conn = sqlite3.connect(str(self.db_path))
        cursor = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='records'"
        )
        assert cursor.fetchone() is not None
        conn.close()

    def test_put_and_get(self):
        state = make_state()

        self.store.put("web", state)

        assert self.store.get("web") == state

    def test_ttl_zero_round_trips(self):
        self.store.put("web", make_state(ttl=0, use_ttl=True))

        loaded = self.store.get("web")

        assert loaded.ttl == 0
        assert loaded.use_ttl is True

    def test_filter_state(self):
        state = make_state(
            mode=AddressingMode.FILTER,
            cidr=None,
            network_view=None,
            filter_params='{"*Site":"Blr"}',
            ttl=None,
            use_ttl=False,
            comment=None,
            ext_attrs={},
        )

        self.store.put("legacy", state)

        assert self.store.get("legacy") == state

    def test_get_missing(self):
        assert self.store.get("nope") is None

    def test_put_replaces(self):
        self.store.put("web", make_state())
        self.store.put("web", make_state(ref="record:aaaa/ZG5z2:web.example.com/default"))

        assert self.store.get("web").ref == "record:aaaa/ZG5z2:web.example.com/default"
        assert self.store.names() == ["web"]

    def test_delete(self):
        self.store.put("web", make_state())

        assert self.store.delete("web") is True
        assert self.store.get("web") is None
        assert self.store.delete("web") is False

    def test_all_ordered_by_name(self):
        self.store.put("web", make_state())
        self.store.put("api", make_state(fqdn="api.example.com", internal_id="id-2"))

        tracked = self.store.all()

        assert list(tracked) == ["api", "web"]
        assert tracked["api"].internal_id == "id-2"

    def test_persists_across_instances(self):
        self.store.put("web", make_state())
        self.store.close()

        self.store = StateStore(self.db_path)

        assert self.store.get("web") == make_state()

    def test_context_manager(self, tmp_path):
        with StateStore(tmp_path / "other.db") as store:
            store.put("web", make_state())
            assert store.names() == ["web"]
