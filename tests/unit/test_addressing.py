"""Unit tests for the Address Resolution Strategy."""

from unittest.mock import AsyncMock

import pytest

from aaaa_reconciler.core.addressing import (
    AddressResolver,
    address_in_cidr,
    build_search_predicate,
    canonical_filter_params,
    parse_filter_params,
    select_mode,
)
from aaaa_reconciler.gateway.base import RecordGateway
from aaaa_reconciler.models import (
    CidrAllocation,
    DeclaredRecord,
    FilterDiscovery,
    FixedAddress,
    RemoteRecord,
)
from aaaa_reconciler.utils.exceptions import (
    AllocationExhausted,
    AmbiguousMatchError,
    NotFoundError,
    ValidationError,
)

REQUIRED = "any one of 'ipv6_addr', 'cidr' and 'filter_params' values is required"
CONFLICT = "only one of 'ipv6_addr', 'cidr' and 'filter_params' values is allowed to be defined"


class TestHelpers:
    """Test pure helper functions."""

    @pytest.mark.parametrize(
        "address,cidr,expected",
        [
            ("2001:db8::1", "2001:db8::/64", True),
            ("2001:db8:1::1", "2001:db8::/64", False),
            ("2001:db8::1", "2001:db8::1/64", True),
            ("10.0.0.1", "2001:db8::/64", False),
            ("garbage", "2001:db8::/64", False),
        ],
    )
    def test_address_in_cidr(self, address, cidr, expected):
        assert address_in_cidr(address, cidr) is expected

    def test_parse_filter_params(self):
        assert parse_filter_params('{"*Site": "Blr"}') == {"*Site": "Blr"}
        assert parse_filter_params({"name": "a"}) == {"name": "a"}
        assert parse_filter_params(None) is None

    def test_parse_filter_params_invalid(self):
        with pytest.raises(ValidationError) as excinfo:
            parse_filter_params("[1]")

        assert excinfo.value.field == "filter_params"

    def test_canonical_filter_params(self):
        assert canonical_filter_params({"name": "a", "*Site": "Blr"}) == (
            '{"*Site":"Blr","name":"a"}'
        )
        assert canonical_filter_params({}) is None

    def test_build_search_predicate(self):
        predicate = build_search_predicate({"*Site": "Blr", "*Rack": 4, "*Active": True})

        assert predicate == {"*Site": "Blr", "*Rack": "4", "*Active": "true"}

    def test_build_search_predicate_core_fields(self):
        predicate = build_search_predicate({"name": "legacy.example.com", "view": "default"})

        assert predicate == {"name": "legacy.example.com", "view": "default"}

    @pytest.mark.parametrize("params", [{}, {"*": "x"}])
    def test_build_search_predicate_invalid(self, params):
        with pytest.raises(ValidationError):
            build_search_predicate(params)


class TestSelectMode:
    """Test mode selection and its verbatim messages."""

    def test_fixed(self):
        addressing = select_mode(DeclaredRecord(fqdn="a.example.com", ipv6_addr="2001:db8::1"))

        assert addressing == FixedAddress(address="2001:db8::1")

    def test_cidr(self):
        addressing = select_mode(
            DeclaredRecord(fqdn="a.example.com", cidr="2001:db8::/64", network_view="nv1")
        )

        assert addressing == CidrAllocation(network_view="nv1", cidr="2001:db8::/64")

    def test_filter(self):
        addressing = select_mode(
            DeclaredRecord(fqdn="a.example.com", filter_params={"*Site": "Blr"})
        )

        assert isinstance(addressing, FilterDiscovery)
        assert addressing.as_dict() == {"*Site": "Blr"}

    def test_none_given(self):
        with pytest.raises(ValidationError) as excinfo:
            select_mode(DeclaredRecord(fqdn="a.example.com"))

        assert str(excinfo.value) == REQUIRED

    @pytest.mark.parametrize(
        "fields",
        [
            {"ipv6_addr": "2001:db8::1", "cidr": "2001:db8::/64"},
            {"ipv6_addr": "2001:db8::1", "filter_params": {"*Site": "Blr"}},
            {"cidr": "2001:db8::/64", "filter_params": {"*Site": "Blr"}},
        ],
    )
    def test_more_than_one_given(self, fields):
        with pytest.raises(ValidationError) as excinfo:
            select_mode(DeclaredRecord(fqdn="a.example.com", network_view="default", **fields))

        assert str(excinfo.value) == CONFLICT

    def test_cidr_without_network_view(self):
        with pytest.raises(ValidationError) as excinfo:
            select_mode(DeclaredRecord(fqdn="a.example.com", cidr="2001:db8::/64"))

        assert excinfo.value.field == "network_view"


class TestAddressResolver:
    """Test resolution against a mocked gateway."""

    @pytest.fixture
    def gateway(self):
        return AsyncMock(spec=RecordGateway)

    @pytest.fixture
    def resolver(self, gateway):
        return AddressResolver(gateway)

    @pytest.mark.asyncio
    async def test_fixed_passes_through(self, resolver, gateway):
        resolved = await resolver.resolve(FixedAddress(address="2001:db8::1"))

        assert resolved.ipv6_addr == "2001:db8::1"
        assert resolved.discovered is None
        gateway.allocate_next_address.assert_not_called()

    @pytest.mark.asyncio
    async def test_cidr_allocates(self, resolver, gateway):
        gateway.allocate_next_address.return_value = "2001:0db8:0000::0005"

        resolved = await resolver.resolve(
            CidrAllocation(network_view="default", cidr="2001:db8::/64")
        )

        assert resolved.ipv6_addr == "2001:db8::5"
        gateway.allocate_next_address.assert_awaited_once_with("default", "2001:db8::/64")

    @pytest.mark.asyncio
    async def test_cidr_result_outside_prefix(self, resolver, gateway):
        gateway.allocate_next_address.return_value = "2001:db8:ffff::1"

        with pytest.raises(AllocationExhausted):
            await resolver.allocate(CidrAllocation(network_view="default", cidr="2001:db8::/64"))

    @pytest.mark.asyncio
    async def test_cidr_exhausted_propagates(self, resolver, gateway):
        gateway.allocate_next_address.side_effect = AllocationExhausted("default", "2001:db8::/64")

        with pytest.raises(AllocationExhausted):
            await resolver.allocate(CidrAllocation(network_view="default", cidr="2001:db8::/64"))

    @pytest.mark.asyncio
    async def test_filter_single_match(self, resolver, gateway):
        match = RemoteRecord.model_validate(
            {"_ref": "record:aaaa/1", "name": "legacy.example.com", "ipv6addr": "2001:db8::9"}
        )
        gateway.search.return_value = [match]

        resolved = await resolver.resolve(FilterDiscovery.from_mapping({"*Site": "Blr"}))

        assert resolved.discovered is match
        assert resolved.ipv6_addr == "2001:db8::9"
        gateway.search.assert_awaited_once_with("record:aaaa", {"*Site": "Blr"})

    @pytest.mark.asyncio
    async def test_filter_no_match(self, resolver, gateway):
        gateway.search.return_value = []

        with pytest.raises(NotFoundError):
            await resolver.discover(FilterDiscovery.from_mapping({"*Site": "Blr"}))

    @pytest.mark.asyncio
    async def test_filter_many_matches(self, resolver, gateway):
        gateway.search.return_value = [
            RemoteRecord.model_validate({"_ref": f"record:aaaa/{i}"}) for i in range(2)
        ]

        with pytest.raises(AmbiguousMatchError) as excinfo:
            await resolver.discover(FilterDiscovery.from_mapping({"*Site": "Blr"}))

        assert excinfo.value.count == 2
