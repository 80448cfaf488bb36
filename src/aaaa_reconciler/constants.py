"""Named constants shared across the reconciler."""

# -----------------------------------------------------------------------------
# WAPI object types and fields
# -----------------------------------------------------------------------------

# Object type of IPv6 host-address records
RECORD_AAAA: str = "record:aaaa"

# Object type of IPv6 networks (read-only collaborator, used for allocation)
IPV6_NETWORK: str = "ipv6network"

# Fields requested on every record read so that EAs and TTL settings come back
RECORD_RETURN_FIELDS: tuple[str, ...] = (
    "name",
    "ipv6addr",
    "view",
    "ttl",
    "use_ttl",
    "comment",
    "extattrs",
)

# -----------------------------------------------------------------------------
# Defaults
# -----------------------------------------------------------------------------

DEFAULT_DNS_VIEW: str = "default"
DEFAULT_NETWORK_VIEW: str = "default"

# Name of the reserved extensible attribute holding the internal correlation id
DEFAULT_INTERNAL_ID_EA_NAME: str = "Internal ID"

# Filter keys starting with this marker select an extensible attribute
EA_FILTER_PREFIX: str = "*"

# -----------------------------------------------------------------------------
# WAPI error markers
# -----------------------------------------------------------------------------

WAPI_NOT_FOUND_MARKERS: tuple[str, ...] = (
    "AdmConDataNotFoundError",
    "Client.Ibap.Data.NotFound",
)

WAPI_EXHAUSTED_MARKERS: tuple[str, ...] = (
    "No free",
    "not enough free",
    "Cannot find 1 available IP address",
)

# -----------------------------------------------------------------------------
# Verbatim validation messages
# -----------------------------------------------------------------------------

MSG_ADDRESSING_REQUIRED: str = (
    "any one of 'ipv6_addr', 'cidr' and 'filter_params' values is required"
)
MSG_ADDRESSING_CONFLICT: str = (
    "only one of 'ipv6_addr', 'cidr' and 'filter_params' values is allowed to be defined"
)
MSG_ADDRESSING_UPDATE_CONFLICT: str = (
    "only one of 'ipv6_addr' and 'cidr' values is allowed to update"
)
