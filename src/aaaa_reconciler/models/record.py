"""Record models: declared input and remote WAPI objects."""

import json
from ipaddress import IPv6Address, IPv6Network
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator

# Scalar types WAPI accepts as extensible attribute values
EAValue = str | int | float | bool


def strip_whitespace(v: Any) -> Any:
    """
    Strip whitespace from string fields, turning blank strings into None.

    Args:
        v: The value to process.

    Returns:
        Any: The processed value.
    """
    if isinstance(v, str):
        stripped = v.strip()
        if not stripped:
            return None
        return stripped
    return v


def parse_json_object(v: Any, field_name: str) -> dict[str, Any] | None:
    """
    Accept a mapping or a JSON-encoded object and return a plain dict.

    Declaration files may carry ``filter_params`` and ``ext_attrs`` either as
    native YAML mappings or as JSON strings (``'{"*Site": "Blr"}'``).

    Args:
        v: Raw value (None, dict or JSON string).
        field_name: Field name used in error messages.

    Returns:
        dict or None when the value is absent.

    Raises:
        ValueError: If the value is not a JSON object with scalar values.
    """
    if v is None:
        return None
    if isinstance(v, str):
        if not v.strip():
            return None
        try:
            v = json.loads(v)
        except json.JSONDecodeError as e:
            raise ValueError(f"'{field_name}' is not valid JSON: {e.msg}") from e
    if not isinstance(v, dict):
        raise ValueError(f"'{field_name}' must be a JSON object, got {type(v).__name__}")
    for key, value in v.items():
        if not isinstance(key, str) or not key:
            raise ValueError(f"'{field_name}' keys must be non-empty strings")
        if not isinstance(value, EAValue):
            raise ValueError(
                f"'{field_name}' value for '{key}' must be a scalar, got {type(value).__name__}"
            )
    return dict(v)


class DeclaredRecord(BaseModel):
    """
    Desired state of one AAAA record as written in a declaration file.

    Exactly one of ``ipv6_addr``, ``cidr`` and ``filter_params`` must be set;
    that rule is enforced by the reconciler so its messages reach the user
    verbatim instead of being wrapped by pydantic.
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)

    fqdn: Annotated[
        str, Field(description="Fully-qualified domain name"), BeforeValidator(strip_whitespace)
    ]
    ipv6_addr: Annotated[
        str | None,
        Field(default=None, alias="address", description="Fixed IPv6 address"),
        BeforeValidator(strip_whitespace),
    ]
    cidr: Annotated[
        str | None,
        Field(default=None, description="IPv6 prefix to allocate the next free address from"),
        BeforeValidator(strip_whitespace),
    ]
    filter_params: Annotated[
        dict[str, EAValue] | None,
        Field(default=None, description="Predicate used to discover an existing record"),
    ]
    network_view: Annotated[str | None, Field(default=None), BeforeValidator(strip_whitespace)]
    dns_view: Annotated[str | None, Field(default=None), BeforeValidator(strip_whitespace)]
    ttl: Annotated[int | None, Field(default=None, description="TTL in seconds")]
    use_ttl: Annotated[bool | None, Field(default=None)]
    comment: Annotated[str | None, Field(default=None)]
    ext_attrs: Annotated[dict[str, EAValue], Field(default_factory=dict)]

    @field_validator("fqdn")
    @classmethod
    def validate_fqdn(cls, v: str) -> str:
        if not v:
            raise ValueError("'fqdn' is required")
        if any(c.isspace() for c in v):
            raise ValueError(f"'fqdn' must not contain whitespace: {v!r}")
        return v.rstrip(".")

    @field_validator("ipv6_addr")
    @classmethod
    def validate_ipv6_addr(cls, v: str | None) -> str | None:
        if v is None:
            return None
        try:
            return str(IPv6Address(v))
        except ValueError as e:
            raise ValueError(f"Invalid IPv6 address '{v}': {e}") from e

    @field_validator("cidr")
    @classmethod
    def validate_cidr(cls, v: str | None) -> str | None:
        """
        Validate and normalize IPv6 CIDR notation.

        "2001:db8::1/64" is normalized to "2001:db8::/64".
        """
        if v is None:
            return None
        try:
            return str(IPv6Network(v, strict=False))
        except ValueError as e:
            raise ValueError(f"Invalid IPv6 CIDR notation '{v}': {e}") from e

    @field_validator("filter_params", mode="before")
    @classmethod
    def validate_filter_params(cls, v: Any) -> dict[str, Any] | None:
        parsed = parse_json_object(v, "filter_params")
        return parsed or None

    @field_validator("ext_attrs", mode="before")
    @classmethod
    def validate_ext_attrs(cls, v: Any) -> dict[str, Any]:
        return parse_json_object(v, "ext_attrs") or {}

    @field_validator("ttl")
    @classmethod
    def validate_ttl(cls, v: int | None) -> int | None:
        if v is not None and v < 0:
            raise ValueError(f"TTL must be a non-negative integer, got {v}")
        return v

    @property
    def effective_use_ttl(self) -> bool:
        """Whether the TTL is sent; an explicit use_ttl wins, otherwise 'ttl is set'."""
        if self.use_ttl is not None:
            return self.use_ttl
        return self.ttl is not None

    def with_defaults(self, dns_view: str, network_view: str) -> "DeclaredRecord":
        """
        Return a copy with unset views filled in.

        Args:
            dns_view: DNS view to use when none is declared.
            network_view: Network view to use when none is declared.
        """
        updates: dict[str, str] = {}
        if self.dns_view is None:
            updates["dns_view"] = dns_view
        if self.network_view is None:
            updates["network_view"] = network_view
        if not updates:
            return self
        return self.model_copy(update=updates)


def flatten_extattrs(v: Any) -> dict[str, Any]:
    """
    Convert WAPI's nested EA encoding to a flat mapping.

    ``{"Site": {"value": "HQ"}}`` becomes ``{"Site": "HQ"}``. Values already
    flat are kept as they are.
    """
    if not v:
        return {}
    flat: dict[str, Any] = {}
    for key, value in v.items():
        if isinstance(value, dict) and "value" in value:
            flat[key] = value["value"]
        else:
            flat[key] = value
    return flat


def nest_extattrs(attrs: dict[str, Any]) -> dict[str, dict[str, Any]]:
    """Convert a flat EA mapping to WAPI's ``{"Key": {"value": v}}`` encoding."""
    return {key: {"value": value} for key, value in attrs.items()}


class RemoteRecord(BaseModel):
    """
    A record:aaaa object as returned by WAPI.

    Attributes:
        ref: Opaque WAPI reference (``record:aaaa/ZG5z...:name/default``)
        name: FQDN
        ipv6addr: Concrete IPv6 address
        view: DNS view
        ttl: TTL in seconds (meaningful only when use_ttl is true)
        use_ttl: Whether the record-level TTL overrides the zone default
        comment: Free-text comment
        extattrs: Flattened extensible attributes
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    ref: str = Field(..., alias="_ref")
    name: str | None = None
    ipv6addr: str | None = None
    view: str | None = None
    ttl: int | None = None
    use_ttl: bool | None = None
    comment: str | None = None
    extattrs: dict[str, Any] = Field(default_factory=dict)

    @field_validator("extattrs", mode="before")
    @classmethod
    def flatten(cls, v: Any) -> dict[str, Any]:
        return flatten_extattrs(v)
