"""Custom exceptions for the AAAA record reconciler.

Exception Hierarchy:
-------------------
ReconcilerError (base)
├── ValidationError                 # Conflicting or malformed declared input
│   ├── SchemaValidationError       # Pydantic model validation failures
│   └── ViewUpdateNotAllowedError   # dns_view / network_view changed after creation
├── NotFoundError                   # Remote object absent (404 or WAPI NotFound)
├── AmbiguousMatchError             # Filter matched more than one remote object
├── AllocationExhausted             # No free address left in the requested CIDR
└── GatewayError (base for remote service errors)
    ├── TransientGatewayError       # Network failure, 429, 5xx: retryable
    └── GatewayAuthenticationError  # 401 / 403

Usage Guidelines:
----------------
1. ValidationError is never retried; its message is surfaced verbatim.
2. NotFoundError on read means "treat the record as deleted"; on delete it
   means "already gone" and is treated as success.
3. TransientGatewayError is the only error the apply orchestrator retries.
   The reconciler itself never loops.
4. Every error leaving a reconciler operation carries ``fqdn`` and
   ``operation`` so the caller can tell which record failed doing what.
"""


class ReconcilerError(Exception):
    """Base exception for all reconciler errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.fqdn: str | None = None
        self.operation: str | None = None

    def with_context(self, fqdn: str | None, operation: str) -> "ReconcilerError":
        """
        Attach record identity and operation name, keeping any inner context.

        Args:
            fqdn: FQDN of the record being reconciled.
            operation: Reconciler operation (create/read/update/delete).

        Returns:
            ReconcilerError: self, for use in ``raise exc.with_context(...)``.
        """
        if self.fqdn is None:
            self.fqdn = fqdn
        if self.operation is None:
            self.operation = operation
        return self

    @property
    def message(self) -> str:
        return str(self.args[0]) if self.args else ""


class ValidationError(ReconcilerError):
    """Raised when declared record fields conflict or are invalid."""

    def __init__(self, message: str, field: str | None = None) -> None:
        """
        Initialize ValidationError.

        Args:
            message: Error message, surfaced verbatim to the configuration layer.
            field: Optional name of the offending field.
        """
        super().__init__(message)
        self.field = field


class SchemaValidationError(ValidationError):
    """Raised when a declaration does not match the record schema."""

    def __init__(self, message: str, record_name: str | None = None) -> None:
        super().__init__(message)
        self.record_name = record_name

    def __str__(self) -> str:
        if self.record_name:
            return f"Record '{self.record_name}': {self.message}"
        return self.message


class ViewUpdateNotAllowedError(ValidationError):
    """Raised when dns_view or network_view differs from the value at creation."""

    def __init__(self, field: str) -> None:
        super().__init__(f"changing the value of '{field}' field is not allowed", field=field)


class NotFoundError(ReconcilerError):
    """Raised when a remote object cannot be found."""

    def __init__(self, resource_type: str, identifier: str) -> None:
        """
        Initialize NotFoundError.

        Args:
            resource_type: Type of object that wasn't found (e.g. "record:aaaa").
            identifier: Reference, internal id or predicate used in the lookup.
        """
        super().__init__(f"{resource_type} not found: {identifier}")
        self.resource_type = resource_type
        self.identifier = identifier


class AmbiguousMatchError(ReconcilerError):
    """Raised when a discovery filter matches more than one remote object."""

    def __init__(self, resource_type: str, predicate: dict[str, str], count: int) -> None:
        super().__init__(
            f"{resource_type} filter {predicate} matched {count} objects, expected exactly one"
        )
        self.resource_type = resource_type
        self.predicate = predicate
        self.count = count


class AllocationExhausted(ReconcilerError):
    """Raised when no address is available in the requested network."""

    def __init__(self, network_view: str, cidr: str, detail: str | None = None) -> None:
        message = f"no available IPv6 address in {cidr} (network view '{network_view}')"
        if detail:
            message += f": {detail}"
        super().__init__(message)
        self.network_view = network_view
        self.cidr = cidr


class GatewayError(ReconcilerError):
    """Base exception for remote service errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        """
        Initialize GatewayError.

        Args:
            message: Error message.
            status_code: Optional HTTP status code.
        """
        super().__init__(message)
        self.status_code = status_code


class TransientGatewayError(GatewayError):
    """Raised for failures worth retrying: network errors, 429 and 5xx responses."""

    pass


class GatewayAuthenticationError(GatewayError):
    """Raised when the remote service rejects the credentials."""

    def __init__(self, message: str = "Authentication failed", status_code: int = 401) -> None:
        super().__init__(message, status_code=status_code)
