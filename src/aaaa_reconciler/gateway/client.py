"""Infoblox-style WAPI client implementing the Remote Record Gateway.

Architecture Overview:
---------------------
- Async HTTP communication via httpx (lazy ``AsyncClient``, pooled connections)
- HTTP basic authentication on every request
- Objects addressed by opaque references (``record:aaaa/ZG5z...:name/view``)
- Extensible attributes nested as ``{"Key": {"value": v}}`` on the wire and
  flat everywhere else
- No retries: transient failures surface as TransientGatewayError and the
  apply orchestrator decides whether to try again

Common Endpoint Patterns:
------------------------
- GET    /wapi/{version}/record:aaaa?name=...&*Site=...   search
- GET    /wapi/{version}/{ref}                             read by reference
- POST   /wapi/{version}/record:aaaa                       create
- PUT    /wapi/{version}/{ref}                             update
- DELETE /wapi/{version}/{ref}                             delete
- GET    /wapi/{version}/ipv6network?network=...&network_view=...
- POST   /wapi/{version}/{network_ref}?_function=next_available_ip
"""

from typing import Any

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from ..config import WAPIConfig
from ..constants import (
    IPV6_NETWORK,
    RECORD_RETURN_FIELDS,
    WAPI_EXHAUSTED_MARKERS,
    WAPI_NOT_FOUND_MARKERS,
)
from ..models.record import RemoteRecord, nest_extattrs
from ..utils.exceptions import (
    AllocationExhausted,
    GatewayAuthenticationError,
    GatewayError,
    NotFoundError,
    TransientGatewayError,
)

logger = structlog.get_logger(__name__)


class WAPIErrorResponse(BaseModel):
    """Error body returned by WAPI.

    Example:
        {"Error": "AdmConDataNotFoundError: Reference ... not found",
         "code": "Client.Ibap.Data.NotFound",
         "text": "Reference ... not found"}
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    error: str | None = Field(None, alias="Error")
    code: str | None = None
    text: str | None = None

    def get_full_message(self) -> str:
        message = self.text or self.error or "Unknown WAPI error"
        if self.code:
            message += f" (Code: {self.code})"
        return message

    def matches(self, markers: tuple[str, ...]) -> bool:
        haystack = " ".join(part for part in (self.error, self.code, self.text) if part)
        return any(marker in haystack for marker in markers)


class WAPIClient:
    """
    Remote Record Gateway over the WAPI REST interface.

    Features:
    - Basic authentication
    - Connection pooling via httpx.AsyncClient
    - Error translation into the reconciler's exception taxonomy
    """

    def __init__(self, config: WAPIConfig) -> None:
        """
        Initialize the client.

        Args:
            config: WAPI connection details
        """
        self.config = config
        self.base_url = f"{config.base_url.rstrip('/')}/wapi/{config.wapi_version}"
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "WAPIClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        """HTTP client, created on first use."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                auth=httpx.BasicAuth(self.config.username, self.config.password),
                verify=self.config.verify_ssl,
                timeout=self.config.timeout,
                limits=httpx.Limits(
                    max_connections=self.config.max_connections,
                    max_keepalive_connections=self.config.max_keepalive,
                ),
            )
        return self._client

    async def request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
        json: Any = None,
        resource: str | None = None,
    ) -> Any:
        """
        Make an authenticated request to WAPI.

        Args:
            method: HTTP method
            endpoint: Object type or reference (relative to base URL)
            params: Query parameters
            json: JSON body
            resource: Label used in NotFoundError messages (defaults to endpoint)

        Returns:
            Parsed JSON response, or None for an empty body

        Raises:
            NotFoundError: 404 or a WAPI NotFound error
            GatewayAuthenticationError: 401/403
            TransientGatewayError: Network failure, timeout, 429 or 5xx
            GatewayError: Any other error response
        """
        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        logger.debug("WAPI request", method=method, endpoint=endpoint, params=params)

        try:
            response = await self.client.request(method, url, params=params, json=json)
        except (httpx.NetworkError, httpx.TimeoutException) as e:
            raise TransientGatewayError(f"WAPI request failed: {e}") from e
        except httpx.HTTPError as e:
            raise GatewayError(f"HTTP request failed: {e}") from e

        if not response.is_error:
            if not response.content:
                return None
            return response.json()

        error = self._parse_error(response)
        message = error.get_full_message() if error else response.text
        status = response.status_code

        if status == 404 or (error and error.matches(WAPI_NOT_FOUND_MARKERS)):
            raise NotFoundError(resource or endpoint, message)
        if status in (401, 403):
            raise GatewayAuthenticationError(f"Authentication failed: {message}", status)
        if status == 429 or status >= 500:
            raise TransientGatewayError(f"WAPI error {status}: {message}", status_code=status)
        raise GatewayError(f"WAPI error {status}: {message}", status_code=status)

    def _parse_error(self, response: httpx.Response) -> WAPIErrorResponse | None:
        try:
            data = response.json()
        except ValueError:
            return None
        if not isinstance(data, dict):
            return None
        try:
            return WAPIErrorResponse.model_validate(data)
        except PydanticValidationError:
            return None

    def _return_fields(self) -> dict[str, str]:
        return {"_return_fields": ",".join(RECORD_RETURN_FIELDS)}

    def _to_wire(self, payload: dict[str, Any]) -> dict[str, Any]:
        body = dict(payload)
        if "extattrs" in body:
            body["extattrs"] = nest_extattrs(body["extattrs"])
        return body

    def _to_record(self, data: Any) -> RemoteRecord:
        if isinstance(data, dict) and "result" in data:
            data = data["result"]
        if not isinstance(data, dict):
            raise GatewayError(f"Unexpected WAPI response: {data!r}")
        return RemoteRecord.model_validate(data)

    # -------------------------------------------------------------------------
    # Remote Record Gateway
    # -------------------------------------------------------------------------

    async def get_by_ref(self, ref: str) -> RemoteRecord:
        """Fetch one object by reference."""
        data = await self.request("GET", ref, params=self._return_fields(), resource=ref)
        return self._to_record(data)

    async def search(self, kind: str, predicate: dict[str, str]) -> list[RemoteRecord]:
        """
        Search objects of one type.

        Predicate keys starting with ``*`` are EA filters and are passed to
        WAPI as-is (``*Site=Blr``).
        """
        params = {**predicate, **self._return_fields()}
        data = await self.request("GET", kind, params=params)
        if not data:
            return []
        return [self._to_record(item) for item in data]

    async def create(self, kind: str, payload: dict[str, Any]) -> RemoteRecord:
        """Create an object and return it as stored."""
        params = {**self._return_fields(), "_return_as_object": "1"}
        data = await self.request("POST", kind, params=params, json=self._to_wire(payload))
        record = self._to_record(data)
        logger.debug("WAPI object created", kind=kind, ref=record.ref)
        return record

    async def update(self, ref: str, payload: dict[str, Any]) -> RemoteRecord:
        """Update the object at ``ref`` and return it as stored."""
        params = {**self._return_fields(), "_return_as_object": "1"}
        data = await self.request(
            "PUT", ref, params=params, json=self._to_wire(payload), resource=ref
        )
        return self._to_record(data)

    async def delete(self, ref: str) -> None:
        """Delete the object at ``ref``."""
        await self.request("DELETE", ref, resource=ref)

    async def allocate_next_address(self, network_view: str, cidr: str) -> str:
        """
        Ask WAPI for the next available address in a network.

        Raises:
            NotFoundError: If the network does not exist in the network view
            AllocationExhausted: If the network has no free address
        """
        networks = await self.request(
            "GET",
            IPV6_NETWORK,
            params={"network": cidr, "network_view": network_view},
        )
        if not networks:
            raise NotFoundError(IPV6_NETWORK, f"{cidr} in network view '{network_view}'")

        network_ref = networks[0]["_ref"]
        try:
            data = await self.request(
                "POST",
                network_ref,
                params={"_function": "next_available_ip"},
                json={"num": 1},
                resource=network_ref,
            )
        except GatewayError as e:
            if any(marker in str(e) for marker in WAPI_EXHAUSTED_MARKERS):
                raise AllocationExhausted(network_view, cidr, detail=str(e)) from e
            raise

        ips = (data or {}).get("ips") or []
        if not ips:
            raise AllocationExhausted(network_view, cidr)
        return ips[0]
