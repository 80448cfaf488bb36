"""Declaration file loader.

Overview:
--------
Reads a YAML declaration file and converts every entry into a validated
``DeclaredRecord``. Record names are the keys of the top-level ``records``
mapping and identify tracked state across runs.

File Format:
-----------
```
records:
  web:
    fqdn: web.example.com
    address: "2001:db8::10"
    ttl: 300
  api:
    fqdn: api.example.com
    cidr: "2001:db8:1::/64"
    network_view: default
    ext_attrs: {Owner: team-a}
  legacy:
    fqdn: legacy.example.com
    filter_params: '{"*Site": "Blr"}'
```

Error Handling:
--------------
- FileNotFoundError: declaration file doesn't exist
- SchemaValidationError: bad YAML, wrong top-level shape, or a record that
  fails pydantic validation (strict mode raises on the first one)
"""

from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic import ValidationError as PydanticValidationError

from ..models.record import DeclaredRecord
from ..utils.exceptions import SchemaValidationError

logger = structlog.get_logger(__name__)


def format_pydantic_error(error: PydanticValidationError) -> str:
    """Render pydantic errors as ``field: message`` pairs joined by ``; ``."""
    parts = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"]) or "record"
        message = item["msg"].removeprefix("Value error, ")
        parts.append(f"{location}: {message}")
    return "; ".join(parts)


class DeclarationLoader:
    """
    Load declared records from YAML.

    Features:
    - Accepts ``address`` as an alias of ``ipv6_addr``
    - ``filter_params`` and ``ext_attrs`` as mappings or JSON strings
    - Strict mode fails fast; non-strict mode collects every error
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.errors: list[SchemaValidationError] = []

    def load(self, strict: bool = True) -> dict[str, DeclaredRecord]:
        """
        Parse the declaration file.

        Args:
            strict: If True, raise on the first invalid record. If False,
                skip invalid records and keep their errors in ``self.errors``.

        Returns:
            Mapping of record name to DeclaredRecord, in file order

        Raises:
            FileNotFoundError: If the file doesn't exist
            SchemaValidationError: On malformed files, and on invalid records
                in strict mode
        """
        if not self.path.exists():
            raise FileNotFoundError(f"Declaration file not found: {self.path}")

        logger.info("Loading declarations", path=str(self.path))
        self.errors = []

        raw = self._read_yaml()
        records: dict[str, DeclaredRecord] = {}
        for name, body in raw.items():
            try:
                records[str(name)] = self.parse_record(str(name), body)
            except SchemaValidationError as e:
                if strict:
                    raise
                logger.warning("Invalid declaration", record=str(name), error=str(e))
                self.errors.append(e)

        logger.info("Declarations loaded", records=len(records), errors=len(self.errors))
        return records

    def _read_yaml(self) -> dict[Any, Any]:
        try:
            with open(self.path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise SchemaValidationError(f"Invalid YAML in {self.path}: {e}") from e

        if data is None:
            logger.warning("Declaration file is empty", path=str(self.path))
            return {}
        if not isinstance(data, dict) or "records" not in data:
            raise SchemaValidationError(f"{self.path}: expected a top-level 'records' mapping")
        records = data["records"] or {}
        if not isinstance(records, dict):
            raise SchemaValidationError(f"{self.path}: 'records' must map names to records")
        return records

    @staticmethod
    def parse_record(name: str, body: Any) -> DeclaredRecord:
        """
        Validate one declaration body.

        Raises:
            SchemaValidationError: If the body is not a mapping or fails validation
        """
        if not isinstance(body, dict):
            raise SchemaValidationError("declaration must be a mapping", record_name=name)
        try:
            return DeclaredRecord.model_validate(body)
        except PydanticValidationError as e:
            raise SchemaValidationError(format_pydantic_error(e), record_name=name) from e
