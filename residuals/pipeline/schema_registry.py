"""
Processor schema registry.

Read-only, versioned table of per-processor field mappings, signatures and
plausible residual ranges. The built-in table can be replaced by a JSON
document (SCHEMA_REGISTRY_PATH) so new processors need no code change.
"""

import json
from decimal import Decimal
from pathlib import Path
from typing import Iterable, Iterator, Optional, Union

import structlog
from pydantic import ValidationError

from residuals.config import settings
from residuals.errors import InvalidSchemaError, SchemaNotFoundError
from residuals.models.enums import FileFormat
from residuals.schemas.processors import FieldMap, ProcessorSchema, SchemaRegistryDocument

logger = structlog.get_logger(__name__)


# Known processor layouts. TRX residuals sit in "Agent Residual"; the large
# "Net Sales Amount" column is volume and must never be read as revenue.
DEFAULT_SCHEMAS = [
    ProcessorSchema(
        name="Clearent",
        file_format=FileFormat.CSV,
        field_map=FieldMap(
            mid="Merchant ID",
            name="Merchant",
            revenue="Net",
            volume="Sales Amount",
            transactions="Transactions",
        ),
        revenue_range=(Decimal("0"), Decimal("10000")),
        signature=("Merchant ID", "Merchant", "Transactions", "Sales Amount", "Net"),
        filename_hints=("clearent",),
    ),
    ProcessorSchema(
        name="TRX",
        file_format=FileFormat.XLSX,
        field_map=FieldMap(
            mid="Client",
            name="Dba",
            revenue="Agent Residual",
            volume="Net Sales Amount",
            transactions="Net Sales Count",
        ),
        revenue_range=(Decimal("0"), Decimal("1000")),
        signature=("Client", "Dba", "Agent Residual", "Net Sales Amount"),
        filename_hints=("trx",),
    ),
    ProcessorSchema(
        name="Shift4",
        file_format=FileFormat.XLSX,
        field_map=FieldMap(
            mid="MID",
            name="Business Name",
            revenue="Payout Amount",
            volume="Processing Volume",
            transactions="Transaction Count",
        ),
        revenue_range=(Decimal("0"), Decimal("50000")),
        signature=("MID", "Business Name", "Payout Amount"),
        filename_hints=("shift4",),
    ),
    ProcessorSchema(
        name="Global Payments TSYS",
        file_format=FileFormat.CSV,
        field_map=FieldMap(
            mid="Merchant ID",
            name="Merchant Name",
            revenue="Net Income",
            volume="Monthly Volume",
            transactions="Transaction Count",
        ),
        revenue_range=(Decimal("0"), Decimal("15000")),
        signature=("Merchant ID", "Net Income", "Monthly Volume"),
        filename_hints=("tsys",),
    ),
    ProcessorSchema(
        name="Micamp Solutions",
        file_format=FileFormat.CSV,
        field_map=FieldMap(
            mid="Merchant ID",
            name="Merchant",
            revenue="Net",
            volume="Sales Amount",
            transactions="Transactions",
        ),
        revenue_range=(Decimal("0"), Decimal("8000")),
        signature=("Merchant ID", "Merchant", "Net", "Sales Amount"),
        filename_hints=("micamp",),
    ),
]

DEFAULT_VERSION = "2025.1"


class SchemaRegistry:
    """
    Ordered, immutable collection of processor schemas.
    Registration order is significant: it breaks detection ties.
    """

    def __init__(self, schemas: Iterable[ProcessorSchema], version: str = DEFAULT_VERSION):
        self.version = version
        self._schemas: dict[str, ProcessorSchema] = {}
        for schema in schemas:
            key = schema.name.strip().lower()
            if key in self._schemas:
                raise InvalidSchemaError(f"Duplicate processor schema '{schema.name}'")
            self._schemas[key] = schema

    @classmethod
    def from_document(cls, document: dict) -> "SchemaRegistry":
        try:
            parsed = SchemaRegistryDocument.model_validate(document)
        except ValidationError as e:
            raise InvalidSchemaError(f"Invalid schema registry document: {e}") from e
        return cls(parsed.schemas, version=parsed.version)

    @classmethod
    def from_json_file(cls, path: Union[str, Path]) -> "SchemaRegistry":
        path = Path(path)
        try:
            document = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise InvalidSchemaError(f"Cannot load schema registry from {path}: {e}") from e
        registry = cls.from_document(document)
        logger.info("schema_registry_loaded", path=str(path), version=registry.version,
                    processors=registry.names())
        return registry

    def get_schema(self, processor_name: str) -> ProcessorSchema:
        """Look up a schema by processor name (case-insensitive)."""
        schema = self.find(processor_name)
        if schema is None:
            raise SchemaNotFoundError(processor_name)
        return schema

    def find(self, processor_name: Optional[str]) -> Optional[ProcessorSchema]:
        if not processor_name:
            return None
        return self._schemas.get(processor_name.strip().lower())

    def names(self) -> list[str]:
        return [s.name for s in self._schemas.values()]

    def to_document(self) -> SchemaRegistryDocument:
        return SchemaRegistryDocument(version=self.version, schemas=list(self))

    def __iter__(self) -> Iterator[ProcessorSchema]:
        return iter(self._schemas.values())

    def __len__(self) -> int:
        return len(self._schemas)

    def __contains__(self, processor_name: object) -> bool:
        return isinstance(processor_name, str) and self.find(processor_name) is not None


_default_registry: Optional[SchemaRegistry] = None


def default_registry() -> SchemaRegistry:
    """Registry from SCHEMA_REGISTRY_PATH if configured, else the built-in table."""
    global _default_registry
    if _default_registry is None:
        if settings.SCHEMA_REGISTRY_PATH:
            _default_registry = SchemaRegistry.from_json_file(settings.SCHEMA_REGISTRY_PATH)
        else:
            _default_registry = SchemaRegistry(DEFAULT_SCHEMAS)
    return _default_registry
