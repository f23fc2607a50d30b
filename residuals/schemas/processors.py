"""
Processor schema contracts.
A ProcessorSchema describes one processor's monthly residual file: where each
canonical field lives, which headers identify the file, and which net
residual values are plausible.
"""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from residuals.models.enums import CanonicalField, DetectionSource, FileFormat


class FieldMap(BaseModel):
    """Canonical field -> source column name. All five fields are mandatory."""
    model_config = ConfigDict(frozen=True)

    mid: str = Field(min_length=1)
    name: str = Field(min_length=1)
    revenue: str = Field(min_length=1)
    volume: str = Field(min_length=1)
    transactions: str = Field(min_length=1)

    def column_for(self, field: CanonicalField) -> str:
        return getattr(self, field.value)


class ProcessorSchema(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    file_format: FileFormat
    field_map: FieldMap
    revenue_range: tuple[Decimal, Decimal]
    signature: tuple[str, ...] = Field(min_length=1)
    # Case-insensitive filename fragments that force this schema
    filename_hints: tuple[str, ...] = ()

    @field_validator("signature")
    @classmethod
    def _signature_not_blank(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        cleaned = tuple(v.strip() for v in value if v and v.strip())
        if not cleaned:
            raise ValueError("signature must contain at least one column name")
        return cleaned

    @field_validator("filename_hints")
    @classmethod
    def _lower_hints(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        return tuple(v.strip().lower() for v in value if v and v.strip())

    @model_validator(mode="after")
    def _range_ordered(self) -> "ProcessorSchema":
        low, high = self.revenue_range
        if low > high:
            raise ValueError(f"revenue_range min {low} exceeds max {high}")
        return self

    @property
    def revenue_min(self) -> Decimal:
        return self.revenue_range[0]

    @property
    def revenue_max(self) -> Decimal:
        return self.revenue_range[1]


class SchemaRegistryDocument(BaseModel):
    """Serialisable registry contents, e.g. loaded from SCHEMA_REGISTRY_PATH."""
    version: str = "1"
    schemas: list[ProcessorSchema]


class DetectionResult(BaseModel):
    processor_name: Optional[str] = None
    confidence: float = 0.0
    source: Optional[DetectionSource] = None
    signals: list[str] = []

    @property
    def detected(self) -> bool:
        return self.processor_name is not None
