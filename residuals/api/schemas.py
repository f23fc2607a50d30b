"""
/api/v1/schemas endpoints.
Read-only view of the processor schema registry.
"""

from fastapi import APIRouter, Depends

from residuals.dependencies import get_schema_registry, verify_api_key
from residuals.pipeline.schema_registry import SchemaRegistry
from residuals.schemas.processors import ProcessorSchema, SchemaRegistryDocument

router = APIRouter(prefix="/api/v1/schemas", tags=["schemas"], dependencies=[Depends(verify_api_key)])


@router.get("", response_model=SchemaRegistryDocument)
async def list_schemas(registry: SchemaRegistry = Depends(get_schema_registry)):
    return registry.to_document()


@router.get("/{processor_name}", response_model=ProcessorSchema)
async def get_schema(processor_name: str, registry: SchemaRegistry = Depends(get_schema_registry)):
    """Case-insensitive lookup; unknown processors map to 404."""
    return registry.get_schema(processor_name)
