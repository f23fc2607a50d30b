"""
FastAPI dependency injection.
Provides DB sessions, the upload store, the schema registry, the import
orchestrator, the assignment engine and API key validation.
"""

from typing import AsyncIterator, Optional

from fastapi import Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from residuals.assignments.engine import AssignmentEngine
from residuals.config import settings
from residuals.models.database import get_session
from residuals.pipeline.anomaly_detector import AnomalyDetector
from residuals.pipeline.orchestrator import ImportOrchestrator
from residuals.pipeline.schema_registry import SchemaRegistry, default_registry
from residuals.storage.upload_store import UploadStore


# ── Singleton instances ──────────────────────────────────────
_upload_store: Optional[UploadStore] = None


def get_upload_store() -> UploadStore:
    """Get or create the upload store singleton."""
    global _upload_store
    if _upload_store is None:
        _upload_store = UploadStore()
    return _upload_store


def get_schema_registry() -> SchemaRegistry:
    return default_registry()


def get_orchestrator() -> ImportOrchestrator:
    return ImportOrchestrator(registry=default_registry())


def get_assignment_engine() -> AssignmentEngine:
    return AssignmentEngine()


def get_anomaly_detector() -> AnomalyDetector:
    return AnomalyDetector()


async def get_db() -> AsyncIterator[AsyncSession]:
    """Yield an async DB session."""
    async for session in get_session():
        yield session


async def verify_api_key(
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
) -> Optional[str]:
    """
    Verify API key if configured.
    If API_KEY is not set, all requests are allowed (dev mode).
    """
    if settings.API_KEY is None:
        return None

    if x_api_key is None or x_api_key != settings.API_KEY:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
        )
    return x_api_key
