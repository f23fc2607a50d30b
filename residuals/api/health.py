"""
Health check endpoints.
/health always returns 200 so platform healthchecks pass while the
database is down; /health/ready reflects real dependency state.
"""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text

from residuals.config import settings
from residuals.dependencies import get_schema_registry
from residuals.models.database import async_session_factory
from residuals.pipeline.schema_registry import SchemaRegistry

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(registry: SchemaRegistry = Depends(get_schema_registry)):
    """Liveness plus a DB connectivity probe that never fails the response."""
    db_ok = False
    db_error = None
    try:
        async with async_session_factory() as session:
            result = await session.execute(text("SELECT 1"))
            db_ok = result.scalar() == 1
    except Exception as e:
        db_error = str(e)[:200]

    response = {
        "status": "healthy" if db_ok else "degraded",
        "version": settings.APP_VERSION,
        "schema_registry_version": registry.version,
        "processors": len(registry),
        "database": "connected" if db_ok else "unreachable",
    }
    if db_error:
        response["database_error"] = db_error

    return response


@router.get("/health/ready")
async def readiness_check():
    """Readiness probe: 503 until the database answers."""
    try:
        async with async_session_factory() as session:
            await session.execute(text("SELECT 1"))
    except Exception as e:
        return JSONResponse(status_code=503, content={"ready": False, "error": str(e)[:200]})
    return {"ready": True}
