"""
Top-level API router.
Combines all sub-routers into a single router.
"""

from fastapi import APIRouter

from residuals.api.assignments import router as assignments_router
from residuals.api.audit import router as audit_router
from residuals.api.health import router as health_router
from residuals.api.imports import router as imports_router
from residuals.api.jobs import router as jobs_router
from residuals.api.schemas import router as schemas_router

api_router = APIRouter()

api_router.include_router(health_router)
api_router.include_router(imports_router)
api_router.include_router(jobs_router)
api_router.include_router(audit_router)
api_router.include_router(assignments_router)
api_router.include_router(schemas_router)
