"""
/api/v1/imports endpoints.
Upload a processor file and import it inline, queue it, or import a batch.
"""

import re
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status

from residuals.dependencies import get_orchestrator, get_upload_store, verify_api_key
from residuals.errors import InvalidRequestError
from residuals.pipeline.orchestrator import ImportOrchestrator
from residuals.schemas.imports import (
    ImportConfig,
    ImportMultipleResult,
    ImportQueuedResponse,
    ImportResult,
)
from residuals.schemas.records import MONTH_PATTERN
from residuals.storage.upload_store import StoredUpload, UploadStore

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/imports", tags=["imports"], dependencies=[Depends(verify_api_key)])


async def _store_upload(store: UploadStore, file: UploadFile, month: str) -> StoredUpload:
    if not re.fullmatch(MONTH_PATTERN, month or ""):
        raise InvalidRequestError(f"Month must be YYYY-MM, got '{month}'")
    data = await file.read()
    stored = store.save(month, file.filename or "upload", data)
    logger.info("processor_file_uploaded", file_name=file.filename, month=month,
                size_bytes=stored.size_bytes, file_hash=stored.content_hash)
    return stored


@router.post("", response_model=ImportResult)
async def import_processor_file(
    file: UploadFile = File(...),
    month: str = Form(...),
    processor_name: Optional[str] = Form(None),
    agency_id: Optional[int] = Form(None),
    store: UploadStore = Depends(get_upload_store),
    orchestrator: ImportOrchestrator = Depends(get_orchestrator),
):
    """
    Import one processor file for a month. processor_name, when given,
    overrides detection and must name a registered processor.
    A file-level failure is returned as success=false with error_code.
    """
    stored = await _store_upload(store, file, month)
    return await orchestrator.import_file(
        str(stored.full_path),
        month,
        processor_name=processor_name or None,
        agency_id=agency_id,
        file_name=file.filename,
    )


@router.post("/queue", response_model=ImportQueuedResponse, status_code=status.HTTP_202_ACCEPTED)
async def queue_processor_file(
    file: UploadFile = File(...),
    month: str = Form(...),
    processor_name: Optional[str] = Form(None),
    agency_id: Optional[int] = Form(None),
    store: UploadStore = Depends(get_upload_store),
):
    """Store the file and import it on the background worker."""
    stored = await _store_upload(store, file, month)
    try:
        from residuals.worker.jobs import enqueue_import
        job_id = enqueue_import(
            str(stored.full_path),
            month,
            processor_name=processor_name or None,
            agency_id=agency_id,
            file_name=file.filename,
        )
    except Exception as e:
        logger.warning("enqueue_failed", file_name=file.filename, error=str(e))
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                            detail=f"Queue unavailable: {e}")

    return ImportQueuedResponse(job_id=job_id, file_name=file.filename or stored.relative_path, month=month)


@router.post("/batch", response_model=ImportMultipleResult)
async def import_multiple_files(
    files: list[UploadFile] = File(...),
    month: str = Form(...),
    processor_names: Optional[str] = Form(None),
    agency_id: Optional[int] = Form(None),
    store: UploadStore = Depends(get_upload_store),
    orchestrator: ImportOrchestrator = Depends(get_orchestrator),
):
    """
    Import several files for one month and audit them together.
    processor_names is an optional comma-separated list aligned with files;
    blank entries mean auto-detect.
    """
    names: list[Optional[str]] = [None] * len(files)
    if processor_names:
        parts = [p.strip() or None for p in processor_names.split(",")]
        if len(parts) != len(files):
            raise InvalidRequestError(
                f"processor_names has {len(parts)} entries for {len(files)} files"
            )
        names = parts

    configs = []
    for upload, name in zip(files, names):
        stored = await _store_upload(store, upload, month)
        configs.append(ImportConfig(
            file_path=str(stored.full_path),
            month=month,
            processor_name=name,
            agency_id=agency_id,
            file_name=upload.filename,
        ))

    return await orchestrator.import_multiple(configs)
