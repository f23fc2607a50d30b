"""
RQ job functions for processor file imports.
These are the entry points that the worker calls.
"""

from typing import Optional

import structlog
from redis import Redis
from rq import Queue

from residuals.config import settings

logger = structlog.get_logger(__name__)


def get_queue() -> Queue:
    """Get the import job queue."""
    conn = Redis.from_url(settings.REDIS_URL)
    return Queue(settings.QUEUE_NAME, connection=conn)


def enqueue_import(
    file_path: str,
    month: str,
    processor_name: Optional[str] = None,
    agency_id: Optional[int] = None,
    file_name: Optional[str] = None,
) -> str:
    """
    Enqueue a stored processor file for import.
    Returns the job ID.
    """
    q = get_queue()
    job = q.enqueue(
        import_file_job,
        file_path,
        month,
        processor_name,
        agency_id,
        file_name,
        job_timeout=settings.JOB_TIMEOUT_SECONDS,
        result_ttl=86400,  # Keep results for 24 hours
        failure_ttl=604800,  # Keep failures for 7 days
        meta={"file_name": file_name or file_path, "month": month},
    )
    logger.info("job_enqueued", file_name=file_name, month=month, job_id=job.id)
    return job.id


def import_file_job(
    file_path: str,
    month: str,
    processor_name: Optional[str] = None,
    agency_id: Optional[int] = None,
    file_name: Optional[str] = None,
) -> dict:
    """
    Main job function: import one processor file.
    This runs inside the RQ worker process.
    """
    import asyncio

    logger.info("job_started", file_path=file_path, month=month)

    try:
        result = asyncio.run(_import_file_async(file_path, month, processor_name, agency_id, file_name))
        logger.info("job_completed", file_path=file_path, success=result.get("success"),
                    records_imported=result.get("records_imported"))
        return result
    except Exception as e:
        logger.error("job_failed", file_path=file_path, error=str(e))
        raise


async def _import_file_async(
    file_path: str,
    month: str,
    processor_name: Optional[str],
    agency_id: Optional[int],
    file_name: Optional[str],
) -> dict:
    """Runs on a fresh event loop per job, so it builds its own unpooled engine."""
    from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
    from sqlalchemy.pool import NullPool

    from residuals.pipeline.orchestrator import ImportOrchestrator

    engine = create_async_engine(settings.DATABASE_URL, poolclass=NullPool)
    try:
        orchestrator = ImportOrchestrator(
            session_factory=async_sessionmaker(engine, expire_on_commit=False),
        )
        result = await orchestrator.import_file(
            file_path, month, processor_name=processor_name, agency_id=agency_id, file_name=file_name,
        )
        return result.model_dump(mode="json")
    finally:
        await engine.dispose()
