"""
/api/v1/jobs endpoints.
Import queue statistics and queued import status.
"""

from fastapi import APIRouter, Depends, HTTPException
from redis import Redis
from rq import Queue
from rq.exceptions import NoSuchJobError
from rq.job import Job
from rq.worker import Worker

from residuals.config import settings
from residuals.dependencies import verify_api_key
from residuals.schemas.jobs import JobStatus, QueueStats

router = APIRouter(prefix="/api/v1/jobs", tags=["jobs"], dependencies=[Depends(verify_api_key)])


def _get_redis() -> Redis:
    """Get a Redis connection."""
    return Redis.from_url(settings.REDIS_URL)


@router.get("/queue/stats", response_model=QueueStats)
async def queue_stats():
    """Get current import queue statistics."""
    try:
        conn = _get_redis()
        q = Queue(settings.QUEUE_NAME, connection=conn)
        workers = Worker.all(connection=conn)

        return QueueStats(
            queue_name=settings.QUEUE_NAME,
            queued=len(q),
            started=q.started_job_registry.count,
            finished=q.finished_job_registry.count,
            failed=q.failed_job_registry.count,
            deferred=q.deferred_job_registry.count,
            workers=len(workers),
        )
    except Exception as e:
        raise HTTPException(status_code=503, detail=f"Queue unavailable: {str(e)}")


@router.get("/{job_id}", response_model=JobStatus)
async def get_job_status(job_id: str):
    """Status of a queued import; the result is the ImportResult once finished."""
    try:
        job = Job.fetch(job_id, connection=_get_redis())
    except NoSuchJobError:
        raise HTTPException(status_code=404, detail=f"Job not found: {job_id}")
    except Exception as e:
        raise HTTPException(status_code=503, detail=f"Queue unavailable: {str(e)}")

    meta = job.meta or {}
    return JobStatus(
        job_id=job_id,
        file_name=meta.get("file_name", ""),
        month=meta.get("month"),
        status=job.get_status(),
        enqueued_at=job.enqueued_at,
        started_at=job.started_at,
        ended_at=job.ended_at,
        error_message=str(job.exc_info) if job.exc_info else None,
        result=job.result if job.is_finished else None,
    )
