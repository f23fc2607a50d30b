"""
Worker entry point.
Run with: python -m residuals.worker.runner [--burst]
"""

import socket
import sys
from typing import Optional

from redis import Redis
from rq import Worker

from residuals.config import settings
from residuals.observability.logging import setup_logging


def _init_sentry() -> None:
    if not settings.SENTRY_DSN:
        return
    import sentry_sdk
    from sentry_sdk.integrations.rq import RqIntegration
    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        integrations=[RqIntegration()],
        traces_sample_rate=0.1,
    )


def main(argv: Optional[list[str]] = None):
    """Start the RQ worker. --burst drains the queue and exits."""
    argv = sys.argv[1:] if argv is None else argv
    setup_logging(service="worker", level=settings.WORKER_LOG_LEVEL)
    _init_sentry()

    conn = Redis.from_url(settings.REDIS_URL)
    worker = Worker(
        queues=[settings.QUEUE_NAME],
        connection=conn,
        name=f"import-worker-{socket.gethostname()}-{settings.APP_VERSION}",
    )

    print(f"Starting import worker on queue '{settings.QUEUE_NAME}'...")
    worker.work(burst="--burst" in argv, with_scheduler=False)


if __name__ == "__main__":
    main()
