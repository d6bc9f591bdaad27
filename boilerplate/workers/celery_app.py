"""
workers/celery_app.py

Celery application for background jobs (Redis broker).

Usage:
  # Start a worker consuming every queue
  celery -A boilerplate.workers.celery_app worker -Q critical,default,low --loglevel=info

Non-developer summary:
----------------------
Slow or retryable work (emails, exports, ...) is handed to background
workers instead of making the caller wait. Jobs land on one of three queues
by urgency and are retried a bounded number of times when they fail.
"""

from __future__ import annotations

import logging
from typing import Optional

from celery import Celery, Task
from celery.exceptions import Retry
from celery.signals import task_failure, task_postrun, task_prerun

from ..core.config import Settings, get_settings

logger = logging.getLogger(__name__)

QUEUES = ("critical", "default", "low")
DEFAULT_BROKER_URL = "redis://localhost:6379/0"


class JobTask(Task):
    """
    Base task: failures are retried until the message's `max_retry` header
    (set by JobService.enqueue) is exhausted, then the error propagates.
    """

    max_retries = 3
    default_retry_delay = 5

    def allowed_retries(self) -> int:
        value = getattr(self.request, "max_retry", None)
        if value is None:
            value = (getattr(self.request, "headers", None) or {}).get("max_retry")
        return self.max_retries if value is None else int(value)

    def __call__(self, *args, **kwargs):
        try:
            return super().__call__(*args, **kwargs)
        except Retry:
            raise
        except Exception as exc:
            limit = self.allowed_retries()
            if (self.request.retries or 0) < limit:
                logger.warning(
                    "job failed, retrying",
                    extra={"taskType": self.name, "taskId": self.request.id},
                )
                raise self.retry(exc=exc, max_retries=limit)
            raise


def create_celery_app(settings: Optional[Settings] = None) -> Celery:
    settings = settings or get_settings()
    broker = str(settings.REDIS_URL) if settings.REDIS_URL else DEFAULT_BROKER_URL

    app = Celery(settings.APP_NAME, broker=broker, backend=broker, task_cls=JobTask)
    app.conf.update(
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        # Acknowledge after completion so a crashed worker's job is redelivered
        task_acks_late=True,
        worker_prefetch_multiplier=1,
        result_expires=3600,
        task_time_limit=int(settings.JOBS_TIMEOUT_SEC),
        task_default_queue=settings.JOBS_DEFAULT_QUEUE,
        task_queues={name: {"exchange": name, "routing_key": name} for name in QUEUES},
    )

    @app.task(bind=True, name="system.healthcheck")
    def healthcheck(self):
        """Verifies a worker is consuming: healthcheck.delay().get(timeout=5) == "OK"."""
        return "OK"

    return app


# ---------------------------------------------------------------------------
# Lifecycle logging
# ---------------------------------------------------------------------------

@task_prerun.connect
def _task_prerun(sender=None, task_id=None, task=None, **extra):
    logger.info("job started", extra={"taskType": getattr(task, "name", None), "taskId": task_id})


@task_postrun.connect
def _task_postrun(sender=None, task_id=None, task=None, state=None, **extra):
    logger.info(
        "job finished",
        extra={"taskType": getattr(task, "name", None), "taskId": task_id, "outcome": state},
    )


@task_failure.connect
def _task_failure(sender=None, task_id=None, exception=None, einfo=None, **extra):
    logger.error(
        "job failed",
        exc_info=exception,
        extra={"taskType": getattr(sender, "name", None), "taskId": task_id},
    )


celery_app = create_celery_app()
