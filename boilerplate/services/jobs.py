"""
services/jobs.py

Publish background jobs to the Celery workers.

    task_id = await jobs.enqueue("email.send", {"to": "a@b.co"}, JobOptions(queue="critical"))

Publishing happens on a worker thread (the broker client is blocking); the
caller gets the task id back and never waits for the job itself.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Any, Mapping, Optional

from celery import Celery

from ..core.config import Settings
from ..workers.celery_app import QUEUES

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobOptions:
    max_retry: int = 3
    queue: str = "default"
    timeout: float = 30.0  # seconds, hard time limit on the worker


class JobService:
    def __init__(self, celery: Celery, defaults: Optional[JobOptions] = None):
        self.celery = celery
        self.defaults = defaults or JobOptions()

    @classmethod
    def from_settings(cls, settings: Settings, celery: Optional[Celery] = None) -> "JobService":
        if celery is None:
            from ..workers.celery_app import create_celery_app

            celery = create_celery_app(settings)
        defaults = JobOptions(
            max_retry=settings.JOBS_MAX_RETRY,
            queue=settings.JOBS_DEFAULT_QUEUE,
            timeout=settings.JOBS_TIMEOUT_SEC,
        )
        return cls(celery, defaults)

    def options(self, **overrides: Any) -> JobOptions:
        """Service defaults with some fields replaced."""
        return replace(self.defaults, **overrides)

    async def enqueue(
        self,
        task_type: str,
        payload: Mapping[str, Any],
        options: Optional[JobOptions] = None,
    ) -> str:
        if not task_type:
            raise ValueError("task_type is required")
        opts = options or self.defaults
        if opts.queue not in QUEUES:
            raise ValueError(f"unknown queue {opts.queue!r}; expected one of {', '.join(QUEUES)}")
        if opts.max_retry < 0:
            raise ValueError("max_retry must be >= 0")

        result = await asyncio.to_thread(
            self.celery.send_task,
            task_type,
            kwargs=dict(payload),
            queue=opts.queue,
            time_limit=opts.timeout,
            headers={"max_retry": opts.max_retry},
        )
        logger.info(
            "job enqueued",
            extra={"taskType": task_type, "taskId": result.id, "queue": opts.queue},
        )
        return result.id
