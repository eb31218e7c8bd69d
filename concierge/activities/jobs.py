"""Job lifecycle for provider-backed work.

A Job moves ``queued -> running -> done | failed``. Every failed attempt
leaves a JobError row; ``retry_job`` re-runs failed jobs until
``max_retries`` is used up.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

import structlog

from concierge.compiler.errors import CompilerError
from concierge.config import settings
from concierge.models.contracts import Job, JobError, JobType, utcnow
from concierge.storage.base import Store

logger = structlog.get_logger()

JobWork = Callable[[Job], Awaitable[dict[str, Any]]]


class JobRunner:
    def __init__(self, store: Store, clock: Callable[[], datetime] = utcnow) -> None:
        self._store = store
        self._clock = clock

    async def create(self, session_id: str, job_type: JobType, inputs: dict[str, Any]) -> Job:
        now = self._clock()
        job = Job(
            session_id=session_id,
            job_type=job_type,
            inputs=inputs,
            max_retries=settings.job_max_retries,
            created_at=now,
            updated_at=now,
        )
        await self._store.put_job(job)
        logger.info("job_created", job_id=job.id, job_type=job_type, session_id=session_id)
        return job

    async def record_error(self, job: Job, code: str, message: str) -> JobError:
        """Append a per-attempt failure record without changing the job status."""
        error = JobError(
            job_id=job.id,
            session_id=job.session_id,
            job_type=job.job_type,
            attempt=job.retry_count + 1,
            code=code,
            message=message,
            created_at=self._clock(),
        )
        await self._store.add_job_error(error)
        return error

    async def _save(self, job: Job, **changes: Any) -> None:
        for name, value in changes.items():
            setattr(job, name, value)
        job.updated_at = self._clock()
        await self._store.put_job(job)

    async def run(self, job: Job, work: JobWork) -> Job:
        """Execute ``work`` for ``job``. Failures are recorded, then re-raised."""
        await self._save(job, status="running", error_code=None, error_message=None)
        try:
            outputs = await work(job)
        except CompilerError as exc:
            await self._fail(job, exc.code, exc.message)
            exc.details.setdefault("job_id", job.id)
            raise
        except Exception as exc:
            await self._fail(job, "internal_error", f"{type(exc).__name__}: {exc}")
            raise

        await self._save(job, status="done", outputs=outputs)
        logger.info(
            "job_done",
            job_id=job.id,
            job_type=job.job_type,
            session_id=job.session_id,
            attempt=job.retry_count + 1,
        )
        return job

    async def _fail(self, job: Job, code: str, message: str) -> None:
        await self.record_error(job, code, message)
        await self._save(job, status="failed", error_code=code, error_message=message)
        logger.warning(
            "job_failed",
            job_id=job.id,
            job_type=job.job_type,
            session_id=job.session_id,
            attempt=job.retry_count + 1,
            code=code,
            error=message,
        )
