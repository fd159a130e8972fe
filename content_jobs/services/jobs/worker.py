"""Worker: runs one claimed job through generation and merge."""
import asyncio
import logging
import time
from typing import Any, Dict, Optional, Protocol

from content_jobs.models.content import SubsectionContent
from content_jobs.models.jobs import JobRecord, JobStatus, ProcessResult
from content_jobs.services.jobs.errors import StoreUnavailableError
from content_jobs.services.jobs.merge import MergeWriter
from content_jobs.services.jobs.store import JobStore

logger = logging.getLogger(__name__)


class GenerationBackend(Protocol):
    async def generate(self, context: Dict[str, Any], content_excerpt: str) -> SubsectionContent:
        ...


class JobWorker:
    """Executes claimed jobs and applies the retry policy on any failure.

    Every failure kind (backend error, timeout, malformed output, missing
    merge target) goes through the same policy; a job only leaves
    processing through ``mark_completed`` or ``mark_failed_or_requeue``.
    """

    def __init__(
        self,
        store: JobStore,
        backend: GenerationBackend,
        merge_writer: MergeWriter,
        retry_budget: int,
        retry_delay_seconds: float,
        generation_timeout: Optional[float] = None,
    ):
        self.store = store
        self.backend = backend
        self.merge_writer = merge_writer
        self.retry_budget = retry_budget
        self.retry_delay_seconds = retry_delay_seconds
        self.generation_timeout = generation_timeout

    async def process(self, job: JobRecord) -> ProcessResult:
        """
        Generate, merge and complete a job the caller has claimed.

        Raises:
            StoreUnavailableError: The persistence layer is unreachable
        """
        start = time.monotonic()
        try:
            content = await asyncio.wait_for(
                self.backend.generate(job.generation_context, job.content_excerpt),
                timeout=self.generation_timeout,
            )
            await self.merge_writer.merge(job, content)
        except StoreUnavailableError as e:
            await self._record_failure_before_raising(job, e)
            raise
        except asyncio.TimeoutError:
            return await self._fail(job, f"Generation timed out after {self.generation_timeout}s")
        except asyncio.CancelledError:
            # Shutdown mid-job: hand the job back instead of waiting for the lease.
            try:
                await asyncio.shield(self._fail(job, "Worker stopped before completion"))
            except StoreUnavailableError as e:
                logger.error(f"Could not hand back job {job.id} on shutdown; lease expiry will requeue it: {e}")
            raise
        except Exception as e:
            return await self._fail(job, str(e) or e.__class__.__name__)

        if not await self.store.mark_completed(job.id, job.claim_token):
            logger.warning(f"Job {job.id} lost its claim before completion; result stays merged")
            return ProcessResult(
                processed=True,
                job_id=job.id,
                subsection_title=job.subsection_title,
                module_title=job.module_title,
                attempt_count=job.attempt_count,
                error="Claim lost before completion",
            )

        logger.info(
            f"Completed job {job.id} ('{job.subsection_title}') in {time.monotonic() - start:.2f}s"
        )
        return ProcessResult(
            processed=True,
            job_id=job.id,
            status=JobStatus.COMPLETED,
            subsection_title=job.subsection_title,
            module_title=job.module_title,
            attempt_count=job.attempt_count,
        )

    async def _fail(self, job: JobRecord, error: str) -> ProcessResult:
        updated = await self.store.mark_failed_or_requeue(
            job.id,
            job.claim_token,
            error,
            self.retry_budget,
            self.retry_delay_seconds,
        )
        if updated is None:
            logger.warning(f"Job {job.id} lost its claim before failure could be recorded: {error}")
            return ProcessResult(
                processed=True,
                job_id=job.id,
                subsection_title=job.subsection_title,
                module_title=job.module_title,
                attempt_count=job.attempt_count,
                error=error,
            )

        if updated.status == JobStatus.FAILED:
            logger.error(
                f"Job {job.id} ('{job.subsection_title}') failed permanently after "
                f"{updated.attempt_count} retries: {error}"
            )
        else:
            logger.warning(
                f"Job {job.id} ('{job.subsection_title}') failed, scheduled retry "
                f"#{updated.attempt_count}: {error}"
            )

        return ProcessResult(
            processed=True,
            job_id=job.id,
            status=updated.status,
            subsection_title=job.subsection_title,
            module_title=job.module_title,
            attempt_count=updated.attempt_count,
            error=error,
        )

    async def _record_failure_before_raising(self, job: JobRecord, error: StoreUnavailableError) -> None:
        try:
            await self._fail(job, str(error))
        except StoreUnavailableError:
            logger.error(f"Could not record failure for job {job.id}; lease expiry will requeue it")
