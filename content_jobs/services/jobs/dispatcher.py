"""
Dispatcher.
Public entry points of the job queue: submit a batch, advance it one job at a
time, and report its progress.
"""
import logging
from typing import Awaitable, Callable, List, Optional

from content_jobs.config import settings
from content_jobs.models.jobs import (
    BatchStatus,
    CourseMetadata,
    JobRecord,
    JobStatus,
    ModuleInput,
    ProcessResult,
    SubmitBatchResponse,
)
from content_jobs.services.jobs.claimer import Claimer
from content_jobs.services.jobs.enumerator import JobEnumerator
from content_jobs.services.jobs.errors import BatchNotFoundError, EnumerationError
from content_jobs.services.jobs.merge import MergeWriter
from content_jobs.services.jobs.store import DocumentStore, JobStore
from content_jobs.services.jobs.worker import GenerationBackend, JobWorker

logger = logging.getLogger(__name__)

# (batch_id, delay_seconds) -> schedules a later process_one call
ProcessTrigger = Callable[[str, float], Awaitable[object]]

CANCELLED_ERROR = "Batch cancelled"


class Dispatcher:
    """Coordinates enumeration, claiming and execution for job batches."""

    def __init__(
        self,
        jobs: JobStore,
        documents: DocumentStore,
        backend: GenerationBackend,
        retry_budget: Optional[int] = None,
        retry_delay_seconds: Optional[float] = None,
        lease_seconds: Optional[float] = None,
        generation_timeout: Optional[float] = None,
        trigger: Optional[ProcessTrigger] = None,
    ):
        self.jobs = jobs
        self.documents = documents
        self.retry_budget = settings.JOB_RETRY_BUDGET if retry_budget is None else retry_budget
        self.retry_delay_seconds = (
            settings.JOB_RETRY_DELAY_SECONDS if retry_delay_seconds is None else retry_delay_seconds
        )
        self.trigger = trigger

        self.enumerator = JobEnumerator(jobs)
        self.claimer = Claimer(
            jobs, settings.JOB_LEASE_SECONDS if lease_seconds is None else lease_seconds
        )
        self.worker = JobWorker(
            store=jobs,
            backend=backend,
            merge_writer=MergeWriter(documents),
            retry_budget=self.retry_budget,
            retry_delay_seconds=self.retry_delay_seconds,
            generation_timeout=(
                settings.GENERATION_TIMEOUT_SECONDS if generation_timeout is None else generation_timeout
            ),
        )

    async def submit_batch(
        self,
        modules: List[ModuleInput],
        course_metadata: Optional[CourseMetadata] = None,
    ) -> SubmitBatchResponse:
        """
        Enumerate modules into a new batch of pending jobs.

        A target document comes from ``course_metadata.document_id``, or is
        created from the module skeleton when ``create_document`` is set.
        Otherwise the jobs stay pending, unclaimable, until ``attach_document``
        supplies one.

        Modules without subsection headings are listed in
        ``fallback_modules`` for module-level generation; if every module
        falls back, nothing is stored, ``total_jobs`` is 0 and no batch id is
        issued.

        Raises:
            EnumerationError: The module list is empty
        """
        if not modules:
            raise EnumerationError("At least one module is required")

        metadata = course_metadata or CourseMetadata()
        plan = self.enumerator.enumerate(modules, metadata, target_document_id=metadata.document_id)

        document_id = metadata.document_id
        if document_id is None and metadata.create_document and plan.jobs:
            document_id = await self.documents.create_document(
                {
                    "title": metadata.title,
                    "description": metadata.description,
                    "subject": metadata.subject,
                    "modules": [module.model_dump() for module in plan.modules],
                }
            )
            for job in plan.jobs:
                job.target_document_id = document_id
            logger.info(f"Created course document {document_id} for batch {plan.batch_id}")

        await self.enumerator.insert(plan, len(modules))

        if self.trigger is not None and document_id is not None:
            for _ in plan.jobs:
                await self.trigger(plan.batch_id, 0)

        return SubmitBatchResponse(
            batch_id=plan.batch_id if plan.jobs else None,
            total_jobs=plan.total_jobs,
            document_id=document_id,
            modules=plan.modules,
            fallback_modules=plan.fallback_modules,
        )

    async def process_one(self, batch_id: Optional[str] = None) -> ProcessResult:
        """
        Claim and run at most one pending job of a batch.

        Returns ``processed=False`` when nothing is claimable right now (all
        done, all in flight, or every pending job still backing off).

        Raises:
            StoreUnavailableError: The persistence layer is unreachable
        """
        job = await self.claimer.claim_next(batch_id)
        if job is None:
            return ProcessResult(processed=False)

        result = await self.worker.process(job)
        if result.status == JobStatus.PENDING and self.trigger is not None:
            await self.trigger(job.job_batch_id, self.retry_delay_seconds)
        return result

    async def status(self, batch_id: str) -> BatchStatus:
        """
        Raises:
            BatchNotFoundError: The batch has no jobs
        """
        batch_status = BatchStatus.from_counts(await self.jobs.count_by_status(batch_id))
        if batch_status.total == 0:
            raise BatchNotFoundError(f"Batch {batch_id} not found")
        return batch_status

    async def list_jobs(self, batch_id: str) -> List[JobRecord]:
        jobs = await self.jobs.list_jobs(batch_id)
        if not jobs:
            raise BatchNotFoundError(f"Batch {batch_id} not found")
        return jobs

    async def cancel_batch(self, batch_id: str) -> int:
        """Fail every still-pending job; in-flight jobs finish normally."""
        await self.status(batch_id)
        cancelled = await self.jobs.cancel_pending(batch_id, CANCELLED_ERROR)
        logger.info(f"Cancelled {cancelled} pending jobs in batch {batch_id}")
        return cancelled

    async def attach_document(self, batch_id: str, document_id: str) -> int:
        """Point jobs submitted without a target at a course document."""
        await self.status(batch_id)
        updated = await self.jobs.set_target_document(batch_id, document_id)
        logger.info(f"Attached document {document_id} to {updated} jobs in batch {batch_id}")
        if self.trigger is not None:
            for _ in range(updated):
                await self.trigger(batch_id, 0)
        return updated

    async def sweep_expired_leases(self) -> int:
        """Run the retry policy over jobs whose worker disappeared mid-run."""
        expired = await self.jobs.expire_stale_leases(self.retry_budget, self.retry_delay_seconds)
        for job in expired:
            if job.status == JobStatus.PENDING:
                logger.warning(f"Lease expired for job {job.id}; requeued as retry #{job.attempt_count}")
                if self.trigger is not None:
                    await self.trigger(job.job_batch_id, self.retry_delay_seconds)
            else:
                logger.error(f"Lease expired for job {job.id}; retry budget exhausted")
        return len(expired)
