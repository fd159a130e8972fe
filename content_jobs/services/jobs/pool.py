"""In-process worker pool that keeps calling process_one across all batches."""
import asyncio
import logging
from typing import List, Optional

from content_jobs.models.jobs import BatchStatus, JobStatus
from content_jobs.services.jobs.dispatcher import Dispatcher
from content_jobs.services.jobs.errors import StoreUnavailableError

logger = logging.getLogger(__name__)


async def drain_batch(
    dispatcher: Dispatcher,
    batch_id: str,
    poll_seconds: float = 1.0,
) -> BatchStatus:
    """
    Run one batch to completion from the current task.

    Keeps processing until no job is pending or processing, sleeping while
    every remaining job is backing off or held by another worker. Returns
    early when the only pending jobs are waiting for a target document.

    Returns:
        Final batch status
    """
    while True:
        result = await dispatcher.process_one(batch_id)
        if result.processed:
            continue

        batch_status = await dispatcher.status(batch_id)
        if batch_status.is_settled:
            return batch_status
        if batch_status.processing == 0:
            jobs = await dispatcher.list_jobs(batch_id)
            unattached = [
                job for job in jobs if job.status == JobStatus.PENDING and job.target_document_id is None
            ]
            if len(unattached) == batch_status.pending:
                return batch_status
        await asyncio.sleep(poll_seconds)


class WorkerPool:
    """A fixed number of worker loops plus a lease sweeper."""

    def __init__(
        self,
        dispatcher: Dispatcher,
        concurrency: int = 4,
        poll_seconds: float = 1.0,
        sweep_interval_seconds: float = 30.0,
    ):
        self.dispatcher = dispatcher
        self.concurrency = concurrency
        self.poll_seconds = poll_seconds
        self.sweep_interval_seconds = sweep_interval_seconds
        self._tasks: List[asyncio.Task] = []
        self._stopping: Optional[asyncio.Event] = None

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    def start(self) -> None:
        if self._tasks:
            return

        self._stopping = asyncio.Event()
        self._tasks = [
            asyncio.create_task(self._work_loop(index), name=f"content-worker-{index}")
            for index in range(self.concurrency)
        ]
        self._tasks.append(asyncio.create_task(self._sweep_loop(), name="content-lease-sweeper"))
        logger.info(f"Worker pool started with {self.concurrency} workers")

    async def stop(self) -> None:
        """Cancel every loop; a job interrupted mid-run is handed back to the queue."""
        if not self._tasks:
            return

        self._stopping.set()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Worker pool stopped")

    async def _wait(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def _work_loop(self, index: int) -> None:
        while not self._stopping.is_set():
            try:
                result = await self.dispatcher.process_one()
            except StoreUnavailableError as e:
                logger.error(f"Worker {index}: job store unavailable, backing off: {e}")
                await self._wait(self.poll_seconds * 5)
                continue
            except Exception as e:
                logger.exception(f"Worker {index}: unexpected error: {e}")
                await self._wait(self.poll_seconds)
                continue

            if not result.processed:
                await self._wait(self.poll_seconds)

    async def _sweep_loop(self) -> None:
        while not self._stopping.is_set():
            await self._wait(self.sweep_interval_seconds)
            if self._stopping.is_set():
                return
            try:
                swept = await self.dispatcher.sweep_expired_leases()
                if swept:
                    logger.info(f"Lease sweep handled {swept} jobs")
            except StoreUnavailableError as e:
                logger.error(f"Lease sweep skipped, job store unavailable: {e}")
            except Exception as e:
                logger.exception(f"Lease sweep failed: {e}")
