"""Claimer: the queue's only mutual-exclusion primitive."""
import logging
import uuid
from typing import Optional

from content_jobs.models.jobs import JobRecord
from content_jobs.services.jobs.store import JobStore

logger = logging.getLogger(__name__)


class Claimer:
    """Hands out exclusive, leased ownership of the next pending job."""

    def __init__(self, store: JobStore, lease_seconds: float):
        self.store = store
        self.lease_seconds = lease_seconds

    async def claim_next(self, batch_id: Optional[str] = None) -> Optional[JobRecord]:
        """
        Claim the oldest pending job whose backoff has elapsed.

        Losing a race to another claimer is not an error: the store's
        compare-and-swap simply returns nothing or the next job.

        Args:
            batch_id: Restrict to one batch, or None for any batch

        Returns:
            The claimed job carrying its claim token, or None
        """
        claim_token = str(uuid.uuid4())
        job = await self.store.claim_next(batch_id, claim_token, self.lease_seconds)
        if job is not None:
            logger.info(
                f"Claimed job {job.id} ('{job.subsection_title}' in '{job.module_title}', "
                f"attempt {job.attempt_count + 1})"
            )
        return job
