"""Storage interfaces for generation jobs and the course documents they fill."""
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from content_jobs.models.jobs import JobRecord


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStore(ABC):
    """Durable collection of job records.

    ``claim_next`` is the only compare-and-swap operation. Every other
    mutation of a processing job is guarded by the claim token handed out
    by ``claim_next``, so a worker that lost its lease cannot overwrite the
    row after the sweeper requeued it.
    """

    @abstractmethod
    async def insert_many(self, jobs: List[JobRecord]) -> int:
        """Insert a batch of jobs atomically.

        Returns:
            Number of jobs inserted
        """
        pass

    @abstractmethod
    async def claim_next(
        self,
        batch_id: Optional[str],
        claim_token: str,
        lease_seconds: float,
    ) -> Optional[JobRecord]:
        """Atomically move the oldest claimable pending job to processing.

        A job is claimable once its backoff has elapsed and it has a target
        document.

        Args:
            batch_id: Batch to claim from, or None for any batch
            claim_token: Token identifying this claim
            lease_seconds: How long the claim stays valid

        Returns:
            The claimed job, or None when nothing is claimable
        """
        pass

    @abstractmethod
    async def mark_completed(self, job_id: str, claim_token: str) -> bool:
        """Move a processing job to completed. False if the claim was lost."""
        pass

    @abstractmethod
    async def mark_failed_or_requeue(
        self,
        job_id: str,
        claim_token: str,
        error: str,
        retry_budget: int,
        retry_delay_seconds: float,
    ) -> Optional[JobRecord]:
        """Apply the retry policy to a processing job.

        Requeues with ``attempt_count + 1`` while ``attempt_count`` is below
        the budget, otherwise marks the job failed.

        Returns:
            The updated job, or None if the claim was lost
        """
        pass

    @abstractmethod
    async def expire_stale_leases(
        self,
        retry_budget: int,
        retry_delay_seconds: float,
    ) -> List[JobRecord]:
        """Apply the retry policy to processing jobs whose lease has elapsed."""
        pass

    @abstractmethod
    async def count_by_status(self, batch_id: str) -> Dict[str, int]:
        """Count jobs per status for one batch, from a single snapshot."""
        pass

    @abstractmethod
    async def get_job(self, job_id: str) -> Optional[JobRecord]:
        pass

    @abstractmethod
    async def list_jobs(self, batch_id: str) -> List[JobRecord]:
        pass

    @abstractmethod
    async def cancel_pending(self, batch_id: str, reason: str) -> int:
        """Fail every pending job of a batch. Returns the number cancelled."""
        pass

    @abstractmethod
    async def set_target_document(self, batch_id: str, document_id: str) -> int:
        """Point the batch's non-terminal jobs without a target at ``document_id``."""
        pass


class DocumentStore(ABC):
    """Course documents: ``{"title": ..., "modules": [{"id", "title", ...}]}``."""

    @abstractmethod
    async def create_document(self, document: Dict[str, Any]) -> str:
        """Store a new document and return its id."""
        pass

    @abstractmethod
    async def get_document(self, document_id: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    async def upsert_module_result(
        self,
        document_id: str,
        module_identifier: str,
        module_title: str,
        entry: Dict[str, Any],
    ) -> bool:
        """Write ``entry`` into the module's ``detailed_subsections`` array.

        Must be a single atomic update scoped to that array: create it when
        missing, replace an entry with the same ``subsection_key``, else
        append. The module is matched by id first, then by title.

        Returns:
            False when the document or the module does not exist
        """
        pass
