"""In-process job and document stores for development and tests.

Each store serialises its mutations behind one asyncio lock, which gives the
same guarantees the Postgres backend gets from row locks: a claim is a
compare-and-swap, and a merge never observes a half-written module.
"""
import asyncio
import copy
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from content_jobs.models.jobs import JobRecord, JobStatus
from content_jobs.services.jobs.store import DocumentStore, JobStore, utcnow


class MemoryJobStore(JobStore):
    """Job store kept in a dict; not shared between processes."""

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._jobs: Dict[str, JobRecord] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    async def insert_many(self, jobs: List[JobRecord]) -> int:
        async with self._lock:
            keys = set()
            for job in jobs:
                key = (job.job_batch_id, job.module_identifier, job.subsection_key)
                if job.id in self._jobs or key in keys:
                    raise ValueError(f"Duplicate job {job.id} / {key}")
                keys.add(key)
            for job in jobs:
                self._jobs[job.id] = job.model_copy(deep=True)
            return len(jobs)

    async def claim_next(
        self,
        batch_id: Optional[str],
        claim_token: str,
        lease_seconds: float,
    ) -> Optional[JobRecord]:
        async with self._lock:
            now = self._clock()
            candidates = [
                job
                for job in self._jobs.values()
                if (batch_id is None or job.job_batch_id == batch_id)
                and job.status == JobStatus.PENDING
                and job.target_document_id is not None
                and (job.retry_not_before is None or job.retry_not_before <= now)
            ]
            if not candidates:
                return None

            job = min(candidates, key=lambda candidate: (candidate.created_at, candidate.position))
            job.status = JobStatus.PROCESSING
            job.started_at = now
            job.claim_token = claim_token
            job.lease_expires_at = now + timedelta(seconds=lease_seconds)
            return job.model_copy(deep=True)

    def _holds_claim(self, job_id: str, claim_token: str) -> Optional[JobRecord]:
        job = self._jobs.get(job_id)
        if job is None or job.status != JobStatus.PROCESSING or job.claim_token != claim_token:
            return None
        return job

    def _apply_retry_policy(
        self,
        job: JobRecord,
        error: str,
        retry_budget: int,
        retry_delay_seconds: float,
    ) -> None:
        now = self._clock()
        if job.attempt_count < retry_budget:
            job.status = JobStatus.PENDING
            job.attempt_count += 1
            job.retry_not_before = now + timedelta(seconds=retry_delay_seconds)
        else:
            job.status = JobStatus.FAILED
            job.completed_at = now
        job.last_error = error
        job.claim_token = None
        job.lease_expires_at = None

    async def mark_completed(self, job_id: str, claim_token: str) -> bool:
        async with self._lock:
            job = self._holds_claim(job_id, claim_token)
            if job is None:
                return False
            job.status = JobStatus.COMPLETED
            job.completed_at = self._clock()
            job.last_error = None
            job.claim_token = None
            job.lease_expires_at = None
            return True

    async def mark_failed_or_requeue(
        self,
        job_id: str,
        claim_token: str,
        error: str,
        retry_budget: int,
        retry_delay_seconds: float,
    ) -> Optional[JobRecord]:
        async with self._lock:
            job = self._holds_claim(job_id, claim_token)
            if job is None:
                return None
            self._apply_retry_policy(job, error, retry_budget, retry_delay_seconds)
            return job.model_copy(deep=True)

    async def expire_stale_leases(
        self,
        retry_budget: int,
        retry_delay_seconds: float,
    ) -> List[JobRecord]:
        async with self._lock:
            now = self._clock()
            expired = []
            for job in self._jobs.values():
                if (
                    job.status == JobStatus.PROCESSING
                    and job.lease_expires_at is not None
                    and job.lease_expires_at < now
                ):
                    self._apply_retry_policy(job, "Lease expired", retry_budget, retry_delay_seconds)
                    expired.append(job.model_copy(deep=True))
            return expired

    async def count_by_status(self, batch_id: str) -> Dict[str, int]:
        async with self._lock:
            counts: Dict[str, int] = {}
            for job in self._jobs.values():
                if job.job_batch_id == batch_id:
                    counts[job.status.value] = counts.get(job.status.value, 0) + 1
            return counts

    async def get_job(self, job_id: str) -> Optional[JobRecord]:
        async with self._lock:
            job = self._jobs.get(job_id)
            return job.model_copy(deep=True) if job else None

    async def list_jobs(self, batch_id: str) -> List[JobRecord]:
        async with self._lock:
            jobs = [job for job in self._jobs.values() if job.job_batch_id == batch_id]
            jobs.sort(key=lambda job: (job.created_at, job.position))
            return [job.model_copy(deep=True) for job in jobs]

    async def cancel_pending(self, batch_id: str, reason: str) -> int:
        async with self._lock:
            now = self._clock()
            cancelled = 0
            for job in self._jobs.values():
                if job.job_batch_id == batch_id and job.status == JobStatus.PENDING:
                    job.status = JobStatus.FAILED
                    job.last_error = reason
                    job.completed_at = now
                    cancelled += 1
            return cancelled

    async def set_target_document(self, batch_id: str, document_id: str) -> int:
        async with self._lock:
            updated = 0
            for job in self._jobs.values():
                if (
                    job.job_batch_id == batch_id
                    and job.target_document_id is None
                    and not job.status.is_terminal
                ):
                    job.target_document_id = document_id
                    updated += 1
            return updated


class MemoryDocumentStore(DocumentStore):
    """Course documents kept in a dict of plain JSON-like structures."""

    def __init__(self):
        self._documents: Dict[str, Dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    async def create_document(self, document: Dict[str, Any]) -> str:
        async with self._lock:
            document_id = str(uuid.uuid4())
            self._documents[document_id] = copy.deepcopy(document)
            return document_id

    async def get_document(self, document_id: str) -> Optional[Dict[str, Any]]:
        async with self._lock:
            document = self._documents.get(document_id)
            if document is None:
                return None
            return {**copy.deepcopy(document), "id": document_id}

    async def upsert_module_result(
        self,
        document_id: str,
        module_identifier: str,
        module_title: str,
        entry: Dict[str, Any],
    ) -> bool:
        async with self._lock:
            document = self._documents.get(document_id)
            if document is None:
                return False

            modules = document.get("modules")
            if not isinstance(modules, list):
                return False
            module = next((m for m in modules if m.get("id") == module_identifier), None)
            if module is None:
                module = next((m for m in modules if m.get("title") == module_title), None)
            if module is None:
                return False

            existing = module.get("detailed_subsections")
            if not isinstance(existing, list):
                module["detailed_subsections"] = [copy.deepcopy(entry)]
                return True

            kept = [item for item in existing if item.get("subsection_key") != entry["subsection_key"]]
            kept.append(copy.deepcopy(entry))
            module["detailed_subsections"] = kept
            return True
