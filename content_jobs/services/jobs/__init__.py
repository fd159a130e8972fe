"""Generation job queue: enumeration, claiming, execution and merge."""
from content_jobs.services.jobs.claimer import Claimer
from content_jobs.services.jobs.dispatcher import Dispatcher
from content_jobs.services.jobs.enumerator import JobEnumerator
from content_jobs.services.jobs.merge import MergeWriter
from content_jobs.services.jobs.pool import WorkerPool, drain_batch
from content_jobs.services.jobs.worker import JobWorker

__all__ = [
    "Claimer",
    "Dispatcher",
    "JobEnumerator",
    "JobWorker",
    "MergeWriter",
    "WorkerPool",
    "drain_batch",
]
