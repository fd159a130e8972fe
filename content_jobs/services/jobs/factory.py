"""Factory wiring stores, backend and dispatch mode from settings."""
from typing import Optional, Tuple

from content_jobs.config import settings
from content_jobs.services.jobs.dispatcher import Dispatcher
from content_jobs.services.jobs.pool import WorkerPool
from content_jobs.services.jobs.store import DocumentStore, JobStore


class QueueFactory:
    """Creates and caches the dispatcher and worker pool."""

    _dispatcher: Optional[Dispatcher] = None
    _pool: Optional[WorkerPool] = None

    @classmethod
    def create_stores(cls) -> Tuple[JobStore, DocumentStore]:
        """
        Raises:
            ValueError: If the backend name is unknown
        """
        backend = settings.JOB_STORE_BACKEND.lower()

        if backend == "postgres":
            from content_jobs.services.jobs.postgres import PostgresDocumentStore, PostgresJobStore

            return PostgresJobStore(), PostgresDocumentStore()
        elif backend == "memory":
            from content_jobs.services.jobs.memory import MemoryDocumentStore, MemoryJobStore

            return MemoryJobStore(), MemoryDocumentStore()
        else:
            raise ValueError(f"Unknown job store backend: {backend}")

    @classmethod
    def get_dispatcher(cls) -> Dispatcher:
        if cls._dispatcher is None:
            from content_jobs.services.content_generator.subsection import SubsectionGenerator

            jobs, documents = cls.create_stores()
            trigger = None
            if settings.DISPATCH_MODE.lower() == "tasks":
                from content_jobs.services.cloud_tasks import enqueue_process_one

                trigger = enqueue_process_one

            cls._dispatcher = Dispatcher(jobs, documents, SubsectionGenerator(), trigger=trigger)
        return cls._dispatcher

    @classmethod
    def get_pool(cls) -> WorkerPool:
        if cls._pool is None:
            cls._pool = WorkerPool(
                cls.get_dispatcher(),
                concurrency=settings.WORKER_CONCURRENCY,
                poll_seconds=settings.WORKER_POLL_SECONDS,
                sweep_interval_seconds=settings.SWEEP_INTERVAL_SECONDS,
            )
        return cls._pool

    @classmethod
    def reset(cls):
        """Reset singletons (useful for testing)."""
        cls._dispatcher = None
        cls._pool = None


def get_dispatcher() -> Dispatcher:
    """FastAPI dependency."""
    return QueueFactory.get_dispatcher()
