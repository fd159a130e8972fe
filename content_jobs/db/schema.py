"""Table definitions for the job store and the course document store."""
import logging

from content_jobs.db.connection import execute_in_transaction

logger = logging.getLogger(__name__)


SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS course_documents (
        id TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
        document JSONB NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS generation_jobs (
        id TEXT PRIMARY KEY,
        job_batch_id TEXT NOT NULL,
        target_document_id TEXT,
        module_identifier TEXT NOT NULL,
        module_index INTEGER NOT NULL,
        module_title TEXT NOT NULL,
        subsection_key TEXT NOT NULL,
        subsection_title TEXT NOT NULL,
        content_excerpt TEXT NOT NULL,
        generation_context JSONB NOT NULL DEFAULT '{}'::jsonb,
        status TEXT NOT NULL DEFAULT 'pending'
            CHECK (status IN ('pending', 'processing', 'completed', 'failed')),
        attempt_count INTEGER NOT NULL DEFAULT 0,
        last_error TEXT,
        claim_token TEXT,
        lease_expires_at TIMESTAMPTZ,
        retry_not_before TIMESTAMPTZ,
        position INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        started_at TIMESTAMPTZ,
        completed_at TIMESTAMPTZ,
        UNIQUE (job_batch_id, module_identifier, subsection_key)
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS generation_jobs_claim_idx
        ON generation_jobs (job_batch_id, status, created_at, position)
    """,
    """
    CREATE INDEX IF NOT EXISTS generation_jobs_lease_idx
        ON generation_jobs (lease_expires_at)
        WHERE status = 'processing'
    """,
]


async def ensure_schema() -> None:
    """Create the queue tables if they do not exist yet."""

    async def apply(conn):
        for statement in SCHEMA_STATEMENTS:
            await conn.execute(statement)
        return len(SCHEMA_STATEMENTS)

    applied = await execute_in_transaction(apply)
    logger.info(f"Ensured job queue schema ({applied} statements)")
