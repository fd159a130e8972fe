"""PostgreSQL-backed job store and course document store."""
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import asyncpg

from content_jobs.db.connection import (
    affected_rows,
    execute_in_transaction,
    execute_one,
    execute_query,
    execute_update,
)
from content_jobs.models.jobs import JobRecord
from content_jobs.services.jobs.errors import StoreUnavailableError
from content_jobs.services.jobs.store import DocumentStore, JobStore

logger = logging.getLogger(__name__)

_CONNECTION_ERRORS = (
    OSError,
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.exceptions.InterfaceError,
    asyncpg.exceptions.CannotConnectNowError,
    asyncpg.exceptions.TooManyConnectionsError,
)

_JOB_COLUMNS = (
    "id",
    "job_batch_id",
    "target_document_id",
    "module_identifier",
    "module_index",
    "module_title",
    "subsection_key",
    "subsection_title",
    "content_excerpt",
    "generation_context",
    "status",
    "attempt_count",
    "position",
    "created_at",
)

INSERT_JOB_SQL = f"""
    INSERT INTO generation_jobs ({", ".join(_JOB_COLUMNS)})
    VALUES ({", ".join(f"${i}" for i in range(1, len(_JOB_COLUMNS) + 1))})
"""

# The inner SELECT skips rows another claimer has locked, and the outer
# status guard makes the transition a compare-and-swap. Jobs without a
# target document stay pending until one is attached.
CLAIM_NEXT_SQL = """
    UPDATE generation_jobs
    SET status = 'processing',
        started_at = NOW(),
        claim_token = $2,
        lease_expires_at = NOW() + $3::double precision * INTERVAL '1 second'
    WHERE id = (
        SELECT id
        FROM generation_jobs
        WHERE ($1::text IS NULL OR job_batch_id = $1::text)
          AND status = 'pending'
          AND target_document_id IS NOT NULL
          AND (retry_not_before IS NULL OR retry_not_before <= NOW())
        ORDER BY created_at, position
        FOR UPDATE SKIP LOCKED
        LIMIT 1
    )
      AND status = 'pending'
    RETURNING *
"""

MARK_COMPLETED_SQL = """
    UPDATE generation_jobs
    SET status = 'completed',
        completed_at = NOW(),
        last_error = NULL,
        claim_token = NULL,
        lease_expires_at = NULL
    WHERE id = $1
      AND status = 'processing'
      AND claim_token = $2
"""

# SET expressions all read the pre-update row, so every CASE sees the old
# attempt_count.
_RETRY_POLICY_SET = """
    SET status = CASE WHEN attempt_count < $2 THEN 'pending' ELSE 'failed' END,
        attempt_count = CASE WHEN attempt_count < $2 THEN attempt_count + 1 ELSE attempt_count END,
        retry_not_before = CASE
            WHEN attempt_count < $2 THEN NOW() + $3::double precision * INTERVAL '1 second'
            ELSE retry_not_before
        END,
        completed_at = CASE WHEN attempt_count < $2 THEN completed_at ELSE NOW() END,
        last_error = $4,
        claim_token = NULL,
        lease_expires_at = NULL
"""

MARK_FAILED_OR_REQUEUE_SQL = f"""
    UPDATE generation_jobs
    {_RETRY_POLICY_SET}
    WHERE id = $1
      AND status = 'processing'
      AND claim_token = $5
    RETURNING *
"""

EXPIRE_STALE_LEASES_SQL = f"""
    UPDATE generation_jobs
    {_RETRY_POLICY_SET}
    WHERE id = ANY($1::text[])
      AND status = 'processing'
      AND lease_expires_at < NOW()
    RETURNING *
"""

SELECT_EXPIRED_SQL = """
    SELECT id
    FROM generation_jobs
    WHERE status = 'processing'
      AND lease_expires_at < NOW()
    FOR UPDATE SKIP LOCKED
"""

COUNT_BY_STATUS_SQL = """
    SELECT status, COUNT(*) AS job_count
    FROM generation_jobs
    WHERE job_batch_id = $1
    GROUP BY status
"""

CANCEL_PENDING_SQL = """
    UPDATE generation_jobs
    SET status = 'failed',
        last_error = $2,
        completed_at = NOW()
    WHERE job_batch_id = $1
      AND status = 'pending'
"""

SET_TARGET_DOCUMENT_SQL = """
    UPDATE generation_jobs
    SET target_document_id = $2
    WHERE job_batch_id = $1
      AND target_document_id IS NULL
      AND status IN ('pending', 'processing')
"""

# Locates the module (id match first, then title) and rewrites only its
# detailed_subsections array: entries with the same subsection_key are
# dropped and the new entry appended. Concurrent merges into the same
# document serialize on the row lock and each recomputes from the latest
# document version, so sibling writes are never lost.
UPSERT_MODULE_RESULT_SQL = """
    WITH target AS (
        SELECT d.id, (m.ordinality - 1)::text AS module_position
        FROM course_documents AS d
        CROSS JOIN LATERAL jsonb_array_elements(
            CASE WHEN jsonb_typeof(d.document->'modules') = 'array'
                 THEN d.document->'modules'
                 ELSE '[]'::jsonb END
        ) WITH ORDINALITY AS m(module, ordinality)
        WHERE d.id = $1
          AND (m.module->>'id' = $2 OR m.module->>'title' = $3)
        ORDER BY COALESCE(m.module->>'id' = $2, false) DESC, m.ordinality
        LIMIT 1
    )
    UPDATE course_documents AS d
    SET document = jsonb_set(
            d.document,
            ARRAY['modules', t.module_position, 'detailed_subsections'],
            COALESCE(
                (
                    SELECT jsonb_agg(existing.entry ORDER BY existing.entry_position)
                    FROM jsonb_array_elements(
                        CASE WHEN jsonb_typeof(d.document #> ARRAY['modules', t.module_position, 'detailed_subsections']) = 'array'
                             THEN d.document #> ARRAY['modules', t.module_position, 'detailed_subsections']
                             ELSE '[]'::jsonb END
                    ) WITH ORDINALITY AS existing(entry, entry_position)
                    WHERE existing.entry->>'subsection_key' IS DISTINCT FROM $4
                ),
                '[]'::jsonb
            ) || jsonb_build_array($5::jsonb),
            true
        ),
        updated_at = NOW()
    FROM target AS t
    WHERE d.id = t.id
    RETURNING t.module_position
"""


@asynccontextmanager
async def _store_call(operation: str):
    """Translate connectivity failures into StoreUnavailableError."""
    try:
        yield
    except _CONNECTION_ERRORS as exc:
        logger.error(f"Store unavailable during {operation}: {exc}")
        raise StoreUnavailableError(f"{operation} failed: {exc}") from exc


def _row_to_job(row) -> JobRecord:
    return JobRecord(**dict(row))


class PostgresJobStore(JobStore):
    """Job store on the ``generation_jobs`` table."""

    async def insert_many(self, jobs: List[JobRecord]) -> int:
        if not jobs:
            return 0

        rows = [
            tuple(
                job.status.value if column == "status" else getattr(job, column)
                for column in _JOB_COLUMNS
            )
            for job in jobs
        ]

        async def insert_jobs_transaction(conn):
            await conn.executemany(INSERT_JOB_SQL, rows)
            return len(rows)

        async with _store_call("insert_many"):
            return await execute_in_transaction(insert_jobs_transaction)

    async def claim_next(
        self,
        batch_id: Optional[str],
        claim_token: str,
        lease_seconds: float,
    ) -> Optional[JobRecord]:
        async with _store_call("claim_next"):
            row = await execute_one(CLAIM_NEXT_SQL, batch_id, claim_token, float(lease_seconds))
        return _row_to_job(row) if row else None

    async def mark_completed(self, job_id: str, claim_token: str) -> bool:
        async with _store_call("mark_completed"):
            status = await execute_update(MARK_COMPLETED_SQL, job_id, claim_token)
        return affected_rows(status) == 1

    async def mark_failed_or_requeue(
        self,
        job_id: str,
        claim_token: str,
        error: str,
        retry_budget: int,
        retry_delay_seconds: float,
    ) -> Optional[JobRecord]:
        async with _store_call("mark_failed_or_requeue"):
            row = await execute_one(
                MARK_FAILED_OR_REQUEUE_SQL,
                job_id,
                retry_budget,
                float(retry_delay_seconds),
                error,
                claim_token,
            )
        return _row_to_job(row) if row else None

    async def expire_stale_leases(
        self,
        retry_budget: int,
        retry_delay_seconds: float,
    ) -> List[JobRecord]:
        async def expire_transaction(conn):
            expired = await conn.fetch(SELECT_EXPIRED_SQL)
            if not expired:
                return []
            return await conn.fetch(
                EXPIRE_STALE_LEASES_SQL,
                [row["id"] for row in expired],
                retry_budget,
                float(retry_delay_seconds),
                "Lease expired",
            )

        async with _store_call("expire_stale_leases"):
            rows = await execute_in_transaction(expire_transaction)
        return [_row_to_job(row) for row in rows]

    async def count_by_status(self, batch_id: str) -> Dict[str, int]:
        async with _store_call("count_by_status"):
            rows = await execute_query(COUNT_BY_STATUS_SQL, batch_id)
        return {row["status"]: int(row["job_count"]) for row in rows}

    async def get_job(self, job_id: str) -> Optional[JobRecord]:
        async with _store_call("get_job"):
            row = await execute_one("SELECT * FROM generation_jobs WHERE id = $1", job_id)
        return _row_to_job(row) if row else None

    async def list_jobs(self, batch_id: str) -> List[JobRecord]:
        async with _store_call("list_jobs"):
            rows = await execute_query(
                """
                SELECT *
                FROM generation_jobs
                WHERE job_batch_id = $1
                ORDER BY created_at, position
                """,
                batch_id,
            )
        return [_row_to_job(row) for row in rows]

    async def cancel_pending(self, batch_id: str, reason: str) -> int:
        async with _store_call("cancel_pending"):
            status = await execute_update(CANCEL_PENDING_SQL, batch_id, reason)
        return affected_rows(status)

    async def set_target_document(self, batch_id: str, document_id: str) -> int:
        async with _store_call("set_target_document"):
            status = await execute_update(SET_TARGET_DOCUMENT_SQL, batch_id, document_id)
        return affected_rows(status)


class PostgresDocumentStore(DocumentStore):
    """Course documents stored as JSONB in ``course_documents``."""

    async def create_document(self, document: Dict[str, Any]) -> str:
        async with _store_call("create_document"):
            row = await execute_one(
                """
                INSERT INTO course_documents (document)
                VALUES ($1::jsonb)
                RETURNING id
                """,
                document,
            )
        return row["id"]

    async def get_document(self, document_id: str) -> Optional[Dict[str, Any]]:
        async with _store_call("get_document"):
            row = await execute_one(
                "SELECT id, document FROM course_documents WHERE id = $1",
                document_id,
            )
        if not row:
            return None
        return {**row["document"], "id": row["id"]}

    async def upsert_module_result(
        self,
        document_id: str,
        module_identifier: str,
        module_title: str,
        entry: Dict[str, Any],
    ) -> bool:
        async with _store_call("upsert_module_result"):
            row = await execute_one(
                UPSERT_MODULE_RESULT_SQL,
                document_id,
                module_identifier,
                module_title,
                entry["subsection_key"],
                entry,
            )
        return row is not None
