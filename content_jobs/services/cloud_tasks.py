"""Google Cloud Tasks client wrapper for the content job queue.

Each task is one trigger of ``POST /jobs/batches/{batch_id}/process-one``.
"""
import asyncio
import datetime
import logging
from typing import Any, Optional, Set

import httpx
from google.protobuf import timestamp_pb2

from content_jobs.config import settings

logger = logging.getLogger(__name__)

# Initialize Cloud Tasks client for production
_client: Optional[Any] = None

if settings.is_production:
    try:
        from google.cloud import tasks_v2
        _client = tasks_v2.CloudTasksClient()
    except Exception as e:
        logger.warning(f"Failed to initialize Cloud Tasks client: {e}")
        _client = None

# Keeps development triggers alive until they finish
_background: Set[asyncio.Task] = set()


def process_one_path(batch_id: str) -> str:
    return f"/jobs/batches/{batch_id}/process-one"


async def _post_after_delay(url: str, delay_seconds: float) -> None:
    if delay_seconds > 0:
        await asyncio.sleep(delay_seconds)

    try:
        async with httpx.AsyncClient() as client:
            response = await client.post(url, timeout=settings.GENERATION_TIMEOUT_SECONDS + 30.0)

        if response.status_code != 200:
            logger.error(f"[DEV] Trigger failed ({response.status_code}): {response.text}")
        else:
            logger.info(f"[DEV] Trigger handled: {url}")
    except httpx.HTTPError as e:
        logger.error(f"[DEV] Failed to call content service: {e}")


async def enqueue_process_one(batch_id: str, delay_seconds: float = 0) -> str:
    """
    Schedule one process-one call for a batch.

    In development the call is made over plain HTTP from a background task;
    in production a Cloud Task is created with ``schedule_time`` set to the
    delay, which is how retry backoff is honoured.

    Args:
        batch_id: Batch to advance
        delay_seconds: Seconds to wait before the call

    Returns:
        Task name or a local placeholder id
    """
    endpoint = process_one_path(batch_id)
    url = f"{settings.AI_SERVICE_URL}{endpoint}"

    if settings.is_development:
        logger.info(f"[DEV] Triggering {endpoint} in {delay_seconds}s")
        task = asyncio.create_task(_post_after_delay(url, delay_seconds))
        _background.add(task)
        task.add_done_callback(_background.discard)
        return f"dev-task-{batch_id}"

    if not _client:
        logger.error("Cloud Tasks client not available in production")
        return f"error-task-{batch_id}"

    try:
        parent = _client.queue_path(
            settings.GCS_PROJECT_ID,
            settings.CLOUD_TASKS_LOCATION,
            settings.CLOUD_TASKS_QUEUE,
        )

        task = {
            "http_request": {
                "http_method": tasks_v2.HttpMethod.POST,
                "url": url,
                "headers": {"Content-Type": "application/json"},
            }
        }
        if delay_seconds > 0:
            schedule_time = timestamp_pb2.Timestamp()
            schedule_time.FromDatetime(
                datetime.datetime.now(datetime.timezone.utc)
                + datetime.timedelta(seconds=delay_seconds)
            )
            task["schedule_time"] = schedule_time

        response = _client.create_task(request={"parent": parent, "task": task})
        logger.info(f"Created Cloud Task: {response.name}")
        return response.name

    except Exception as e:
        # A lost trigger is recovered by the next trigger or the lease sweep.
        logger.error(f"Failed to create Cloud Task for batch {batch_id}: {e}")
        return f"error-task-{batch_id}"
