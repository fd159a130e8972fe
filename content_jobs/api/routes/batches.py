"""Job batch endpoints.

``process-one`` is the trigger target: Cloud Tasks, a cron or a client loop
calls it repeatedly until the batch status settles.
"""
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException

from content_jobs.models.jobs import (
    AttachDocumentRequest,
    BatchStatus,
    JobRecord,
    ProcessResult,
    SubmitBatchRequest,
    SubmitBatchResponse,
)
from content_jobs.services.jobs.dispatcher import Dispatcher
from content_jobs.services.jobs.errors import (
    BatchNotFoundError,
    EnumerationError,
    StoreUnavailableError,
)
from content_jobs.services.jobs.factory import get_dispatcher

logger = logging.getLogger(__name__)
router = APIRouter()


def _store_unavailable(e: StoreUnavailableError) -> HTTPException:
    logger.error(f"Job store unavailable: {e}")
    return HTTPException(status_code=503, detail="Job store unavailable")


@router.post("/jobs/batches", response_model=SubmitBatchResponse)
async def submit_batch(
    request: SubmitBatchRequest,
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    """Enumerate modules into a batch of subsection jobs."""
    try:
        return await dispatcher.submit_batch(request.modules, request.course_metadata)
    except EnumerationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StoreUnavailableError as e:
        raise _store_unavailable(e)


@router.post("/jobs/batches/{batch_id}/process-one", response_model=ProcessResult)
async def process_one(batch_id: str, dispatcher: Dispatcher = Depends(get_dispatcher)):
    """
    Process at most one job of the batch.
    Job failures are reported in the body, never as an error status.
    """
    try:
        return await dispatcher.process_one(batch_id)
    except StoreUnavailableError as e:
        raise _store_unavailable(e)


@router.get("/jobs/batches/{batch_id}", response_model=BatchStatus)
async def batch_status(batch_id: str, dispatcher: Dispatcher = Depends(get_dispatcher)):
    try:
        return await dispatcher.status(batch_id)
    except BatchNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except StoreUnavailableError as e:
        raise _store_unavailable(e)


@router.get("/jobs/batches/{batch_id}/jobs", response_model=List[JobRecord])
async def list_batch_jobs(batch_id: str, dispatcher: Dispatcher = Depends(get_dispatcher)):
    try:
        return await dispatcher.list_jobs(batch_id)
    except BatchNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except StoreUnavailableError as e:
        raise _store_unavailable(e)


@router.post("/jobs/batches/{batch_id}/cancel")
async def cancel_batch(batch_id: str, dispatcher: Dispatcher = Depends(get_dispatcher)):
    try:
        cancelled = await dispatcher.cancel_batch(batch_id)
    except BatchNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except StoreUnavailableError as e:
        raise _store_unavailable(e)
    return {"cancelled": cancelled}


@router.post("/jobs/batches/{batch_id}/document")
async def attach_document(
    batch_id: str,
    request: AttachDocumentRequest,
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    """Set the target document for jobs submitted without one."""
    try:
        updated = await dispatcher.attach_document(batch_id, request.document_id)
    except BatchNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except StoreUnavailableError as e:
        raise _store_unavailable(e)
    return {"updated": updated}


@router.post("/jobs/sweep")
async def sweep_expired_leases(dispatcher: Dispatcher = Depends(get_dispatcher)):
    """Requeue or fail jobs whose lease ran out. Meant for a scheduler."""
    try:
        requeued = await dispatcher.sweep_expired_leases()
    except StoreUnavailableError as e:
        raise _store_unavailable(e)
    return {"requeued": requeued}
