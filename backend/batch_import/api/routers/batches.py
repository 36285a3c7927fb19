"""Batch import job endpoints: lifecycle control, status, errors and templates."""
from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from typing import AsyncGenerator

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status
from fastapi.responses import Response, StreamingResponse
from sqlalchemy.exc import SQLAlchemyError

from batch_import.api.dependencies.batches import get_control
from batch_import.api.routers.batch_helpers import serialize_job, to_http_exception
from batch_import.api.schemas.batch import (
    BatchDeleted,
    BatchJobCreate,
    BatchJobRead,
    BatchRowErrorRead,
)
from batch_import.core.config import get_settings
from batch_import.core.errors import BatchImportError
from batch_import.db.models.batch_import_job import BatchImportJob
from batch_import.services.batch_control import BatchControl
from batch_import.services.state_machine import JobState, is_terminal

logger = logging.getLogger(__name__)

router = APIRouter()

STREAM_POLL_SECONDS = 2.0


def _run_action(
    action: str,
    job_id: str,
    operation: Callable[[str], BatchImportJob],
    control: BatchControl,
) -> BatchJobRead:
    try:
        operation(job_id)
        return serialize_job(*_status_pair(control, job_id))
    except BatchImportError as e:
        raise to_http_exception(e) from e
    except SQLAlchemyError as e:
        logger.error(f"Database error during {action} of job {job_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to {action} batch import job",
        ) from e


def _status_pair(control: BatchControl, job_id: str):
    job_status = control.get_status(job_id)
    return job_status.job, job_status


@router.post(
    "/",
    summary="Create a batch import job",
    status_code=status.HTTP_201_CREATED,
    response_model=BatchJobRead,
)
async def create_batch(
    payload: BatchJobCreate,
    control: BatchControl = Depends(get_control),
) -> BatchJobRead:
    """Register a job in ``pending`` state; the CSV is uploaded separately."""
    try:
        job = control.create(payload.name, payload.description, payload.catalog_id)
        return serialize_job(job)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except BatchImportError as e:
        raise to_http_exception(e) from e
    except SQLAlchemyError as e:
        logger.error(f"Database error creating batch import job: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create batch import job",
        ) from e


@router.get(
    "/",
    summary="List batch import jobs",
    response_model=list[BatchJobRead],
)
async def list_batches(
    state: JobState | None = Query(None, description="Filter by lifecycle state"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    control: BatchControl = Depends(get_control),
) -> list[BatchJobRead]:
    """Newest first."""
    try:
        return [serialize_job(job) for job in control.list_jobs(state, limit, offset)]
    except SQLAlchemyError as e:
        logger.error(f"Database error listing batch import jobs: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to retrieve batch import jobs",
        ) from e


def _template_response(control: BatchControl, catalog_id: int | None) -> Response:
    try:
        template = control.template(catalog_id)
    except BatchImportError as e:
        raise to_http_exception(e) from e
    except SQLAlchemyError as e:
        logger.error(f"Database error generating template: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to generate template",
        ) from e
    return Response(
        content=template.content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{template.filename}"'},
    )


@router.get("/template", summary="Download a generic CSV template")
async def download_template(control: BatchControl = Depends(get_control)) -> Response:
    return _template_response(control, None)


@router.get("/template/{catalog_id}", summary="Download a catalog-specific CSV template")
async def download_catalog_template(
    catalog_id: int,
    control: BatchControl = Depends(get_control),
) -> Response:
    """Adds the catalog's attribute columns; required columns end with ``*``."""
    return _template_response(control, catalog_id)


@router.post(
    "/{job_id}/upload",
    summary="Attach a CSV file to a pending job",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=BatchJobRead,
)
async def upload_batch_file(
    job_id: str,
    file: UploadFile = File(...),
    control: BatchControl = Depends(get_control),
) -> BatchJobRead:
    """Validate headers and row count, stage the file and attach it to the job."""
    try:
        await file.seek(0)
        # One byte past the limit is enough to reject oversize uploads
        content = await file.read(get_settings().max_upload_bytes + 1)
        job = control.attach_file(job_id, content, file.filename)
        logger.info(f"Uploaded {file.filename} for job {job_id}")
        return serialize_job(job)
    except BatchImportError as e:
        raise to_http_exception(e) from e
    except OSError as e:
        logger.error(f"OS error staging file for job {job_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to save uploaded file",
        ) from e
    except SQLAlchemyError as e:
        logger.error(f"Database error attaching file to job {job_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to attach uploaded file",
        ) from e


@router.post("/{job_id}/start", summary="Start processing", response_model=BatchJobRead)
async def start_batch(job_id: str, control: BatchControl = Depends(get_control)) -> BatchJobRead:
    return _run_action("start", job_id, control.start, control)


@router.post("/{job_id}/pause", summary="Pause after the current row", response_model=BatchJobRead)
async def pause_batch(job_id: str, control: BatchControl = Depends(get_control)) -> BatchJobRead:
    return _run_action("pause", job_id, control.pause, control)


@router.post("/{job_id}/resume", summary="Resume from the checkpoint", response_model=BatchJobRead)
async def resume_batch(job_id: str, control: BatchControl = Depends(get_control)) -> BatchJobRead:
    return _run_action("resume", job_id, control.resume, control)


@router.post("/{job_id}/cancel", summary="Cancel permanently", response_model=BatchJobRead)
async def cancel_batch(job_id: str, control: BatchControl = Depends(get_control)) -> BatchJobRead:
    return _run_action("cancel", job_id, control.cancel, control)


@router.post("/{job_id}/retry", summary="Retry a failed job", response_model=BatchJobRead)
async def retry_batch(job_id: str, control: BatchControl = Depends(get_control)) -> BatchJobRead:
    """Continues after the last committed row; rows already applied are never re-applied."""
    return _run_action("retry", job_id, control.retry, control)


@router.get("/{job_id}", summary="Fetch job status", response_model=BatchJobRead)
async def get_batch(job_id: str, control: BatchControl = Depends(get_control)) -> BatchJobRead:
    try:
        return serialize_job(*_status_pair(control, job_id))
    except BatchImportError as e:
        raise to_http_exception(e) from e
    except SQLAlchemyError as e:
        logger.error(f"Database error fetching job {job_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to retrieve job status",
        ) from e


@router.get(
    "/{job_id}/errors",
    summary="List row errors",
    response_model=list[BatchRowErrorRead],
)
async def get_batch_errors(
    job_id: str,
    limit: int | None = Query(None, ge=1, le=10000),
    offset: int = Query(0, ge=0),
    control: BatchControl = Depends(get_control),
) -> list[BatchRowErrorRead]:
    """Ordered by row number."""
    try:
        errors = control.get_errors(job_id, limit=limit, offset=offset)
        return [BatchRowErrorRead.model_validate(error) for error in errors]
    except BatchImportError as e:
        raise to_http_exception(e) from e
    except SQLAlchemyError as e:
        logger.error(f"Database error listing errors of job {job_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to retrieve row errors",
        ) from e


@router.delete("/{job_id}", summary="Delete a job", response_model=BatchDeleted)
async def delete_batch(job_id: str, control: BatchControl = Depends(get_control)) -> BatchDeleted:
    """Only pending, completed or cancelled jobs can be deleted."""
    try:
        control.delete(job_id)
        return BatchDeleted(id=job_id)
    except BatchImportError as e:
        raise to_http_exception(e) from e
    except SQLAlchemyError as e:
        logger.error(f"Database error deleting job {job_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete batch import job",
        ) from e


@router.get("/{job_id}/stream", summary="Server-Sent Events stream of job status")
async def stream_batch(
    job_id: str,
    control: BatchControl = Depends(get_control),
) -> StreamingResponse:
    """Emits a ``data:`` event per poll; closes once the job is completed,
    cancelled or failed, or when the job disappears.
    """
    try:
        control.get_status(job_id)
    except BatchImportError as e:
        raise to_http_exception(e) from e

    async def event_generator() -> AsyncGenerator[str, None]:
        while True:
            try:
                job_status = control.get_status(job_id)
            except BatchImportError as e:
                yield f"event: error\ndata: {json.dumps({'error': str(e)})}\n\n"
                break

            yield f"data: {serialize_job(job_status.job, job_status).model_dump_json()}\n\n"

            state = job_status.job.state
            if is_terminal(state) or state == JobState.FAILED.value:
                yield "event: close\ndata: {}\n\n"
                break
            await asyncio.sleep(STREAM_POLL_SECONDS)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
