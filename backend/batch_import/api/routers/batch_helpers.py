"""Shared helpers for shaping batch job responses and errors."""
from __future__ import annotations

from fastapi import HTTPException, status

from batch_import.api.schemas.batch import BatchJobRead
from batch_import.core.errors import (
    BatchImportError,
    CatalogNotFound,
    InvalidFile,
    InvalidStateTransition,
    JobNotFound,
)
from batch_import.db.models.batch_import_job import BatchImportJob
from batch_import.services.batch_control import JobStatus


def serialize_job(job: BatchImportJob, job_status: JobStatus | None = None) -> BatchJobRead:
    """Job row plus the derived status fields when available."""
    payload = BatchJobRead.model_validate(job)
    if job_status is None:
        if job.total_rows:
            payload.progress = round(job.processed_rows / job.total_rows, 4)
        return payload
    payload.resumable = job_status.resumable
    payload.progress = job_status.progress
    payload.message = job_status.message
    return payload


def to_http_exception(exc: BatchImportError) -> HTTPException:
    if isinstance(exc, (JobNotFound, CatalogNotFound)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, InvalidStateTransition):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.to_dict())
    if isinstance(exc, InvalidFile):
        return HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "InvalidFile", "message": str(exc)},
        )
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))
