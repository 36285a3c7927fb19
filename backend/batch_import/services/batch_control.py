"""Request/response control surface for batch import jobs.

Every operation validates the transition synchronously and returns at once;
imports run on the configured scheduler. A rejected action raises
InvalidStateTransition and leaves the job untouched.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from sqlalchemy.orm import sessionmaker

from batch_import.core.errors import InvalidFile
from batch_import.db.models.batch_import_job import BatchImportJob
from batch_import.db.models.batch_import_row_error import BatchImportRowError
from batch_import.services.catalog_schema import load_catalog_schema
from batch_import.services.control_signals import ControlSignal
from batch_import.services.csv_source import inspect_csv
from batch_import.services.job_repository import JobRepository
from batch_import.services.state_machine import JobEvent, JobState, next_state
from batch_import.services.template import build_template, template_filename
from batch_import.services.webhook_service import BATCH_CANCELLED
from batch_import.storage.file_storage import delete_upload, save_upload

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobStatus:
    job: BatchImportJob
    resumable: bool
    progress: float
    message: str | None = None


@dataclass(frozen=True)
class CsvTemplate:
    filename: str
    content: str


class BatchControl:
    def __init__(
        self,
        repository: JobRepository,
        scheduler,
        signals,
        *,
        session_factory: sessionmaker,
        progress=None,
        notifier=None,
        max_upload_bytes: int | None = None,
        max_retries: int = 3,
    ) -> None:
        self._repository = repository
        self._scheduler = scheduler
        self._signals = signals
        self._session_factory = session_factory
        self._progress = progress
        self._notifier = notifier
        self._max_upload_bytes = max_upload_bytes
        self._max_retries = max_retries

    def create(
        self,
        name: str,
        description: str | None = None,
        catalog_id: int | None = None,
    ) -> BatchImportJob:
        if not name or not name.strip():
            raise ValueError("Job name is required")
        return self._repository.create(name.strip(), description, catalog_id)

    def attach_file(self, job_id: str, content: bytes, file_name: str | None = None) -> BatchImportJob:
        """Validate, stage and attach a CSV to a pending job; replaces an earlier upload."""
        job = self._repository.get(job_id)
        next_state(job.state, JobEvent.FILE_UPLOADED)
        if file_name and not file_name.lower().endswith(".csv"):
            raise InvalidFile("Only .csv files are accepted")
        summary = inspect_csv(content, self._max_upload_bytes)

        path = save_upload(content, file_name, job_id=job_id)
        try:
            previous = self._repository.attach_file(job_id, file_name, str(path), summary.total_rows)
        except Exception:
            delete_upload(path)
            raise
        if previous and previous != str(path):
            delete_upload(previous)
        return self._repository.get(job_id)

    def start(self, job_id: str) -> BatchImportJob:
        _, job = self._repository.transition(job_id, JobEvent.START)
        self._reset_run(job_id)
        self._schedule(job_id)
        return job

    def pause(self, job_id: str) -> BatchImportJob:
        _, job = self._repository.transition(job_id, JobEvent.PAUSE)
        self._signals.send(job_id, ControlSignal.PAUSE)
        return job

    def resume(self, job_id: str) -> BatchImportJob:
        _, job = self._repository.transition(job_id, JobEvent.RESUME)
        self._reset_run(job_id)
        self._schedule(job_id)
        return job

    def cancel(self, job_id: str) -> BatchImportJob:
        previous, job = self._repository.transition(job_id, JobEvent.CANCEL)
        if previous is JobState.PROCESSING:
            self._signals.send(job_id, ControlSignal.CANCEL)
        else:
            self._signals.clear(job_id)
        if self._notifier is not None:
            self._notifier.notify(BATCH_CANCELLED, job_id)
        return job

    def retry(self, job_id: str) -> BatchImportJob:
        job = self._repository.retry(job_id, self._max_retries)
        self._reset_run(job_id)
        self._schedule(job_id)
        return job

    def _reset_run(self, job_id: str) -> None:
        """Drop leftovers of the previous run once a new run has been admitted."""
        self._signals.clear(job_id)
        if self._progress is not None:
            self._progress.clear(job_id)

    def delete(self, job_id: str) -> BatchImportJob:
        job = self._repository.delete(job_id)
        delete_upload(job.source_file_path)
        self._signals.clear(job_id)
        if self._progress is not None:
            self._progress.clear(job_id)
        return job

    def get_status(self, job_id: str) -> JobStatus:
        job = self._repository.get(job_id)
        snapshot = self._progress.fetch(job_id) if self._progress is not None else {}
        progress = job.processed_rows / job.total_rows if job.total_rows else 0.0
        return JobStatus(
            job=job,
            resumable=self._is_resumable(job),
            progress=round(min(progress, 1.0), 4),
            message=snapshot.get("message") or job.error_message,
        )

    def get_errors(
        self,
        job_id: str,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[BatchImportRowError]:
        return self._repository.list_errors(job_id, limit=limit, offset=offset)

    def list_jobs(
        self,
        state: JobState | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[BatchImportJob]:
        return self._repository.list_jobs(state=state, limit=limit, offset=offset)

    def template(self, catalog_id: int | None = None) -> CsvTemplate:
        with self._session_factory() as session:
            schema = load_catalog_schema(session, catalog_id)
        return CsvTemplate(filename=template_filename(schema), content=build_template(schema))

    def _is_resumable(self, job: BatchImportJob) -> bool:
        if job.state == JobState.PAUSED.value:
            return True
        if job.state == JobState.FAILED.value:
            return (
                job.retry_count < self._max_retries
                and job.checkpoint_row_index == job.processed_rows
                and bool(job.source_file_path)
                and Path(job.source_file_path).is_file()
            )
        return False

    def _schedule(self, job_id: str) -> None:
        try:
            self._scheduler.schedule(job_id)
        except Exception as e:
            logger.error(f"Failed to schedule job {job_id}: {e}", exc_info=True)
            self._repository.finish(job_id, JobEvent.FAIL, error_message=f"Could not schedule import: {e}")
            raise
