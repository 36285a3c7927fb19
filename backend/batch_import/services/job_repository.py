"""Persistence of batch import jobs and their lifecycle transitions."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from batch_import.core.errors import CatalogNotFound, InvalidStateTransition, JobNotFound
from batch_import.db.models.batch_import_job import BatchImportJob
from batch_import.db.models.batch_import_row_error import BatchImportRowError
from batch_import.db.models.catalog import Catalog
from batch_import.services.state_machine import (
    JobEvent,
    JobState,
    coerce_state,
    ensure_deletable,
    next_state,
)

logger = logging.getLogger(__name__)

STATE_TIMESTAMPS = {
    JobState.PAUSED: "paused_at",
    JobState.CANCELLED: "cancelled_at",
    JobState.FAILED: "failed_at",
    JobState.COMPLETED: "completed_at",
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


class JobRepository:
    """Every state change goes through the transition table under a row lock."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    @staticmethod
    def _locked(session: Session, job_id: str) -> BatchImportJob:
        job = session.scalar(
            select(BatchImportJob).where(BatchImportJob.id == job_id).with_for_update()
        )
        if job is None:
            raise JobNotFound(job_id)
        return job

    @staticmethod
    def _stamp(job: BatchImportJob, target: JobState, event: JobEvent) -> None:
        now = _now()
        job.state = target.value
        job.updated_at = now
        if event is JobEvent.START and job.started_at is None:
            job.started_at = now
        if event in (JobEvent.RESUME, JobEvent.RETRY):
            job.resumed_at = now
        attribute = STATE_TIMESTAMPS.get(target)
        if attribute:
            setattr(job, attribute, now)

    def create(
        self,
        name: str,
        description: str | None = None,
        catalog_id: int | None = None,
    ) -> BatchImportJob:
        with self._session_factory() as session:
            try:
                if catalog_id is not None and session.get(Catalog, catalog_id) is None:
                    raise CatalogNotFound(catalog_id)
                job = BatchImportJob(
                    name=name,
                    description=description,
                    catalog_id=catalog_id,
                    state=JobState.PENDING.value,
                )
                session.add(job)
                session.commit()
                session.refresh(job)
                logger.info(f"Created batch import job {job.id} ({name})")
                return job
            except SQLAlchemyError as e:
                session.rollback()
                logger.error(f"Database error creating batch import job: {e}", exc_info=True)
                raise

    def get(self, job_id: str) -> BatchImportJob:
        with self._session_factory() as session:
            job = session.get(BatchImportJob, job_id)
            if job is None:
                raise JobNotFound(job_id)
            return job

    def get_state(self, job_id: str) -> JobState:
        with self._session_factory() as session:
            state = session.scalar(
                select(BatchImportJob.state).where(BatchImportJob.id == job_id)
            )
        if state is None:
            raise JobNotFound(job_id)
        return coerce_state(state)

    def list_jobs(
        self,
        state: JobState | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[BatchImportJob]:
        with self._session_factory() as session:
            query = select(BatchImportJob).order_by(
                BatchImportJob.created_at.desc(), BatchImportJob.id
            )
            if state is not None:
                query = query.where(BatchImportJob.state == state.value)
            return list(session.scalars(query.offset(offset).limit(limit)).all())

    def attach_file(
        self,
        job_id: str,
        file_name: str | None,
        file_path: str,
        total_rows: int,
    ) -> str | None:
        """Attach a staged CSV to a pending job; returns the replaced file path, if any."""
        with self._session_factory() as session:
            try:
                job = self._locked(session, job_id)
                next_state(job.state, JobEvent.FILE_UPLOADED)
                previous = job.source_file_path
                job.source_file_name = file_name
                job.source_file_path = file_path
                job.total_rows = total_rows
                job.updated_at = _now()
                session.commit()
                logger.info(f"Attached {file_name} ({total_rows} rows) to job {job_id}")
                return previous
            except SQLAlchemyError as e:
                session.rollback()
                logger.error(f"Database error attaching file to job {job_id}: {e}", exc_info=True)
                raise

    def transition(self, job_id: str, event: JobEvent) -> tuple[JobState, BatchImportJob]:
        """Apply ``event``; returns the state before the change and the updated job."""
        with self._session_factory() as session:
            try:
                job = self._locked(session, job_id)
                previous = coerce_state(job.state)
                target = next_state(previous, event)
                if event in (JobEvent.START, JobEvent.RESUME) and not job.source_file_path:
                    raise InvalidStateTransition(
                        previous.value, event.value, "no CSV file has been uploaded"
                    )
                if event is JobEvent.RESUME and job.checkpoint_row_index != job.processed_rows:
                    raise InvalidStateTransition(
                        previous.value, event.value, "checkpoint is inconsistent with progress"
                    )
                self._stamp(job, target, event)
                session.commit()
                logger.info(f"Job {job_id}: {previous.value} -> {target.value} ({event.value})")
                return previous, job
            except SQLAlchemyError as e:
                session.rollback()
                logger.error(
                    f"Database error applying {event.value} to job {job_id}: {e}", exc_info=True
                )
                raise

    def retry(self, job_id: str, max_retries: int) -> BatchImportJob:
        """failed -> retrying -> processing in one transaction, resuming after the checkpoint."""
        with self._session_factory() as session:
            try:
                job = self._locked(session, job_id)
                retrying = next_state(job.state, JobEvent.RETRY)
                if job.retry_count >= max_retries:
                    raise InvalidStateTransition(
                        job.state, JobEvent.RETRY.value, f"retry limit of {max_retries} reached"
                    )
                if not job.source_file_path or not Path(job.source_file_path).is_file():
                    raise InvalidStateTransition(
                        job.state, JobEvent.RETRY.value, "source file is no longer available"
                    )
                if (
                    job.checkpoint_row_index != job.processed_rows
                    or job.checkpoint_row_index > job.total_rows
                ):
                    raise InvalidStateTransition(
                        job.state, JobEvent.RETRY.value, "checkpoint is inconsistent with progress"
                    )
                target = next_state(retrying, JobEvent.START)
                job.retry_count += 1
                job.error_message = None
                self._stamp(job, target, JobEvent.RETRY)
                session.commit()
                logger.info(
                    f"Job {job_id} retry {job.retry_count}/{max_retries} "
                    f"resuming after row {job.checkpoint_row_index}"
                )
                return job
            except SQLAlchemyError as e:
                session.rollback()
                logger.error(f"Database error retrying job {job_id}: {e}", exc_info=True)
                raise

    def finish(self, job_id: str, event: JobEvent, error_message: str | None = None) -> bool:
        """Move a processing job to completed/failed; False if it already left processing."""
        target = next_state(JobState.PROCESSING, event)
        now = _now()
        values = {
            BatchImportJob.state: target.value,
            BatchImportJob.updated_at: now,
            getattr(BatchImportJob, STATE_TIMESTAMPS[target]): now,
        }
        if error_message is not None:
            values[BatchImportJob.error_message] = error_message
        with self._session_factory() as session:
            try:
                result = session.execute(
                    update(BatchImportJob)
                    .where(
                        BatchImportJob.id == job_id,
                        BatchImportJob.state == JobState.PROCESSING.value,
                    )
                    .values(values)
                    .execution_options(synchronize_session=False)
                )
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                logger.error(f"Database error finishing job {job_id}: {e}", exc_info=True)
                raise
        finished = result.rowcount == 1
        if finished:
            logger.info(f"Job {job_id}: processing -> {target.value}")
        else:
            logger.info(f"Job {job_id} left processing before it could be marked {target.value}")
        return finished

    def delete(self, job_id: str) -> BatchImportJob:
        """Delete a job and its row errors; returns the detached job."""
        with self._session_factory() as session:
            try:
                job = self._locked(session, job_id)
                ensure_deletable(job.state)
                session.execute(
                    delete(BatchImportRowError).where(BatchImportRowError.job_id == job_id)
                )
                session.delete(job)
                session.commit()
                logger.info(f"Deleted batch import job {job_id}")
                return job
            except SQLAlchemyError as e:
                session.rollback()
                logger.error(f"Database error deleting job {job_id}: {e}", exc_info=True)
                raise

    def list_errors(
        self,
        job_id: str,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[BatchImportRowError]:
        with self._session_factory() as session:
            if session.get(BatchImportJob, job_id) is None:
                raise JobNotFound(job_id)
            query = (
                select(BatchImportRowError)
                .where(BatchImportRowError.job_id == job_id)
                .order_by(BatchImportRowError.row_number, BatchImportRowError.id)
                .offset(offset)
            )
            if limit is not None:
                query = query.limit(limit)
            return list(session.scalars(query).all())

    def count_errors(self, job_id: str) -> int:
        with self._session_factory() as session:
            return session.scalar(
                select(func.count())
                .select_from(BatchImportRowError)
                .where(BatchImportRowError.job_id == job_id)
            ) or 0
