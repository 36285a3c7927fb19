"""Execution engine for one batch import job.

The runner walks the CSV from the checkpoint forward, one row at a time.
Each row is validated, applied when valid, and then committed through the
checkpoint store together with its issues. Pause and cancel requests are
only honoured between rows, right before the next row is read, so the
checkpoint always matches the counters.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.orm import sessionmaker

from batch_import.core.errors import (
    CatalogNotFound,
    CheckpointConflict,
    InvalidStateTransition,
    JobNotFound,
    ProductApplyError,
    SourceUnavailable,
)
from batch_import.db.models.batch_import_job import BatchImportJob
from batch_import.services.catalog_schema import CatalogSchema, load_catalog_schema
from batch_import.services.checkpoint_store import CheckpointStore
from batch_import.services.control_signals import ControlSignal
from batch_import.services.csv_source import SourceRecord, iter_records
from batch_import.services.job_repository import JobRepository
from batch_import.services.product_applier import ApplyUnavailable, TimedApplier
from batch_import.services.row_validator import ErrorType, RowIssue, Severity, validate_row
from batch_import.services.state_machine import JobEvent, JobState
from batch_import.services.webhook_service import BATCH_CANCELLED, BATCH_COMPLETED, BATCH_FAILED

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunOutcome:
    job_id: str
    # State the job was left in; None when the run never took ownership
    state: JobState | None
    rows_committed: int = 0
    detail: str | None = None


@dataclass
class _RowResult:
    succeeded: bool
    issues: list[RowIssue]
    # True when the product store failed or timed out for this row
    apply_unavailable: bool = False


class JobRunner:
    def __init__(
        self,
        repository: JobRepository,
        checkpoints: CheckpointStore,
        applier,
        *,
        session_factory: sessionmaker,
        signals,
        locks,
        progress=None,
        notifier=None,
        apply_timeout_seconds: float = 30.0,
        max_consecutive_apply_failures: int = 5,
        lock_wait_seconds: float = 0.0,
        progress_publish_every: int = 25,
    ) -> None:
        self._repository = repository
        self._checkpoints = checkpoints
        self._applier = applier
        self._session_factory = session_factory
        self._signals = signals
        self._locks = locks
        self._progress = progress
        self._notifier = notifier
        self._apply_timeout = apply_timeout_seconds
        self._max_failures = max_consecutive_apply_failures
        self._lock_wait = lock_wait_seconds
        self._publish_every = progress_publish_every

    def run(self, job_id: str) -> RunOutcome:
        """Process the job until it completes, fails or is paused/cancelled."""
        with self._locks.hold(job_id, self._lock_wait) as handle:
            if not handle.acquired:
                logger.warning(f"Job {job_id} already has an active runner, skipping")
                return RunOutcome(job_id, None, detail="execution lock held by another runner")
            try:
                job = self._repository.get(job_id)
            except JobNotFound:
                logger.warning(f"Job {job_id} was deleted before it could run")
                return RunOutcome(job_id, None, detail="job not found")
            if job.state != JobState.PROCESSING.value:
                logger.info(f"Job {job_id} is {job.state}, nothing to run")
                return RunOutcome(job_id, JobState(job.state), detail="job is not processing")
            return self._run_owned(job, handle)

    def _run_owned(self, job: BatchImportJob, handle) -> RunOutcome:
        job_id = job.id
        logger.info(
            f"Running job {job_id} from row {job.checkpoint_row_index + 1} of {job.total_rows}"
        )
        committed = 0
        consecutive_failures = 0
        applier = TimedApplier(self._applier, self._apply_timeout)
        try:
            try:
                schema = self._load_schema(job)
            except CatalogNotFound as e:
                return self._fail(job_id, str(e), committed)

            for record in iter_records(job.source_file_path, start_after=job.checkpoint_row_index):
                stopped = self._stop_requested(job_id, committed)
                if stopped is not None:
                    return stopped

                result = self._process_row(applier, job_id, schema, record)
                # Any other row outcome breaks the streak
                consecutive_failures = consecutive_failures + 1 if result.apply_unavailable else 0

                self._checkpoints.commit_row(
                    job_id,
                    record.row_number,
                    succeeded=result.succeeded,
                    issues=result.issues,
                )
                committed += 1

                if consecutive_failures >= self._max_failures:
                    return self._fail(
                        job_id,
                        f"Product creation failed for {consecutive_failures} consecutive rows",
                        committed,
                    )
                if record.row_number % self._publish_every == 0:
                    self._publish(job_id, record.row_number, job.total_rows)
                if not handle.refresh():
                    return RunOutcome(
                        job_id, JobState.PROCESSING, committed, "execution lock lost"
                    )
        except SourceUnavailable as e:
            logger.error(f"Job {job_id} source file unavailable: {e}")
            return self._fail(job_id, str(e), committed)
        except CheckpointConflict as e:
            # Another writer advanced the checkpoint; leave the job to it
            logger.error(f"Job {job_id} stopped on checkpoint conflict: {e}")
            return RunOutcome(job_id, self._repository.get_state(job_id), committed, str(e))
        except Exception as e:
            logger.error(f"Unexpected error running job {job_id}: {e}", exc_info=True)
            self._fail(job_id, f"Unexpected error: {e}", committed)
            raise
        finally:
            applier.close()

        stopped = self._stop_requested(job_id, committed)
        if stopped is not None:
            return stopped
        if self._repository.finish(job_id, JobEvent.COMPLETE):
            self._signals.clear(job_id)
            self._publish(job_id, job.total_rows, job.total_rows, "Import complete", JobState.COMPLETED)
            self._notify(BATCH_COMPLETED, job_id)
            return RunOutcome(job_id, JobState.COMPLETED, committed)
        return RunOutcome(job_id, self._repository.get_state(job_id), committed, "state changed before completion")

    def _load_schema(self, job: BatchImportJob) -> CatalogSchema:
        with self._session_factory() as session:
            return load_catalog_schema(session, job.catalog_id)

    def _stop_requested(self, job_id: str, committed: int) -> RunOutcome | None:
        """Safe point: honour a pending signal or a state changed by the control surface."""
        signal = self._signals.poll(job_id)
        state = self._repository.get_state(job_id)
        if state is JobState.PROCESSING:
            if signal is None:
                return None
            # Signal with no matching state write: apply it here
            event = JobEvent.CANCEL if signal is ControlSignal.CANCEL else JobEvent.PAUSE
            try:
                _, job = self._repository.transition(job_id, event)
                state = JobState(job.state)
                if state is JobState.CANCELLED:
                    self._notify(BATCH_CANCELLED, job_id)
            except InvalidStateTransition:
                state = self._repository.get_state(job_id)
        if signal is not None:
            self._signals.clear(job_id)
        logger.info(f"Job {job_id} stopped at safe point in state {state.value}")
        self._publish_state(job_id, state)
        return RunOutcome(job_id, state, committed, f"stopped: {state.value}")

    def _process_row(
        self,
        applier: TimedApplier,
        job_id: str,
        schema: CatalogSchema,
        record: SourceRecord,
    ) -> _RowResult:
        if record.parse_error is not None:
            return _RowResult(
                succeeded=False,
                issues=[RowIssue(message=record.parse_error, error_type=ErrorType.PARSE)],
            )

        validation = validate_row(record.values, schema)
        if not validation.ok:
            return _RowResult(succeeded=False, issues=validation.issues)

        issues = list(validation.issues)
        try:
            result = applier.apply(job_id, record.row_number, validation.command)
        except ApplyUnavailable as e:
            logger.warning(f"Job {job_id} row {record.row_number}: {e}")
            issues.append(RowIssue(message=str(e), error_type=ErrorType.SYSTEM))
            return _RowResult(succeeded=False, issues=issues, apply_unavailable=True)
        except ProductApplyError as e:
            issues.append(RowIssue(message=str(e), error_type=ErrorType.APPLY))
            return _RowResult(succeeded=False, issues=issues)

        if not result.created:
            issues.append(
                RowIssue(
                    message=f"Product {result.product_id} was already created for this row",
                    severity=Severity.INFO,
                    error_type=ErrorType.APPLY,
                )
            )
        return _RowResult(succeeded=True, issues=issues)

    def _fail(self, job_id: str, message: str, committed: int) -> RunOutcome:
        if self._repository.finish(job_id, JobEvent.FAIL, error_message=message):
            logger.error(f"Job {job_id} failed: {message}")
            self._publish_state(job_id, JobState.FAILED, f"Import failed: {message}")
            self._notify(BATCH_FAILED, job_id)
            return RunOutcome(job_id, JobState.FAILED, committed, message)
        return RunOutcome(job_id, self._repository.get_state(job_id), committed, message)

    def _publish(
        self,
        job_id: str,
        processed: int,
        total: int,
        message: str | None = None,
        state: JobState = JobState.PROCESSING,
    ) -> None:
        if self._progress is None:
            return
        self._progress.publish(
            job_id,
            processed / total if total else 0.0,
            message or f"Processed {processed}/{total} rows",
            status=state.value,
            meta={"processed": processed, "total": total},
        )

    def _publish_state(self, job_id: str, state: JobState, message: str | None = None) -> None:
        if self._progress is None:
            return
        job = self._repository.get(job_id)
        self._publish(
            job_id,
            job.processed_rows,
            job.total_rows,
            message or f"Import {state.value} after {job.processed_rows}/{job.total_rows} rows",
            state,
        )

    def _notify(self, event_type: str, job_id: str) -> None:
        if self._notifier is not None:
            self._notifier.notify(event_type, job_id)
