"""Durable per-row progress: counters, checkpoint and row errors in one transaction."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from batch_import.core.errors import CheckpointConflict, JobNotFound
from batch_import.db.models.batch_import_job import BatchImportJob
from batch_import.db.models.batch_import_row_error import BatchImportRowError
from batch_import.services.row_validator import RowIssue

logger = logging.getLogger(__name__)


class CheckpointStore:
    """Commits the outcome of one row.

    The counter increments, the checkpoint advance and the row's issues are
    written together; a crash either keeps all of them or none. The update is
    conditional on the checkpoint still pointing at the previous row, so a
    second writer on the same job fails with CheckpointConflict instead of
    double counting.
    """

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def checkpoint(self, job_id: str) -> int:
        with self._session_factory() as session:
            value = session.scalar(
                select(BatchImportJob.checkpoint_row_index).where(BatchImportJob.id == job_id)
            )
        if value is None:
            raise JobNotFound(job_id)
        return value

    def commit_row(
        self,
        job_id: str,
        row_number: int,
        *,
        succeeded: bool,
        issues: Sequence[RowIssue] = (),
    ) -> None:
        counter = BatchImportJob.success_rows if succeeded else BatchImportJob.error_rows
        with self._session_factory() as session:
            try:
                result = session.execute(
                    update(BatchImportJob)
                    .where(
                        BatchImportJob.id == job_id,
                        BatchImportJob.checkpoint_row_index == row_number - 1,
                    )
                    .values(
                        {
                            BatchImportJob.processed_rows: BatchImportJob.processed_rows + 1,
                            counter: counter + 1,
                            BatchImportJob.checkpoint_row_index: row_number,
                            BatchImportJob.updated_at: datetime.now(timezone.utc),
                        }
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    session.rollback()
                    raise CheckpointConflict(job_id, row_number)

                session.add_all(
                    BatchImportRowError(
                        job_id=job_id,
                        row_number=row_number,
                        field=issue.field,
                        message=issue.message,
                        severity=issue.severity.value,
                        error_type=issue.error_type.value,
                    )
                    for issue in issues
                )
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                logger.error(
                    f"Database error committing row {row_number} of job {job_id}: {e}",
                    exc_info=True,
                )
                raise
