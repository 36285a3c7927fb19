"""Celery task that executes one batch import run."""

from __future__ import annotations

import logging
from typing import Any

from batch_import.services.factory import build_runner
from batch_import.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, name="batch_import.workers.tasks.run_batch_import")
def run_batch_import_task(self, job_id: str) -> dict[str, Any]:
    """Run the job from its checkpoint until it completes, fails or is stopped."""
    outcome = build_runner().run(job_id)
    logger.info(
        f"Batch import run for job {job_id} finished: state={outcome.state}, "
        f"rows={outcome.rows_committed}, detail={outcome.detail}"
    )
    return {
        "job_id": outcome.job_id,
        "state": outcome.state.value if outcome.state else None,
        "rows_committed": outcome.rows_committed,
        "detail": outcome.detail,
    }
