"""Ways of launching a job run in the background."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

logger = logging.getLogger(__name__)


class CeleryJobScheduler:
    """Queues the run on the ``imports`` Celery queue."""

    def schedule(self, job_id: str) -> None:
        from batch_import.workers.tasks.run_batch_import import run_batch_import_task

        run_batch_import_task.apply_async(args=[job_id], queue="imports")
        logger.info(f"Queued batch import run for job {job_id}")


class ThreadJobScheduler:
    """Runs the job on a daemon thread in this process (single-process deployments)."""

    def __init__(self, runner_factory: Callable) -> None:
        self._runner_factory = runner_factory

    def schedule(self, job_id: str) -> threading.Thread:
        thread = threading.Thread(
            target=self._run,
            args=(job_id,),
            name=f"batch-import-{job_id}",
            daemon=True,
        )
        thread.start()
        logger.info(f"Started batch import thread for job {job_id}")
        return thread

    def _run(self, job_id: str) -> None:
        try:
            self._runner_factory().run(job_id)
        except Exception as e:
            # The runner has already marked the job failed
            logger.error(f"Batch import thread for job {job_id} crashed: {e}", exc_info=True)
