"""Service for triggering webhooks on batch lifecycle events."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from batch_import.db.models.batch_import_job import BatchImportJob
from batch_import.db.models.webhook import Webhook
from batch_import.services.webhook_dispatch import dispatch_event

logger = logging.getLogger(__name__)

BATCH_COMPLETED = "batch.completed"
BATCH_FAILED = "batch.failed"
BATCH_CANCELLED = "batch.cancelled"
BATCH_EVENTS = (BATCH_COMPLETED, BATCH_FAILED, BATCH_CANCELLED)


def trigger_webhooks(
    event_type: str,
    payload: dict[str, Any],
    db: Session,
    async_dispatch: bool = True,
) -> int:
    """Send ``payload`` to every enabled webhook subscribed to ``event_type``.

    With ``async_dispatch`` deliveries are queued on Celery; otherwise they
    run inline. Returns the number of webhooks targeted.
    """
    webhooks = db.scalars(
        select(Webhook).where(Webhook.event == event_type, Webhook.enabled.is_(True))
    ).all()
    if not webhooks:
        logger.debug(f"No enabled webhooks found for event {event_type}")
        return 0

    logger.info(f"Triggering {len(webhooks)} webhook(s) for event {event_type}")
    if async_dispatch:
        from batch_import.workers.tasks.webhook_dispatch_async import dispatch_webhook_async

    for webhook in webhooks:
        try:
            if async_dispatch:
                dispatch_webhook_async.apply_async(args=[webhook.id, payload], queue="webhooks")
            else:
                result = dispatch_event(webhook, payload, db)
                if not result.get("success"):
                    logger.warning(f"Webhook {webhook.id} delivery failed: {result.get('error')}")
        except Exception as e:
            # One broken endpoint must not stop delivery to the others
            logger.error(
                f"Error triggering webhook {webhook.id} for event {event_type}: {e}",
                exc_info=True,
            )
    return len(webhooks)


def build_batch_payload(job: BatchImportJob, event_type: str) -> dict[str, Any]:
    return {
        "event": event_type,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "data": {
            "job_id": job.id,
            "name": job.name,
            "state": job.state,
            "total_rows": job.total_rows,
            "processed_rows": job.processed_rows,
            "success_rows": job.success_rows,
            "error_rows": job.error_rows,
            "retry_count": job.retry_count,
            "error_message": job.error_message,
        },
    }


class WebhookNotifier:
    """Publishes batch lifecycle events; delivery problems are logged, never raised."""

    def __init__(self, session_factory: sessionmaker, async_dispatch: bool = True) -> None:
        self._session_factory = session_factory
        self._async_dispatch = async_dispatch

    def notify(self, event_type: str, job_id: str) -> None:
        with self._session_factory() as session:
            try:
                job = session.get(BatchImportJob, job_id)
                if job is None:
                    logger.warning(f"Skipping {event_type} webhooks: job {job_id} no longer exists")
                    return
                trigger_webhooks(
                    event_type,
                    build_batch_payload(job, event_type),
                    session,
                    async_dispatch=self._async_dispatch,
                )
            except Exception as e:
                logger.error(
                    f"Unexpected error triggering {event_type} webhooks for job {job_id}: {e}",
                    exc_info=True,
                )
