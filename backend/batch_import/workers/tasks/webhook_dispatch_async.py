"""Celery task delivering one batch lifecycle event to one webhook."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from batch_import.db.models.webhook import Webhook
from batch_import.db.session import get_fresh_session
from batch_import.services.webhook_dispatch import dispatch_event
from batch_import.workers.celery_app import celery_app

logger = logging.getLogger(__name__)

MAX_DELIVERY_ATTEMPTS = 3
RETRY_BACKOFF_SECONDS = 30
TRANSIENT_STATUSES = ("timeout", "error")


@celery_app.task(
    bind=True,
    name="batch_import.workers.tasks.webhook_dispatch_async",
    max_retries=MAX_DELIVERY_ATTEMPTS - 1,
)
def dispatch_webhook_async(self, webhook_id: int, payload: dict[str, Any]) -> dict[str, Any]:
    """Deliver ``payload``; timeouts and connection errors are retried with backoff.

    HTTP error responses are recorded but not retried.
    """
    with get_fresh_session() as session:
        try:
            webhook = session.get(Webhook, webhook_id)
        except SQLAlchemyError as e:
            logger.error(f"Database error loading webhook {webhook_id}: {e}", exc_info=True)
            return {"success": False, "error": str(e)}

        if webhook is None:
            logger.error(f"Webhook {webhook_id} not found")
            return {"success": False, "error": "Webhook not found"}
        if not webhook.enabled:
            logger.warning(f"Webhook {webhook_id} is disabled, skipping {payload.get('event')}")
            return {"success": False, "error": "Webhook is disabled"}

        result = dispatch_event(webhook, payload, session)

    if result["status"] in TRANSIENT_STATUSES and self.request.retries < self.max_retries:
        countdown = RETRY_BACKOFF_SECONDS * 2 ** self.request.retries
        logger.warning(
            f"Webhook {webhook_id} delivery failed ({result['error']}), "
            f"retrying in {countdown}s"
        )
        raise self.retry(countdown=countdown)

    logger.info(
        f"Webhook {webhook_id} {payload.get('event')} delivery finished: "
        f"success={result['success']}, status={result['status']}"
    )
    return result
