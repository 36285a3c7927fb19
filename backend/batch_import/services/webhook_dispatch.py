"""Deliver webhook payloads and record responses."""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
from typing import Any

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from batch_import.db.models.webhook import Webhook

logger = logging.getLogger(__name__)
TIMEOUT_SECONDS = 10
USER_AGENT = "Batch-Product-Importer/1.0"


def sign_payload(body: str, secret: str) -> str:
    """HMAC-SHA256 of the exact request body."""
    return hmac.new(secret.encode("utf-8"), body.encode("utf-8"), hashlib.sha256).hexdigest()


def dispatch_event(
    webhook: Webhook,
    payload: dict[str, Any],
    db: Session | None = None,
    client: httpx.Client | None = None,
) -> dict[str, Any]:
    """POST ``payload`` to the webhook and return delivery metrics.

    The result dict carries ``status`` (HTTP code, "timeout" or "error"),
    ``response_time_ms``, ``success`` and ``error``. When ``db`` is given the
    outcome is stored on the webhook row.
    """
    start_time = time.time()
    result: dict[str, Any] = {
        "status": None,
        "response_time_ms": None,
        "success": False,
        "error": None,
    }

    body = json.dumps(payload, sort_keys=True, default=str)
    headers = {
        "Content-Type": "application/json",
        "User-Agent": USER_AGENT,
        "X-Webhook-Event": str(payload.get("event", webhook.event)),
    }
    if webhook.secret:
        headers["X-Webhook-Signature"] = f"sha256={sign_payload(body, webhook.secret)}"

    try:
        if client is None:
            with httpx.Client(timeout=TIMEOUT_SECONDS, follow_redirects=True) as owned:
                response = owned.post(webhook.url, content=body, headers=headers)
        else:
            response = client.post(webhook.url, content=body, headers=headers)

        result["status"] = response.status_code
        result["success"] = 200 <= response.status_code < 300
        if not result["success"]:
            result["error"] = f"HTTP {response.status_code}: {response.text[:200]}"
        logger.info(f"Webhook {webhook.id} delivered: status={result['status']}")
    except httpx.TimeoutException as e:
        result["status"] = "timeout"
        result["error"] = f"Request timeout after {TIMEOUT_SECONDS}s"
        logger.warning(f"Webhook {webhook.id} timeout: {e}")
    except httpx.HTTPError as e:
        result["status"] = "error"
        result["error"] = f"Request failed: {e}"
        logger.error(f"Webhook {webhook.id} request error: {e}", exc_info=True)
    finally:
        result["response_time_ms"] = int((time.time() - start_time) * 1000)

    if db is not None:
        try:
            record_delivery(webhook, result, db)
        except SQLAlchemyError as e:
            logger.error(f"Failed to record webhook delivery for {webhook.id}: {e}", exc_info=True)

    return result


def record_delivery(webhook: Webhook, result: dict[str, Any], db: Session) -> None:
    """Store the last delivery outcome on the webhook row."""
    try:
        webhook.last_delivery_status = str(result.get("status", "unknown"))[:32]
        webhook.last_delivery_ms = result.get("response_time_ms")
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error recording webhook delivery {webhook.id}: {e}", exc_info=True)
        raise
