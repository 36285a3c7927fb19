"""Webhook subscriptions for batch lifecycle events."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from batch_import.api.dependencies.db import get_session
from batch_import.api.schemas.webhook import WebhookCreate, WebhookRead, WebhookUpdate
from batch_import.db.models.webhook import Webhook
from batch_import.services.webhook_service import BATCH_EVENTS

logger = logging.getLogger(__name__)
router = APIRouter()


def _require_batch_event(event: str) -> None:
    if event not in BATCH_EVENTS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid event type. Must be one of: {', '.join(BATCH_EVENTS)}",
        )


def _get_webhook(db: Session, webhook_id: int) -> Webhook:
    webhook = db.get(Webhook, webhook_id)
    if webhook is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Webhook not found")
    return webhook


@router.get("/", summary="List registered webhooks", response_model=list[WebhookRead])
async def list_webhooks(
    event: str | None = Query(None, description="Only subscriptions to this event"),
    db: Session = Depends(get_session),
) -> list[WebhookRead]:
    query = select(Webhook).order_by(Webhook.created_at.desc(), Webhook.id)
    if event is not None:
        _require_batch_event(event)
        query = query.where(Webhook.event == event)
    try:
        return [WebhookRead.from_webhook(w) for w in db.scalars(query).all()]
    except SQLAlchemyError as e:
        logger.error(f"Database error while listing webhooks: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to retrieve webhooks",
        ) from e


@router.post(
    "/",
    summary="Subscribe to a batch event",
    status_code=status.HTTP_201_CREATED,
    response_model=WebhookRead,
)
async def create_webhook(payload: WebhookCreate, db: Session = Depends(get_session)) -> WebhookRead:
    """Deliveries are signed with ``X-Webhook-Signature`` when a secret is set."""
    _require_batch_event(payload.event)
    try:
        webhook = Webhook(
            url=str(payload.url),
            event=payload.event,
            enabled=payload.enabled,
            secret=payload.secret,
        )
        db.add(webhook)
        db.commit()
        db.refresh(webhook)
        logger.info(f"Created webhook {webhook.id} for {payload.event}")
        return WebhookRead.from_webhook(webhook)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error creating webhook: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create webhook",
        ) from e


@router.patch("/{webhook_id}", summary="Update a webhook", response_model=WebhookRead)
async def update_webhook(
    webhook_id: int,
    payload: WebhookUpdate,
    db: Session = Depends(get_session),
) -> WebhookRead:
    """Change the target URL, rotate the secret, or pause deliveries."""
    webhook = _get_webhook(db, webhook_id)
    changes = payload.model_dump(exclude_unset=True)
    if "url" in changes and changes["url"] is not None:
        changes["url"] = str(changes["url"])
    try:
        for field, value in changes.items():
            setattr(webhook, field, value)
        db.commit()
        db.refresh(webhook)
        logger.info(f"Updated webhook {webhook_id}: {', '.join(sorted(changes)) or 'no changes'}")
        return WebhookRead.from_webhook(webhook)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error updating webhook {webhook_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update webhook",
        ) from e


@router.delete("/{webhook_id}", summary="Delete a webhook")
async def delete_webhook(webhook_id: int, db: Session = Depends(get_session)) -> Response:
    webhook = _get_webhook(db, webhook_id)
    try:
        db.delete(webhook)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error deleting webhook {webhook_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete webhook",
        ) from e
    logger.info(f"Deleted webhook {webhook_id}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
