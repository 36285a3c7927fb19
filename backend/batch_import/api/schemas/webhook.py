"""Webhook subscription payloads for batch lifecycle events."""

from datetime import datetime

from pydantic import AnyHttpUrl, BaseModel, ConfigDict, Field


class WebhookCreate(BaseModel):
    url: AnyHttpUrl
    event: str = Field(..., description="batch.completed | batch.failed | batch.cancelled")
    enabled: bool = True
    secret: str | None = Field(None, description="HMAC-SHA256 signing secret for deliveries")


class WebhookUpdate(BaseModel):
    url: AnyHttpUrl | None = None
    enabled: bool | None = None
    secret: str | None = None


class WebhookRead(BaseModel):
    """The signing secret is never echoed back; ``signed`` tells whether one is set."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    url: str
    event: str
    enabled: bool
    signed: bool = False
    last_delivery_status: str | None = None
    last_delivery_ms: int | None = None
    created_at: datetime | None = None

    @classmethod
    def from_webhook(cls, webhook) -> "WebhookRead":
        payload = cls.model_validate(webhook)
        payload.signed = bool(webhook.secret)
        return payload
