"""SQLAlchemy model for batch notification webhooks."""
from sqlalchemy import Boolean, Column, Integer, String, Text
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from batch_import.db.base import Base


class Webhook(Base):
    __tablename__ = "webhooks"

    id = Column(Integer, primary_key=True)
    url = Column(Text, nullable=False)
    # batch.completed | batch.failed | batch.cancelled
    event = Column(String(64), nullable=False, index=True)
    enabled = Column(Boolean, nullable=False, default=True)
    secret = Column(String(255))
    last_delivery_status = Column(String(32))
    last_delivery_ms = Column(Integer)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
