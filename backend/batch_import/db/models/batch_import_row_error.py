"""Append-only record of a row (or field) that could not be applied."""

from sqlalchemy import Column, ForeignKey, Index, Integer, String, Text
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from batch_import.db.base import Base


class BatchImportRowError(Base):
    __tablename__ = "batch_import_row_errors"

    id = Column(Integer, primary_key=True)
    job_id = Column(
        String(36),
        ForeignKey("batch_import_jobs.id", ondelete="CASCADE"),
        nullable=False,
    )
    row_number = Column(Integer, nullable=False)
    field = Column(String(255))
    message = Column(Text, nullable=False)
    severity = Column(String(16), nullable=False, default="error")
    error_type = Column(String(32), nullable=False, default="validation")
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (Index("ix_batch_import_row_errors_job_row", "job_id", "row_number"),)
