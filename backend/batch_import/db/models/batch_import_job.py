"""Batch import job: lifecycle state, source file reference and checkpoint."""

import uuid

from sqlalchemy import Column, ForeignKey, Integer, String, Text
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from batch_import.db.base import Base


class BatchImportJob(Base):
    __tablename__ = "batch_import_jobs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(255), nullable=False)
    description = Column(Text)
    catalog_id = Column(Integer, ForeignKey("catalogs.id"), nullable=True)
    state = Column(String(32), nullable=False, default="pending", index=True)

    source_file_name = Column(String(255))
    source_file_path = Column(Text)

    # Counters: processed_rows == success_rows + error_rows
    total_rows = Column(Integer, nullable=False, default=0)
    processed_rows = Column(Integer, nullable=False, default=0)
    success_rows = Column(Integer, nullable=False, default=0)
    error_rows = Column(Integer, nullable=False, default=0)
    # 1-based number of the last committed data row, 0 before the first commit
    checkpoint_row_index = Column(Integer, nullable=False, default=0)

    retry_count = Column(Integer, nullable=False, default=0)
    error_message = Column(Text)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    started_at = Column(DateTime(timezone=True))
    paused_at = Column(DateTime(timezone=True))
    resumed_at = Column(DateTime(timezone=True))
    cancelled_at = Column(DateTime(timezone=True))
    failed_at = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))
