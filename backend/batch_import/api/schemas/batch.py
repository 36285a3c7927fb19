"""Batch import job request/response payloads."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class BatchJobCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    catalog_id: int | None = Field(None, alias="catalogId")


class BatchJobRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: str | None = None
    catalog_id: int | None = None
    state: str = Field(..., description="pending|processing|paused|failed|completed|cancelled")
    source_file_name: str | None = None
    total_rows: int = 0
    processed_rows: int = 0
    success_rows: int = 0
    error_rows: int = 0
    checkpoint_row_index: int = 0
    retry_count: int = 0
    error_message: str | None = None
    resumable: bool = False
    progress: float | None = Field(None, description="0-1 range for UI progress bars")
    message: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    started_at: datetime | None = None
    paused_at: datetime | None = None
    resumed_at: datetime | None = None
    cancelled_at: datetime | None = None
    failed_at: datetime | None = None
    completed_at: datetime | None = None


class BatchRowErrorRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    row_number: int
    field: str | None = None
    message: str
    severity: str
    error_type: str
    created_at: datetime | None = None


class BatchDeleted(BaseModel):
    deleted: bool = True
    id: str
