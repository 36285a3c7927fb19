"""Domain exceptions raised by the batch import services."""

from __future__ import annotations


class BatchImportError(Exception):
    """Base class for batch import failures."""


class JobNotFound(BatchImportError):
    def __init__(self, job_id: str) -> None:
        super().__init__(f"Batch import job {job_id} not found")
        self.job_id = job_id


class CatalogNotFound(BatchImportError):
    def __init__(self, catalog_id: int) -> None:
        super().__init__(f"Catalog {catalog_id} not found")
        self.catalog_id = catalog_id


class InvalidStateTransition(BatchImportError):
    """A control action is not allowed from the job's current state."""

    def __init__(self, state: str, action: str, reason: str | None = None) -> None:
        message = f"Cannot {action} a batch import job in '{state}' state"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.state = state
        self.action = action
        self.reason = reason

    def to_dict(self) -> dict[str, str | None]:
        return {
            "error": "InvalidStateTransition",
            "state": self.state,
            "action": self.action,
            "reason": self.reason,
            "message": str(self),
        }


class InvalidFile(BatchImportError):
    """Uploaded CSV is empty, unparseable, too large or missing columns."""


class ProductApplyError(BatchImportError):
    """The product service rejected a validated row (e.g. SKU conflict)."""


class SourceUnavailable(BatchImportError):
    """The job's CSV can no longer be read; further progress is impossible."""


class CheckpointConflict(BatchImportError):
    """A row commit did not match the stored checkpoint (concurrent writer)."""

    def __init__(self, job_id: str, row_number: int) -> None:
        super().__init__(
            f"Checkpoint for job {job_id} is not at row {row_number - 1}; "
            f"refusing to commit row {row_number}"
        )
        self.job_id = job_id
        self.row_number = row_number
