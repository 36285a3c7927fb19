"""Local filesystem storage for uploaded CSV files."""

from __future__ import annotations

import logging
import uuid
from pathlib import Path

from batch_import.core.config import get_settings

logger = logging.getLogger(__name__)


def uploads_dir() -> Path:
    # Config validator resolves and creates the directory
    return Path(get_settings().uploads_dir).resolve()


def save_upload(content: bytes, original_name: str | None = None, job_id: str | None = None) -> Path:
    """Persist uploaded CSV bytes and return the absolute path."""
    suffix = Path(original_name or "upload.csv").suffix or ".csv"
    stem = f"{job_id}-{uuid.uuid4().hex[:8]}" if job_id else str(uuid.uuid4())
    target_dir = uploads_dir()
    target_dir.mkdir(parents=True, exist_ok=True)
    target_path = (target_dir / f"{stem}{suffix}").resolve()
    target_path.write_bytes(content)
    logger.info(f"Saved upload {original_name or '<unnamed>'} to {target_path} ({len(content)} bytes)")
    return target_path


def delete_upload(uri: str | Path | None) -> None:
    """Remove a staged file; missing files are ignored."""
    if not uri:
        return
    path = Path(uri)
    if not path.is_absolute():
        path = path.resolve()
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning(f"Could not delete staged upload {path}: {e}")
