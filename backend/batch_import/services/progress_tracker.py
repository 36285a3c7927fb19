"""Progress snapshots for the status and stream endpoints.

Snapshots are advisory: counters shown to clients always come from the
job row, the snapshot only contributes the latest human-readable message.
"""

from __future__ import annotations

import json
import threading
from datetime import timedelta
from typing import Any

from redis import Redis
from redis.exceptions import RedisError

PROGRESS_PREFIX = "jobs:progress:"
PROGRESS_TTL = timedelta(hours=24)


def build_snapshot(
    job_id: str,
    progress: float,
    message: str | None = None,
    *,
    status: str | None = None,
    meta: dict[str, Any] | None = None,
) -> dict[str, Any]:
    return {
        "job_id": job_id,
        "progress": max(0.0, min(progress, 1.0)),
        "message": message,
        "status": status,
        "meta": meta or {},
    }


class RedisProgressTracker:
    def __init__(self, client: Redis) -> None:
        self._client = client

    @staticmethod
    def _key(job_id: str) -> str:
        return f"{PROGRESS_PREFIX}{job_id}"

    def publish(self, job_id: str, progress: float, message: str | None = None, **kwargs: Any) -> None:
        payload = build_snapshot(job_id, progress, message, **kwargs)
        try:
            self._client.set(
                self._key(job_id),
                json.dumps(payload),
                ex=int(PROGRESS_TTL.total_seconds()),
            )
        except RedisError:
            # Redis availability should not break ingestion.
            pass

    def fetch(self, job_id: str) -> dict[str, Any]:
        try:
            raw = self._client.get(self._key(job_id))
        except RedisError:
            return {}
        if not raw:
            return {}
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            return {}

    def clear(self, job_id: str) -> None:
        try:
            self._client.delete(self._key(job_id))
        except RedisError:
            pass


class MemoryProgressTracker:
    def __init__(self) -> None:
        self._snapshots: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def publish(self, job_id: str, progress: float, message: str | None = None, **kwargs: Any) -> None:
        with self._lock:
            self._snapshots[job_id] = build_snapshot(job_id, progress, message, **kwargs)

    def fetch(self, job_id: str) -> dict[str, Any]:
        with self._lock:
            return dict(self._snapshots.get(job_id, {}))

    def clear(self, job_id: str) -> None:
        with self._lock:
            self._snapshots.pop(job_id, None)
