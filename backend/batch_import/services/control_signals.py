"""Out-of-band pause/cancel requests delivered to a running import.

The job state in the database stays authoritative; a signal only lets the
runner notice a request at its next safe point without waiting for the
state re-read. Signals persist until the runner clears them, so a request
sent while no runner is active is seen by the next one.
"""

from __future__ import annotations

import logging
import threading
from datetime import timedelta
from enum import Enum

from redis import Redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

SIGNAL_PREFIX = "jobs:signal:"
SIGNAL_TTL = timedelta(hours=24)


class ControlSignal(str, Enum):
    PAUSE = "pause"
    CANCEL = "cancel"


class MemorySignalChannel:
    """Process-local channel for the thread scheduler and tests."""

    def __init__(self) -> None:
        self._signals: dict[str, ControlSignal] = {}
        self._lock = threading.Lock()

    def send(self, job_id: str, signal: ControlSignal) -> None:
        with self._lock:
            # A pending cancel is never downgraded to pause
            if self._signals.get(job_id) is ControlSignal.CANCEL:
                return
            self._signals[job_id] = signal

    def poll(self, job_id: str) -> ControlSignal | None:
        with self._lock:
            return self._signals.get(job_id)

    def clear(self, job_id: str) -> None:
        with self._lock:
            self._signals.pop(job_id, None)


class RedisSignalChannel:
    """Signals shared between the API process and Celery workers."""

    def __init__(self, client: Redis, ttl: timedelta = SIGNAL_TTL) -> None:
        self._client = client
        self._ttl = int(ttl.total_seconds())

    @staticmethod
    def _key(job_id: str) -> str:
        return f"{SIGNAL_PREFIX}{job_id}"

    def send(self, job_id: str, signal: ControlSignal) -> None:
        try:
            self._client.set(
                self._key(job_id),
                signal.value,
                ex=self._ttl,
                nx=signal is ControlSignal.PAUSE,
            )
        except RedisError as e:
            logger.warning(f"Could not send {signal.value} signal for job {job_id}: {e}")

    def poll(self, job_id: str) -> ControlSignal | None:
        try:
            raw = self._client.get(self._key(job_id))
        except RedisError as e:
            logger.warning(f"Could not read control signal for job {job_id}: {e}")
            return None
        if not raw:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode()
        try:
            return ControlSignal(raw)
        except ValueError:
            logger.warning(f"Ignoring unknown control signal '{raw}' for job {job_id}")
            return None

    def clear(self, job_id: str) -> None:
        try:
            self._client.delete(self._key(job_id))
        except RedisError as e:
            logger.warning(f"Could not clear control signal for job {job_id}: {e}")
