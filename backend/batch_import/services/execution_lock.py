"""At most one active runner per job.

``hold`` is a context manager yielding a handle whose ``acquired`` flag says
whether this runner owns the job. Redis-backed locks carry a lease that the
runner keeps alive with ``refresh()``; a lease that cannot be extended means
another runner may take over, so the holder must stop.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager

from redis import Redis
from redis.exceptions import LockError, RedisError

logger = logging.getLogger(__name__)

LOCK_PREFIX = "jobs:lock:"


class LockHandle:
    def __init__(self, job_id: str, acquired: bool) -> None:
        self.job_id = job_id
        self.acquired = acquired

    def refresh(self) -> bool:
        return self.acquired


class MemoryExecutionLock:
    def __init__(self) -> None:
        self._locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, job_id: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(job_id, threading.Lock())

    def is_held(self, job_id: str) -> bool:
        return self._lock_for(job_id).locked()

    @contextmanager
    def hold(self, job_id: str, wait: float = 0.0) -> Iterator[LockHandle]:
        lock = self._lock_for(job_id)
        acquired = lock.acquire(timeout=wait) if wait > 0 else lock.acquire(blocking=False)
        try:
            yield LockHandle(job_id, acquired)
        finally:
            if acquired:
                lock.release()


class RedisLockHandle(LockHandle):
    def __init__(self, job_id: str, acquired: bool, lock, lease_seconds: int) -> None:
        super().__init__(job_id, acquired)
        self._lock = lock
        self._lease_seconds = lease_seconds
        self._refreshed_at = time.monotonic()

    def refresh(self) -> bool:
        """Extend the lease once a third of it has elapsed."""
        if not self.acquired:
            return False
        if time.monotonic() - self._refreshed_at < self._lease_seconds / 3:
            return True
        try:
            self._lock.extend(self._lease_seconds, replace_ttl=True)
        except (LockError, RedisError) as e:
            logger.error(f"Lost execution lock for job {self.job_id}: {e}")
            self.acquired = False
            return False
        self._refreshed_at = time.monotonic()
        return True


class RedisExecutionLock:
    def __init__(self, client: Redis, lease_seconds: int) -> None:
        self._client = client
        self._lease_seconds = lease_seconds

    def is_held(self, job_id: str) -> bool:
        return bool(self._client.exists(f"{LOCK_PREFIX}{job_id}"))

    @contextmanager
    def hold(self, job_id: str, wait: float = 0.0) -> Iterator[LockHandle]:
        lock = self._client.lock(
            f"{LOCK_PREFIX}{job_id}",
            timeout=self._lease_seconds,
            thread_local=False,
        )
        if wait > 0:
            acquired = lock.acquire(blocking=True, blocking_timeout=wait)
        else:
            acquired = lock.acquire(blocking=False)
        handle = RedisLockHandle(job_id, acquired, lock, self._lease_seconds)
        try:
            yield handle
        finally:
            if acquired:
                try:
                    lock.release()
                except LockError as e:
                    logger.warning(f"Execution lock for job {job_id} expired before release: {e}")
