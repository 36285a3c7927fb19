"""Wiring of the import services from settings."""

from __future__ import annotations

from functools import lru_cache

from redis import Redis

from batch_import.core.config import get_settings
from batch_import.db.session import SessionLocal
from batch_import.services.batch_control import BatchControl
from batch_import.services.checkpoint_store import CheckpointStore
from batch_import.services.control_signals import MemorySignalChannel, RedisSignalChannel
from batch_import.services.execution_lock import MemoryExecutionLock, RedisExecutionLock
from batch_import.services.job_repository import JobRepository
from batch_import.services.job_runner import JobRunner
from batch_import.services.product_applier import SqlProductApplier
from batch_import.services.progress_tracker import MemoryProgressTracker, RedisProgressTracker
from batch_import.services.webhook_service import WebhookNotifier
from batch_import.utils.redis_client import create_redis_client
from batch_import.workers.scheduler import CeleryJobScheduler, ThreadJobScheduler


def _uses_redis() -> bool:
    return get_settings().coordination_backend == "redis"


@lru_cache
def get_redis() -> Redis:
    return create_redis_client(get_settings().redis_url, decode_responses=True)


@lru_cache
def get_signal_channel():
    return RedisSignalChannel(get_redis()) if _uses_redis() else MemorySignalChannel()


@lru_cache
def get_execution_lock():
    if _uses_redis():
        return RedisExecutionLock(get_redis(), get_settings().lock_lease_seconds)
    return MemoryExecutionLock()


@lru_cache
def get_progress_tracker():
    return RedisProgressTracker(get_redis()) if _uses_redis() else MemoryProgressTracker()


@lru_cache
def get_notifier() -> WebhookNotifier:
    return WebhookNotifier(SessionLocal, async_dispatch=get_settings().scheduler_backend == "celery")


def build_runner() -> JobRunner:
    settings = get_settings()
    return JobRunner(
        JobRepository(SessionLocal),
        CheckpointStore(SessionLocal),
        SqlProductApplier(SessionLocal),
        session_factory=SessionLocal,
        signals=get_signal_channel(),
        locks=get_execution_lock(),
        progress=get_progress_tracker(),
        notifier=get_notifier(),
        apply_timeout_seconds=settings.apply_timeout_seconds,
        max_consecutive_apply_failures=settings.max_consecutive_apply_failures,
        lock_wait_seconds=settings.lock_wait_seconds,
        progress_publish_every=settings.progress_publish_every,
    )


@lru_cache
def get_scheduler():
    if get_settings().scheduler_backend == "celery":
        return CeleryJobScheduler()
    return ThreadJobScheduler(build_runner)


@lru_cache
def get_batch_control() -> BatchControl:
    settings = get_settings()
    return BatchControl(
        JobRepository(SessionLocal),
        get_scheduler(),
        get_signal_channel(),
        session_factory=SessionLocal,
        progress=get_progress_tracker(),
        notifier=get_notifier(),
        max_upload_bytes=settings.max_upload_bytes,
        max_retries=settings.max_retries,
    )
