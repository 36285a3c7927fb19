"""Lifecycle state machine for batch import jobs.

Every allowed move is listed in ``TRANSITIONS``; any (state, event) pair that
is not in the table raises :class:`InvalidStateTransition` so callers never
silently no-op on a bad control request.
"""

from __future__ import annotations

from enum import Enum

from batch_import.core.errors import InvalidStateTransition


class JobState(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    PAUSED = "paused"
    FAILED = "failed"
    # Transient label on the failed -> processing path, never stored at rest
    RETRYING = "retrying"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class JobEvent(str, Enum):
    FILE_UPLOADED = "upload"
    START = "start"
    PAUSE = "pause"
    RESUME = "resume"
    CANCEL = "cancel"
    RETRY = "retry"
    COMPLETE = "complete"
    FAIL = "fail"


TERMINAL_STATES = frozenset({JobState.COMPLETED, JobState.CANCELLED})
DELETABLE_STATES = frozenset({JobState.PENDING, JobState.COMPLETED, JobState.CANCELLED})

TRANSITIONS: dict[tuple[JobState, JobEvent], JobState] = {
    (JobState.PENDING, JobEvent.FILE_UPLOADED): JobState.PENDING,
    (JobState.PENDING, JobEvent.START): JobState.PROCESSING,
    (JobState.PENDING, JobEvent.CANCEL): JobState.CANCELLED,
    (JobState.PROCESSING, JobEvent.PAUSE): JobState.PAUSED,
    (JobState.PROCESSING, JobEvent.CANCEL): JobState.CANCELLED,
    (JobState.PROCESSING, JobEvent.COMPLETE): JobState.COMPLETED,
    (JobState.PROCESSING, JobEvent.FAIL): JobState.FAILED,
    (JobState.PAUSED, JobEvent.RESUME): JobState.PROCESSING,
    (JobState.PAUSED, JobEvent.CANCEL): JobState.CANCELLED,
    (JobState.FAILED, JobEvent.RETRY): JobState.RETRYING,
    (JobState.FAILED, JobEvent.CANCEL): JobState.CANCELLED,
    (JobState.RETRYING, JobEvent.START): JobState.PROCESSING,
    (JobState.RETRYING, JobEvent.CANCEL): JobState.CANCELLED,
}


def coerce_state(value: str | JobState) -> JobState:
    return value if isinstance(value, JobState) else JobState(value)


def next_state(current: str | JobState, event: JobEvent, reason: str | None = None) -> JobState:
    """Return the state reached by ``event`` or raise InvalidStateTransition."""
    state = coerce_state(current)
    try:
        return TRANSITIONS[(state, event)]
    except KeyError:
        raise InvalidStateTransition(state.value, event.value, reason) from None


def is_terminal(state: str | JobState) -> bool:
    return coerce_state(state) in TERMINAL_STATES


def ensure_deletable(state: str | JobState) -> None:
    current = coerce_state(state)
    if current not in DELETABLE_STATES:
        raise InvalidStateTransition(current.value, "delete")
