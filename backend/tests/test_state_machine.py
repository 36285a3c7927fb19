import pytest

from batch_import.core.errors import InvalidStateTransition
from batch_import.services.state_machine import (
    TRANSITIONS,
    JobEvent,
    JobState,
    ensure_deletable,
    is_terminal,
    next_state,
)

ALLOWED = {
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


def test_transition_table_is_exactly_the_lifecycle():
    assert TRANSITIONS == ALLOWED


@pytest.mark.parametrize("state", list(JobState))
@pytest.mark.parametrize("event", list(JobEvent))
def test_every_state_event_pair(state, event):
    expected = ALLOWED.get((state, event))
    if expected is None:
        with pytest.raises(InvalidStateTransition) as excinfo:
            next_state(state, event)
        assert excinfo.value.state == state.value
        assert excinfo.value.action == event.value
    else:
        assert next_state(state, event) is expected


@pytest.mark.parametrize("state", [JobState.COMPLETED, JobState.CANCELLED])
def test_terminal_states_accept_no_events(state):
    assert is_terminal(state)
    assert not [event for (source, event) in TRANSITIONS if source is state]


def test_cancelled_job_cannot_resume_or_retry():
    with pytest.raises(InvalidStateTransition):
        next_state("cancelled", JobEvent.RESUME)
    with pytest.raises(InvalidStateTransition):
        next_state("cancelled", JobEvent.RETRY)


def test_accepts_stored_string_states():
    assert next_state("paused", JobEvent.RESUME) is JobState.PROCESSING


@pytest.mark.parametrize("state", ["pending", "completed", "cancelled"])
def test_deletable_states(state):
    ensure_deletable(state)


@pytest.mark.parametrize("state", ["processing", "paused", "failed"])
def test_active_or_resumable_jobs_cannot_be_deleted(state):
    with pytest.raises(InvalidStateTransition) as excinfo:
        ensure_deletable(state)
    assert excinfo.value.action == "delete"


def test_error_payload_names_state_and_action():
    error = InvalidStateTransition("cancelled", "resume", "job was cancelled")
    assert error.to_dict() == {
        "error": "InvalidStateTransition",
        "state": "cancelled",
        "action": "resume",
        "reason": "job was cancelled",
        "message": "Cannot resume a batch import job in 'cancelled' state: job was cancelled",
    }
