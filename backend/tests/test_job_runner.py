import time

import pytest

from batch_import.core.errors import InvalidStateTransition, ProductApplyError
from batch_import.services.control_signals import ControlSignal
from batch_import.services.product_applier import ApplyUnavailable
from batch_import.services.state_machine import JobState

from conftest import source_path

PLAIN_HEADER = "sku,name,price"


def counters(repository, job_id):
    job = repository.get(job_id)
    return job.processed_rows, job.success_rows, job.error_rows


def assert_consistent(repository, job_id):
    job = repository.get(job_id)
    assert job.processed_rows == job.success_rows + job.error_rows
    assert job.checkpoint_row_index == job.processed_rows
    assert job.processed_rows <= job.total_rows


def test_five_row_import_with_two_bad_rows(start_job, runner, repository, control, applier, notifier, catalog, five_rows):
    job_id = start_job(*five_rows, catalog_id=catalog)

    outcome = runner.run(job_id)

    assert outcome.state is JobState.COMPLETED
    assert outcome.rows_committed == 5
    job = repository.get(job_id)
    assert job.state == "completed"
    assert job.total_rows == 5
    assert (job.processed_rows, job.success_rows, job.error_rows) == (5, 3, 2)
    assert job.completed_at is not None
    errors = control.get_errors(job_id)
    assert [(e.row_number, e.field, e.severity) for e in errors] == [
        (3, "name", "error"),
        (5, "color", "error"),
    ]
    assert applier.rows_applied(job_id) == [1, 2, 4]
    assert notifier.events == [("batch.completed", job_id)]
    assert_consistent(repository, job_id)


def test_pause_then_resume_applies_each_row_once(start_job, runner, repository, control, applier, signals, scheduler):
    rows = [f"SKU-{n},Item {n},{n}.00" for n in range(1, 6)]
    job_id = start_job(*rows, header=PLAIN_HEADER)
    applier.behaviours[2] = lambda: control.pause(job_id)

    paused = runner.run(job_id)

    assert paused.state is JobState.PAUSED
    job = repository.get(job_id)
    assert job.state == "paused"
    assert job.checkpoint_row_index == 2
    assert job.paused_at is not None
    assert signals.poll(job_id) is None
    assert control.get_status(job_id).resumable

    assert "paused" in control.get_status(job_id).message

    applier.behaviours.clear()
    control.resume(job_id)
    assert control.get_status(job_id).message is None
    finished = runner.run(job_id)

    assert finished.state is JobState.COMPLETED
    assert finished.rows_committed == 3
    assert counters(repository, job_id) == (5, 5, 0)
    assert repository.get(job_id).checkpoint_row_index == 5
    assert applier.rows_applied(job_id) == [1, 2, 3, 4, 5]
    assert scheduler.scheduled == [job_id, job_id]
    assert_consistent(repository, job_id)


def test_cancel_mid_run_is_permanent(start_job, runner, repository, control, applier, notifier):
    rows = [f"SKU-{n},Item {n},{n}" for n in range(1, 6)]
    job_id = start_job(*rows, header=PLAIN_HEADER)
    applier.behaviours[2] = lambda: control.cancel(job_id)

    outcome = runner.run(job_id)

    assert outcome.state is JobState.CANCELLED
    assert counters(repository, job_id) == (2, 2, 0)
    assert applier.rows_applied(job_id) == [1, 2]
    assert notifier.events == [("batch.cancelled", job_id)]
    with pytest.raises(InvalidStateTransition):
        control.resume(job_id)
    with pytest.raises(InvalidStateTransition):
        control.retry(job_id)
    assert repository.get(job_id).state == "cancelled"


def test_signal_without_state_change_is_applied_at_safe_point(start_job, runner, repository, signals, notifier, applier):
    job_id = start_job("A,Alpha,1", "B,Beta,2", header=PLAIN_HEADER)
    signals.send(job_id, ControlSignal.CANCEL)

    outcome = runner.run(job_id)

    assert outcome.state is JobState.CANCELLED
    assert outcome.rows_committed == 0
    assert repository.get(job_id).state == "cancelled"
    assert applier.calls == []
    assert notifier.events == [("batch.cancelled", job_id)]
    assert signals.poll(job_id) is None


def test_pause_signal_does_not_override_pending_cancel(signals):
    signals.send("job", ControlSignal.CANCEL)
    signals.send("job", ControlSignal.PAUSE)

    assert signals.poll("job") is ControlSignal.CANCEL


def test_parse_errors_are_row_errors(start_job, runner, repository, control):
    job_id = start_job("A,Alpha,1", "B,Only two", "C,Gamma,3", header=PLAIN_HEADER)

    outcome = runner.run(job_id)

    assert outcome.state is JobState.COMPLETED
    assert counters(repository, job_id) == (3, 2, 1)
    [error] = control.get_errors(job_id)
    assert (error.row_number, error.field, error.error_type) == (2, None, "parse")
    assert "Expected 3 fields" in error.message


def test_warnings_do_not_fail_a_row(start_job, runner, repository, control):
    job_id = start_job("A,Alpha,1,legacy", header="sku,name,price,discount_label")

    runner.run(job_id)

    assert counters(repository, job_id) == (1, 1, 0)
    [warning] = control.get_errors(job_id)
    assert (warning.field, warning.severity) == ("discount_label", "warning")


def test_sku_conflicts_are_row_errors_not_job_failures(start_job, runner, repository, control):
    rows = ["DUP,First,1", "dup,Second,2", "DUP,Third,3", "DUP,Fourth,4"]
    job_id = start_job(*rows, header=PLAIN_HEADER)

    outcome = runner.run(job_id)

    assert outcome.state is JobState.COMPLETED
    assert counters(repository, job_id) == (4, 1, 3)
    errors = control.get_errors(job_id)
    assert {(e.field, e.error_type) for e in errors} == {(None, "apply")}
    assert [e.message for e in errors] == [
        "SKU 'dup' already exists",
        "SKU 'DUP' already exists",
        "SKU 'DUP' already exists",
    ]


def test_apply_timeout_fails_only_that_row(start_job, make_runner, repository, control, applier):
    job_id = start_job("A,Alpha,1", "B,Beta,2", "C,Gamma,3", header=PLAIN_HEADER)
    applier.behaviours[2] = lambda: time.sleep(0.5)
    runner = make_runner(apply_timeout_seconds=0.05)

    outcome = runner.run(job_id)

    assert outcome.state is JobState.COMPLETED
    assert counters(repository, job_id) == (3, 2, 1)
    [error] = control.get_errors(job_id)
    assert error.row_number == 2
    assert error.error_type == "system"
    assert "timed out" in error.message


def test_consecutive_apply_failures_fail_the_job_then_retry_continues(start_job, runner, repository, control, applier, notifier):
    rows = [f"SKU-{n},Item {n},{n}" for n in range(1, 6)]
    job_id = start_job(*rows, header=PLAIN_HEADER)
    for row_number in (1, 2, 3):
        applier.behaviours[row_number] = ApplyUnavailable("database unavailable")

    failed = runner.run(job_id)

    assert failed.state is JobState.FAILED
    job = repository.get(job_id)
    assert job.state == "failed"
    assert job.checkpoint_row_index == 3
    assert "3 consecutive rows" in job.error_message
    assert ("batch.failed", job_id) in notifier.events
    assert control.get_status(job_id).resumable
    assert_consistent(repository, job_id)

    applier.behaviours.clear()
    retried = control.retry(job_id)
    assert retried.state == "processing"
    assert retried.retry_count == 1
    assert retried.error_message is None
    assert control.get_status(job_id).message is None

    outcome = runner.run(job_id)

    assert outcome.state is JobState.COMPLETED
    assert counters(repository, job_id) == (5, 2, 3)
    assert applier.rows_applied(job_id) == [1, 2, 3, 4, 5]
    assert_consistent(repository, job_id)


def test_successful_row_resets_failure_streak(start_job, runner, repository, applier):
    rows = [f"SKU-{n},Item {n},{n}" for n in range(1, 6)]
    job_id = start_job(*rows, header=PLAIN_HEADER)
    for row_number in (1, 2, 4, 5):
        applier.behaviours[row_number] = ApplyUnavailable("flaky")

    outcome = runner.run(job_id)

    assert outcome.state is JobState.COMPLETED
    assert counters(repository, job_id) == (5, 1, 4)


def test_store_failures_separated_by_other_rows_do_not_escalate(start_job, runner, repository, control, applier):
    rows = ["A,Alpha,1", "B,,2", "C,Gamma,3", "D,,4", "E,Epsilon,5", "F,Phi,6"]
    job_id = start_job(*rows, header=PLAIN_HEADER)
    for row_number in (1, 3, 5):
        applier.behaviours[row_number] = ApplyUnavailable("database unavailable")

    outcome = runner.run(job_id)

    assert outcome.state is JobState.COMPLETED
    assert counters(repository, job_id) == (6, 1, 5)
    assert repository.get(job_id).error_message is None
    assert [(e.row_number, e.error_type) for e in control.get_errors(job_id)] == [
        (1, "system"),
        (2, "validation"),
        (3, "system"),
        (4, "validation"),
        (5, "system"),
    ]


def test_sku_conflict_between_store_failures_breaks_the_streak(start_job, runner, repository, applier):
    rows = ["A,Alpha,1", "B,Beta,2", "A,Again,3", "C,Gamma,4", "D,Delta,5"]
    job_id = start_job(*rows, header=PLAIN_HEADER)
    for row_number in (2, 4, 5):
        applier.behaviours[row_number] = ApplyUnavailable("database unavailable")

    outcome = runner.run(job_id)

    assert outcome.state is JobState.COMPLETED
    assert counters(repository, job_id) == (5, 1, 4)


def test_generic_apply_rejection_is_a_row_level_issue(start_job, runner, control, applier):
    job_id = start_job("A,Alpha,1", header=PLAIN_HEADER)
    applier.behaviours[1] = ProductApplyError("Catalog is read-only")

    runner.run(job_id)

    [error] = control.get_errors(job_id)
    assert (error.field, error.error_type, error.message) == (None, "apply", "Catalog is read-only")


def test_missing_source_file_fails_the_job(start_job, runner, repository, control):
    job_id = start_job("A,Alpha,1", header=PLAIN_HEADER)
    source_path(repository, job_id).unlink()

    outcome = runner.run(job_id)

    assert outcome.state is JobState.FAILED
    job = repository.get(job_id)
    assert "not found" in job.error_message
    assert not control.get_status(job_id).resumable
    with pytest.raises(InvalidStateTransition) as excinfo:
        control.retry(job_id)
    assert "no longer available" in excinfo.value.reason


def test_unexpected_error_fails_the_job_and_propagates(start_job, runner, repository, applier):
    job_id = start_job("A,Alpha,1", header=PLAIN_HEADER)
    applier.behaviours[1] = RuntimeError("boom")

    with pytest.raises(RuntimeError):
        runner.run(job_id)

    job = repository.get(job_id)
    assert job.state == "failed"
    assert job.processed_rows == 0


def test_row_already_applied_by_an_earlier_run_is_not_recreated(start_job, runner, repository, control, applier):
    job_id = start_job("A,Alpha,1", header=PLAIN_HEADER)
    applier.products[f"{job_id}:1"] = 99

    runner.run(job_id)

    assert counters(repository, job_id) == (1, 1, 0)
    [note] = control.get_errors(job_id)
    assert note.severity == "info"
    assert "Product 99" in note.message


def test_second_runner_is_turned_away_while_lock_is_held(start_job, runner, repository, locks, applier):
    job_id = start_job("A,Alpha,1", header=PLAIN_HEADER)

    with locks.hold(job_id) as handle:
        assert handle.acquired
        outcome = runner.run(job_id)

    assert outcome.state is None
    assert applier.calls == []
    assert repository.get(job_id).state == "processing"
    assert not locks.is_held(job_id)


def test_runner_ignores_jobs_that_are_not_processing(control, runner, applier):
    job = control.create("Idle")

    outcome = runner.run(job.id)

    assert outcome.state is JobState.PENDING
    assert applier.calls == []


def test_progress_snapshot_tracks_completion(start_job, runner, progress, control):
    job_id = start_job("A,Alpha,1", "B,Beta,2", header=PLAIN_HEADER)

    runner.run(job_id)

    snapshot = progress.fetch(job_id)
    assert snapshot["status"] == "completed"
    assert snapshot["progress"] == 1.0
    status = control.get_status(job_id)
    assert status.progress == 1.0
    assert status.message == "Import complete"
    assert not status.resumable
