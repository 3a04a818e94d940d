from __future__ import annotations

from datetime import timedelta

import pytest

from backoffice.errors import InvalidTransitionError
from backoffice.jobs.models import JobKind, JobRecord, JobStatus, SubtargetStatus
from tests.helpers import START


def _record(**overrides) -> JobRecord:
    values = {
        "id": "dist_1",
        "kind": JobKind.DISTRIBUTION,
        "priority": 3,
        "payload": None,
        "max_attempts": 3,
        "created_at": START,
        "timeout_at": START + timedelta(minutes=30),
    }
    values.update(overrides)
    return JobRecord(**values)


def test_transition_stamps_instants_and_history() -> None:
    job = _record()
    later = START + timedelta(minutes=1)

    job.transition(JobStatus.PROCESSING, at=START)
    job.transition(JobStatus.COMPLETED, at=later)

    assert job.started_at == START
    assert job.completed_at == later
    assert job.history == [JobStatus.QUEUED, JobStatus.PROCESSING, JobStatus.COMPLETED]
    assert job.is_terminal


@pytest.mark.parametrize(
    "terminal",
    [JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.TIMEOUT],
)
def test_terminal_states_never_change(terminal: JobStatus) -> None:
    job = _record()
    job.transition(JobStatus.PROCESSING)
    job.transition(terminal)

    with pytest.raises(InvalidTransitionError):
        job.transition(JobStatus.QUEUED)
    assert job.status is terminal


def test_queued_job_cannot_complete_directly() -> None:
    job = _record()

    assert not job.can_transition(JobStatus.COMPLETED)
    with pytest.raises(InvalidTransitionError):
        job.transition(JobStatus.COMPLETED)


def test_cancelling_only_leads_to_cancelled() -> None:
    job = _record()
    job.transition(JobStatus.PROCESSING)
    job.transition(JobStatus.CANCELLING)

    assert not job.can_transition(JobStatus.TIMEOUT)
    job.transition(JobStatus.CANCELLED, at=START)
    assert job.cancelled_at == START


def test_expiry_and_due_checks() -> None:
    job = _record(scheduled_for=START + timedelta(minutes=5))

    assert not job.is_due(START)
    assert job.is_due(START + timedelta(minutes=5))
    assert not job.is_expired(START + timedelta(minutes=30))
    assert job.is_expired(START + timedelta(minutes=30, seconds=1))


def test_progress_percentage_rounds_half_up() -> None:
    job = _record()
    job.reset_progress(3)
    job.record_progress("spotify", SubtargetStatus.COMPLETED, at=START)
    job.record_progress("tidal", SubtargetStatus.FAILED, at=START)

    assert job.progress_percentage == 67
    snapshot = job.snapshot(queue_position=None)
    assert snapshot.progress == {
        "spotify": {"status": "completed", "updated_at": START.isoformat()},
        "tidal": {"status": "failed", "updated_at": START.isoformat()},
    }
    assert snapshot.history == ("queued",)
