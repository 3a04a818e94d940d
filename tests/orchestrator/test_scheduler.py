"""Tests for the single drain loop of the job engine."""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta

import pytest

from backoffice.jobs.models import JobStatus
from backoffice.utils.time import now_utc
from tests.helpers import Harness, ScriptedDistributor, fast_config, make_release


@pytest.mark.asyncio
async def test_future_job_waits_until_due(caplog) -> None:
    distributor = ScriptedDistributor("spotify")
    harness = Harness(
        distributors={"spotify": distributor},
        releases=[make_release()],
        config=fast_config(poll_interval_s=0.02),
    )
    due = now_utc() + timedelta(milliseconds=150)

    with caplog.at_level(logging.INFO, logger="backoffice"):
        receipt = harness.engine.schedule_distribution("rel-1", ["spotify"], due)
        await asyncio.sleep(0.05)
        assert distributor.calls == 0
        assert harness.engine.status(receipt.job_id).status is JobStatus.QUEUED
        await harness.engine.join()

    assert distributor.calls == 1
    snapshot = harness.engine.status(receipt.job_id)
    assert snapshot is not None
    assert snapshot.status is JobStatus.COMPLETED
    assert snapshot.started_at is not None and snapshot.started_at >= due
    deferred = [
        record
        for record in caplog.records
        if getattr(record, "event", None) == "orchestrator.schedule"
        and record.status == "deferred"
    ]
    assert deferred
    assert all(record.wait_s <= 0.02 for record in deferred)


@pytest.mark.asyncio
async def test_deadline_counts_from_scheduled_start() -> None:
    harness = Harness(
        distributors={"spotify": ScriptedDistributor("spotify")},
        releases=[make_release()],
        config=fast_config(timeout_s=60),
    )
    due = now_utc() + timedelta(hours=2)

    receipt = harness.engine.schedule_distribution("rel-1", ["spotify"], due)

    snapshot = harness.engine.status(receipt.job_id)
    assert snapshot is not None
    assert snapshot.timeout_at == due + timedelta(seconds=60)
    assert snapshot.estimated_start == due
    await harness.engine.shutdown()


@pytest.mark.asyncio
async def test_enqueue_while_draining_does_not_start_second_loop() -> None:
    releases = [make_release(f"rel-{index}") for index in range(5)]
    harness_ref: list[Harness] = []
    enqueued: list[str] = []

    def _enqueue_more(request) -> None:
        if len(enqueued) < 3:
            receipt = harness_ref[0].engine.enqueue_distribution(
                f"rel-{len(enqueued) + 2}", ["spotify"]
            )
            enqueued.append(receipt.job_id)

    distributor = ScriptedDistributor("spotify", on_submit=_enqueue_more)
    harness = Harness(distributors={"spotify": distributor}, releases=releases)
    harness_ref.append(harness)

    harness.engine.enqueue_distribution("rel-0", ["spotify"])
    harness.engine.enqueue_distribution("rel-1", ["spotify"])
    await harness.engine.join()

    assert harness.engine.scheduler.runs == 1
    assert distributor.calls == 5
    assert sorted(request.release.release_id for request in distributor.requests) == [
        f"rel-{index}" for index in range(5)
    ]


@pytest.mark.asyncio
async def test_concurrent_enqueues_from_threads_run_each_job_once() -> None:
    releases = [make_release(f"rel-{index}") for index in range(8)]
    spotify = ScriptedDistributor("spotify")
    tidal = ScriptedDistributor("tidal")
    harness = Harness(distributors={"spotify": spotify, "tidal": tidal}, releases=releases)
    await harness.engine.start()

    receipts = await asyncio.gather(
        *(
            asyncio.to_thread(
                harness.engine.enqueue_distribution, release.release_id, ["spotify", "tidal"]
            )
            for release in releases
        )
    )
    await asyncio.sleep(0)
    await harness.engine.join()

    assert spotify.calls == len(releases)
    assert tidal.calls == len(releases)
    assert len({receipt.job_id for receipt in receipts}) == len(releases)
    for receipt in receipts:
        assert harness.engine.status(receipt.job_id).status is JobStatus.COMPLETED
    assert not harness.engine.scheduler.is_active


@pytest.mark.asyncio
async def test_loop_restarts_after_going_idle() -> None:
    distributor = ScriptedDistributor("spotify")
    harness = Harness(
        distributors={"spotify": distributor},
        releases=[make_release("rel-1"), make_release("rel-2")],
    )

    harness.engine.enqueue_distribution("rel-1", ["spotify"])
    await harness.engine.join()
    assert not harness.engine.scheduler.is_active

    harness.engine.enqueue_distribution("rel-2", ["spotify"])
    await harness.engine.join()

    assert distributor.calls == 2
    assert harness.engine.scheduler.runs == 2


@pytest.mark.asyncio
async def test_shutdown_stops_waiting_loop() -> None:
    distributor = ScriptedDistributor("spotify")
    harness = Harness(
        distributors={"spotify": distributor},
        releases=[make_release()],
        config=fast_config(poll_interval_s=30),
    )
    receipt = harness.engine.schedule_distribution(
        "rel-1", ["spotify"], now_utc() + timedelta(hours=1)
    )
    await asyncio.sleep(0.01)
    assert harness.engine.scheduler.is_active

    await asyncio.wait_for(harness.engine.shutdown(), timeout=1)

    assert not harness.engine.scheduler.is_active
    assert distributor.calls == 0
    assert harness.engine.status(receipt.job_id).status is JobStatus.QUEUED


async def _wait_for_status(harness: Harness, job_id: str, status: JobStatus) -> None:
    for _ in range(100):
        if harness.engine.status(job_id).status is status:
            return
        await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_due_job_runs_while_equal_priority_job_waits() -> None:
    distributor = ScriptedDistributor("spotify")
    harness = Harness(
        distributors={"spotify": distributor},
        releases=[make_release("rel-1"), make_release("rel-2")],
        config=fast_config(poll_interval_s=0.02),
    )
    later = harness.engine.schedule_distribution(
        "rel-1", ["spotify"], now_utc() + timedelta(hours=1)
    )
    await asyncio.sleep(0.03)

    ready = harness.engine.enqueue_distribution("rel-2", ["spotify"])
    await _wait_for_status(harness, ready.job_id, JobStatus.COMPLETED)

    assert harness.engine.status(ready.job_id).status is JobStatus.COMPLETED
    assert [request.release.release_id for request in distributor.requests] == ["rel-2"]
    waiting = harness.engine.status(later.job_id)
    assert waiting.status is JobStatus.QUEUED
    assert waiting.queue_position == 1
    await harness.engine.shutdown()


@pytest.mark.asyncio
async def test_future_urgent_job_does_not_hold_back_lower_priority() -> None:
    distributor = ScriptedDistributor("spotify")
    harness = Harness(
        distributors={"spotify": distributor},
        releases=[make_release("rel-1"), make_release("rel-2"), make_release("rel-3")],
        config=fast_config(poll_interval_s=30),
    )

    later = harness.engine.schedule_distribution(
        "rel-1", ["spotify"], now_utc() + timedelta(hours=1), priority="urgent"
    )
    first = harness.engine.enqueue_distribution("rel-2", ["spotify"], priority=5)
    second = harness.engine.enqueue_distribution("rel-3", ["spotify"], priority=5)
    await _wait_for_status(harness, second.job_id, JobStatus.COMPLETED)

    assert harness.engine.status(first.job_id).status is JobStatus.COMPLETED
    assert harness.engine.status(second.job_id).status is JobStatus.COMPLETED
    assert [request.release.release_id for request in distributor.requests] == ["rel-2", "rel-3"]
    assert harness.engine.status(later.job_id).status is JobStatus.QUEUED
    await asyncio.wait_for(harness.engine.shutdown(), timeout=1)
