import time

import pytest

from data.models import DownloadState


@pytest.mark.asyncio
async def test_no_registered_downloads_returns_true_without_polling(tracker, subsystem):
    assert await tracker.await_start("empty", budget=5) is True
    assert tracker.poll_count == 0
    assert subsystem.query_count == 0


@pytest.mark.asyncio
async def test_returns_true_once_every_download_has_started(tracker, subsystem):
    first = await subsystem.initiate_download("https://x/1", "a.png", job_id="job")
    second = await subsystem.initiate_download("https://x/2", "b.png", job_id="job")
    tracker.register("job", first)
    tracker.register("job", second)
    subsystem.states[first.downloadId] = DownloadState.IN_PROGRESS
    subsystem.states[second.downloadId] = DownloadState.COMPLETE

    assert await tracker.await_start("job", budget=1) is True


@pytest.mark.asyncio
async def test_download_stuck_in_initiated_times_out(tracker, subsystem):
    handle = await subsystem.initiate_download("https://x/1", "a.png", job_id="y")
    tracker.register("y", handle)

    started = time.monotonic()
    assert await tracker.await_start("y", budget=0.05) is False
    assert time.monotonic() - started >= 0.05
    assert tracker.poll_count >= 2


@pytest.mark.asyncio
async def test_failing_status_query_counts_as_resolved(tracker, subsystem):
    broken = await subsystem.initiate_download("https://x/1", "a.png", job_id="job")
    healthy = await subsystem.initiate_download("https://x/2", "b.png", job_id="job")
    tracker.register("job", broken)
    tracker.register("job", healthy)
    subsystem.failing_queries.add(broken.downloadId)
    subsystem.states[healthy.downloadId] = DownloadState.INTERRUPTED

    assert await tracker.await_start("job", budget=1) is True


@pytest.mark.asyncio
async def test_pushed_state_short_circuits_polling(tracker, subsystem):
    handle = await subsystem.initiate_download("https://x/1", "a.png", job_id="job")
    tracker.register("job", handle)
    subsystem.set_state(handle, DownloadState.COMPLETE)
    # Status queries would now fail; the pushed state is enough
    subsystem.failing_queries.add(handle.downloadId)
    subsystem.query_count = 0

    assert await tracker.await_start("job", budget=1) is True
    assert subsystem.query_count == 0


@pytest.mark.asyncio
async def test_register_is_idempotent_and_clear_forgets_job(tracker, subsystem):
    handle = await subsystem.initiate_download("https://x/1", "a.png", job_id="job")
    assert tracker.register("job", handle) is True
    assert tracker.register("job", handle) is False
    assert tracker.handles_for("job") == (handle,)

    assert tracker.clear("job") == 1
    assert tracker.handles_for("job") == ()
    assert await tracker.await_start("job", budget=0) is True


@pytest.mark.asyncio
async def test_untracked_status_events_are_ignored(tracker, subsystem):
    handle = await subsystem.initiate_download("https://x/1", "a.png", job_id="other")
    subsystem.set_state(handle, DownloadState.COMPLETE)
    assert tracker._observed == {}


@pytest.mark.asyncio
async def test_late_registration_after_clear_is_ignored_until_reopened(tracker, subsystem):
    tracker.clear("job")
    late = await subsystem.initiate_download("https://x/late", "late.png", job_id="job")

    assert tracker.register("job", late) is False
    assert tracker.handles_for("job") == ()

    tracker.open("job")
    assert tracker.register("job", late) is True
    assert tracker.handles_for("job") == (late,)
