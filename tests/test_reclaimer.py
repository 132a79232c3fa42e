import pytest

from data.models import ArtifactRef, DownloadHandle, DownloadState
from download.reclaimer import ResourceReclaimer


def _handle(download_id: int = 1) -> DownloadHandle:
    return DownloadHandle(downloadId=download_id, jobId="job", destination="job.json")


def test_terminal_event_twice_releases_once(reclaimer, released):
    handle = _handle()
    artifact = ArtifactRef(path="/tmp/job.json", jobId="job")
    reclaimer.register(handle, artifact)

    reclaimer.on_status_changed(handle, DownloadState.COMPLETE)
    reclaimer.on_status_changed(handle, DownloadState.COMPLETE)
    reclaimer.on_status_changed(handle, DownloadState.INTERRUPTED)

    assert released == [artifact]
    assert reclaimer.released_count == 1
    assert len(reclaimer) == 0


@pytest.mark.parametrize("state", [DownloadState.INITIATED, DownloadState.IN_PROGRESS])
def test_non_terminal_events_keep_artifact(reclaimer, released, state):
    handle = _handle()
    artifact = ArtifactRef(path="/tmp/job.json", jobId="job")
    reclaimer.register(handle, artifact)

    reclaimer.on_status_changed(handle, state)

    assert released == []
    assert reclaimer.pending_for(handle) == artifact


def test_interrupted_download_still_releases(reclaimer, released):
    handle = _handle()
    artifact = ArtifactRef(path="/tmp/job.json", jobId="job")
    reclaimer.register(handle, artifact)

    reclaimer.on_status_changed(handle, DownloadState.INTERRUPTED)

    assert released == [artifact]


def test_unknown_handle_is_a_no_op(reclaimer, released):
    reclaimer.on_status_changed(_handle(9), DownloadState.COMPLETE)
    assert released == []


def test_second_registration_for_same_handle_is_rejected(reclaimer):
    handle = _handle()
    first = ArtifactRef(path="/tmp/a.json", jobId="job")
    assert reclaimer.register(handle, first) is True
    assert reclaimer.register(handle, ArtifactRef(path="/tmp/b.json", jobId="job")) is False
    assert reclaimer.pending_for(handle) == first


def test_release_all_frees_leftovers(reclaimer, released):
    for i in range(3):
        reclaimer.register(_handle(i), ArtifactRef(path=f"/tmp/{i}.json", jobId="job"))

    assert reclaimer.release_all() == 3
    assert len(released) == 3
    assert reclaimer.release_all() == 0


def test_release_errors_are_logged_not_raised():
    def broken_release(artifact):
        raise OSError("permission denied")

    reclaimer = ResourceReclaimer(broken_release)
    handle = _handle()
    reclaimer.register(handle, ArtifactRef(path="/tmp/job.json", jobId="job"))

    reclaimer.on_status_changed(handle, DownloadState.COMPLETE)

    assert reclaimer.released_count == 0
    assert len(reclaimer) == 0
