import json

import pytest

from core.exceptions import ExtractionError
from data.models import DownloadRequest, ExtractionResult, SignalType, Transcript
from download.dispatcher import DownloadDispatcher
from storage.artifact_store import ArtifactStore
from worker.export_worker import ExportWorker
from worker.spawner import WorkerHandle


class StubExtractor:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error

    async def extract(self, page, conversation_id):
        if self.error:
            raise self.error
        return self.result


@pytest.fixture
def store(tmp_path) -> ArtifactStore:
    return ArtifactStore(temp_dir=str(tmp_path / "temp"))


@pytest.fixture
def dispatcher(subsystem, tracker, reclaimer) -> DownloadDispatcher:
    return DownloadDispatcher(subsystem, tracker, reclaimer, inter_download_delay=0)


def _handle(job_id="c1") -> WorkerHandle:
    return WorkerHandle(job_id=job_id, url=f"https://host/u/0/{job_id}?autoRun=true", page=object())


@pytest.mark.asyncio
async def test_successful_export_signals_completed(bus, store, dispatcher, subsystem, tracker, reclaimer):
    result = ExtractionResult(
        transcript=Transcript(title="Chat"),
        downloads=[DownloadRequest(kind="image", url="https://x/a.png", conversationId="c1",
                                   messageIndex=0, fileIndex=0)],
    )
    worker = ExportWorker(StubExtractor(result), store, dispatcher, bus)
    bus.expect("c1")

    await worker.run(_handle())

    signal = await bus.wait("c1")
    assert signal.type == SignalType.EXPORT_COMPLETED
    assert [dest for _, dest, _ in subsystem.initiated] == ["c1.json", "gemini-images/c1_msg0_image0.png"]
    assert len(tracker.handles_for("c1")) == 2

    transcript_handle = tracker.handles_for("c1")[0]
    artifact = reclaimer.pending_for(transcript_handle)
    with open(artifact.path, encoding="utf-8") as f:
        assert json.load(f)["title"] == "Chat"


@pytest.mark.asyncio
async def test_extraction_error_signals_failed(bus, store, dispatcher):
    worker = ExportWorker(StubExtractor(error=ExtractionError("no chat container")), store, dispatcher, bus)
    bus.expect("c1")

    await worker.run(_handle())

    signal = await bus.wait("c1")
    assert signal.is_failure
    assert signal.reason == "no chat container"


@pytest.mark.asyncio
async def test_refused_transcript_download_releases_artifact(bus, store, dispatcher, subsystem):
    worker = ExportWorker(StubExtractor(ExtractionResult(transcript=Transcript())), store, dispatcher, bus)
    original = subsystem.initiate_download

    async def refuse_files(url, *args, **kwargs):
        if url.startswith("file:"):
            subsystem.refuse_urls.add(url)
        return await original(url, *args, **kwargs)

    subsystem.initiate_download = refuse_files
    bus.expect("c1")

    await worker.run(_handle())

    assert (await bus.wait("c1")).type == SignalType.EXPORT_COMPLETED
    assert store.leftover_files() == []
