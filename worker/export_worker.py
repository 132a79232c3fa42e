"""
Export worker routine

Runs inside a worker page opened by the spawner: extracts the conversation,
stores the transcript as a temporary artifact, starts the transcript and media
downloads and finally reports EXPORT_COMPLETED or EXPORT_FAILED on the bus.
"""
from core.config import config
from data.models import WorkerSignal
from download.dispatcher import DownloadDispatcher
from storage.artifact_store import ArtifactStore
from utils.logger import setup_logger
from worker.signals import SignalBus
from worker.spawner import WorkerHandle


class ExportWorker:
    """Per-conversation export steps, run once per spawned page"""

    def __init__(self, extractor, artifact_store: ArtifactStore, dispatcher: DownloadDispatcher, bus: SignalBus):
        self.logger = setup_logger("chat_exporter_worker", config.log_level, config.log_file)
        self.extractor = extractor
        self.artifact_store = artifact_store
        self.dispatcher = dispatcher
        self.bus = bus

    async def __call__(self, handle: WorkerHandle):
        await self.run(handle)

    async def run(self, handle: WorkerHandle):
        """Export one conversation; always ends with exactly one signal"""
        job_id = handle.job_id
        try:
            await self.export(handle)
        except Exception as e:
            self.logger.error(f"[ERROR] Export of {job_id} failed: {e}")
            self.bus.deliver(WorkerSignal.failed(job_id, str(e) or type(e).__name__))
            return

        self.bus.deliver(WorkerSignal.completed(job_id))

    async def export(self, handle: WorkerHandle):
        job_id = handle.job_id
        result = await self.extractor.extract(handle.page, job_id)
        transcript = result.transcript
        self.logger.info(
            f"Extracted {transcript.total_count} messages ({transcript.round_count} rounds) from {job_id}"
        )

        artifact = await self.artifact_store.materialize(job_id, transcript)
        if await self.dispatcher.dispatch_transcript(job_id, artifact) is None:
            # Nobody will read the artifact
            self.artifact_store.release(artifact)

        if result.downloads:
            self.logger.info(
                f"Found {len(result.videos)} video(s) and {len(result.images)} image(s) in {job_id}"
            )
            await self.dispatcher.dispatch_media(job_id, result.downloads)
