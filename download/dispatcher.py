"""
Download dispatch for exported conversations

Names and starts the downloads produced by one export job (the transcript
document and its media) and registers every started download with the
tracker, plus the reclaimer when the source is a temporary artifact.
"""
import asyncio
from typing import List, Optional

from core.config import config
from data.models import ArtifactRef, DownloadHandle, DownloadRequest
from download.reclaimer import ResourceReclaimer
from download.subsystem import DownloadSubsystem
from download.tracker import DownloadTracker
from utils.helpers import filename_from_url, image_extension_from_url, sanitize_filename
from utils.logger import setup_logger

VIDEO_FOLDER = "gemini-videos"
IMAGE_FOLDER = "gemini-images"


def media_filename(request: DownloadRequest) -> str:
    """Pick the saved name for a media file"""
    name = request.filename or filename_from_url(request.url)
    if name:
        return sanitize_filename(name)

    if request.kind == "video":
        ext = "mp4"
    else:
        ext = image_extension_from_url(request.url)
    return f"{request.conversationId}_msg{request.messageIndex}_{request.kind}{request.fileIndex}.{ext}"


def media_destination(request: DownloadRequest) -> str:
    folder = VIDEO_FOLDER if request.kind == "video" else IMAGE_FOLDER
    return f"{folder}/{media_filename(request)}"


class DownloadDispatcher:
    """Starts downloads for a job and records them for tracking and cleanup"""

    def __init__(
        self,
        subsystem: DownloadSubsystem,
        tracker: DownloadTracker,
        reclaimer: ResourceReclaimer,
        conflict_policy: Optional[str] = None,
        inter_download_delay: Optional[float] = None,
    ):
        self.logger = setup_logger("chat_exporter_dispatch", config.log_level, config.log_file)
        self.subsystem = subsystem
        self.tracker = tracker
        self.reclaimer = reclaimer
        self.conflict_policy = conflict_policy or config.conflict_policy
        self.inter_download_delay = (
            config.inter_download_delay if inter_download_delay is None else inter_download_delay
        )

    async def dispatch(
        self,
        job_id: str,
        url: str,
        destination_name: str,
        artifact: Optional[ArtifactRef] = None,
    ) -> Optional[DownloadHandle]:
        """
        Start one download and register it

        Returns the handle, or None when the subsystem refused the download.
        """
        try:
            handle = await self.subsystem.initiate_download(url, destination_name, self.conflict_policy, job_id)
        except Exception as e:
            self.logger.error(f"[ERROR] Download of {destination_name} failed to start: {e}")
            return None

        # Reclaimer first: the transfer may already be finishing in the background
        if artifact is not None:
            self.reclaimer.register(handle, artifact)
            state = await self._current_state(handle)
            if state is not None:
                self.reclaimer.on_status_changed(handle, state)
        self.tracker.register(job_id, handle)
        return handle

    async def dispatch_transcript(self, job_id: str, artifact: ArtifactRef) -> Optional[DownloadHandle]:
        return await self.dispatch(job_id, artifact.url, f"{sanitize_filename(job_id)}.json", artifact)

    async def dispatch_media(self, job_id: str, requests: List[DownloadRequest]) -> List[DownloadHandle]:
        """Start media downloads one after another, videos first, then images"""
        ordered = [r for r in requests if r.kind == "video"] + [r for r in requests if r.kind == "image"]
        handles = []

        for i, request in enumerate(ordered):
            label = "generated image" if request.isGenerated else request.kind
            handle = await self.dispatch(job_id, request.url, media_destination(request))
            if handle:
                self.logger.info(f"{label.capitalize()} {i + 1}/{len(ordered)} download initiated (ID: {handle.downloadId})")
                handles.append(handle)

            if i < len(ordered) - 1 and self.inter_download_delay > 0:
                await asyncio.sleep(self.inter_download_delay)

        return handles

    async def _current_state(self, handle: DownloadHandle):
        try:
            return await self.subsystem.query_status(handle)
        except Exception as e:
            self.logger.debug(f"Status of download {handle.downloadId} unavailable: {e}")
            return None
