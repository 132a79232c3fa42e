"""
Release of temporary artifacts once the download reading them has finished
"""
from typing import Callable, Dict, Optional

from core.config import config
from data.models import ArtifactRef, DownloadHandle, DownloadState
from utils.logger import setup_logger

ReleaseFn = Callable[[ArtifactRef], None]


class ResourceReclaimer:
    """Maps download handles to the artifact they consume and frees each artifact once"""

    def __init__(self, release: ReleaseFn):
        self.logger = setup_logger("chat_exporter_reclaimer", config.log_level, config.log_file)
        self._release = release
        self._pending: Dict[DownloadHandle, ArtifactRef] = {}
        self.released_count = 0

    def __len__(self) -> int:
        return len(self._pending)

    def register(self, handle: DownloadHandle, artifact: ArtifactRef) -> bool:
        if self._pending.setdefault(handle, artifact) is not artifact:
            self.logger.warning(f"Download {handle.downloadId} already has an artifact pending release")
            return False
        return True

    def pending_for(self, handle: DownloadHandle) -> Optional[ArtifactRef]:
        return self._pending.get(handle)

    def on_status_changed(self, handle: DownloadHandle, new_state: DownloadState):
        """Push-stream listener; terminal states can arrive more than once"""
        if not new_state.is_terminal:
            return

        artifact = self._pending.pop(handle, None)
        if artifact is None:
            return

        self._do_release(artifact)
        self.logger.debug(f"Released {artifact.path} after download {handle.downloadId} {new_state.value}")

    def release_all(self) -> int:
        """Free every artifact still waiting, e.g. on shutdown"""
        released = 0
        while self._pending:
            _, artifact = self._pending.popitem()
            self._do_release(artifact)
            released += 1
        if released:
            self.logger.info(f"[CLEAN] Released {released} leftover artifact(s)")
        return released

    def _do_release(self, artifact: ArtifactRef):
        try:
            self._release(artifact)
            self.released_count += 1
        except Exception as e:
            self.logger.error(f"Error releasing artifact {artifact.path}: {e}")
