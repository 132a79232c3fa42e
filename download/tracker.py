"""
Download start tracker

Keeps the set of download handles registered for each export job and waits,
with a bounded budget, until every one of them has left the initiated state.
"Started" is only available as a point-in-time status query, so this is a
poll loop; states pushed by the download subsystem short-circuit it.
"""
import asyncio
import time
from typing import Dict, Optional, Set, Tuple

from core.config import config
from data.models import DownloadHandle, DownloadState
from download.subsystem import DownloadSubsystem
from utils.logger import setup_logger


class DownloadTracker:
    """Per-job registry of outstanding downloads with a bounded start wait"""

    def __init__(self, subsystem: DownloadSubsystem, poll_interval: Optional[float] = None):
        self.logger = setup_logger("chat_exporter_tracker", config.log_level, config.log_file)
        self.subsystem = subsystem
        self.poll_interval = config.poll_interval if poll_interval is None else poll_interval
        self._job_downloads: Dict[str, Set[DownloadHandle]] = {}
        self._observed: Dict[DownloadHandle, DownloadState] = {}
        self._concluded: Set[str] = set()
        self.poll_count = 0

    def open(self, job_id: str):
        """Accept registrations for a job again, e.g. when it is retried in a later batch"""
        self._concluded.discard(job_id)

    def register(self, job_id: str, handle: DownloadHandle) -> bool:
        """Attach a handle to a job; returns False if it was already registered or the job is over"""
        if job_id in self._concluded:
            self.logger.debug(f"Ignoring download {handle.downloadId}: wait phase of job {job_id} is over")
            return False
        handles = self._job_downloads.setdefault(job_id, set())
        if handle in handles:
            return False
        handles.add(handle)
        self.logger.debug(f"Registered download {handle.downloadId} for job {job_id}")
        return True

    def handles_for(self, job_id: str) -> Tuple[DownloadHandle, ...]:
        return tuple(sorted(self._job_downloads.get(job_id, ()), key=lambda h: h.downloadId))

    def clear(self, job_id: str) -> int:
        """Forget a job once its wait phase is over"""
        self._concluded.add(job_id)
        handles = self._job_downloads.pop(job_id, set())
        for handle in handles:
            self._observed.pop(handle, None)
        return len(handles)

    def on_status_changed(self, handle: DownloadHandle, new_state: DownloadState):
        """Push-stream listener; only remembers states of handles we track"""
        if handle in self._job_downloads.get(handle.jobId, ()):
            self._observed[handle] = new_state

    async def await_start(self, job_id: str, budget: float) -> bool:
        """
        Wait until every download of the job is in progress or finished

        Args:
            job_id: Export job whose downloads should be checked
            budget: Seconds to wait before giving up

        Returns:
            True if all downloads started (or there were none), False on timeout
        """
        pending = set(self._job_downloads.get(job_id, ()))
        if not pending:
            self.logger.debug(f"No downloads registered for job {job_id}")
            return True

        deadline = time.monotonic() + budget
        while True:
            self.poll_count += 1
            for handle in list(pending):
                if await self._has_started(handle):
                    pending.discard(handle)

            if not pending:
                self.logger.info(f"[OK] All downloads started for job {job_id}")
                return True

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                self.logger.warning(
                    f"[WARNING] Timed out after {budget:.1f}s waiting for "
                    f"{len(pending)} download(s) of job {job_id} to start"
                )
                return False

            await asyncio.sleep(min(self.poll_interval, remaining))

    async def _has_started(self, handle: DownloadHandle) -> bool:
        observed = self._observed.get(handle)
        if observed is not None and observed != DownloadState.INITIATED:
            return True

        try:
            state = await self.subsystem.query_status(handle)
        except Exception as e:
            # A failing query must not hold up the other downloads of the job
            self.logger.warning(f"Status query failed for download {handle.downloadId}: {e}")
            return True

        return state != DownloadState.INITIATED
