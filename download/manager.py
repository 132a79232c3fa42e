"""
Download manager for Gemini Chat Exporter
Starts file transfers in the background and reports their state changes
"""
import asyncio
import itertools
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set
from urllib.parse import urlparse, unquote

import aiofiles
import aiohttp
from yarl import URL

from core.config import config
from core.exceptions import DownloadError
from data.models import DownloadHandle, DownloadState
from download.subsystem import StatusListener
from utils.helpers import sanitize_relative_path
from utils.logger import setup_logger

CONFLICT_POLICIES = ('uniquify', 'overwrite')
SUPPORTED_SCHEMES = ('http', 'https', 'file')


class DownloadManager:
    """
    Background download subsystem

    Features:
    - Integer handles, one per transfer
    - initiated -> in_progress -> complete | interrupted state machine
    - Listeners notified on every state change
    - http(s) sources streamed with aiohttp, file:// sources copied
    - 'uniquify' and 'overwrite' conflict policies
    - Final states kept for the life of the manager, one entry per download
    """

    def __init__(self, base_path: Optional[str] = None, session: Optional[aiohttp.ClientSession] = None):
        self.logger = setup_logger("chat_exporter_downloads", config.log_level, config.log_file)
        self.base_path = Path(base_path or config.download_path)
        self.chunk_size = config.chunk_size

        self.session = session
        self._own_session = session is None

        self._ids = itertools.count(1)
        self._states: Dict[int, DownloadState] = {}
        self._reserved: Set[Path] = set()
        self._tasks: Dict[int, asyncio.Task] = {}
        self._listeners: List[StatusListener] = []

        self.base_path.mkdir(parents=True, exist_ok=True)

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def start(self):
        """Create the HTTP session"""
        if not self.session:
            timeout = aiohttp.ClientTimeout(total=config.download_timeout)
            headers = {'User-Agent': config.user_agent}
            self.session = aiohttp.ClientSession(timeout=timeout, headers=headers)
            self.logger.info("Download manager started")

    async def close(self):
        """Cancel unfinished transfers and close the session"""
        for task in list(self._tasks.values()):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks.values(), return_exceptions=True)
        self._tasks.clear()

        if self._own_session and self.session:
            await self.session.close()
            self.session = None

        self.logger.info("Download manager closed")

    async def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Wait for running transfers; False if some are still running after timeout"""
        tasks = list(self._tasks.values())
        if not tasks:
            return True
        self.logger.info(f"Waiting for {len(tasks)} download(s) to finish")
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        return not pending

    def subscribe(self, listener: StatusListener):
        self._listeners.append(listener)

    def load_cookies(self, cookies: Iterable[Dict[str, Any]]):
        """Copy browser cookies so media requests carry the signed-in session"""
        if not self.session:
            raise DownloadError("Download manager not started", component="downloads")
        loaded = 0
        for cookie in cookies:
            domain = str(cookie.get('domain', '')).lstrip('.')
            if not domain or 'name' not in cookie:
                continue
            self.session.cookie_jar.update_cookies(
                {cookie['name']: cookie.get('value', '')},
                response_url=URL(f"https://{domain}/")
            )
            loaded += 1
        self.logger.debug(f"Loaded {loaded} browser cookies")

    async def initiate_download(
        self,
        url: str,
        destination_name: str,
        conflict_policy: str = "uniquify",
        job_id: str = "",
    ) -> DownloadHandle:
        """
        Start a download in the background

        Args:
            url: http(s) or file:// source
            destination_name: Relative path under the download directory
            conflict_policy: 'uniquify' or 'overwrite'
            job_id: Export job the download belongs to

        Returns:
            DownloadHandle for status queries
        """
        scheme = urlparse(url).scheme.lower()
        if scheme not in SUPPORTED_SCHEMES:
            raise DownloadError(f"Unsupported URL scheme: {scheme or url!r}", component="downloads")
        if conflict_policy not in CONFLICT_POLICIES:
            raise DownloadError(f"Unsupported conflict policy: {conflict_policy}", component="downloads")
        if scheme != 'file' and not self.session:
            raise DownloadError("Download manager not started", component="downloads")

        try:
            relative = sanitize_relative_path(destination_name)
        except ValueError as e:
            raise DownloadError(str(e), component="downloads")

        target = self._resolve_target(self.base_path / relative, conflict_policy)
        download_id = next(self._ids)
        handle = DownloadHandle(downloadId=download_id, jobId=job_id, destination=str(target))

        self._states[download_id] = DownloadState.INITIATED
        self._tasks[download_id] = asyncio.create_task(self._run(handle, url, target))

        self.logger.info(f"Download started: {target.name} (ID: {download_id})")
        return handle

    async def query_status(self, handle: DownloadHandle) -> DownloadState:
        state = self._states.get(handle.downloadId)
        if state is None:
            raise DownloadError(f"Unknown download id {handle.downloadId}", component="downloads")
        return state

    def _resolve_target(self, target: Path, conflict_policy: str) -> Path:
        if conflict_policy == 'overwrite':
            self._reserved.add(target)
            return target

        candidate = target
        counter = 1
        while candidate.exists() or candidate in self._reserved:
            candidate = target.with_name(f"{target.stem} ({counter}){target.suffix}")
            counter += 1
        self._reserved.add(candidate)
        return candidate

    async def _run(self, handle: DownloadHandle, url: str, target: Path):
        part_file = target.with_name(target.name + '.part')
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            self._set_state(handle, DownloadState.IN_PROGRESS)

            if urlparse(url).scheme.lower() == 'file':
                size = await self._copy_file(url, part_file)
            else:
                size = await self._fetch(url, part_file)

            part_file.replace(target)
            self.logger.debug(f"Downloaded {target.name}: {size:,} bytes")
            self._set_state(handle, DownloadState.COMPLETE)

        except asyncio.CancelledError:
            self._discard(part_file)
            self._set_state(handle, DownloadState.INTERRUPTED)
            raise
        except Exception as e:
            self._discard(part_file)
            self.logger.error(f"Download interrupted: {handle.downloadId} ({e})")
            self._set_state(handle, DownloadState.INTERRUPTED)
        finally:
            self._reserved.discard(target)
            self._tasks.pop(handle.downloadId, None)

    async def _fetch(self, url: str, part_file: Path) -> int:
        size = 0
        async with self.session.get(url) as response:
            if response.status != 200:
                raise DownloadError(f"HTTP {response.status} for {url}", component="downloads")

            async with aiofiles.open(part_file, 'wb') as f:
                async for chunk in response.content.iter_chunked(self.chunk_size):
                    await f.write(chunk)
                    size += len(chunk)
        return size

    async def _copy_file(self, url: str, part_file: Path) -> int:
        source = Path(unquote(urlparse(url).path))
        size = 0
        async with aiofiles.open(source, 'rb') as src, aiofiles.open(part_file, 'wb') as dst:
            while True:
                chunk = await src.read(self.chunk_size)
                if not chunk:
                    break
                await dst.write(chunk)
                size += len(chunk)
        return size

    def _set_state(self, handle: DownloadHandle, state: DownloadState):
        self._states[handle.downloadId] = state
        if state == DownloadState.COMPLETE:
            self.logger.info(f"Download completed: {handle.downloadId}")
        for listener in list(self._listeners):
            try:
                listener(handle, state)
            except Exception as e:
                self.logger.error(f"Download listener failed for {handle.downloadId}: {e}")

    def _discard(self, path: Path):
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            self.logger.warning(f"Could not remove partial file {path}: {e}")

    def get_stats(self) -> Dict[str, int]:
        stats = {state.value: 0 for state in DownloadState}
        for state in self._states.values():
            stats[state.value] += 1
        stats['active'] = len(self._tasks)
        return stats
