"""
Worker spawner

Opens one browser page per export job, pointed at the conversation with the
auto-run marker, and hands the page to the worker routine that performs the
export inside it.
"""
import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional, Set
from urllib.parse import quote, urlencode, urlparse, parse_qs

from core.config import config
from core.exceptions import SpawnError
from data.models import BatchParams
from utils.logger import setup_logger


@dataclass
class WorkerHandle:
    """Live worker page for one job"""
    job_id: str
    url: str
    page: Any
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def is_closed(self) -> bool:
        is_closed = getattr(self.page, 'is_closed', None)
        return bool(is_closed()) if callable(is_closed) else False

    async def close(self):
        if not self.is_closed:
            await self.page.close()


WorkerRoutine = Callable[[WorkerHandle], Awaitable[None]]


def is_auto_run(url: str, param: Optional[str] = None) -> bool:
    values = parse_qs(urlparse(url).query).get(param or config.auto_run_param, [])
    return bool(values) and values[0].lower() == 'true'


class WorkerSpawner:
    """Creates worker pages in a Playwright browser context"""

    def __init__(
        self,
        context,
        routine: Optional[WorkerRoutine] = None,
        base_url: Optional[str] = None,
        app_path: Optional[str] = None,
        navigation_timeout: Optional[float] = None,
    ):
        self.logger = setup_logger("chat_exporter_spawner", config.log_level, config.log_file)
        self.context = context
        self.routine = routine
        self.base_url = (base_url or config.base_url).rstrip('/')
        self.app_path = (config.app_path if app_path is None else app_path).strip('/')
        self.navigation_timeout = navigation_timeout or config.get('browser.navigation_timeout', 60)
        self._routines: Set[asyncio.Task] = set()

    def build_target_url(self, job_id: str, params: Optional[BatchParams] = None) -> str:
        """
        base/{scope}/[app_path/]{job_id}?autoRun=true[&extra...]

        The default app_path is 'app', giving Gemini's /u/{n}/app/{id} route;
        an empty app_path gives base/{scope}/{job_id}. Extra query parameters
        never replace the auto-run marker.
        """
        params = params or BatchParams()
        scope = params.scopeSelector or config.scope_selector
        segments = [self.base_url, quote(str(scope), safe='')]
        if self.app_path:
            segments.append(self.app_path)
        segments.append(quote(job_id, safe=''))

        marker = config.auto_run_param
        query: Dict[str, str] = {marker: 'true'}
        for key, value in params.extraQuery.items():
            if str(key) == marker:
                self.logger.warning(f"Ignoring extra query parameter {marker}={value!r} for {job_id}")
                continue
            query[str(key)] = str(value)
        return '/'.join(segments) + '?' + urlencode(query)

    async def spawn(self, job_id: str, params: Optional[BatchParams] = None) -> WorkerHandle:
        """
        Open a worker page for a job

        Raises:
            SpawnError: the page could not be created or navigated
        """
        url = self.build_target_url(job_id, params)
        try:
            page = await self.context.new_page()
        except Exception as e:
            raise SpawnError(f"Could not open worker page for {job_id}: {e}", job_id=job_id)

        try:
            await page.goto(url, wait_until='domcontentloaded', timeout=self.navigation_timeout * 1000)
        except Exception as e:
            try:
                await page.close()
            except Exception as close_error:
                self.logger.debug(f"Closing failed worker page for {job_id}: {close_error}")
            raise SpawnError(f"Could not navigate worker page to {url}: {e}", job_id=job_id)

        handle = WorkerHandle(job_id=job_id, url=url, page=page)
        self.logger.info(f"[LAUNCH] Worker page opened for {job_id}")

        if self.routine is not None and is_auto_run(url):
            task = asyncio.create_task(self.routine(handle))
            self._routines.add(task)
            task.add_done_callback(self._routine_done)

        return handle

    def _routine_done(self, task: asyncio.Task):
        self._routines.discard(task)
        if not task.cancelled() and task.exception() is not None:
            self.logger.error(f"Worker routine crashed: {task.exception()}")

    async def close(self):
        """Cancel worker routines that are still running"""
        for task in list(self._routines):
            task.cancel()
        if self._routines:
            await asyncio.gather(*self._routines, return_exceptions=True)
        self._routines.clear()
