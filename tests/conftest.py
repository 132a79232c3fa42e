import asyncio
import inspect
import itertools
import sys
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from core.exceptions import DownloadError  # noqa: E402
from data.models import DownloadHandle, DownloadState  # noqa: E402
from download.reclaimer import ResourceReclaimer  # noqa: E402
from download.tracker import DownloadTracker  # noqa: E402
from worker.signals import SignalBus  # noqa: E402


@pytest.hookimpl(tryfirst=True)
def pytest_pyfunc_call(pyfuncitem: pytest.Function) -> Optional[bool]:
    marker = pyfuncitem.get_closest_marker("asyncio")
    if marker is None:
        return None
    test_func = pyfuncitem.obj
    if not inspect.iscoroutinefunction(test_func):
        return None
    fixtureinfo = getattr(pyfuncitem, "_fixtureinfo", None)
    if fixtureinfo is None:
        return None
    kwargs = {name: pyfuncitem.funcargs[name] for name in fixtureinfo.argnames}
    asyncio.run(test_func(**kwargs))
    return True


class FakeDownloadSubsystem:
    """In-memory download subsystem; states only change when a test says so"""

    def __init__(self):
        self._ids = itertools.count(1)
        self.states: Dict[int, DownloadState] = {}
        self.listeners: List[Callable] = []
        self.failing_queries: Set[int] = set()
        self.refuse_urls: Set[str] = set()
        self.initiated: List[tuple] = []
        self.query_count = 0

    async def initiate_download(self, url, destination_name, conflict_policy="uniquify", job_id=""):
        if url in self.refuse_urls:
            raise DownloadError(f"refused {url}")
        handle = DownloadHandle(downloadId=next(self._ids), jobId=job_id, destination=destination_name)
        self.states[handle.downloadId] = DownloadState.INITIATED
        self.initiated.append((url, destination_name, conflict_policy))
        return handle

    async def query_status(self, handle):
        self.query_count += 1
        if handle.downloadId in self.failing_queries:
            raise DownloadError(f"download {handle.downloadId} vanished")
        return self.states[handle.downloadId]

    def subscribe(self, listener):
        self.listeners.append(listener)

    def set_state(self, handle, state):
        self.states[handle.downloadId] = state
        for listener in list(self.listeners):
            listener(handle, state)


class FakePage:
    def __init__(self, fail_navigation_for: Set[str]):
        self.url = "about:blank"
        self.fail_navigation_for = fail_navigation_for
        self.closed = False

    async def goto(self, url, **kwargs):
        if any(f"/{job_id}?" in url for job_id in self.fail_navigation_for):
            raise RuntimeError("net::ERR_ABORTED")
        self.url = url

    def is_closed(self):
        return self.closed

    async def close(self):
        self.closed = True


class FakeBrowserContext:
    """Stands in for a Playwright BrowserContext"""

    def __init__(self, fail_new_page: bool = False, fail_navigation_for: Optional[Set[str]] = None):
        self.fail_new_page = fail_new_page
        self.fail_navigation_for = fail_navigation_for or set()
        self.pages: List[FakePage] = []
        self.bindings: Dict[str, Callable] = {}

    async def new_page(self):
        if self.fail_new_page:
            raise RuntimeError("Target page, context or browser has been closed")
        page = FakePage(self.fail_navigation_for)
        self.pages.append(page)
        return page

    async def expose_binding(self, name, callback):
        self.bindings[name] = callback


@pytest.fixture
def subsystem() -> FakeDownloadSubsystem:
    return FakeDownloadSubsystem()


@pytest.fixture
def tracker(subsystem) -> DownloadTracker:
    tracker = DownloadTracker(subsystem, poll_interval=0.01)
    subsystem.subscribe(tracker.on_status_changed)
    return tracker


@pytest.fixture
def released() -> list:
    return []


@pytest.fixture
def reclaimer(subsystem, released) -> ResourceReclaimer:
    reclaimer = ResourceReclaimer(released.append)
    subsystem.subscribe(reclaimer.on_status_changed)
    return reclaimer


@pytest.fixture
def bus() -> SignalBus:
    return SignalBus()


@pytest.fixture
def browser_context() -> FakeBrowserContext:
    return FakeBrowserContext()


@pytest.fixture
def make_context():
    return FakeBrowserContext
