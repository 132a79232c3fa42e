"""
Interface of the download capability the orchestrator relies on
"""
from typing import Callable, Protocol

from data.models import DownloadHandle, DownloadState

StatusListener = Callable[[DownloadHandle, DownloadState], None]


class DownloadSubsystem(Protocol):
    """Anything that can start downloads, report their state and push state changes"""

    async def initiate_download(
        self,
        url: str,
        destination_name: str,
        conflict_policy: str = "uniquify",
        job_id: str = "",
    ) -> DownloadHandle:
        ...

    async def query_status(self, handle: DownloadHandle) -> DownloadState:
        ...

    def subscribe(self, listener: StatusListener) -> None:
        ...
