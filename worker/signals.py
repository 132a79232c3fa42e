"""
Worker -> orchestrator signaling

Each job has at most one outstanding waiter. Workers report through
deliver() (in-process) or through a page binding installed with bind(),
which lets in-page scripts call window.exportSignal({...}).
"""
import asyncio
from typing import Any, Dict, Optional

from pydantic import ValidationError

from core.config import config
from core.exceptions import SignalError
from data.models import WorkerSignal
from utils.logger import setup_logger


class SignalBus:
    """One-shot completion/failure signal per export job"""

    def __init__(self):
        self.logger = setup_logger("chat_exporter_signals", config.log_level, config.log_file)
        self._waiters: Dict[str, asyncio.Future] = {}

    def expect(self, job_id: str) -> asyncio.Future:
        """Open the waiter for a job before its worker can possibly answer"""
        waiter = self._waiters.get(job_id)
        if waiter is not None and not waiter.done():
            raise SignalError(f"Job {job_id} already has a signal in flight", component="signals")
        waiter = asyncio.get_running_loop().create_future()
        self._waiters[job_id] = waiter
        return waiter

    def is_expecting(self, job_id: str) -> bool:
        waiter = self._waiters.get(job_id)
        return waiter is not None and not waiter.done()

    def deliver(self, signal: WorkerSignal) -> bool:
        """Resolve the waiter for the signal's job; returns False if nobody waits"""
        waiter = self._waiters.get(signal.jobId)
        if waiter is None or waiter.done():
            self.logger.warning(f"Dropping {signal.type.value} for job {signal.jobId}: no export waiting for it")
            return False
        waiter.set_result(signal)
        self.logger.debug(f"Received {signal.type.value} for job {signal.jobId}")
        return True

    def handle_payload(self, payload: Any) -> bool:
        """Validate a raw message (e.g. from a page) and deliver it"""
        try:
            signal = WorkerSignal.model_validate(payload)
        except ValidationError as e:
            self.logger.warning(f"Ignoring malformed worker signal {payload!r}: {e.error_count()} error(s)")
            return False
        return self.deliver(signal)

    async def wait(self, job_id: str) -> WorkerSignal:
        """Wait for the job's signal; a worker that never answers stalls the caller"""
        waiter = self._waiters.get(job_id)
        if waiter is None:
            raise SignalError(f"No signal expected for job {job_id}", component="signals")
        try:
            return await waiter
        finally:
            if self._waiters.get(job_id) is waiter:
                del self._waiters[job_id]

    def discard(self, job_id: str):
        waiter = self._waiters.pop(job_id, None)
        if waiter is not None and not waiter.done():
            waiter.cancel()

    async def bind(self, context, name: Optional[str] = None):
        """Expose window.<name>(payload) to every page of a Playwright browser context"""
        binding = name or config.signal_binding

        def _on_page_signal(source, payload):
            page = source.get('page') if isinstance(source, dict) else getattr(source, 'page', None)
            self.logger.debug(f"Page signal from {getattr(page, 'url', '?')}: {payload!r}")
            return self.handle_payload(payload)

        await context.expose_binding(binding, _on_page_signal)
        self.logger.info(f"Signal binding window.{binding} installed")
