"""
Gemini Chat Exporter - Batch Export Orchestrator

Sequences export jobs one at a time: spawn a worker page, wait for its
completion or failure signal, wait for its downloads to start, settle and
advance. Only one batch runs at a time and only one job is ever in flight.
"""
import asyncio
import traceback
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from pydantic import ValidationError

from core.config import config
from core.exceptions import AlreadyRunningError
from data.models import (
    SPAWN_ERROR_REASON, BatchParams, ExportJob, JobResult, JobState, SignalType, StartResult
)
from download.tracker import DownloadTracker
from utils.helpers import format_duration
from utils.logger import setup_logger
from worker.signals import SignalBus
from worker.spawner import WorkerHandle, WorkerSpawner

ResultCallback = Callable[[JobResult], None]
FinishedCallback = Callable[["BatchRun"], None]


@dataclass
class BatchRun:
    """Mutable state of one batch; written only by the orchestrator loop"""
    queue: List[ExportJob]
    params: BatchParams
    cursor: int = 0
    worker: Optional[WorkerHandle] = None
    results: List[JobResult] = field(default_factory=list)
    running: bool = True
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None

    @property
    def current_job(self) -> Optional[ExportJob]:
        if self.running and self.cursor < len(self.queue):
            return self.queue[self.cursor]
        return None

    @property
    def active_jobs(self) -> List[ExportJob]:
        return [job for job in self.queue if job.state.is_active]

    @property
    def is_finished(self) -> bool:
        return self.finished_at is not None


class BatchExportOrchestrator:
    """
    Single-flight batch export driver

    Features:
    - FIFO processing in the order given to start()
    - Event-driven wait for worker signals (no timeout)
    - Bounded wait for downloads to start, followed by a settle delay
    - Cooperative stop checked before each job
    - Result ledger with per-job and batch-finished callbacks
    """

    def __init__(
        self,
        spawner: WorkerSpawner,
        bus: SignalBus,
        tracker: DownloadTracker,
        default_params: Optional[BatchParams] = None,
    ):
        self.logger = setup_logger("chat_exporter_orchestrator", config.log_level, config.log_file)
        self.spawner = spawner
        self.bus = bus
        self.tracker = tracker
        self.default_params = default_params or BatchParams()

        self._run: Optional[BatchRun] = None
        self._task: Optional[asyncio.Task] = None
        self._result_callbacks: List[ResultCallback] = []
        self._finished_callbacks: List[FinishedCallback] = []

        self.stats = {
            'batches_started': 0,
            'jobs_completed': 0,
            'jobs_failed': 0,
            'spawn_failures': 0,
            'download_timeouts': 0,
            'rejected_starts': 0,
        }

    # Run state

    @property
    def running(self) -> bool:
        return self._run is not None and self._run.running

    @property
    def current_run(self) -> Optional[BatchRun]:
        return self._run

    @property
    def results(self) -> List[JobResult]:
        return list(self._run.results) if self._run else []

    @property
    def cursor(self) -> int:
        return self._run.cursor if self._run else 0

    @property
    def queue(self) -> List[str]:
        return [job.id for job in self._run.queue] if self._run else []

    def add_result_callback(self, callback: ResultCallback):
        self._result_callbacks.append(callback)

    def add_finished_callback(self, callback: FinishedCallback):
        self._finished_callbacks.append(callback)

    # Lifecycle

    def start(self, job_ids: Sequence[str], params: Optional[BatchParams] = None) -> BatchRun:
        """
        Begin a batch; returns as soon as processing has been scheduled

        Raises:
            AlreadyRunningError: another batch is running (nothing is changed)
            ValueError: a job id is blank or repeated
        """
        if self.running:
            self.stats['rejected_starts'] += 1
            self.logger.warning("[WARNING] Batch export already running, start rejected")
            raise AlreadyRunningError()

        queue = [ExportJob(id=job_id) for job_id in job_ids]
        seen = set()
        for job in queue:
            if job.id in seen:
                raise ValueError(f"Duplicate job id in batch: {job.id}")
            seen.add(job.id)

        run = BatchRun(queue=queue, params=self._resolve_params(params))
        previous = self._task
        self._run = run
        self.stats['batches_started'] += 1
        self.logger.info(f"[LAUNCH] Starting batch export of {len(queue)} conversation(s)")

        self._task = asyncio.create_task(self._process_queue(run, previous))
        return run

    def stop(self) -> bool:
        """Ask the loop to halt before its next job; the job in flight finishes"""
        if not self.running:
            return False
        self._run.running = False
        self.logger.info("[STOP] Batch export stop requested")
        return True

    async def wait_finished(self, timeout: Optional[float] = None) -> bool:
        """Wait for the current loop to finish; False if the timeout elapsed first"""
        task = self._task
        if task is None:
            return True
        done, _ = await asyncio.wait({task}, timeout=timeout)
        return task in done

    async def shutdown(self, timeout: Optional[float] = 30) -> bool:
        """Stop, give the job in flight `timeout` seconds, then cancel the loop"""
        self.stop()
        if await self.wait_finished(timeout):
            return True

        self.logger.warning("[WARNING] Batch loop did not finish in time, cancelling")
        self._task.cancel()
        await asyncio.gather(self._task, return_exceptions=True)
        return False

    def _resolve_params(self, params: Optional[BatchParams]) -> BatchParams:
        merged = self.default_params.model_dump()
        if params is not None:
            merged.update(params.model_dump(exclude_unset=True, exclude_none=True))
        resolved = BatchParams(**merged)

        return resolved.model_copy(update={
            'scopeSelector': resolved.scopeSelector or config.scope_selector,
            'downloadWaitBudget': _pick(resolved.downloadWaitBudget, config.download_wait_budget),
            'settleDelay': _pick(resolved.settleDelay, config.settle_delay),
            'interJobDelay': _pick(resolved.interJobDelay, config.inter_job_delay),
            'closeWorkerAfterJob': _pick(resolved.closeWorkerAfterJob, config.close_worker_after_job),
        })

    # Control loop

    async def _process_queue(self, run: BatchRun, previous: Optional[asyncio.Task]):
        if previous is not None and not previous.done():
            self.logger.info("Waiting for the previous batch's job in flight to finish")
            await asyncio.gather(previous, return_exceptions=True)

        try:
            while run.running and run.cursor < len(run.queue):
                job = run.queue[run.cursor]
                result = await self._process_job(run, job)
                self._record(run, job, result)

                if run.params.interJobDelay > 0:
                    await asyncio.sleep(run.params.interJobDelay)
                run.cursor += 1
        except Exception as e:
            self.logger.error(f"[ERROR] Batch loop crashed: {e}")
            self.logger.error(f"Traceback: {traceback.format_exc()}")
        finally:
            self._finalize(run)

    async def _process_job(self, run: BatchRun, job: ExportJob) -> JobResult:
        job_id = job.id
        self.logger.info(f"[{run.cursor + 1}/{len(run.queue)}] Exporting {job_id}")

        self.tracker.open(job_id)
        job.state = JobState.SPAWNING
        try:
            self.bus.expect(job_id)
            handle = await self.spawner.spawn(job_id, run.params)
        except Exception as e:
            self.bus.discard(job_id)
            self.stats['spawn_failures'] += 1
            self.logger.error(f"[ERROR] Could not spawn worker for {job_id}: {e}")
            return JobResult(id=job_id, outcome="Failed", reason=SPAWN_ERROR_REASON)

        job.state = JobState.RUNNING
        run.worker = handle
        try:
            try:
                signal = await self.bus.wait(job_id)
            except asyncio.CancelledError:
                self.bus.discard(job_id)
                raise

            if signal.is_failure:
                self.logger.warning(f"[WARNING] Worker reported failure for {job_id}: {signal.reason}")
                return JobResult(id=job_id, outcome="Failed", reason=signal.reason)

            job.state = JobState.AWAITING_DOWNLOADS
            started = await self.tracker.await_start(job_id, run.params.downloadWaitBudget)
            if not started:
                self.stats['download_timeouts'] += 1
            if run.params.settleDelay > 0:
                await asyncio.sleep(run.params.settleDelay)
            return JobResult(id=job_id, outcome="Completed", downloadsStarted=started)

        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.error(f"[ERROR] Unexpected error exporting {job_id}: {e}")
            return JobResult(id=job_id, outcome="Failed", reason=str(e) or type(e).__name__)
        finally:
            await self._release_worker(run, handle)

    def _record(self, run: BatchRun, job: ExportJob, result: JobResult):
        if result.is_completed:
            job.state = JobState.COMPLETED
            self.stats['jobs_completed'] += 1
            self.logger.info(f"[OK] Exported {job.id}")
        else:
            job.state = JobState.FAILED
            job.error = result.reason
            self.stats['jobs_failed'] += 1

        run.results.append(result)
        self.tracker.clear(job.id)

        for callback in self._result_callbacks:
            try:
                callback(result)
            except Exception as e:
                self.logger.error(f"Error in result callback: {e}")

    async def _release_worker(self, run: BatchRun, handle: WorkerHandle):
        run.worker = None
        if not run.params.closeWorkerAfterJob:
            return
        try:
            await handle.close()
        except Exception as e:
            self.logger.warning(f"Error closing worker page for {handle.job_id}: {e}")

    def _finalize(self, run: BatchRun):
        run.running = False
        run.worker = None
        run.finished_at = datetime.now()
        self._log_final_statistics(run)

        for callback in self._finished_callbacks:
            try:
                callback(run)
            except Exception as e:
                self.logger.error(f"Error in finished callback: {e}")

    def _log_final_statistics(self, run: BatchRun):
        completed = sum(1 for r in run.results if r.is_completed)
        failed = len(run.results) - completed
        not_started = len(run.queue) - len(run.results)
        duration = (run.finished_at - run.started_at).total_seconds()

        self.logger.info("[CHART] Batch Statistics:")
        self.logger.info(f"   Completed: {completed}")
        self.logger.info(f"   Failed: {failed}")
        if not_started:
            self.logger.info(f"   Not Started (stopped): {not_started}")
        self.logger.info(f"   Duration: {format_duration(duration)}")

    # Status and messaging

    def get_status(self) -> Dict[str, Any]:
        run = self._run
        current = run.current_job if run else None
        return {
            'running': self.running,
            'cursor': self.cursor,
            'total': len(run.queue) if run else 0,
            'current_job': current.id if current else None,
            'current_state': current.state.value if current else None,
            'results': [r.model_dump(mode='json', exclude_none=True) for r in self.results],
            'stats': dict(self.stats),
        }

    def handle_message(self, message: Dict[str, Any]) -> Dict[str, Any]:
        """Answer a START/STOP/GET_BATCH_STATUS request or route a worker signal"""
        kind = message.get('type') if isinstance(message, dict) else None

        if kind == SignalType.START_BATCH_EXPORT.value:
            try:
                params = BatchParams.model_validate(message.get('params') or {})
                self.start(list(message.get('jobIds') or []), params)
            except AlreadyRunningError as e:
                return StartResult(ok=False, error=e.code).model_dump(exclude_none=True)
            except (ValidationError, ValueError, TypeError) as e:
                return StartResult(ok=False, error=f"InvalidRequest: {e}").model_dump(exclude_none=True)
            return StartResult(ok=True).model_dump(exclude_none=True)

        if kind == SignalType.STOP_BATCH_EXPORT.value:
            return {'ok': True, 'stopped': self.stop()}

        if kind == SignalType.GET_BATCH_STATUS.value:
            return {'ok': True, 'status': self.get_status()}

        if kind in (SignalType.EXPORT_COMPLETED.value, SignalType.EXPORT_FAILED.value):
            return {'ok': self.bus.handle_payload(message)}

        self.logger.warning(f"Unknown message type: {kind!r}")
        return {'ok': False, 'error': 'UnknownMessage'}


def _pick(value, fallback):
    return fallback if value is None else value
