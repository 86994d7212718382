"""Job scheduler: lifecycle, queue ordering, progress and event streaming."""
from __future__ import annotations

import asyncio
import itertools
import logging
import math
import time
from datetime import datetime, timezone
from typing import Any, AsyncGenerator, Callable, Dict, Iterable, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from ..config import EVENT_QUEUE_SIZE, STALL_CHECK_INTERVAL_S, STALL_TIMEOUT_S, STEP_INTERVAL_S
from ..engine.catalog import Catalog, DataFileRegistry, SourceLibrary
from ..engine.executor import ExecutionEngine
from ..engine.metrics import MetricRegistry
from ..engine.models import EngineState, ExecutionStep
from ..engine.operations import OperationRegistry
from ..engine.results import ResultHistory
from ..engine.runtimes import RuntimeDispatcher
from ..errors import InvalidTransitionError, JobNotFoundError, PersistenceError, ValidationError
from .models import PRIORITY_RANK, Job, JobPreset, JobPriority, JobStatus
from .store import JobStore
from .watchdog import StallWatchdog

logger = logging.getLogger(__name__)

JobListener = Callable[[Dict[str, Any]], None]


class JobCancelled(Exception):
    """Raised inside a job's run loop when cancellation is detected."""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def format_eta(seconds: float) -> str:
    """Human-readable remaining time: ``42s``, ``3m 5s`` or ``2h 10m``."""
    secs = math.ceil(seconds)
    if secs < 60:
        return f"{secs}s"
    if secs < 3600:
        return f"{secs // 60}m {secs % 60}s"
    return f"{secs // 3600}h {(secs % 3600) // 60}m"


def eta_confidence(progress: float) -> str:
    if progress < 10:
        return "low"
    if progress < 50:
        return "medium"
    return "high"


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _set_eta(job: Job, seconds: Optional[float]) -> None:
    if seconds is None:
        job.eta = job.eta_formatted = job.eta_confidence = None
        return
    job.eta = round(seconds, 3)
    job.eta_formatted = format_eta(seconds)
    job.eta_confidence = eta_confidence(job.progress)


def queue_sort_key(job: Job):
    """Pending order: priority rank, then creation time, then creation sequence."""
    return (PRIORITY_RANK[job.priority], job.created_at, job.sequence)


class JobScheduler:
    """Owns every job and drives each running job on its own engine.

    Each started job gets a fresh :class:`ExecutionEngine` and an asyncio
    task that runs its presets x iterations in order.  Two steps of the
    same job never run concurrently; cross-job parallelism is left to the
    caller (see :class:`~bitlab.jobs.batch.BatchCoordinator`).
    """

    def __init__(
        self,
        catalog: Catalog,
        library: SourceLibrary,
        data_files: DataFileRegistry,
        *,
        store: Optional[JobStore] = None,
        history: Optional[ResultHistory] = None,
        dispatcher: Optional[RuntimeDispatcher] = None,
        registry: Optional[OperationRegistry] = None,
        metric_registry: Optional[MetricRegistry] = None,
        step_interval: float = STEP_INTERVAL_S,
        stall_timeout: float = STALL_TIMEOUT_S,
        stall_check_interval: float = STALL_CHECK_INTERVAL_S,
    ) -> None:
        self._catalog = catalog
        self._library = library
        self._data_files = data_files
        self._store = store
        self._history = history
        self._dispatcher = dispatcher or RuntimeDispatcher()
        self._registry = registry or OperationRegistry()
        self._metric_registry = metric_registry or MetricRegistry()
        self._step_interval = step_interval
        self._stall_timeout = stall_timeout
        self._stall_check_interval = stall_check_interval

        self._jobs: Dict[str, Job] = {}
        self._engines: Dict[str, ExecutionEngine] = {}
        self._active_tasks: Dict[str, asyncio.Task] = {}
        self._resume_events: Dict[str, asyncio.Event] = {}
        self._cancel_requested: set = set()
        self._completed_runs: Dict[str, int] = {}
        self._started_at: Dict[str, float] = {}
        self._watchdogs: Dict[str, StallWatchdog] = {}
        self._listeners: List[JobListener] = []
        self._event_subscribers: List[asyncio.Queue] = []
        self._sequence = itertools.count(1)
        self.flush_failures = 0

    # ── Create ───────────────────────────────────────────────────────

    async def create_job(
        self,
        name: str,
        data_file_id: str,
        presets: Iterable[Union[JobPreset, Dict[str, Any]]],
        priority: Union[JobPriority, str] = JobPriority.normal,
        batch_id: Optional[str] = None,
    ) -> Job:
        """Validate and register a pending job.

        Raises
        ------
        ValidationError
            Listing every problem with the name, data file and presets.
        """
        errors: List[str] = []
        if not name or not name.strip():
            errors.append("Job name is required")

        data_file = self._data_files.get(data_file_id)
        if data_file is None:
            errors.append("Data file not found")
        elif not data_file.bits:
            errors.append("Data file has no binary content")

        parsed: List[JobPreset] = []
        for i, raw in enumerate(presets or [], start=1):
            try:
                preset = raw if isinstance(raw, JobPreset) else JobPreset.model_validate(raw)
            except PydanticValidationError as exc:
                errors.append(f"Preset {i}: {exc.errors()[0]['msg']}")
                continue
            if preset.iterations < 1:
                errors.append(f"Preset {i}: iterations must be at least 1")
            strategy = self._library.get_strategy(preset.strategy_id)
            if strategy is None:
                errors.append(f"Preset {i}: strategy {preset.strategy_id} not found")
            elif not preset.strategy_name:
                preset = preset.model_copy(update={"strategy_name": strategy.name})
            parsed.append(preset)
        if not parsed and not any(e.startswith("Preset") for e in errors):
            errors.append("At least one strategy preset is required")

        try:
            priority = JobPriority(priority)
        except ValueError:
            errors.append(f"Unknown priority: {priority}")

        if errors:
            raise ValidationError(errors)

        job = Job(
            name=name.strip(),
            data_file_id=data_file_id,
            data_file_name=data_file.name,
            presets=parsed,
            priority=priority,
            batch_id=batch_id,
            sequence=next(self._sequence),
        )
        self._jobs[job.id] = job
        self._recompute_queue()
        self._emit("created", job)
        await self._flush(job)
        logger.info(
            "Created job %s (%s, %d runs)", job.id, job.name, job.total_runs, extra={"job_id": job.id}
        )
        return job

    async def replay_job(self, job_id: str) -> Job:
        """Create a new pending job with the same plan as a finished one."""
        job = self._require(job_id)
        if not job.is_terminal:
            raise InvalidTransitionError(f"Job {job_id} is {job.status.value}; only finished jobs can be replayed")
        return await self.create_job(
            f"{job.name} (replay)",
            job.data_file_id,
            [p.model_copy() for p in job.presets],
            job.priority,
        )

    # ── Lifecycle ────────────────────────────────────────────────────

    async def start_job(self, job_id: str) -> Job:
        """Start a pending job.  Any other status is a no-op.

        The engine pre-flight check runs first and raises
        :class:`ValidationError` without changing the job.
        """
        job = self._require(job_id)
        if job.status is not JobStatus.pending:
            return job

        engine = self._new_engine(job)
        bits = self._data_files.get_bits(job.data_file_id)
        for preset in job.presets:
            engine.check_requirements(preset.strategy_id, bits)

        self._engines[job.id] = engine
        self._resume_events[job.id] = asyncio.Event()
        self._resume_events[job.id].set()
        self._completed_runs[job.id] = 0
        self._started_at[job.id] = time.monotonic()
        job.status = JobStatus.running
        job.start_time = _now()
        job.end_time = None
        job.progress = 0.0
        _set_eta(job, None)
        job.error = None
        job.stalled = False
        self._recompute_queue()
        self._watchdogs[job.id] = self._new_watchdog(job)
        self._watchdogs[job.id].start()
        self._active_tasks[job.id] = asyncio.create_task(self._run(job))
        self._emit("started", job)
        await self._flush(job)
        return job

    async def pause_job(self, job_id: str) -> Job:
        job = self._require(job_id)
        if job.status is not JobStatus.running:
            return job
        job.status = JobStatus.paused
        self._resume_events[job.id].clear()
        engine = self._engines.get(job.id)
        if engine is not None:
            engine.pause()
        self._emit("paused", job)
        await self._flush(job)
        return job

    async def resume_job(self, job_id: str) -> Job:
        job = self._require(job_id)
        if job.status is not JobStatus.paused:
            return job
        job.status = JobStatus.running
        self._resume_events[job.id].set()
        engine = self._engines.get(job.id)
        if engine is not None:
            engine.resume()
        self._emit("resumed", job)
        await self._flush(job)
        return job

    async def cancel_job(self, job_id: str) -> Job:
        """Cancel a pending, running or paused job.

        A pending job is cancelled at once.  A running or paused job is
        signalled and reaches ``cancelled`` when its task unwinds; use
        :meth:`wait_for_job` to observe that.
        """
        job = self._require(job_id)
        if job.is_terminal:
            return job
        if job.status is JobStatus.pending:
            job.status = JobStatus.cancelled
            job.end_time = _now()
            self._recompute_queue()
            self._emit("cancelled", job)
            self._emit("done", job)
            await self._flush(job)
            return job

        self._cancel_requested.add(job.id)
        event = self._resume_events.get(job.id)
        if event is not None:
            event.set()
        engine = self._engines.get(job.id)
        if engine is not None:
            engine.abort("Job cancelled")
        self._emit("cancel_requested", job)
        return job

    async def fail_job(self, job_id: str, error: str) -> Job:
        """Mark a pending job failed without running it."""
        job = self._require(job_id)
        if job.status is not JobStatus.pending:
            raise InvalidTransitionError(f"Job {job_id} is {job.status.value}, not pending")
        job.status = JobStatus.failed
        job.error = error
        job.end_time = _now()
        self._recompute_queue()
        self._emit("failed", job)
        self._emit("done", job)
        await self._flush(job)
        return job

    async def delete_job(self, job_id: str) -> bool:
        """Remove a job.  Unfinished jobs are cancelled and awaited first."""
        job = self._require(job_id)
        if not job.is_terminal:
            await self.cancel_job(job_id)
        task = self._active_tasks.get(job_id)
        if task is not None:
            await task
        self._jobs.pop(job_id, None)
        self._engines.pop(job_id, None)
        self._recompute_queue()
        if self._store is not None:
            try:
                await self._store.delete_job(job_id)
            except PersistenceError as exc:
                self._record_flush_failure(job_id, exc)
        self._emit("deleted", job)
        return True

    async def wait_for_job(self, job_id: str) -> Job:
        """Wait until the job's task (if any) finishes, then return the job."""
        job = self._require(job_id)
        task = self._active_tasks.get(job_id)
        if task is not None:
            await asyncio.shield(task)
        return job

    async def run_job(self, job_id: str) -> Job:
        """Start a job and wait for it to reach a terminal status."""
        await self.start_job(job_id)
        return await self.wait_for_job(job_id)

    async def shutdown(self) -> None:
        """Cancel every unfinished job and wait for the tasks to unwind."""
        for job_id in list(self._active_tasks):
            await self.cancel_job(job_id)
        tasks = list(self._active_tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def restore(self) -> int:
        """Load persisted jobs.  Runs interrupted by a restart become failed."""
        if self._store is None:
            return 0
        restored = 0
        for job in await self._store.list_jobs():
            if job.id in self._jobs:
                continue
            if job.status in (JobStatus.running, JobStatus.paused):
                job.status = JobStatus.failed
                job.error = "Interrupted before completion"
                job.end_time = _now()
                await self._flush(job)
            job.sequence = next(self._sequence)
            self._jobs[job.id] = job
            restored += 1
        self._recompute_queue()
        logger.info("Restored %d jobs from %s", restored, self._store.db_path)
        return restored

    # ── Run loop ─────────────────────────────────────────────────────

    def _new_engine(self, job: Job) -> ExecutionEngine:
        engine = ExecutionEngine(
            self._catalog,
            self._library,
            self._dispatcher,
            self._registry,
            self._history,
            metric_registry=self._metric_registry,
            step_interval=self._step_interval,
        )

        def on_step(step: ExecutionStep) -> None:
            planned = engine.planned_steps
            fraction = min(step.step_number / planned, 1.0) if planned else 0.0
            self._update_progress(job, fraction)

        def on_state_change(state: EngineState) -> None:
            # A pause requested while the engine was loading takes effect here.
            if state is EngineState.running and job.status is JobStatus.paused:
                engine.pause()

        def on_log(message: str) -> None:
            logger.debug("job %s: %s", job.id, message)

        engine.on_step = on_step
        engine.on_state_change = on_state_change
        engine.on_log = on_log
        return engine

    def _new_watchdog(self, job: Job) -> StallWatchdog:
        def on_stall(progress: float, stalled_for: float) -> None:
            job.stalled = True
            logger.warning(
                "Job %s stalled at %.2f%% for %.1fs", job.id, progress, stalled_for, extra={"job_id": job.id}
            )
            self._emit("stalled", job, stalled_for=round(stalled_for, 3))

        def on_recovery() -> None:
            job.stalled = False
            logger.info("Job %s recovered from stall", job.id, extra={"job_id": job.id})
            self._emit("recovered", job)

        return StallWatchdog(
            self._stall_timeout,
            self._stall_check_interval,
            on_stall,
            on_recovery,
            is_suspended=lambda: job.status is JobStatus.paused,
        )

    async def _run(self, job: Job) -> None:
        engine = self._engines[job.id]
        try:
            for index, preset in enumerate(job.presets):
                for iteration in range(1, preset.iterations + 1):
                    await self._wait_if_paused(job)
                    if job.id in self._cancel_requested:
                        raise JobCancelled()
                    job.current_preset_index = index
                    job.current_iteration = iteration
                    bits = self._data_files.get_bits(job.data_file_id)
                    result = await engine.start(preset.strategy_id, bits)
                    job.results.append(result)
                    if result.cancelled or job.id in self._cancel_requested:
                        raise JobCancelled()
                    if not result.success:
                        job.status = JobStatus.failed
                        job.error = result.error or "Execution failed"
                        return
                    self._completed_runs[job.id] += 1
                    self._update_progress(job, 0.0)
                    await self._flush(job)
            job.status = JobStatus.completed
            job.progress = 100.0
            _set_eta(job, None)
        except (asyncio.CancelledError, JobCancelled):
            job.status = JobStatus.cancelled
        except Exception as exc:
            logger.error("Job %s failed: %s", job.id, exc, exc_info=True, extra={"job_id": job.id})
            job.status = JobStatus.failed
            job.error = str(exc)
        finally:
            if job.id in self._cancel_requested:
                job.status = JobStatus.cancelled
            job.end_time = _now()
            if job.status is not JobStatus.completed:
                _set_eta(job, None)
            watchdog = self._watchdogs.pop(job.id, None)
            if watchdog is not None:
                await watchdog.stop()
            job.stalled = False
            self._engines.pop(job.id, None)
            self._active_tasks.pop(job.id, None)
            self._resume_events.pop(job.id, None)
            self._cancel_requested.discard(job.id)
            self._completed_runs.pop(job.id, None)
            self._started_at.pop(job.id, None)
            self._emit(job.status.value, job)
            self._emit("done", job)
            await self._flush(job)
            logger.info("Job %s finished: %s", job.id, job.status.value, extra={"job_id": job.id})

    async def _wait_if_paused(self, job: Job) -> None:
        event = self._resume_events.get(job.id)
        if event is not None and not event.is_set():
            await event.wait()

    def _update_progress(self, job: Job, step_fraction: float) -> None:
        total = job.total_runs
        done = self._completed_runs.get(job.id, 0)
        pct = (done + step_fraction) / total * 100 if total else 0.0
        job.progress = round(min(pct, 100.0), 2)
        elapsed = time.monotonic() - self._started_at.get(job.id, time.monotonic())
        if 0 < job.progress < 100:
            _set_eta(job, elapsed / job.progress * (100 - job.progress))
        else:
            _set_eta(job, None)
        watchdog = self._watchdogs.get(job.id)
        if watchdog is not None:
            watchdog.report_progress(job.progress)
        self._emit("progress", job)

    # ── Queries ──────────────────────────────────────────────────────

    def get_job(self, job_id: str) -> Optional[Job]:
        return self._jobs.get(job_id)

    def get_all_jobs(self) -> List[Job]:
        return sorted(self._jobs.values(), key=lambda j: j.sequence)

    def get_completed_jobs(self) -> List[Job]:
        return [j for j in self.get_all_jobs() if j.status is JobStatus.completed]

    def get_pending_queue(self) -> List[Job]:
        return sorted(
            (j for j in self._jobs.values() if j.status is JobStatus.pending),
            key=queue_sort_key,
        )

    def get_status_counts(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in JobStatus}
        for job in self._jobs.values():
            counts[job.status.value] += 1
        counts["total"] = len(self._jobs)
        return counts

    def queue_stats(self) -> Dict[str, Any]:
        """Status counts plus average queue wait and run duration, in seconds.

        Wait is ``start_time - created_at`` over jobs that have started;
        duration is ``end_time - start_time`` over jobs that have finished.
        """
        waits: List[float] = []
        durations: List[float] = []
        for job in self._jobs.values():
            created, started, ended = (_parse_ts(t) for t in (job.created_at, job.start_time, job.end_time))
            if created is not None and started is not None:
                waits.append((started - created).total_seconds())
            if started is not None and ended is not None:
                durations.append((ended - started).total_seconds())
        stats: Dict[str, Any] = dict(self.get_status_counts())
        stats["stalled"] = sum(1 for j in self._jobs.values() if j.stalled)
        stats["avg_wait_s"] = round(sum(waits) / len(waits), 3) if waits else 0.0
        stats["avg_duration_s"] = round(sum(durations) / len(durations), 3) if durations else 0.0
        return stats

    @property
    def data_files(self) -> DataFileRegistry:
        return self._data_files

    def engine_for(self, job_id: str) -> Optional[ExecutionEngine]:
        return self._engines.get(job_id)

    @property
    def active_count(self) -> int:
        return len(self._active_tasks)

    def _require(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(f"Job '{job_id}' not found")
        return job

    def _recompute_queue(self) -> None:
        for job in self._jobs.values():
            job.queue_position = None
        for position, job in enumerate(self.get_pending_queue(), start=1):
            job.queue_position = position

    # ── Persistence ──────────────────────────────────────────────────

    async def _flush(self, job: Job) -> bool:
        if self._store is None:
            return True
        try:
            await self._store.save_job(job)
        except PersistenceError as exc:
            self._record_flush_failure(job.id, exc)
            return False
        return True

    def _record_flush_failure(self, job_id: str, exc: Exception) -> None:
        self.flush_failures += 1
        logger.warning("Persisting job %s failed: %s", job_id, exc)
        self._publish({"event": "persist_failed", "job_id": job_id, "error": str(exc)})

    # ── Events ───────────────────────────────────────────────────────

    def subscribe(self, listener: JobListener) -> Callable[[], None]:
        """Register a synchronous listener; returns a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def events(self, job_id: Optional[str] = None) -> AsyncGenerator[Dict[str, Any], None]:
        """Yield scheduler events, optionally for one job until it is done."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=EVENT_QUEUE_SIZE)
        self._event_subscribers.append(queue)
        try:
            if job_id is not None:
                job = self._jobs.get(job_id)
                if job is not None:
                    yield {"event": "status", "job_id": job_id, "job": job.summary()}
                    if job.is_terminal and job_id not in self._active_tasks:
                        return
            while True:
                event = await queue.get()
                if job_id is not None and event.get("job_id") != job_id:
                    continue
                yield event
                if job_id is not None and event.get("event") in ("done", "deleted"):
                    break
        finally:
            if queue in self._event_subscribers:
                self._event_subscribers.remove(queue)

    def _emit(self, name: str, job: Job, **extra: Any) -> None:
        self._publish({
            "event": name,
            "job_id": job.id,
            "status": job.status.value,
            "progress": job.progress,
            "eta": job.eta,
            "eta_formatted": job.eta_formatted,
            "stalled": job.stalled,
            "job": job.summary(),
            **extra,
        })

    def _publish(self, event: Dict[str, Any]) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Job listener raised on %s", event.get("event"))
        for queue in self._event_subscribers:
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning("Event subscriber queue full; dropping %s", event.get("event"))
