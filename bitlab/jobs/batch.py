"""Batch fan-out: one job per data file, run in sequence or with a parallel bound."""
from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional, Union

from ..errors import BatchNotFoundError, ValidationError
from .models import TERMINAL_STATUSES, Batch, BatchConfig, JobStatus
from .scheduler import JobScheduler

logger = logging.getLogger(__name__)


class BatchCoordinator:
    """Expands a :class:`BatchConfig` into jobs and drives their execution.

    Sequential batches run their jobs one at a time in creation order.
    Parallel batches hold at most ``max_parallel`` jobs running at once and
    start the next pending job as soon as one finishes.
    """

    def __init__(self, scheduler: JobScheduler) -> None:
        self._scheduler = scheduler
        self._batches: Dict[str, Batch] = {}
        self._tasks: Dict[str, asyncio.Task] = {}

    async def create_batch(self, config: Union[BatchConfig, dict]) -> Batch:
        """Create one job per data file, each carrying every preset."""
        if not isinstance(config, BatchConfig):
            config = BatchConfig.model_validate(config)
        errors = []
        if not config.data_file_ids:
            errors.append("At least one data file is required")
        if config.max_parallel < 1:
            errors.append("max_parallel must be at least 1")
        if errors:
            raise ValidationError(errors)

        batch = Batch(name=config.name, config=config)
        created: List[str] = []
        try:
            for file_id in config.data_file_ids:
                data_file = self._scheduler.data_files.get(file_id)
                label = data_file.name if data_file is not None else file_id
                job = await self._scheduler.create_job(
                    f"{config.name} - {label}",
                    file_id,
                    [p.model_copy() for p in config.presets],
                    config.priority,
                    batch_id=batch.id,
                )
                created.append(job.id)
        except ValidationError:
            for job_id in created:
                await self._scheduler.delete_job(job_id)
            raise

        batch.job_ids = created
        self._batches[batch.id] = batch
        logger.info("Created batch %s with %d jobs", batch.id, len(created))
        return batch

    async def start_batch(self, batch_id: str) -> Batch:
        """Begin running the batch in the background."""
        batch = self._require(batch_id)
        task = self._tasks.get(batch_id)
        if task is not None and not task.done():
            return batch
        runner = self._run_parallel if batch.config.run_parallel else self._run_sequential
        self._tasks[batch_id] = asyncio.create_task(runner(batch))
        return batch

    async def run_batch(self, batch_id: str) -> Batch:
        await self.start_batch(batch_id)
        return await self.wait_for_batch(batch_id)

    async def wait_for_batch(self, batch_id: str) -> Batch:
        batch = self._require(batch_id)
        task = self._tasks.get(batch_id)
        if task is not None:
            await asyncio.shield(task)
        return batch

    async def cancel_batch(self, batch_id: str) -> int:
        """Cancel every unfinished job in the batch.  Returns how many were signalled."""
        batch = self._require(batch_id)
        count = 0
        for job_id in batch.job_ids:
            job = self._scheduler.get_job(job_id)
            if job is None or job.status in TERMINAL_STATUSES:
                continue
            await self._scheduler.cancel_job(job_id)
            count += 1
        logger.info("Cancelled %d jobs in batch %s", count, batch_id)
        return count

    def get_batch(self, batch_id: str) -> Optional[Batch]:
        return self._batches.get(batch_id)

    def list_batches(self) -> List[Batch]:
        return list(self._batches.values())

    def batch_status(self, batch_id: str) -> str:
        """Aggregate status: running while any job is unfinished, else worst outcome."""
        batch = self._require(batch_id)
        statuses = [
            job.status
            for job in (self._scheduler.get_job(j) for j in batch.job_ids)
            if job is not None
        ]
        if any(s not in TERMINAL_STATUSES for s in statuses):
            if all(s is JobStatus.pending for s in statuses):
                return "pending"
            return "running"
        if any(s is JobStatus.failed for s in statuses):
            return "failed"
        if any(s is JobStatus.cancelled for s in statuses):
            return "cancelled"
        return "completed"

    # ── Runners ──────────────────────────────────────────────────────

    async def _run_one(self, job_id: str) -> None:
        job = self._scheduler.get_job(job_id)
        if job is None or job.status is not JobStatus.pending:
            return
        try:
            await self._scheduler.run_job(job_id)
        except ValidationError as exc:
            logger.warning("Batch job %s could not start: %s", job_id, exc)
            await self._scheduler.fail_job(job_id, str(exc))

    async def _run_sequential(self, batch: Batch) -> None:
        for job_id in batch.job_ids:
            await self._run_one(job_id)

    async def _run_parallel(self, batch: Batch) -> None:
        sem = asyncio.Semaphore(batch.config.max_parallel)

        async def _bounded(job_id: str) -> None:
            async with sem:
                await self._run_one(job_id)

        outcomes = await asyncio.gather(
            *(_bounded(job_id) for job_id in batch.job_ids),
            return_exceptions=True,
        )
        for job_id, outcome in zip(batch.job_ids, outcomes):
            if isinstance(outcome, BaseException):
                logger.error("Batch %s job %s raised: %r", batch.id, job_id, outcome)

    def _require(self, batch_id: str) -> Batch:
        batch = self._batches.get(batch_id)
        if batch is None:
            raise BatchNotFoundError(f"Batch '{batch_id}' not found")
        return batch
