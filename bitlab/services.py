"""Explicit wiring of the long-lived service objects."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .config import STEP_INTERVAL_S
from .engine.catalog import Catalog, DataFileRegistry, SourceLibrary
from .engine.metrics import MetricRegistry
from .engine.operations import OperationRegistry
from .engine.results import ResultHistory
from .engine.runtimes import RuntimeDispatcher
from .jobs.batch import BatchCoordinator
from .jobs.scheduler import JobScheduler
from .jobs.store import JobStore


@dataclass
class Services:
    catalog: Catalog
    library: SourceLibrary
    data_files: DataFileRegistry
    registry: OperationRegistry
    metric_registry: MetricRegistry
    dispatcher: RuntimeDispatcher
    history: ResultHistory
    store: Optional[JobStore]
    scheduler: JobScheduler
    batches: BatchCoordinator

    async def close(self) -> None:
        await self.scheduler.shutdown()
        if self.store is not None:
            await self.store.close()


def build_services(
    *,
    results_file: Optional[Path] = None,
    job_db_path: Optional[str] = None,
    dispatcher: Optional[RuntimeDispatcher] = None,
    step_interval: float = STEP_INTERVAL_S,
) -> Services:
    """Build one set of services.

    ``results_file`` and ``job_db_path`` of ``None`` keep results and jobs
    in memory only.
    """
    catalog = Catalog.default()
    library = SourceLibrary()
    data_files = DataFileRegistry()
    registry = OperationRegistry()
    metric_registry = MetricRegistry()
    dispatcher = dispatcher or RuntimeDispatcher()
    history = ResultHistory(results_file)
    store = JobStore(job_db_path) if job_db_path else None
    scheduler = JobScheduler(
        catalog,
        library,
        data_files,
        store=store,
        history=history,
        dispatcher=dispatcher,
        registry=registry,
        metric_registry=metric_registry,
        step_interval=step_interval,
    )
    return Services(
        catalog=catalog,
        library=library,
        data_files=data_files,
        registry=registry,
        metric_registry=metric_registry,
        dispatcher=dispatcher,
        history=history,
        store=store,
        scheduler=scheduler,
        batches=BatchCoordinator(scheduler),
    )
