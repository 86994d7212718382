"""Job scheduling, batching and persistence."""
from .batch import BatchCoordinator
from .models import Batch, BatchConfig, Job, JobPreset, JobPriority, JobStatus
from .scheduler import JobCancelled, JobScheduler
from .store import JobStore

__all__ = [
    "Batch",
    "BatchConfig",
    "BatchCoordinator",
    "Job",
    "JobCancelled",
    "JobPreset",
    "JobPriority",
    "JobScheduler",
    "JobStatus",
    "JobStore",
]
