"""Job and batch data models."""
from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, Field

from ..config import DEFAULT_MAX_PARALLEL
from ..engine.models import ExecutionResult


class JobStatus(str, enum.Enum):
    pending = "pending"
    running = "running"
    paused = "paused"
    completed = "completed"
    failed = "failed"
    cancelled = "cancelled"


TERMINAL_STATUSES = frozenset({JobStatus.completed, JobStatus.failed, JobStatus.cancelled})


class JobPriority(str, enum.Enum):
    low = "low"
    normal = "normal"
    high = "high"
    critical = "critical"


PRIORITY_RANK = {
    JobPriority.critical: 0,
    JobPriority.high: 1,
    JobPriority.normal: 2,
    JobPriority.low: 3,
}


def _job_id() -> str:
    return uuid.uuid4().hex[:12]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class JobPreset(BaseModel):
    """A strategy to run, and how many times."""

    strategy_id: str
    strategy_name: str = ""
    iterations: int = 1


class Job(BaseModel):
    """A plan of presets x iterations against one data file."""

    id: str = Field(default_factory=_job_id)
    name: str
    data_file_id: str
    data_file_name: str = ""
    presets: List[JobPreset] = Field(default_factory=list)
    priority: JobPriority = JobPriority.normal
    status: JobStatus = JobStatus.pending
    current_preset_index: int = 0
    current_iteration: int = 0
    progress: float = 0.0
    queue_position: Optional[int] = None
    results: List[ExecutionResult] = Field(default_factory=list)
    error: Optional[str] = None
    created_at: str = Field(default_factory=_now)
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    batch_id: Optional[str] = None
    eta: Optional[float] = None
    eta_formatted: Optional[str] = None
    eta_confidence: Optional[str] = None  # low | medium | high
    stalled: bool = False
    sequence: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def total_runs(self) -> int:
        return sum(p.iterations for p in self.presets)

    def summary(self) -> dict:
        """The job without its per-run results, for listings and events."""
        data = self.model_dump(mode="json", exclude={"results"})
        data["result_count"] = len(self.results)
        return data


class BatchConfig(BaseModel):
    name: str = "Batch"
    data_file_ids: List[str]
    presets: List[JobPreset]
    priority: JobPriority = JobPriority.normal
    run_parallel: bool = False
    max_parallel: int = DEFAULT_MAX_PARALLEL


class Batch(BaseModel):
    id: str = Field(default_factory=lambda: f"batch_{uuid.uuid4().hex[:12]}")
    name: str
    job_ids: List[str] = Field(default_factory=list)
    config: BatchConfig
    created_at: str = Field(default_factory=_now)
