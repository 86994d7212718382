"""Execution data models."""
from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from ..config import DEFAULT_MAX_OPERATIONS, DEFAULT_OPERATION_COST


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class EngineState(str, enum.Enum):
    idle = "idle"
    loading = "loading"
    running = "running"
    paused = "paused"
    completed = "completed"
    error = "error"


@dataclass(frozen=True)
class ScoringConfig:
    """Operation cost table plus an optional declared starting budget."""

    costs: Dict[str, int] = field(default_factory=dict)
    initial_budget: Optional[int] = None
    default_cost: int = DEFAULT_OPERATION_COST

    def cost_of(self, operation: str) -> int:
        return self.costs.get(operation, self.default_cost)


@dataclass(frozen=True)
class PolicyConfig:
    """Which operations a run may apply, and how many steps it may take.

    ``allowed`` of ``None`` means no whitelist is in force.
    """

    allowed: Optional[FrozenSet[str]] = None
    forbidden: FrozenSet[str] = frozenset()
    max_operations: int = DEFAULT_MAX_OPERATIONS

    def denial_reason(self, operation: str) -> Optional[str]:
        """Return why *operation* is refused, or ``None`` if it is permitted."""
        if operation in self.forbidden:
            return "forbidden by policy"
        if self.allowed is not None and operation not in self.allowed:
            return "not in the policy whitelist"
        return None


@dataclass(frozen=True)
class ExecutionContext:
    """Inputs for one run, resolved once before the first step."""

    bits: str
    budget: int
    initial_budget: int
    enabled_metrics: Tuple[str, ...]
    enabled_operations: Tuple[str, ...]
    scoring_config: ScoringConfig
    policy_config: PolicyConfig


class ExecutionStep(BaseModel):
    """One applied operation.  Steps are append-only."""

    model_config = ConfigDict(frozen=True)

    step_number: int
    operation: str
    parameters: Dict[str, Any] = Field(default_factory=dict)
    bits_before: str
    bits_after: str
    metrics_before: Dict[str, float] = Field(default_factory=dict)
    metrics_after: Dict[str, float] = Field(default_factory=dict)
    cost: int
    budget_remaining: int
    size_before: int
    size_after: int
    range_start: int
    range_end: int
    timestamp: str = Field(default_factory=utc_now)


class ExecutionResult(BaseModel):
    """Outcome of one strategy run.

    Created when the run starts and finalised when it reaches a terminal
    state: ``success`` (completed), ``cancelled`` (aborted) or neither
    (error, with ``error`` set).
    """

    id: str = Field(default_factory=lambda: f"exec_{uuid.uuid4().hex[:12]}")
    strategy_id: str
    strategy_name: str
    strategy_language: str
    start_time: str = Field(default_factory=utc_now)
    end_time: Optional[str] = None
    duration_ms: float = 0.0
    steps: List[ExecutionStep] = Field(default_factory=list)
    initial_bits: str = ""
    final_bits: str = ""
    initial_size: int = 0
    final_size: int = 0
    compression_ratio: float = 1.0
    total_cost: int = 0
    initial_budget: int = 0
    final_budget: int = 0
    bit_ranges_accessed: List[Tuple[int, int]] = Field(default_factory=list)
    success: bool = False
    cancelled: bool = False
    error: Optional[str] = None
    logs: List[str] = Field(default_factory=list)
    execution_mode: str = ""

    @property
    def status(self) -> str:
        if self.success:
            return "completed"
        if self.cancelled:
            return "cancelled"
        return "error"
