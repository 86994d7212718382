"""
Structured configuration for bitlab using typed dataclasses.

This is the AUTHORITATIVE source of truth for all configuration values.
``config.py`` imports from here for backward compatibility.

Each subsystem gets its own dataclass.

Usage:
    from bitlab.config_structured import get_config
    cfg = get_config()
    cfg.engine.default_operation_cost
    cfg.runtimes.cpp_server_url
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


@dataclass
class EngineConfig:
    """Budget accounting and step pacing for a single strategy run."""

    default_operation_cost: int = 5
    default_max_operations: int = 1000
    default_initial_budget: int = 1000
    fallback_operation_count: int = 5  # ops used when a strategy names none
    step_interval_s: float = 0.15
    bits_sample_length: int = 32

    def __post_init__(self):
        if self.default_operation_cost < 0:
            raise ValueError(
                f"default_operation_cost must be >= 0, got {self.default_operation_cost}"
            )
        if self.default_max_operations < 1:
            raise ValueError(
                f"default_max_operations must be >= 1, got {self.default_max_operations}"
            )


@dataclass
class WindowConfig:
    """Deterministic bit-range windows, keyed by step index."""

    lua_stride: int = 16
    lua_width: int = 32
    default_stride: int = 8
    default_width: int = 16


@dataclass
class RuntimesConfig:
    """Language backends."""

    cpp_server_url: str = "http://localhost:8080"
    cpp_health_timeout_s: float = 2.0
    cpp_execute_timeout_s: float = 30.0


@dataclass
class SchedulerConfig:
    """Job scheduling and batch fan-out."""

    default_max_parallel: int = 2
    event_queue_size: int = 1000
    stall_timeout_s: float = 30.0  # no progress for this long marks a running job stalled
    stall_check_interval_s: float = 1.0

    def __post_init__(self):
        if self.stall_check_interval_s <= 0:
            raise ValueError(
                f"stall_check_interval_s must be > 0, got {self.stall_check_interval_s}"
            )


@dataclass
class StorageConfig:
    """Result history and job persistence."""

    results_file: Path = field(default_factory=lambda: Path("results") / "execution_history.json")
    result_history_limit: int = 50
    job_db_path: str = "bitlab_jobs.db"


@dataclass
class LoggingConfig:
    level: str = field(default_factory=lambda: os.environ.get("BITLAB_LOG_LEVEL", "INFO"))
    format: str = field(default_factory=lambda: os.environ.get("BITLAB_LOG_FORMAT", "structured"))
    buffer_size: int = 500  # records served by GET /api/logs


@dataclass
class SystemConfig:
    """Top-level configuration aggregating all subsystems."""

    engine: EngineConfig = field(default_factory=EngineConfig)
    windows: WindowConfig = field(default_factory=WindowConfig)
    runtimes: RuntimesConfig = field(default_factory=RuntimesConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


# ── Module-level singleton ──────────────────────────────────────────

_CONFIG: Optional[SystemConfig] = None


def get_config() -> SystemConfig:
    """Return the singleton SystemConfig instance.

    On first call, instantiates the default SystemConfig. Subsequent
    calls return the same instance so all callers share one source of
    truth.
    """
    global _CONFIG
    if _CONFIG is None:
        _CONFIG = SystemConfig()
    return _CONFIG
