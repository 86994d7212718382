"""
Bounded execution-result history.

Results are kept newest first and capped at ``RESULT_HISTORY_LIMIT``.  The
on-disk file is a JSON array rewritten wholesale on every :meth:`flush`,
using a temp file + ``os.replace`` so a crash never leaves it half written.
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd

from ..config import BITS_SAMPLE_LENGTH, RESULT_HISTORY_LIMIT
from ..utils.bits import sample
from .models import ExecutionResult
from .operations import OperationRegistry

logger = logging.getLogger(__name__)


def _atomic_write_text(target: Path, text: str) -> None:
    """Write *text* to *target* via a temp file in the same directory."""
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=str(target.parent), suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(text)
        os.replace(tmp_path, str(target))
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


class ResultHistory:
    """Newest-first list of :class:`ExecutionResult` with explicit flushes."""

    def __init__(self, path: Optional[Path] = None, limit: int = RESULT_HISTORY_LIMIT) -> None:
        self.path = Path(path) if path is not None else None
        self.limit = limit
        self.flush_failures = 0
        self._results: List[ExecutionResult] = []
        self._write_lock = threading.Lock()
        self._generation = 0
        self._written_generation = 0
        if self.path is not None:
            self.load()

    def __len__(self) -> int:
        return len(self._results)

    def load(self) -> int:
        """Read the history file, tolerating a missing or corrupt file."""
        if self.path is None or not self.path.exists():
            return 0
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            self._results = [ExecutionResult.model_validate(r) for r in raw][: self.limit]
        except (OSError, ValueError) as exc:
            logger.warning("Could not load result history from %s: %s", self.path, exc)
            self._results = []
        return len(self._results)

    def add(self, result: ExecutionResult) -> None:
        self._results.insert(0, result)
        del self._results[self.limit:]

    def snapshot(self) -> Tuple[int, List[Dict[str, Any]]]:
        """Numbered JSON-ready copy of the history, for :meth:`write_snapshot`."""
        self._generation += 1
        return self._generation, [r.model_dump(mode="json") for r in self._results]

    def write_snapshot(self, generation: int, payload: List[Dict[str, Any]]) -> bool:
        """Write *payload* unless a newer snapshot is already on disk.

        Safe to call from worker threads.  Returns ``False`` (and logs) on
        failure.
        """
        if self.path is None:
            return True
        with self._write_lock:
            if generation <= self._written_generation:
                return True
            try:
                _atomic_write_text(self.path, json.dumps(payload, indent=2))
            except (OSError, TypeError, ValueError) as exc:
                self.flush_failures += 1
                logger.error("Failed to write result history to %s: %s", self.path, exc)
                return False
            self._written_generation = generation
        return True

    def flush(self) -> bool:
        """Persist the history synchronously."""
        if self.path is None:
            return True
        return self.write_snapshot(*self.snapshot())

    async def flush_async(self) -> bool:
        """Persist the history with the file write on a worker thread."""
        if self.path is None:
            return True
        generation, payload = self.snapshot()
        return await asyncio.to_thread(self.write_snapshot, generation, payload)

    def all(self) -> List[ExecutionResult]:
        return list(self._results)

    def get(self, result_id: str) -> Optional[ExecutionResult]:
        return next((r for r in self._results if r.id == result_id), None)

    def delete(self, result_id: str) -> bool:
        before = len(self._results)
        self._results = [r for r in self._results if r.id != result_id]
        return len(self._results) != before

    def clear(self) -> None:
        self._results = []

    def statistics(self) -> Dict[str, Any]:
        """Aggregate counts, success rate and averages over the history."""
        if not self._results:
            return {
                "total_results": 0,
                "successful": 0,
                "failed": 0,
                "cancelled": 0,
                "success_rate": 0.0,
                "avg_duration_ms": 0.0,
                "avg_steps": 0.0,
                "total_cost": 0,
            }
        df = pd.DataFrame(
            [{
                "success": r.success,
                "cancelled": r.cancelled,
                "duration_ms": r.duration_ms,
                "steps": len(r.steps),
                "cost": r.total_cost,
            }
            for r in self._results]
        )
        successful = int(df["success"].sum())
        cancelled = int(df["cancelled"].sum())
        return {
            "total_results": len(df),
            "successful": successful,
            "failed": len(df) - successful - cancelled,
            "cancelled": cancelled,
            "success_rate": round(successful / len(df) * 100, 2),
            "avg_duration_ms": round(float(df["duration_ms"].mean()), 2),
            "avg_steps": round(float(df["steps"].mean()), 2),
            "total_cost": int(df["cost"].sum()),
        }


@dataclass
class ReplayReport:
    matches: bool
    final_bits: str
    first_mismatch_step: Optional[int] = None


def replay_result(result: ExecutionResult, registry: OperationRegistry) -> ReplayReport:
    """Re-apply the recorded steps to ``initial_bits`` and compare.

    Each step's recorded ``bits_after`` sample is checked; the report
    names the first step that diverges.
    """
    bits = result.initial_bits
    first_mismatch = None
    for step in result.steps:
        bits, _ = registry.apply(step.operation, bits, step.range_start, step.range_end, step.parameters)
        if first_mismatch is None and sample(bits, BITS_SAMPLE_LENGTH) != step.bits_after:
            first_mismatch = step.step_number
    matches = first_mismatch is None and bits == result.final_bits
    return ReplayReport(matches=matches, final_bits=bits, first_mismatch_step=first_mismatch)
