"""CSV export of an execution result: one row per step plus a summary block."""
from __future__ import annotations

import csv
import io
from pathlib import Path

import pandas as pd

from .models import ExecutionResult

STEP_COLUMNS = [
    "Step",
    "Operation",
    "Range Start",
    "Range End",
    "Size Before",
    "Size After",
    "Cost",
    "Budget Remaining",
    "Entropy Before",
    "Entropy After",
    "Timestamp",
]


def steps_frame(result: ExecutionResult) -> pd.DataFrame:
    rows = [
        [
            s.step_number,
            s.operation,
            s.range_start,
            s.range_end,
            s.size_before,
            s.size_after,
            s.cost,
            s.budget_remaining,
            s.metrics_before.get("entropy", 0.0),
            s.metrics_after.get("entropy", 0.0),
            s.timestamp,
        ]
        for s in result.steps
    ]
    return pd.DataFrame(rows, columns=STEP_COLUMNS)


def export_csv(result: ExecutionResult) -> str:
    """Render *result* as CSV text."""
    buf = io.StringIO()
    steps_frame(result).to_csv(buf, index=False, lineterminator="\n")
    buf.write("\n# Summary\n")
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerows([
        ["Strategy", result.strategy_name],
        ["Language", result.strategy_language],
        ["Mode", result.execution_mode],
        ["Status", result.status],
        ["Duration (ms)", round(result.duration_ms, 2)],
        ["Total Cost", result.total_cost],
        ["Initial Size", result.initial_size],
        ["Final Size", result.final_size],
        ["Compression Ratio", f"{result.compression_ratio:.4f}"],
    ])
    return buf.getvalue()


def write_csv(result: ExecutionResult, path: Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(export_csv(result), encoding="utf-8")
    return path
