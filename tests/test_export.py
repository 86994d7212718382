"""Tests for CSV export of execution results."""
import csv
import io

import pytest

from bitlab.engine.executor import ExecutionEngine
from bitlab.engine.export import STEP_COLUMNS, export_csv, steps_frame, write_csv


@pytest.fixture
async def result(catalog, library, dispatcher, registry, lua_strategy):
    engine = ExecutionEngine(catalog, library, dispatcher, registry, step_interval=0)
    return await engine.start(lua_strategy.id, "0" * 64)


@pytest.mark.asyncio
async def test_steps_frame(result):
    df = steps_frame(result)
    assert list(df.columns) == STEP_COLUMNS
    assert len(df) == 3
    assert df["Operation"].tolist() == ["XOR", "NOT", "ROL"]
    assert df["Budget Remaining"].tolist() == [998, 997, 994]


@pytest.mark.asyncio
async def test_export_csv_layout(result):
    text = export_csv(result)
    table, summary = text.split("\n# Summary\n")

    rows = list(csv.reader(io.StringIO(table)))
    assert rows[0] == STEP_COLUMNS
    assert rows[1][:4] == ["1", "XOR", "0", "8"]

    summary_rows = dict(csv.reader(io.StringIO(summary)))
    assert summary_rows["Strategy"] == "strategy.lua"
    assert summary_rows["Language"] == "lua"
    assert summary_rows["Status"] == "completed"
    assert summary_rows["Total Cost"] == "6"
    assert summary_rows["Compression Ratio"] == "1.0000"


@pytest.mark.asyncio
async def test_write_csv(result, tmp_path):
    path = write_csv(result, tmp_path / "out" / "run.csv")
    assert path.exists()
    assert path.read_text().startswith("Step,Operation")
