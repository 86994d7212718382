"""Tests for result history persistence, statistics and replay."""
import json

import pytest

from bitlab.engine.executor import ExecutionEngine
from bitlab.engine.models import ExecutionResult
from bitlab.engine.results import ResultHistory, replay_result


def _result(n, **kwargs):
    defaults = dict(strategy_id=f"s{n}", strategy_name=f"strategy {n}", strategy_language="lua")
    defaults.update(kwargs)
    return ExecutionResult(**defaults)


def test_history_is_newest_first_and_capped():
    history = ResultHistory(limit=50)
    results = [_result(i) for i in range(55)]
    for r in results:
        history.add(r)
    assert len(history) == 50
    assert history.all()[0] is results[-1]
    assert history.get(results[0].id) is None


def test_flush_and_reload(tmp_path):
    path = tmp_path / "results" / "history.json"
    history = ResultHistory(path)
    first, second = _result(1, success=True), _result(2, cancelled=True)
    history.add(first)
    history.add(second)
    assert history.flush() is True

    raw = json.loads(path.read_text())
    assert [r["id"] for r in raw] == [second.id, first.id]

    reloaded = ResultHistory(path)
    assert [r.id for r in reloaded.all()] == [second.id, first.id]
    assert reloaded.get(second.id).cancelled is True
    assert not list(path.parent.glob("*.tmp"))


def test_corrupt_file_loads_empty(tmp_path):
    path = tmp_path / "history.json"
    path.write_text("{not json")
    assert len(ResultHistory(path)) == 0


def test_flush_failure_is_counted(tmp_path):
    target = tmp_path / "occupied"
    target.mkdir()
    history = ResultHistory(target)
    history.add(_result(1))
    assert history.flush() is False
    assert history.flush_failures == 1


@pytest.mark.asyncio
async def test_flush_async_writes_file(tmp_path):
    path = tmp_path / "history.json"
    history = ResultHistory(path)
    result = _result(1, success=True)
    history.add(result)
    assert await history.flush_async() is True
    assert [r["id"] for r in json.loads(path.read_text())] == [result.id]


def test_older_snapshot_does_not_overwrite_newer(tmp_path):
    path = tmp_path / "history.json"
    history = ResultHistory(path)
    history.add(_result(1))
    stale = history.snapshot()
    newest = _result(2)
    history.add(newest)
    assert history.flush() is True
    assert history.write_snapshot(*stale) is True
    assert json.loads(path.read_text())[0]["id"] == newest.id


def test_delete_and_clear():
    history = ResultHistory()
    r = _result(1)
    history.add(r)
    assert history.delete(r.id) is True
    assert history.delete(r.id) is False
    history.add(r)
    history.clear()
    assert history.all() == []


def test_statistics():
    history = ResultHistory()
    assert history.statistics()["total_results"] == 0
    history.add(_result(1, success=True, duration_ms=10.0, total_cost=4))
    history.add(_result(2, success=True, duration_ms=30.0, total_cost=6))
    history.add(_result(3, cancelled=True, duration_ms=20.0))
    history.add(_result(4, error="boom", duration_ms=40.0))

    stats = history.statistics()
    assert stats["total_results"] == 4
    assert stats["successful"] == 2
    assert stats["cancelled"] == 1
    assert stats["failed"] == 1
    assert stats["success_rate"] == 50.0
    assert stats["avg_duration_ms"] == 25.0
    assert stats["total_cost"] == 10


@pytest.mark.asyncio
async def test_replay_reproduces_run(catalog, library, dispatcher, registry, lua_strategy):
    engine = ExecutionEngine(catalog, library, dispatcher, registry, step_interval=0)
    result = await engine.start(lua_strategy.id, "0110" * 16)

    report = replay_result(result, registry)
    assert report.matches is True
    assert report.final_bits == result.final_bits
    assert report.first_mismatch_step is None


@pytest.mark.asyncio
async def test_replay_detects_divergence(catalog, library, dispatcher, registry, lua_strategy):
    engine = ExecutionEngine(catalog, library, dispatcher, registry, step_interval=0)
    result = await engine.start(lua_strategy.id, "0110" * 16)

    registry.register("NOT", lambda bits, params: bits)
    report = replay_result(result, registry)
    assert report.matches is False
    assert report.first_mismatch_step == 2
