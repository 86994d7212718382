"""Tests for the language backends and the runtime dispatcher."""
import pytest
import requests

from bitlab.engine.models import ExecutionContext, PolicyConfig, ScoringConfig
from bitlab.engine.runtimes import (
    CppBackend,
    LuaBackend,
    OperationCall,
    PythonBackend,
    RuntimeDispatcher,
)
from bitlab.errors import RuntimeUnavailable, UnhandledRuntimeError, ValidationError


def _context(bits="0101"):
    return ExecutionContext(
        bits=bits,
        budget=100,
        initial_budget=100,
        enabled_metrics=("entropy",),
        enabled_operations=("XOR", "NOT"),
        scoring_config=ScoringConfig(),
        policy_config=PolicyConfig(),
    )


# ── Lua ──────────────────────────────────────────────────────────────


def test_lua_call_extraction_with_ranges(lua_strategy, dispatcher):
    calls = dispatcher.extract_operation_calls("lua", lua_strategy.source)
    assert calls == [
        OperationCall("XOR", 0, 8),
        OperationCall("NOT", 8, 16),
        OperationCall("ROL"),
    ]
    assert dispatcher.extract_requested_operations("lua", lua_strategy.source) == ["XOR", "NOT", "ROL"]


def test_lua_validate_reports_structure_errors():
    report = LuaBackend().validate('function run()\n  apply_operation("XOR", {start=0, stop=4}\n')
    assert not report.valid
    assert "Unbalanced parentheses" in report.errors
    assert any("end" in e for e in report.errors)


def test_lua_validate_warns_without_calls():
    report = LuaBackend().validate("function run()\nend\n")
    assert report.valid
    assert report.warnings


def test_lua_empty_source_is_invalid():
    report = LuaBackend().validate("   ")
    assert not report.valid
    with pytest.raises(ValidationError):
        report.raise_for_errors()


def test_lua_sandbox_requires_prepared_runtime():
    backend = LuaBackend(vm_factory=lambda: None)
    with pytest.raises(RuntimeUnavailable):
        backend.sandbox_test("x = 1", _context())


def test_lua_unloadable_vm_is_unavailable():
    def broken_factory():
        raise OSError("liblua missing")

    with pytest.raises(RuntimeUnavailable, match="liblua"):
        LuaBackend(vm_factory=broken_factory).prepare_runtime()


def test_lua_sandbox_reports_compile_errors(dispatcher):
    dispatcher.prepare_runtime("lua")
    with pytest.raises(ValidationError, match="Lua validation failed"):
        dispatcher.sandbox_test("lua", "broken code", _context())
    assert dispatcher.sandbox_test("lua", 'apply_operation("XOR")', _context()) is None


# ── Python ───────────────────────────────────────────────────────────


def test_python_call_extraction(py_strategy):
    calls = PythonBackend().extract_operation_calls(py_strategy.source)
    assert calls == [
        OperationCall("NOT"),
        OperationCall("XOR", 0, 8),
        OperationCall("SHL", 4, 12),
    ]


def test_python_nested_calls_in_source_order():
    source = "for i in range(2):\n    api.apply_operation('XOR')\napply_operation('NOT')\n"
    assert PythonBackend().extract_requested_operations(source) == ["XOR", "NOT"]


def test_python_syntax_error():
    backend = PythonBackend()
    report = backend.validate("apply_operation('XOR'")
    assert not report.valid
    with pytest.raises(ValidationError, match="Python validation failed"):
        backend.sandbox_test("def (:", _context())


# ── C++ ──────────────────────────────────────────────────────────────

CPP_SOURCE = """
#include "bitwise_api.h"
void execute() {
    apply_operation("XOR", 0, 16);
}
"""


class FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload if payload is not None else {}

    def json(self):
        return self._payload


class FakeSession:
    def __init__(self, health=200, execute=None, fail=False):
        self.health = health
        self.execute = execute or FakeResponse(200, {"success": True})
        self.fail = fail
        self.posted = []

    def get(self, url, timeout=None):
        if self.fail:
            raise requests.ConnectionError("connection refused")
        return FakeResponse(self.health)

    def post(self, url, json=None, timeout=None):
        self.posted.append((url, json))
        return self.execute


def test_cpp_validate():
    backend = CppBackend(session=FakeSession())
    report = backend.validate(CPP_SOURCE)
    assert report.valid
    assert report.warnings == []

    bad = backend.validate('void execute() { system("rm -rf /"); }')
    assert not bad.valid
    assert any("bitwise_api.h" in w for w in bad.warnings)


def test_cpp_prepare_runtime_checks_health():
    CppBackend(session=FakeSession()).prepare_runtime()
    with pytest.raises(RuntimeUnavailable, match="unhealthy"):
        CppBackend(session=FakeSession(health=503)).prepare_runtime()
    with pytest.raises(RuntimeUnavailable, match="not reachable"):
        CppBackend(session=FakeSession(fail=True)).prepare_runtime()


def test_cpp_sandbox_returns_observed_calls():
    session = FakeSession(execute=FakeResponse(200, {
        "success": True,
        "operations": ["NOT", {"operation": "XOR", "start": 0, "end": 8}],
    }))
    backend = CppBackend("http://cpp:9000/", session=session)
    calls = backend.sandbox_test(CPP_SOURCE, _context("0011"))
    assert calls == [OperationCall("NOT"), OperationCall("XOR", 0, 8)]
    url, payload = session.posted[0]
    assert url == "http://cpp:9000/execute"
    assert payload["context"]["bits"] == "0011"
    assert payload["context"]["operations"] == ["XOR", "NOT"]


def test_cpp_sandbox_failure():
    session = FakeSession(execute=FakeResponse(200, {"success": False, "error": "segfault"}))
    with pytest.raises(UnhandledRuntimeError, match="segfault"):
        CppBackend(session=session).sandbox_test(CPP_SOURCE, _context())
    session = FakeSession(execute=FakeResponse(500))
    with pytest.raises(UnhandledRuntimeError, match="HTTP 500"):
        CppBackend(session=session).sandbox_test(CPP_SOURCE, _context())


# ── Dispatcher ───────────────────────────────────────────────────────


def test_dispatcher_unknown_language():
    with pytest.raises(ValidationError, match="Unsupported strategy language: cobol"):
        RuntimeDispatcher().backend_for("cobol")


def test_default_dispatcher_languages():
    assert RuntimeDispatcher().languages == ["cpp", "lua", "python"]


def test_window_wraps_within_data():
    backend = PythonBackend()
    assert backend.window(0, 64) == (0, 16)
    assert backend.window(1, 64) == (8, 24)
    assert backend.window(6, 64) == (0, 16)
    assert backend.window(0, 4) == (0, 4)
    lua = LuaBackend()
    assert lua.window(1, 100) == (16, 48)
