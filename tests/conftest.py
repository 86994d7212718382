"""Shared test fixtures for the bitlab test suite."""
from __future__ import annotations

import asyncio

import pytest

from bitlab.engine.catalog import Catalog, DataFileRegistry, OperationDefinition, SourceLibrary
from bitlab.engine.operations import OperationRegistry
from bitlab.engine.results import ResultHistory
from bitlab.engine.runtimes import LuaBackend, PythonBackend, RuntimeDispatcher

LUA_STRATEGY = """
function run()
  apply_operation("XOR", {start=0, stop=8})
  apply_operation("NOT", {start=8, stop=16})
  apply_operation("ROL")
end
"""

PY_STRATEGY = """
apply_operation("NOT")
apply_operation("XOR", 0, 8)
apply_operation("SHL", start=4, end=12)
"""

SCORING = "costs = { XOR = 2, NOT = 1, ROL = 3 }\n"
POLICY = "max_operations = 100\n"


class FakeLuaVM:
    """Compiles anything that doesn't contain the word 'broken'."""

    def compile(self, source):
        if "broken" in source:
            raise RuntimeError('[string "strategy"]:1: unexpected symbol near \'broken\'')
        return lambda: None


async def _wait_until(predicate, timeout: float = 2.0) -> None:
    """Poll *predicate* on the event loop until it holds or *timeout* passes."""

    async def _poll():
        while not predicate():
            await asyncio.sleep(0.001)

    await asyncio.wait_for(_poll(), timeout)


@pytest.fixture
def wait_until():
    return _wait_until


# ── Engine collaborators ─────────────────────────────────────────────


@pytest.fixture
def dispatcher():
    return RuntimeDispatcher({
        "lua": LuaBackend(vm_factory=FakeLuaVM),
        "python": PythonBackend(),
    })


@pytest.fixture
def catalog():
    cat = Catalog.default()
    for op in ("A", "B", "C"):
        cat.add_operation(OperationDefinition(id=op, name=op))
    return cat


@pytest.fixture
def library():
    lib = SourceLibrary()
    lib.add_scoring("scoring.lua", SCORING)
    lib.add_policy("policy.lua", POLICY)
    return lib


@pytest.fixture
def registry():
    return OperationRegistry()


@pytest.fixture
def history():
    return ResultHistory()


@pytest.fixture
def data_files():
    files = DataFileRegistry()
    files.add_file("alpha.bin", "01" * 32)
    files.add_file("beta.bin", "0011" * 16)
    files.add_file("gamma.bin", "1" * 64)
    return files


@pytest.fixture
def lua_strategy(library):
    return library.add_strategy("strategy.lua", LUA_STRATEGY)


@pytest.fixture
def py_strategy(library):
    return library.add_strategy("strategy.py", PY_STRATEGY)


# ── API fixtures ─────────────────────────────────────────────────────


@pytest.fixture
async def services(dispatcher):
    from bitlab.services import build_services

    svc = build_services(dispatcher=dispatcher, step_interval=0)
    yield svc
    await svc.close()


@pytest.fixture
async def app(services):
    """Create a test FastAPI app around in-memory services."""
    from bitlab.api.config import ApiSettings
    from bitlab.api.main import create_app

    settings = ApiSettings(job_db_path=None, results_file=None)
    yield create_app(settings, services=services)


@pytest.fixture
async def client(app):
    """Async HTTP client bound to the test app."""
    from httpx import ASGITransport, AsyncClient

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://testserver",
    ) as ac:
        yield ac
