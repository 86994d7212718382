"""Tests for the operation catalog, source library and data files."""
import pytest

from bitlab.engine.catalog import (
    Catalog,
    DataFileRegistry,
    OperationDefinition,
    SourceLibrary,
    language_from_filename,
)
from bitlab.engine.metrics import CORE_METRICS
from bitlab.engine.operations import BUILTIN_OPERATIONS
from bitlab.errors import ValidationError


def test_default_catalog_enables_builtins():
    catalog = Catalog.default()
    assert catalog.enabled_operations() == list(BUILTIN_OPERATIONS)
    assert catalog.enabled_metrics() == list(CORE_METRICS)


def test_enable_and_disable():
    catalog = Catalog.default()
    catalog.add_operation(OperationDefinition(id="CUSTOM"), enabled=False)
    assert "CUSTOM" not in catalog.enabled_operations()
    catalog.enable_operation("CUSTOM")
    assert catalog.enabled_operations()[-1] == "CUSTOM"
    catalog.disable_operation("CUSTOM")
    assert "CUSTOM" not in catalog.enabled_operations()
    with pytest.raises(KeyError):
        catalog.enable_operation("MISSING")


def test_set_enabled_rejects_unknown_ids():
    catalog = Catalog.default()
    with pytest.raises(KeyError):
        catalog.set_enabled_operations(["XOR", "NOPE"])
    catalog.set_enabled_operations(["XOR", "NOT", "XOR"])
    assert catalog.enabled_operations() == ["XOR", "NOT"]
    catalog.set_enabled_metrics(["entropy"])
    assert catalog.enabled_metrics() == ["entropy"]


@pytest.mark.parametrize(
    "name, language",
    [("s.lua", "lua"), ("s.PY", "python"), ("s.cpp", "cpp"), ("s.hpp", "cpp"), ("s.txt", "lua")],
)
def test_language_from_filename(name, language):
    assert language_from_filename(name) == language


def test_source_library(tmp_path):
    lib = SourceLibrary()
    assert lib.get_scoring() is None
    strategy_path = tmp_path / "walk.py"
    strategy_path.write_text("apply_operation('NOT')")
    strategy = lib.load_strategy_file(strategy_path)
    assert strategy.language == "python"
    assert lib.get_strategy(strategy.id).source == "apply_operation('NOT')"

    first = lib.add_scoring("a.lua", "costs = { XOR = 1 }")
    second = lib.add_scoring("b.lua", "costs = { XOR = 2 }")
    assert lib.get_scoring() is first
    assert lib.get_scoring(second.id) is second
    assert [s.id for s in lib.list_scoring()] == [first.id, second.id]


def test_data_files(tmp_path):
    files = DataFileRegistry()
    with pytest.raises(ValidationError):
        files.add_file("bad", "0102")

    a = files.add_file("a", "0101")
    path = tmp_path / "b.bin"
    path.write_bytes(b"\xf0")
    b = files.load_file(path)
    assert b.bits == "11110000"
    assert b.size == 8
    assert files.get_active_file() is a

    files.set_active_file(b.id)
    assert files.get_active_file() is b
    assert files.remove_file(b.id) is True
    assert files.get_active_file() is a
    assert files.get_bits("missing") is None
    with pytest.raises(KeyError):
        files.set_active_file("missing")
