"""Tests for configuration defaults and validation."""
import pytest

from bitlab import config
from bitlab.config_structured import EngineConfig, SchedulerConfig, get_config


def test_structured_defaults():
    cfg = get_config()
    assert cfg is get_config()
    assert cfg.engine.default_operation_cost == 5
    assert cfg.engine.default_max_operations == 1000
    assert cfg.storage.result_history_limit == 50
    assert cfg.windows.lua_stride == 16


def test_flat_constants_mirror_structured_config():
    cfg = get_config()
    assert config.DEFAULT_OPERATION_COST == cfg.engine.default_operation_cost
    assert config.STEP_INTERVAL_S == cfg.engine.step_interval_s
    assert config.CPP_SERVER_URL == cfg.runtimes.cpp_server_url


def test_validate_config_default_is_clean():
    issues = config.validate_config()
    assert all(i["level"] != "ERROR" for i in issues)


def test_validate_config_flags_bad_values(monkeypatch):
    monkeypatch.setattr(config, "DEFAULT_MAX_PARALLEL", 0)
    monkeypatch.setattr(config, "LOG_FORMAT", "xml")
    issues = config.validate_config()
    messages = " ".join(i["message"] for i in issues)
    assert any(i["level"] == "ERROR" for i in issues)
    assert "DEFAULT_MAX_PARALLEL" in messages
    assert "LOG_FORMAT" in messages


def test_engine_config_rejects_negative_cost():
    with pytest.raises(ValueError):
        EngineConfig(default_operation_cost=-1)


def test_stall_settings(monkeypatch):
    cfg = get_config()
    assert config.STALL_TIMEOUT_S == cfg.scheduler.stall_timeout_s
    assert config.LOG_BUFFER_SIZE == cfg.logging.buffer_size
    with pytest.raises(ValueError):
        SchedulerConfig(stall_check_interval_s=0)

    monkeypatch.setattr(config, "STALL_TIMEOUT_S", 0.5)
    monkeypatch.setattr(config, "STALL_CHECK_INTERVAL_S", 2.0)
    assert any("STALL_TIMEOUT_S" in i["message"] for i in config.validate_config())
