"""Tests for bit-string metrics and conversions."""
import numpy as np
import pytest

from bitlab.engine.catalog import Catalog
from bitlab.engine.extras import longest_run_ones, longest_run_zeros, runs_count, zlib_estimate
from bitlab.engine.metrics import CORE_METRICS, MetricRegistry, compute_metrics, shannon_entropy
from bitlab.errors import UnhandledRuntimeError
from bitlab.utils.bits import bytes_to_bits, is_bit_string, sample, to_array, to_bits


def test_core_metrics_balanced():
    m = compute_metrics("0011")
    assert m == {"entropy": 1.0, "hamming_weight": 2, "bit_balance": 0.5, "transitions": 1}


def test_core_metrics_constant():
    m = compute_metrics("0000")
    assert m["entropy"] == 0.0
    assert m["hamming_weight"] == 0
    assert m["transitions"] == 0


def test_entropy_skewed():
    assert shannon_entropy(to_array("0001")) == 0.8113


def test_empty_bits():
    m = compute_metrics("")
    assert set(m) == set(CORE_METRICS)
    assert all(v == 0 for v in m.values())


def test_unknown_metric_names_are_ignored():
    m = compute_metrics("0101", enabled=["entropy", "compressibility"])
    assert set(m) == set(CORE_METRICS)


def test_registered_metric_is_computed():
    reg = MetricRegistry()
    reg.register("length", len)
    m = compute_metrics("0101", enabled=["entropy", "length"], registry=reg)
    assert m["length"] == 4.0
    assert set(m) == set(CORE_METRICS) | {"length"}


def test_catalog_metric_entry_points():
    reg = MetricRegistry()
    assert reg.load_catalog(Catalog.default()) == 5
    m = compute_metrics("0011100", enabled=["longest_run_ones", "runs_count"], registry=reg)
    assert m["longest_run_ones"] == 3.0
    assert m["runs_count"] == 3.0


def test_failing_metric_is_wrapped():
    reg = MetricRegistry()
    reg.register("broken", lambda bits: 1 / 0)
    reg.register("wordy", lambda bits: "high")
    with pytest.raises(UnhandledRuntimeError, match="broken"):
        compute_metrics("01", enabled=["broken"], registry=reg)
    with pytest.raises(UnhandledRuntimeError, match="not a number"):
        compute_metrics("01", enabled=["wordy"], registry=reg)


def test_extra_metric_values():
    assert longest_run_zeros("1000100") == 3
    assert longest_run_ones("") == 0
    assert runs_count("0101") == 4
    assert zlib_estimate("") == 0.0
    assert zlib_estimate("0" * 4096) < 0.1


def test_bit_string_helpers():
    assert is_bit_string("0101")
    assert is_bit_string("")
    assert not is_bit_string("01a1")
    assert to_bits(to_array("1001")) == "1001"
    assert to_array("10").dtype == np.uint8


def test_bytes_to_bits_msb_first():
    assert bytes_to_bits(b"\x0f\x80") == "0000111110000000"
    assert bytes_to_bits(b"") == ""


def test_sample_truncates():
    assert sample("0101", 8) == "0101"
    assert sample("0" * 40, 32) == "0" * 32 + "..."
