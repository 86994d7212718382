"""
Optional catalog operations and metrics, loaded by entry point.

:meth:`Catalog.default` lists these disabled; enabling one makes the
engine import it through its ``bitlab.engine.extras:<name>`` entry point.
Operations take ``(bits, params)`` and return bits of the same length;
metrics take ``bits`` and return a number.
"""
from __future__ import annotations

import zlib
from typing import Any, Dict

import numpy as np

from ..utils.bits import to_array


def reverse(bits: str, params: Dict[str, Any]) -> str:
    return bits[::-1]


def swap_pairs(bits: str, params: Dict[str, Any]) -> str:
    """Swap each adjacent pair of bits; an odd trailing bit stays put."""
    even = len(bits) - len(bits) % 2
    swapped = "".join(bits[i + 1] + bits[i] for i in range(0, even, 2))
    return swapped + bits[even:]


def _run_lengths(bits: str, value: int) -> np.ndarray:
    arr = to_array(bits)
    if arr.size == 0:
        return np.zeros(0, dtype=np.int64)
    padded = np.concatenate([[0], (arr == value).astype(np.int8), [0]])
    edges = np.flatnonzero(np.diff(padded))
    return edges[1::2] - edges[::2]


def longest_run_ones(bits: str) -> int:
    runs = _run_lengths(bits, 1)
    return int(runs.max()) if runs.size else 0


def longest_run_zeros(bits: str) -> int:
    runs = _run_lengths(bits, 0)
    return int(runs.max()) if runs.size else 0


def runs_count(bits: str) -> int:
    """Number of maximal runs of equal bits."""
    return len(_run_lengths(bits, 0)) + len(_run_lengths(bits, 1))


def parity(bits: str) -> int:
    return bits.count("1") % 2


def zlib_estimate(bits: str) -> float:
    """Compressed size over packed size, rounded to 4 decimals."""
    if not bits:
        return 0.0
    packed = np.packbits(to_array(bits)).tobytes()
    return round(len(zlib.compress(packed, 9)) / len(packed), 4)


EXTRA_OPERATIONS = {
    "REVERSE": "bitlab.engine.extras:reverse",
    "SWAP_PAIRS": "bitlab.engine.extras:swap_pairs",
}

EXTRA_METRICS = {
    "longest_run_ones": "bitlab.engine.extras:longest_run_ones",
    "longest_run_zeros": "bitlab.engine.extras:longest_run_zeros",
    "runs_count": "bitlab.engine.extras:runs_count",
    "parity": "bitlab.engine.extras:parity",
    "zlib_estimate": "bitlab.engine.extras:zlib_estimate",
}
