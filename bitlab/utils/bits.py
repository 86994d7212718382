"""Conversions between '0'/'1' bit strings and numpy arrays."""
from __future__ import annotations

import numpy as np

_ZERO = ord("0")


def is_bit_string(bits: str) -> bool:
    """True when *bits* contains only '0' and '1' characters."""
    return isinstance(bits, str) and not bits.strip("01")


def to_array(bits: str) -> np.ndarray:
    """Return a uint8 array of 0/1 values for *bits*."""
    if not bits:
        return np.zeros(0, dtype=np.uint8)
    return np.frombuffer(bits.encode("ascii"), dtype=np.uint8) - _ZERO


def to_bits(arr: np.ndarray) -> str:
    """Inverse of :func:`to_array`."""
    return (np.asarray(arr, dtype=np.uint8) + _ZERO).tobytes().decode("ascii")


def bytes_to_bits(data: bytes) -> str:
    """Unpack raw bytes, most significant bit first."""
    if not data:
        return ""
    return to_bits(np.unpackbits(np.frombuffer(data, dtype=np.uint8)))


def sample(bits: str, length: int = 32) -> str:
    """First *length* characters of *bits*, with '...' when truncated."""
    if len(bits) <= length:
        return bits
    return bits[:length] + "..."
