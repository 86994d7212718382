"""
Bit operations applied by the execution engine.

Built-in transforms act on the selected range only and keep its length:

    NOT                     flip every bit
    AND OR XOR NAND NOR XNOR   combine with the alternating reference 1010...
    SHL SHR                 shift by one, filling the vacated end with 0
    ROL ROR                 rotate by one
    GRAY                    binary -> reflected Gray code
    GRAY_DECODE             reflected Gray code -> binary

Anything else resolves through :class:`OperationRegistry`, which holds
plugin callables and catalog operations that name an importable
``package.module:function`` entry point.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

import numpy as np

from ..errors import OperationNotPermitted, UnhandledRuntimeError
from ..utils.bits import is_bit_string, to_array, to_bits
from ..utils.plugins import load_entry_point
from .models import PolicyConfig

logger = logging.getLogger(__name__)

# Plugin signature: execute(bits, params) -> bits
OperationFn = Callable[[str, Dict[str, Any]], str]


def _reference(n: int) -> np.ndarray:
    return (np.arange(n) % 2 == 0).astype(np.uint8)


def _not(a: np.ndarray) -> np.ndarray:
    return 1 - a


def _and(a: np.ndarray) -> np.ndarray:
    return a & _reference(a.size)


def _or(a: np.ndarray) -> np.ndarray:
    return a | _reference(a.size)


def _xor(a: np.ndarray) -> np.ndarray:
    return a ^ _reference(a.size)


def _shl(a: np.ndarray) -> np.ndarray:
    return np.concatenate([a[1:], np.zeros(1, dtype=np.uint8)])


def _shr(a: np.ndarray) -> np.ndarray:
    return np.concatenate([np.zeros(1, dtype=np.uint8), a[:-1]])


def _gray(a: np.ndarray) -> np.ndarray:
    out = a.copy()
    out[1:] = a[1:] ^ a[:-1]
    return out


def _gray_decode(a: np.ndarray) -> np.ndarray:
    return np.bitwise_xor.accumulate(a)


BUILTIN_OPERATIONS: Dict[str, Callable[[np.ndarray], np.ndarray]] = {
    "NOT": _not,
    "AND": _and,
    "OR": _or,
    "XOR": _xor,
    "NAND": lambda a: 1 - _and(a),
    "NOR": lambda a: 1 - _or(a),
    "XNOR": lambda a: 1 - _xor(a),
    "SHL": _shl,
    "SHR": _shr,
    "ROL": lambda a: np.roll(a, -1),
    "ROR": lambda a: np.roll(a, 1),
    "GRAY": _gray,
    "GRAY_DECODE": _gray_decode,
}


def apply_builtin(operation: str, segment: str) -> Optional[str]:
    """Apply a built-in transform to *segment*; ``None`` if *operation* is not built in."""
    fn = BUILTIN_OPERATIONS.get(operation)
    if fn is None:
        return None
    if not segment:
        return segment
    return to_bits(fn(to_array(segment)))


class OperationRegistry:
    """Resolves operation names to implementations.

    Lookup order: registered plugins, catalog entry points, built-ins.
    Catalog operations name an importable ``package.module:function``;
    the callable is imported once and cached under that path.
    """

    def __init__(self) -> None:
        self._plugins: Dict[str, OperationFn] = {}
        self._entry_points: Dict[str, str] = {}
        self._loaded: Dict[str, OperationFn] = {}

    def register(self, operation: str, fn: OperationFn) -> None:
        self._plugins[operation] = fn

    def register_entry_point(self, operation: str, path: str) -> None:
        self._entry_points[operation] = path

    def unregister(self, operation: str) -> None:
        self._plugins.pop(operation, None)
        self._entry_points.pop(operation, None)

    def has_implementation(self, operation: str) -> bool:
        return (
            operation in self._plugins
            or operation in self._entry_points
            or operation in BUILTIN_OPERATIONS
        )

    def resolve(self, operation: str) -> Optional[OperationFn]:
        """Return the plugin or entry-point callable for *operation*, if any."""
        if operation in self._plugins:
            return self._plugins[operation]
        path = self._entry_points.get(operation)
        if path is None:
            return None
        fn = self._loaded.get(path)
        if fn is None:
            fn = load_entry_point(path)
            self._loaded[path] = fn
            logger.debug("Loaded operation %s from %s", operation, path)
        return fn

    @staticmethod
    def check_permitted(operation: str, enabled: Iterable[str], policy: PolicyConfig) -> None:
        """Raise :class:`OperationNotPermitted` unless *operation* may run."""
        if operation not in enabled:
            raise OperationNotPermitted(operation, "not enabled")
        reason = policy.denial_reason(operation)
        if reason is not None:
            raise OperationNotPermitted(operation, reason)

    def apply(
        self,
        operation: str,
        bits: str,
        start: int,
        end: int,
        params: Optional[Dict[str, Any]] = None,
    ) -> Tuple[str, bool]:
        """Transform ``bits[start:end]`` and splice the result back.

        Returns ``(new_bits, implemented)``.  An operation with no
        implementation leaves the bits unchanged.
        """
        segment = bits[start:end]
        fn = self.resolve(operation)
        if fn is not None:
            try:
                out = fn(segment, dict(params or {}))
            except Exception as exc:
                raise UnhandledRuntimeError(f"Operation {operation} raised: {exc}") from exc
            if not is_bit_string(out):
                raise UnhandledRuntimeError(f"Operation {operation} returned a non-bit string")
        else:
            out = apply_builtin(operation, segment)
            if out is None:
                return bits, False
        return bits[:start] + out + bits[end:], True

    def load_catalog(self, catalog) -> int:
        """Register every catalog operation that names an entry point."""
        count = 0
        for definition in catalog.get_all_operations():
            if definition.entry_point:
                self.register_entry_point(definition.id, definition.entry_point)
                count += 1
        return count
