"""Per-step bit-string metrics."""
from __future__ import annotations

import logging
import numbers
from typing import Callable, Dict, Iterable, Optional

import numpy as np

from ..errors import UnhandledRuntimeError
from ..utils.bits import to_array
from ..utils.plugins import load_entry_point

logger = logging.getLogger(__name__)

CORE_METRICS = ("entropy", "hamming_weight", "bit_balance", "transitions")

# Plugin signature: metric(bits) -> number
MetricFn = Callable[[str], float]


def shannon_entropy(arr: np.ndarray) -> float:
    """Per-bit Shannon entropy in [0, 1], rounded to 4 decimals."""
    n = arr.size
    if n == 0:
        return 0.0
    p1 = float(arr.sum()) / n
    entropy = 0.0
    for p in (1.0 - p1, p1):
        if p > 0:
            entropy -= p * np.log2(p)
    return round(float(entropy), 4)


def core_metrics(bits: str) -> Dict[str, float]:
    arr = to_array(bits)
    n = arr.size
    if n == 0:
        return {"entropy": 0.0, "hamming_weight": 0, "bit_balance": 0.0, "transitions": 0}
    ones = int(arr.sum())
    return {
        "entropy": shannon_entropy(arr),
        "hamming_weight": ones,
        "bit_balance": round(ones / n, 4),
        "transitions": int(np.count_nonzero(arr[1:] != arr[:-1])),
    }


class MetricRegistry:
    """Resolves catalog metric ids beyond the core set.

    Lookup order: registered plugins, then catalog entry points
    (``package.module:function``), imported once per path.
    """

    def __init__(self) -> None:
        self._plugins: Dict[str, MetricFn] = {}
        self._entry_points: Dict[str, str] = {}
        self._loaded: Dict[str, MetricFn] = {}

    def register(self, metric_id: str, fn: MetricFn) -> None:
        self._plugins[metric_id] = fn

    def register_entry_point(self, metric_id: str, path: str) -> None:
        self._entry_points[metric_id] = path

    def unregister(self, metric_id: str) -> None:
        self._plugins.pop(metric_id, None)
        self._entry_points.pop(metric_id, None)

    def has_implementation(self, metric_id: str) -> bool:
        return (
            metric_id in CORE_METRICS
            or metric_id in self._plugins
            or metric_id in self._entry_points
        )

    def resolve(self, metric_id: str) -> Optional[MetricFn]:
        if metric_id in self._plugins:
            return self._plugins[metric_id]
        path = self._entry_points.get(metric_id)
        if path is None:
            return None
        fn = self._loaded.get(path)
        if fn is None:
            fn = load_entry_point(path)
            self._loaded[path] = fn
            logger.debug("Loaded metric %s from %s", metric_id, path)
        return fn

    def load_catalog(self, catalog) -> int:
        """Register every catalog metric that names an entry point."""
        count = 0
        for definition in catalog.get_all_metrics():
            if definition.entry_point:
                self.register_entry_point(definition.id, definition.entry_point)
                count += 1
        return count


def compute_metrics(
    bits: str,
    enabled: Optional[Iterable[str]] = None,
    registry: Optional[MetricRegistry] = None,
) -> Dict[str, float]:
    """Compute the core metrics plus every enabled metric *registry* resolves.

    The four core metrics are always returned.  Enabled ids with no
    implementation are reported at DEBUG level and left out.

    Raises
    ------
    UnhandledRuntimeError
        If a custom metric raises or returns something other than a number.
    """
    metrics = core_metrics(bits)
    missing = []
    for metric_id in enabled or ():
        if metric_id in CORE_METRICS:
            continue
        fn = registry.resolve(metric_id) if registry is not None else None
        if fn is None:
            missing.append(metric_id)
            continue
        try:
            value = fn(bits)
        except Exception as exc:
            raise UnhandledRuntimeError(f"Metric {metric_id} raised: {exc}") from exc
        if isinstance(value, bool) or not isinstance(value, numbers.Real):
            raise UnhandledRuntimeError(f"Metric {metric_id} returned {type(value).__name__}, not a number")
        metrics[metric_id] = float(value)
    if missing:
        logger.debug("No implementation for metrics %s", missing)
    return metrics
