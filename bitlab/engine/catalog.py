"""
Collaborators the engine reads from: the operation/metric catalog, the
library of strategy, scoring and policy sources, and the data files.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from ..errors import ValidationError
from ..utils.bits import bytes_to_bits, is_bit_string
from .extras import EXTRA_METRICS, EXTRA_OPERATIONS
from .metrics import CORE_METRICS
from .operations import BUILTIN_OPERATIONS

logger = logging.getLogger(__name__)

_EXTENSION_LANGUAGE = {
    ".lua": "lua",
    ".py": "python",
    ".cpp": "cpp",
    ".cc": "cpp",
    ".c": "cpp",
    ".h": "cpp",
    ".hpp": "cpp",
}


def _new_id() -> str:
    return uuid.uuid4().hex[:12]


def _title(metric_id: str) -> str:
    return metric_id.replace("_", " ").title()


def language_from_filename(filename: str) -> str:
    """Strategy language from the file extension; Lua when unknown."""
    return _EXTENSION_LANGUAGE.get(Path(filename).suffix.lower(), "lua")


# ── Catalog ──────────────────────────────────────────────────────────


@dataclass
class OperationDefinition:
    id: str
    name: str = ""
    description: str = ""
    entry_point: Optional[str] = None  # "package.module:function"


@dataclass
class MetricDefinition:
    id: str
    name: str = ""
    description: str = ""
    entry_point: Optional[str] = None


class Catalog:
    """Known operations and metrics, and which of them are enabled."""

    def __init__(self) -> None:
        self._operations: Dict[str, OperationDefinition] = {}
        self._metrics: Dict[str, MetricDefinition] = {}
        self._enabled_operations: List[str] = []
        self._enabled_metrics: List[str] = []

    @classmethod
    def default(cls) -> "Catalog":
        """Catalog with every built-in operation and core metric enabled.

        The extra entry-point operations and metrics are listed but disabled.
        """
        catalog = cls()
        for op in BUILTIN_OPERATIONS:
            catalog.add_operation(OperationDefinition(id=op, name=op))
        for op, path in EXTRA_OPERATIONS.items():
            catalog.add_operation(OperationDefinition(id=op, name=op, entry_point=path), enabled=False)
        for metric in CORE_METRICS:
            catalog.add_metric(MetricDefinition(id=metric, name=_title(metric)))
        for metric, path in EXTRA_METRICS.items():
            catalog.add_metric(MetricDefinition(id=metric, name=_title(metric), entry_point=path), enabled=False)
        return catalog

    def add_operation(self, definition: OperationDefinition, enabled: bool = True) -> None:
        self._operations[definition.id] = definition
        if enabled:
            self.enable_operation(definition.id)

    def add_metric(self, definition: MetricDefinition, enabled: bool = True) -> None:
        self._metrics[definition.id] = definition
        if enabled and definition.id not in self._enabled_metrics:
            self._enabled_metrics.append(definition.id)

    def get_all_operations(self) -> List[OperationDefinition]:
        return list(self._operations.values())

    def get_all_metrics(self) -> List[MetricDefinition]:
        return list(self._metrics.values())

    def get_operation(self, op_id: str) -> Optional[OperationDefinition]:
        return self._operations.get(op_id)

    def enabled_operations(self) -> List[str]:
        return list(self._enabled_operations)

    def enabled_metrics(self) -> List[str]:
        return list(self._enabled_metrics)

    def enable_operation(self, op_id: str) -> None:
        if op_id not in self._operations:
            raise KeyError(f"Unknown operation: {op_id}")
        if op_id not in self._enabled_operations:
            self._enabled_operations.append(op_id)

    def disable_operation(self, op_id: str) -> None:
        if op_id in self._enabled_operations:
            self._enabled_operations.remove(op_id)

    def set_enabled_operations(self, op_ids: Iterable[str]) -> None:
        ids = list(op_ids)
        unknown = [op for op in ids if op not in self._operations]
        if unknown:
            raise KeyError(f"Unknown operations: {unknown}")
        self._enabled_operations = list(dict.fromkeys(ids))

    def set_enabled_metrics(self, metric_ids: Iterable[str]) -> None:
        ids = list(metric_ids)
        unknown = [m for m in ids if m not in self._metrics]
        if unknown:
            raise KeyError(f"Unknown metrics: {unknown}")
        self._enabled_metrics = list(dict.fromkeys(ids))


# ── Sources ──────────────────────────────────────────────────────────


@dataclass
class SourceFile:
    """A named strategy, scoring or policy source."""

    id: str
    name: str
    source: str
    language: str = "lua"


class SourceLibrary:
    """Strategy, scoring and policy sources, in registration order."""

    def __init__(self) -> None:
        self._strategies: Dict[str, SourceFile] = {}
        self._scoring: Dict[str, SourceFile] = {}
        self._policies: Dict[str, SourceFile] = {}

    def add_strategy(self, name: str, source: str, language: Optional[str] = None) -> SourceFile:
        lang = (language or language_from_filename(name)).lower()
        entry = SourceFile(id=_new_id(), name=name, source=source, language=lang)
        self._strategies[entry.id] = entry
        return entry

    def add_scoring(self, name: str, source: str) -> SourceFile:
        entry = SourceFile(id=_new_id(), name=name, source=source)
        self._scoring[entry.id] = entry
        return entry

    def add_policy(self, name: str, source: str) -> SourceFile:
        entry = SourceFile(id=_new_id(), name=name, source=source)
        self._policies[entry.id] = entry
        return entry

    def load_strategy_file(self, path: Path) -> SourceFile:
        path = Path(path)
        return self.add_strategy(path.name, path.read_text(encoding="utf-8"))

    def load_scoring_file(self, path: Path) -> SourceFile:
        path = Path(path)
        return self.add_scoring(path.name, path.read_text(encoding="utf-8"))

    def load_policy_file(self, path: Path) -> SourceFile:
        path = Path(path)
        return self.add_policy(path.name, path.read_text(encoding="utf-8"))

    def get_strategy(self, strategy_id: str) -> Optional[SourceFile]:
        return self._strategies.get(strategy_id)

    def get_scoring(self, scoring_id: Optional[str] = None) -> Optional[SourceFile]:
        """The scoring source *scoring_id*, else the first registered one."""
        return self._pick(self._scoring, scoring_id)

    def get_policy(self, policy_id: Optional[str] = None) -> Optional[SourceFile]:
        """The policy source *policy_id*, else the first registered one."""
        return self._pick(self._policies, policy_id)

    def list_strategies(self) -> List[SourceFile]:
        return list(self._strategies.values())

    def list_scoring(self) -> List[SourceFile]:
        return list(self._scoring.values())

    def list_policies(self) -> List[SourceFile]:
        return list(self._policies.values())

    @staticmethod
    def _pick(table: Dict[str, SourceFile], key: Optional[str]) -> Optional[SourceFile]:
        if key is not None and key in table:
            return table[key]
        if key is not None:
            logger.warning("Source %s not found; using the first available", key)
        return next(iter(table.values()), None)


# ── Data files ───────────────────────────────────────────────────────


@dataclass
class DataFile:
    id: str
    name: str
    bits: str = field(repr=False)

    @property
    def size(self) -> int:
        return len(self.bits)


class DataFileRegistry:
    """Named bit strings available to jobs."""

    def __init__(self) -> None:
        self._files: Dict[str, DataFile] = {}
        self._active_id: Optional[str] = None

    def add_file(self, name: str, bits: str) -> DataFile:
        if not is_bit_string(bits):
            raise ValidationError([f"Data file {name} must contain only '0' and '1'"])
        entry = DataFile(id=_new_id(), name=name, bits=bits)
        self._files[entry.id] = entry
        if self._active_id is None:
            self._active_id = entry.id
        return entry

    def load_file(self, path: Path) -> DataFile:
        """Read raw bytes from *path* and register them as bits."""
        path = Path(path)
        entry = self.add_file(path.name, bytes_to_bits(path.read_bytes()))
        logger.info("Loaded %s (%d bits)", path.name, entry.size)
        return entry

    def get(self, file_id: str) -> Optional[DataFile]:
        return self._files.get(file_id)

    def get_bits(self, file_id: str) -> Optional[str]:
        entry = self._files.get(file_id)
        return entry.bits if entry is not None else None

    def list_files(self) -> List[DataFile]:
        return list(self._files.values())

    def remove_file(self, file_id: str) -> bool:
        if self._files.pop(file_id, None) is None:
            return False
        if self._active_id == file_id:
            self._active_id = next(iter(self._files), None)
        return True

    def set_active_file(self, file_id: str) -> None:
        if file_id not in self._files:
            raise KeyError(f"Unknown data file: {file_id}")
        self._active_id = file_id

    def get_active_file(self) -> Optional[DataFile]:
        if self._active_id is None:
            return None
        return self._files.get(self._active_id)
