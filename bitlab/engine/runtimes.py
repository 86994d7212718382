"""
Language backends for strategy sources.

Every backend offers the same contract:

    validate(source)                    -> ValidationReport
    extract_requested_operations(source)-> list of operation names, in order
    extract_operation_calls(source)     -> list of OperationCall (name + optional range)
    prepare_runtime()                   -> None, or raises RuntimeUnavailable
    sandbox_test(source, context)       -> optional calls observed by a remote run
    window(step_index, length)          -> (start, end) used when a call has no range

The engine only dispatches and accounts; interpreting strategy code is left
to the collaborator each backend wraps (lupa for Lua, ``compile`` for
Python, a local HTTP execution server for C++).
"""
from __future__ import annotations

import ast
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests

from ..config import (
    CPP_EXECUTE_TIMEOUT_S,
    CPP_HEALTH_TIMEOUT_S,
    CPP_SERVER_URL,
    DEFAULT_WINDOW_STRIDE,
    DEFAULT_WINDOW_WIDTH,
    LUA_WINDOW_STRIDE,
    LUA_WINDOW_WIDTH,
)
from ..errors import RuntimeUnavailable, UnhandledRuntimeError, ValidationError
from .models import ExecutionContext

logger = logging.getLogger(__name__)

_CALL_RE = re.compile(r"""apply_operation\s*\(\s*["']([^"']+)["']([^)]*)\)""")
_NAME_RE = re.compile(r"""apply_operation\s*\(\s*["']([^"']+)["']""")
_START_RE = re.compile(r"\bstart\s*=\s*(\d+)")
_END_RE = re.compile(r"""\b(?:end|stop)["'\]]*\s*=\s*(\d+)""")
_POSITIONAL_RE = re.compile(r"^\s*,\s*(\d+)\s*,\s*(\d+)")


@dataclass
class ValidationReport:
    valid: bool = True
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def raise_for_errors(self) -> None:
        if self.errors:
            raise ValidationError(self.errors, self.warnings)


@dataclass(frozen=True)
class OperationCall:
    """One ``apply_operation`` call site."""

    operation: str
    range_start: Optional[int] = None
    range_end: Optional[int] = None

    @property
    def has_range(self) -> bool:
        return self.range_start is not None and self.range_end is not None


def _range_from_args(args: str) -> Tuple[Optional[int], Optional[int]]:
    start = _START_RE.search(args)
    end = _END_RE.search(args)
    if start and end:
        return int(start.group(1)), int(end.group(1))
    positional = _POSITIONAL_RE.match(args)
    if positional:
        return int(positional.group(1)), int(positional.group(2))
    return None, None


def _check_balance(source: str, errors: List[str]) -> None:
    if source.count("{") != source.count("}"):
        errors.append("Unbalanced braces")
    if source.count("(") != source.count(")"):
        errors.append("Unbalanced parentheses")


class RuntimeBackend:
    """Base backend: regex call-site extraction and a fixed-stride window."""

    language = ""
    execution_mode = ""
    window_stride = DEFAULT_WINDOW_STRIDE
    window_width = DEFAULT_WINDOW_WIDTH

    def validate(self, source: str) -> ValidationReport:
        report = ValidationReport()
        if not source.strip():
            report.errors.append("Strategy source is empty")
        if not _NAME_RE.search(source):
            report.warnings.append("No apply_operation calls found; enabled operations will be used")
        report.valid = not report.errors
        return report

    def extract_requested_operations(self, source: str) -> List[str]:
        return [call.operation for call in self.extract_operation_calls(source)]

    def extract_operation_calls(self, source: str) -> List[OperationCall]:
        calls = []
        for name, args in _CALL_RE.findall(source):
            start, end = _range_from_args(args)
            calls.append(OperationCall(name, start, end))
        return calls

    def prepare_runtime(self) -> None:
        """Make the backend ready, or raise :class:`RuntimeUnavailable`."""

    def sandbox_test(self, source: str, context: ExecutionContext) -> Optional[List[OperationCall]]:
        """Pre-run check.  Remote backends may return the calls they observed."""
        return None

    def window(self, step_index: int, length: int) -> Tuple[int, int]:
        start = (step_index * self.window_stride) % max(1, length - self.window_width)
        return start, min(start + self.window_width, length)


class LuaBackend(RuntimeBackend):
    language = "lua"
    execution_mode = "embedded"
    window_stride = LUA_WINDOW_STRIDE
    window_width = LUA_WINDOW_WIDTH

    def __init__(self, vm_factory: Optional[Callable[[], Any]] = None) -> None:
        self._vm_factory = vm_factory
        self._vm = None

    def _default_vm(self):
        try:
            import lupa
        except ImportError as exc:
            raise RuntimeUnavailable(
                "Lua runtime unavailable: install the 'lua' extra (lupa)"
            ) from exc
        return lupa.LuaRuntime(unpack_returned_tuples=True)

    def validate(self, source: str) -> ValidationReport:
        report = super().validate(source)
        _check_balance(source, report.errors)
        if re.search(r"\bfunction\b", source) and not re.search(r"\bend\b", source):
            report.errors.append("Function declared without a matching 'end'")
        report.valid = not report.errors
        return report

    def prepare_runtime(self) -> None:
        if self._vm is not None:
            return
        factory = self._vm_factory or self._default_vm
        try:
            self._vm = factory()
        except RuntimeUnavailable:
            raise
        except Exception as exc:
            raise RuntimeUnavailable(f"Lua runtime failed to load: {exc}") from exc

    def sandbox_test(self, source: str, context: ExecutionContext) -> Optional[List[OperationCall]]:
        if self._vm is None:
            raise RuntimeUnavailable("Lua runtime not prepared")
        try:
            self._vm.compile(source)
        except Exception as exc:
            raise ValidationError([f"Lua validation failed: {exc}"]) from exc
        return None


class PythonBackend(RuntimeBackend):
    """Python strategies are parsed with :mod:`ast`; nothing is executed."""

    language = "python"
    execution_mode = "sandboxed"

    def validate(self, source: str) -> ValidationReport:
        report = super().validate(source)
        try:
            ast.parse(source)
        except SyntaxError as exc:
            report.errors.append(f"Syntax error on line {exc.lineno}: {exc.msg}")
        report.valid = not report.errors
        return report

    def extract_operation_calls(self, source: str) -> List[OperationCall]:
        try:
            tree = ast.parse(source)
        except SyntaxError:
            return super().extract_operation_calls(source)

        found = []
        for node in ast.walk(tree):
            if not isinstance(node, ast.Call):
                continue
            func = node.func
            name = func.id if isinstance(func, ast.Name) else getattr(func, "attr", None)
            if name != "apply_operation" or not node.args:
                continue
            first = node.args[0]
            if not (isinstance(first, ast.Constant) and isinstance(first.value, str)):
                continue
            start = end = None
            ints = [a.value for a in node.args[1:3] if isinstance(a, ast.Constant) and isinstance(a.value, int)]
            if len(ints) == 2:
                start, end = ints
            for kw in node.keywords:
                if isinstance(kw.value, ast.Constant) and isinstance(kw.value.value, int):
                    if kw.arg == "start":
                        start = kw.value.value
                    elif kw.arg in ("end", "stop"):
                        end = kw.value.value
            found.append(((node.lineno, node.col_offset), OperationCall(first.value, start, end)))
        found.sort(key=lambda item: item[0])
        return [call for _, call in found]

    def sandbox_test(self, source: str, context: ExecutionContext) -> Optional[List[OperationCall]]:
        try:
            compile(source, "<strategy>", "exec")
        except SyntaxError as exc:
            raise ValidationError([f"Python validation failed: {exc.msg} (line {exc.lineno})"]) from exc
        return None


class CppBackend(RuntimeBackend):
    """Strategies compiled and run by a local HTTP execution server."""

    language = "cpp"
    execution_mode = "remote"

    def __init__(
        self,
        server_url: str = CPP_SERVER_URL,
        session: Optional[requests.Session] = None,
        health_timeout: float = CPP_HEALTH_TIMEOUT_S,
        execute_timeout: float = CPP_EXECUTE_TIMEOUT_S,
    ) -> None:
        self.server_url = server_url.rstrip("/")
        self._session = session or requests.Session()
        self._health_timeout = health_timeout
        self._execute_timeout = execute_timeout

    def validate(self, source: str) -> ValidationReport:
        report = super().validate(source)
        _check_balance(source, report.errors)
        if re.search(r"\b(?:system|exec(?:[lv]p?e?)?)\s*\(", source):
            report.errors.append("Process execution calls are not allowed")
        if not re.search(r"void\s+execute\s*\(\s*\)", source):
            report.warnings.append("Missing 'void execute()' entry point")
        if "bitwise_api.h" not in source:
            report.warnings.append("Missing #include \"bitwise_api.h\"")
        report.valid = not report.errors
        return report

    def prepare_runtime(self) -> None:
        url = f"{self.server_url}/health"
        try:
            resp = self._session.get(url, timeout=self._health_timeout)
        except requests.RequestException as exc:
            raise RuntimeUnavailable(f"C++ execution server not reachable at {self.server_url}: {exc}") from exc
        if resp.status_code != 200:
            raise RuntimeUnavailable(
                f"C++ execution server at {self.server_url} unhealthy (HTTP {resp.status_code})"
            )

    def sandbox_test(self, source: str, context: ExecutionContext) -> Optional[List[OperationCall]]:
        payload = {
            "code": source,
            "context": {
                "bits": context.bits,
                "budget": context.budget,
                "operations": list(context.enabled_operations),
                "metrics": list(context.enabled_metrics),
            },
        }
        try:
            resp = self._session.post(
                f"{self.server_url}/execute", json=payload, timeout=self._execute_timeout
            )
        except requests.RequestException as exc:
            raise RuntimeUnavailable(f"C++ execution server not reachable at {self.server_url}: {exc}") from exc
        if resp.status_code != 200:
            raise UnhandledRuntimeError(f"C++ execution failed (HTTP {resp.status_code})")
        try:
            body = resp.json()
        except ValueError as exc:
            raise UnhandledRuntimeError("C++ execution server returned invalid JSON") from exc
        if not body.get("success", True):
            raise UnhandledRuntimeError(f"C++ execution failed: {body.get('error', 'unknown error')}")

        observed = body.get("operations")
        if not observed:
            return None
        calls = []
        for item in observed:
            if isinstance(item, str):
                calls.append(OperationCall(item))
            else:
                calls.append(OperationCall(item["operation"], item.get("start"), item.get("end")))
        return calls


class RuntimeDispatcher:
    """Routes a strategy language to its backend."""

    def __init__(self, backends: Optional[Dict[str, RuntimeBackend]] = None) -> None:
        if backends is None:
            backends = {"lua": LuaBackend(), "python": PythonBackend(), "cpp": CppBackend()}
        self._backends = dict(backends)

    @property
    def languages(self) -> List[str]:
        return sorted(self._backends)

    def register(self, backend: RuntimeBackend) -> None:
        self._backends[backend.language] = backend

    def backend_for(self, language: str) -> RuntimeBackend:
        backend = self._backends.get(language.lower())
        if backend is None:
            raise ValidationError([f"Unsupported strategy language: {language}"])
        return backend

    def validate(self, language: str, source: str) -> ValidationReport:
        return self.backend_for(language).validate(source)

    def extract_requested_operations(self, language: str, source: str) -> List[str]:
        return self.backend_for(language).extract_requested_operations(source)

    def extract_operation_calls(self, language: str, source: str) -> List[OperationCall]:
        return self.backend_for(language).extract_operation_calls(source)

    def prepare_runtime(self, language: str) -> None:
        self.backend_for(language).prepare_runtime()

    def sandbox_test(self, language: str, source: str, context: ExecutionContext) -> Optional[List[OperationCall]]:
        return self.backend_for(language).sandbox_test(source, context)
