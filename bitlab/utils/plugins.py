"""Entry-point loading for catalog plugins."""
from __future__ import annotations

import importlib
from typing import Any, Callable

from ..errors import UnhandledRuntimeError


def load_entry_point(path: str) -> Callable[..., Any]:
    """Import ``"package.module:attribute"`` and return the callable it names.

    Raises
    ------
    UnhandledRuntimeError
        If the path is malformed, the module cannot be imported, or the
        attribute is missing or not callable.
    """
    module_name, sep, attr_path = path.partition(":")
    if not sep or not module_name or not attr_path:
        raise UnhandledRuntimeError(f"Entry point {path!r} must look like 'package.module:function'")
    try:
        target: Any = importlib.import_module(module_name)
    except ImportError as exc:
        raise UnhandledRuntimeError(f"Entry point {path!r}: cannot import {module_name}: {exc}") from exc
    for attr in attr_path.split("."):
        try:
            target = getattr(target, attr)
        except AttributeError as exc:
            raise UnhandledRuntimeError(f"Entry point {path!r}: {module_name} has no {attr_path}") from exc
    if not callable(target):
        raise UnhandledRuntimeError(f"Entry point {path!r} is not callable")
    return target
