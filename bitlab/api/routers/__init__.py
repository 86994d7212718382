"""Route modules, imported by the app factory."""
from __future__ import annotations

import importlib
import logging
from typing import List

from fastapi import APIRouter

logger = logging.getLogger(__name__)

# Module paths that provide a ``router`` attribute.
_ROUTER_MODULES = [
    "bitlab.api.routers.jobs",
    "bitlab.api.routers.batches",
    "bitlab.api.routers.results",
    "bitlab.api.routers.library",
    "bitlab.api.routers.logs",
]


def all_routers() -> List[APIRouter]:
    """Import and return every router."""
    return [importlib.import_module(path).router for path in _ROUTER_MODULES]
