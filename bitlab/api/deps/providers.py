"""Dependency providers for FastAPI ``Depends()``.

Services live on ``app.state.services`` so every app (and every test) owns
its own scheduler, store and history.
"""
from __future__ import annotations

from functools import lru_cache

from fastapi import Request

from ...engine.results import ResultHistory
from ...jobs.batch import BatchCoordinator
from ...jobs.scheduler import JobScheduler
from ...services import Services
from ..config import ApiSettings


@lru_cache
def get_settings() -> ApiSettings:
    return ApiSettings()


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_scheduler(request: Request) -> JobScheduler:
    return get_services(request).scheduler


def get_batches(request: Request) -> BatchCoordinator:
    return get_services(request).batches


def get_history(request: Request) -> ResultHistory:
    return get_services(request).history
