"""Recent log records, filterable by level, logger and job."""
from __future__ import annotations

import logging
import time
from collections import deque
from typing import Any, Deque, Dict, Optional

from fastapi import APIRouter, Query

from ...config import LOG_BUFFER_SIZE
from ..schemas.envelope import ApiResponse

router = APIRouter(prefix="/api/logs", tags=["logs"])

_PACKAGE_LOGGER = "bitlab"


class JobLogBuffer(logging.Handler):
    """Ring buffer of ``bitlab.*`` records.

    Records logged with ``extra={"job_id": ...}`` keep the job id so the
    endpoint can return one job's lines.
    """

    def __init__(self, capacity: int = LOG_BUFFER_SIZE, level: int = logging.INFO) -> None:
        super().__init__(level)
        self.records: Deque[Dict[str, Any]] = deque(maxlen=capacity)

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append({
            "ts": record.created,
            "level": record.levelname,
            "levelno": record.levelno,
            "logger": record.name,
            "job_id": getattr(record, "job_id", None),
            "message": record.getMessage(),
        })

    def query(
        self,
        last_n: int,
        min_level: int = logging.NOTSET,
        logger_prefix: Optional[str] = None,
        job_id: Optional[str] = None,
    ) -> list:
        matched = [
            r for r in self.records
            if r["levelno"] >= min_level
            and (logger_prefix is None or r["logger"].startswith(logger_prefix))
            and (job_id is None or r["job_id"] == job_id)
        ]
        return matched[-last_n:] if last_n > 0 else []


_buffer = JobLogBuffer()


def setup_log_buffer() -> None:
    """Attach the buffer to the package logger once."""
    pkg_logger = logging.getLogger(_PACKAGE_LOGGER)
    if _buffer not in pkg_logger.handlers:
        pkg_logger.addHandler(_buffer)


def teardown_log_buffer() -> None:
    logging.getLogger(_PACKAGE_LOGGER).removeHandler(_buffer)
    _buffer.records.clear()


@router.get("")
async def get_logs(
    last_n: int = Query(100, ge=0),
    level: Optional[str] = None,
    logger: Optional[str] = None,
    job_id: Optional[str] = None,
) -> ApiResponse:
    t0 = time.monotonic()
    min_level = logging.getLevelName(level.upper()) if level else logging.NOTSET
    warnings = []
    if not isinstance(min_level, int):
        warnings.append(f"Unknown level {level!r}; returning all levels")
        min_level = logging.NOTSET
    entries = _buffer.query(last_n, min_level, logger, job_id)
    elapsed = (time.monotonic() - t0) * 1000
    return ApiResponse.success(entries, elapsed_ms=elapsed, warnings=warnings)
