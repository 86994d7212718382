"""Settings for the API layer."""
from __future__ import annotations

from typing import Optional

from pydantic_settings import BaseSettings


class ApiSettings(BaseSettings):
    """Immutable settings loaded from environment / .env file."""

    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: str = "http://localhost:5173,http://localhost:8000"
    job_db_path: Optional[str] = "bitlab_jobs.db"
    results_file: Optional[str] = "results/execution_history.json"
    log_level: str = "INFO"

    model_config = {"env_prefix": "BITLAB_API_"}
