"""Request bodies for the mutation endpoints."""
from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field

from ...jobs.models import JobPreset, JobPriority


class CreateJobRequest(BaseModel):
    name: str
    data_file_id: str
    presets: List[JobPreset] = Field(default_factory=list)
    priority: JobPriority = JobPriority.normal


class DataFileRequest(BaseModel):
    name: str
    bits: str


class StrategyRequest(BaseModel):
    name: str
    source: str
    language: Optional[str] = None


class SourceRequest(BaseModel):
    name: str
    source: str


class EnabledRequest(BaseModel):
    ids: List[str]
