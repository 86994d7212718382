"""Batch endpoints."""
from __future__ import annotations

from fastapi import APIRouter, Depends

from ...errors import BatchNotFoundError
from ...jobs.batch import BatchCoordinator
from ...jobs.models import BatchConfig
from ..deps.providers import get_batches
from ..schemas.envelope import ApiResponse

router = APIRouter(prefix="/api/batches", tags=["batches"])


def _describe(batches: BatchCoordinator, batch_id: str) -> dict:
    batch = batches.get_batch(batch_id)
    data = batch.model_dump(mode="json")
    data["status"] = batches.batch_status(batch_id)
    return data


@router.get("")
async def list_batches(batches: BatchCoordinator = Depends(get_batches)) -> ApiResponse:
    return ApiResponse.success([_describe(batches, b.id) for b in batches.list_batches()])


@router.post("")
async def create_batch(config: BatchConfig, batches: BatchCoordinator = Depends(get_batches)) -> ApiResponse:
    batch = await batches.create_batch(config)
    return ApiResponse.success(_describe(batches, batch.id))


@router.get("/{batch_id}")
async def get_batch(batch_id: str, batches: BatchCoordinator = Depends(get_batches)) -> ApiResponse:
    if batches.get_batch(batch_id) is None:
        raise BatchNotFoundError(f"Batch '{batch_id}' not found")
    return ApiResponse.success(_describe(batches, batch_id))


@router.post("/{batch_id}/start")
async def start_batch(batch_id: str, batches: BatchCoordinator = Depends(get_batches)) -> ApiResponse:
    await batches.start_batch(batch_id)
    return ApiResponse.success(_describe(batches, batch_id))


@router.post("/{batch_id}/cancel")
async def cancel_batch(batch_id: str, batches: BatchCoordinator = Depends(get_batches)) -> ApiResponse:
    cancelled = await batches.cancel_batch(batch_id)
    return ApiResponse.success({"batch_id": batch_id, "cancelled": cancelled})
