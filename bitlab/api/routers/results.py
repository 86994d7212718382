"""Execution result history endpoints."""
from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from ...engine.export import export_csv
from ...engine.results import ResultHistory, replay_result
from ..deps.providers import get_history, get_services
from ..errors import ResultNotFoundError
from ..schemas.envelope import ApiResponse

router = APIRouter(prefix="/api/results", tags=["results"])


def _lookup(history: ResultHistory, result_id: str):
    result = history.get(result_id)
    if result is None:
        raise ResultNotFoundError(f"Result '{result_id}' not found")
    return result


@router.get("")
async def list_results(limit: int = 50, history: ResultHistory = Depends(get_history)) -> ApiResponse:
    rows = [
        r.model_dump(mode="json", exclude={"steps", "logs", "initial_bits", "final_bits"})
        for r in history.all()[:limit]
    ]
    return ApiResponse.success(rows)


@router.get("/statistics")
async def result_statistics(history: ResultHistory = Depends(get_history)) -> ApiResponse:
    return ApiResponse.success(history.statistics())


@router.get("/{result_id}")
async def get_result(result_id: str, history: ResultHistory = Depends(get_history)) -> ApiResponse:
    return ApiResponse.success(_lookup(history, result_id).model_dump(mode="json"))


@router.get("/{result_id}/csv", response_class=PlainTextResponse)
async def result_csv(result_id: str, history: ResultHistory = Depends(get_history)) -> PlainTextResponse:
    result = _lookup(history, result_id)
    return PlainTextResponse(
        export_csv(result),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{result.id}.csv"'},
    )


@router.post("/{result_id}/replay")
async def replay(result_id: str, services=Depends(get_services)) -> ApiResponse:
    result = _lookup(services.history, result_id)
    report = replay_result(result, services.registry)
    return ApiResponse.success({
        "result_id": result_id,
        "matches": report.matches,
        "first_mismatch_step": report.first_mismatch_step,
    })


@router.delete("/{result_id}")
async def delete_result(result_id: str, history: ResultHistory = Depends(get_history)) -> ApiResponse:
    _lookup(history, result_id)
    history.delete(result_id)
    return ApiResponse.success({"deleted": True, "flushed": await history.flush_async()})
