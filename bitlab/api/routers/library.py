"""Data files, strategy/scoring/policy sources and the operation catalog."""
from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends

from ...engine.catalog import language_from_filename
from ...errors import ValidationError
from ...services import Services
from ..deps.providers import get_services
from ..errors import DataFileNotFoundError
from ..schemas.envelope import ApiResponse
from ..schemas.requests import DataFileRequest, EnabledRequest, SourceRequest, StrategyRequest

router = APIRouter(prefix="/api/library", tags=["library"])


def _file_summary(entry) -> dict:
    return {"id": entry.id, "name": entry.name, "size": entry.size}


@router.get("/files")
async def list_files(services: Services = Depends(get_services)) -> ApiResponse:
    active = services.data_files.get_active_file()
    return ApiResponse.success({
        "files": [_file_summary(f) for f in services.data_files.list_files()],
        "active_id": active.id if active is not None else None,
    })


@router.post("/files")
async def add_file(body: DataFileRequest, services: Services = Depends(get_services)) -> ApiResponse:
    entry = services.data_files.add_file(body.name, body.bits)
    return ApiResponse.success(_file_summary(entry))


@router.post("/files/{file_id}/activate")
async def activate_file(file_id: str, services: Services = Depends(get_services)) -> ApiResponse:
    if services.data_files.get(file_id) is None:
        raise DataFileNotFoundError(f"Data file '{file_id}' not found")
    services.data_files.set_active_file(file_id)
    return ApiResponse.success({"active_id": file_id})


@router.get("/strategies")
async def list_strategies(services: Services = Depends(get_services)) -> ApiResponse:
    return ApiResponse.success([asdict(s) for s in services.library.list_strategies()])


@router.post("/strategies")
async def add_strategy(body: StrategyRequest, services: Services = Depends(get_services)) -> ApiResponse:
    language = body.language
    report = services.dispatcher.validate(language or language_from_filename(body.name), body.source)
    if not report.valid:
        raise ValidationError(report.errors, report.warnings)
    entry = services.library.add_strategy(body.name, body.source, language)
    return ApiResponse.success(asdict(entry), warnings=report.warnings)


@router.get("/scoring")
async def list_scoring(services: Services = Depends(get_services)) -> ApiResponse:
    return ApiResponse.success([asdict(s) for s in services.library.list_scoring()])


@router.post("/scoring")
async def add_scoring(body: SourceRequest, services: Services = Depends(get_services)) -> ApiResponse:
    return ApiResponse.success(asdict(services.library.add_scoring(body.name, body.source)))


@router.get("/policies")
async def list_policies(services: Services = Depends(get_services)) -> ApiResponse:
    return ApiResponse.success([asdict(s) for s in services.library.list_policies()])


@router.post("/policies")
async def add_policy(body: SourceRequest, services: Services = Depends(get_services)) -> ApiResponse:
    return ApiResponse.success(asdict(services.library.add_policy(body.name, body.source)))


@router.get("/catalog")
async def get_catalog(services: Services = Depends(get_services)) -> ApiResponse:
    catalog = services.catalog
    return ApiResponse.success({
        "operations": [asdict(op) for op in catalog.get_all_operations()],
        "metrics": [asdict(m) for m in catalog.get_all_metrics()],
        "enabled_operations": catalog.enabled_operations(),
        "enabled_metrics": catalog.enabled_metrics(),
    })


@router.put("/catalog/operations")
async def set_enabled_operations(body: EnabledRequest, services: Services = Depends(get_services)) -> ApiResponse:
    try:
        services.catalog.set_enabled_operations(body.ids)
    except KeyError as exc:
        raise ValidationError([str(exc.args[0])]) from exc
    return ApiResponse.success(services.catalog.enabled_operations())


@router.put("/catalog/metrics")
async def set_enabled_metrics(body: EnabledRequest, services: Services = Depends(get_services)) -> ApiResponse:
    try:
        services.catalog.set_enabled_metrics(body.ids)
    except KeyError as exc:
        raise ValidationError([str(exc.args[0])]) from exc
    return ApiResponse.success(services.catalog.enabled_metrics())
