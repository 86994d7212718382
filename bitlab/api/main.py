"""FastAPI application factory and server entry point."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ..config import LOG_FORMAT, LOG_LEVEL, validate_config
from ..services import Services, build_services
from ..utils.logging import configure_logging
from .config import ApiSettings
from .deps.providers import get_settings
from .errors import register_error_handlers

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    settings: ApiSettings = app.state.settings
    configure_logging(LOG_LEVEL or settings.log_level, LOG_FORMAT)
    logger.info("Starting bitlab API on %s:%s", settings.host, settings.port)

    issues = validate_config()
    for issue in issues:
        if issue.get("level") == "ERROR":
            logger.error("Config validation: %s", issue.get("message", ""))
        else:
            logger.warning("Config validation: %s", issue.get("message", ""))
    if not issues:
        logger.info("Config validation: all checks passed")

    from .routers.logs import setup_log_buffer, teardown_log_buffer
    setup_log_buffer()

    services: Services = app.state.services
    if services.store is not None:
        await services.store.initialize()
    await services.scheduler.restore()

    yield

    await services.close()
    teardown_log_buffer()
    logger.info("Shutting down bitlab API")


def create_app(settings: ApiSettings | None = None, services: Services | None = None) -> FastAPI:
    """Build and return the FastAPI application.

    ``services`` lets callers (and tests) supply pre-wired services; by
    default they are built from ``settings``.
    """
    if settings is None:
        settings = get_settings()
    if services is None:
        services = build_services(
            results_file=Path(settings.results_file) if settings.results_file else None,
            job_db_path=settings.job_db_path,
        )

    app = FastAPI(
        title="bitlab API",
        description="Budget-constrained bit-string strategy execution and job scheduling.",
        version="1.0.0",
        lifespan=_lifespan,
    )
    app.state.settings = settings
    app.state.services = services

    origins = [o.strip() for o in settings.cors_origins.split(",")]
    allow_creds = "*" not in origins
    if not allow_creds:
        logger.warning("CORS origins contain '*'; credentials will not be allowed.")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=allow_creds,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)

    from .routers import all_routers

    for router in all_routers():
        app.include_router(router)

    return app


def run_server() -> None:
    """CLI entry point: ``python -m bitlab.api.main``."""
    import uvicorn

    settings = get_settings()
    app = create_app(settings)
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    run_server()
