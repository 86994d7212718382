"""API server entry point.

Usage:
    python -m bitlab.run_server
    python -m bitlab.run_server --host 127.0.0.1 --port 9000 --log-level debug
"""
from __future__ import annotations

import argparse
import logging

logger = logging.getLogger(__name__)


def main() -> None:
    parser = argparse.ArgumentParser(description="bitlab API server")
    parser.add_argument("--host", default="0.0.0.0", help="Bind address (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=8000, help="Port (default: 8000)")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload for development")
    parser.add_argument("--log-level", default="info", choices=["debug", "info", "warning", "error"])
    parser.add_argument("--db", default=None, help="Job database path (default: from settings)")
    args = parser.parse_args()

    import uvicorn

    from .api.config import ApiSettings
    from .api.main import create_app
    from .utils.logging import configure_logging

    configure_logging(args.log_level)

    if args.reload:
        # uvicorn needs an import string to reload; settings come from the environment.
        logger.info("Starting bitlab API with reload on %s:%s", args.host, args.port)
        uvicorn.run(
            "bitlab.api.main:create_app",
            factory=True,
            host=args.host,
            port=args.port,
            reload=True,
            log_level=args.log_level,
        )
        return

    overrides = {"host": args.host, "port": args.port, "log_level": args.log_level.upper()}
    if args.db:
        overrides["job_db_path"] = args.db
    settings = ApiSettings(**overrides)
    app = create_app(settings)

    logger.info("Starting bitlab API on %s:%s", args.host, args.port)
    uvicorn.run(app, host=args.host, port=args.port, log_level=args.log_level)


if __name__ == "__main__":
    main()
