"""Slipway daemon — FastAPI app that admits push events and runs build → deploy."""

import logging
from contextlib import asynccontextmanager
from pathlib import Path

import typer
import uvicorn
from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from slipway import __version__
from slipway.core.config import get_settings
from slipway.core.database import init_engine, create_tables, get_session_factory
from slipway.api.router import api_router
from slipway.daemon.executor import RunManager, get_manager, set_manager
from slipway.daemon.scheduler import (
    list_jobs, schedule_retention_sweep, start_scheduler, stop_scheduler,
)

logger = logging.getLogger("slipway")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown."""
    settings = get_settings()

    init_engine(settings.database_url)
    await create_tables()
    logger.info(f"Database initialized: {settings.database_url}")

    manager = RunManager.from_settings(settings, get_session_factory())
    await manager.recover()
    await manager.publisher.connect()
    set_manager(manager)
    logger.info(
        f"Run manager ready (branch={settings.target_branch}, "
        f"environment={settings.environment}, publisher={settings.publisher})"
    )

    schedule_retention_sweep(manager.store, settings.retention_sweep_seconds)
    start_scheduler()

    yield

    for run_id in manager.active_runs:
        await manager.cancel(run_id)
    stop_scheduler()
    await manager.publisher.disconnect()
    set_manager(None)
    logger.info("Slipway daemon stopped")


def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="Slipway",
        description="Push-triggered build and publish pipeline for slide decks",
        version=__version__,
        lifespan=lifespan,
    )

    app.include_router(api_router)

    # Serve what the directory publisher writes
    if settings.publisher == "directory":
        site_root = Path(settings.publish_dir)
        site_root.mkdir(parents=True, exist_ok=True)
        app.mount("/site", StaticFiles(directory=site_root, html=True, follow_symlink=True), name="site")

    @app.get("/health")
    async def health():
        manager = get_manager()
        return {
            "status": "ok",
            "version": __version__,
            "active_runs": manager.active_runs if manager else [],
            "scheduler_jobs": list_jobs(),
        }

    return app


def serve(
    host: str = typer.Option(None, help="Bind address (defaults to SLIPWAY_HOST)"),
    port: int = typer.Option(None, help="Port (defaults to SLIPWAY_PORT)"),
):
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper()),
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )
    host = host or settings.host
    port = port or settings.port
    logger.info(f"slipwayd {__version__} listening on {host}:{port}")
    logger.info(f"Pushes to '{settings.target_branch}' deploy to '{settings.environment}'")
    uvicorn.run(create_app(), host=host, port=port, log_level=settings.log_level)


def main():
    """Entry point for `slipwayd` command."""
    typer.run(serve)


if __name__ == "__main__":
    main()
