from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from .config import AppConfig, get_settings
from .routes import health, probes
from .services.job_manager import ProbeJobManager
from .services.job_store import JobStore
from .services.probe_runner import ProbeRunner


def create_app(settings: AppConfig | None = None) -> FastAPI:
    """Create the FastAPI application that runs ping probes back at its callers."""
    settings = settings or get_settings()
    settings.ensure_directories()

    store = JobStore(settings)
    runner = ProbeRunner.from_settings(settings)
    job_manager = ProbeJobManager(settings, store, runner)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        await job_manager.shutdown()
        store.close()

    app = FastAPI(
        title="PingMe",
        version="0.1.0",
        description="Asynchronous ICMP latency probes against the calling address.",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.job_store = store
    app.state.probe_runner = runner
    app.state.job_manager = job_manager

    app.include_router(health.router)
    app.include_router(probes.router)

    @app.get("/config", tags=["config"])
    async def read_config() -> dict[str, object]:
        return {
            "platform": settings.platform,
            "max_concurrent_probes": settings.max_concurrent_probes,
            "default_period": settings.default_period,
            "default_duration": settings.default_duration,
            "min_period": settings.min_period,
            "max_duration": settings.max_duration,
        }

    return app
