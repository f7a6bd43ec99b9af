"""FastAPI application for the generation queue."""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from config import paths
from image_client import ImageClient
from image_store import ImageStore
from services.generation_service import GenerationService
from services.project_service import ProjectService
from services.settings_service import SettingsService

from .job_store import JobStore
from .worker import Worker


logger = logging.getLogger(__name__)


# Global instances
job_store: JobStore | None = None
worker: Worker | None = None
project_service: ProjectService | None = None
settings_service: SettingsService | None = None
generation_service: GenerationService | None = None
shutdown_event: asyncio.Event | None = None


def get_job_store() -> JobStore:
    """Get the job store instance."""
    if job_store is None:
        raise RuntimeError("Job store not initialized")
    return job_store


def get_worker() -> Worker:
    """Get the worker instance."""
    if worker is None:
        raise RuntimeError("Worker not initialized")
    return worker


def get_project_service() -> ProjectService:
    """Get the project service instance."""
    if project_service is None:
        raise RuntimeError("Project service not initialized")
    return project_service


def get_settings_service() -> SettingsService:
    """Get the settings service instance."""
    if settings_service is None:
        raise RuntimeError("Settings service not initialized")
    return settings_service


def get_generation_service() -> GenerationService:
    """Get the generation service instance."""
    if generation_service is None:
        raise RuntimeError("Generation service not initialized")
    return generation_service


def get_shutdown_event() -> asyncio.Event:
    """Get the shutdown event."""
    if shutdown_event is None:
        raise RuntimeError("Shutdown event not initialized")
    return shutdown_event


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle app startup and shutdown."""
    global job_store, worker, project_service, settings_service, generation_service, shutdown_event

    paths.data_dir.mkdir(parents=True, exist_ok=True)
    paths.projects_dir.mkdir(exist_ok=True)

    shutdown_event = asyncio.Event()

    job_store = JobStore(paths.queue_path)
    project_service = ProjectService(paths.projects_dir)
    settings_service = SettingsService(paths.settings_path)

    worker = Worker(
        job_store,
        project_service,
        settings_service,
        ImageClient(),
        ImageStore(paths.images_dir, paths.thumbnails_dir),
    )
    generation_service = GenerationService(job_store, project_service, settings_service, worker)
    worker_task = asyncio.create_task(worker.run())

    yield

    # Shutdown: signal SSE connections to close
    shutdown_event.set()
    await asyncio.sleep(0.5)  # Grace period for SSE connections to close

    # A job interrupted here stays running and resumes on the next start
    worker.stop()
    worker_task.cancel()
    try:
        await worker_task
    except asyncio.CancelledError:
        pass
    logger.info("Shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Scene Batch Generator",
        description="Sequential image generation queue with prompt composition",
        version="1.0.0",
        lifespan=lifespan,
    )

    from .routes import router
    app.include_router(router)

    return app


# Create the app instance
app = create_app()
