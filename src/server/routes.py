"""API routes for the web server."""

import asyncio
import json
import logging
from typing import AsyncGenerator

from fastapi import APIRouter, HTTPException, Request
from sse_starlette.sse import EventSourceResponse

from config import settings
from prompt_composer import SceneNotFoundError, compose_prompts
from services.generation_service import PreconditionError
from services.project_service import ProjectNotFoundError
from workspace import Project

from .app import (
    get_generation_service,
    get_job_store,
    get_project_service,
    get_settings_service,
    get_shutdown_event,
    get_worker,
)
from .job_store import JobNotFoundError
from .models import (
    ActionResponse,
    CancelJobsRequest,
    CreateJobsRequest,
    Job,
    JobListResponse,
    PreviewResponse,
    QuickJobRequest,
    SettingsResponse,
    SettingsUpdateRequest,
    StatusResponse,
)


router = APIRouter()


def _job_list(project_id: int | None) -> JobListResponse:
    """Active jobs plus the job that stopped the queue, if any."""
    store = get_job_store()
    worker = get_worker()
    state = worker.snapshot()

    jobs = store.list_active(project_id)
    if state.stopped_job_id and not any(j.id == state.stopped_job_id for j in jobs):
        try:
            stopped = store.get_job(state.stopped_job_id)
        except JobNotFoundError:
            stopped = None
        if stopped and (project_id is None or stopped.project_id == project_id):
            jobs.insert(0, stopped)

    return JobListResponse(
        jobs=jobs,
        batch_timing=worker.timing.snapshot(),
        queue_state=state,
    )


# ----------------------------------------------------------------------------
# Queue Endpoints
# ----------------------------------------------------------------------------

@router.get("/api/status", response_model=StatusResponse)
async def get_status():
    """Get lightweight queue status."""
    state = get_worker().snapshot()
    return StatusResponse(
        queue_length=get_job_store().queue_length(),
        processing=state.processing,
        queue_stopped=state.queue_stopped,
    )


@router.get("/api/events")
async def sse_events(request: Request):
    """SSE endpoint for real-time updates."""
    queue = asyncio.Queue(maxsize=settings.server.sse_queue_size)
    store = get_job_store()

    def on_event(event: str, data: dict):
        try:
            queue.put_nowait({"event": event, "data": data})
        except asyncio.QueueFull:
            logging.warning(f"SSE queue full, dropped event: {event}")

    # Register listener BEFORE getting initial state to avoid race condition
    store.add_listener(on_event)

    async def event_generator() -> AsyncGenerator:
        try:
            shutdown = get_shutdown_event()
        except RuntimeError:
            shutdown = None

        try:
            yield {
                "event": "status",
                "data": _job_list(None).model_dump_json(),
            }

            while True:
                if shutdown and shutdown.is_set():
                    break

                if await request.is_disconnected():
                    break

                try:
                    msg = await asyncio.wait_for(queue.get(), timeout=settings.server.sse_timeout)
                    yield {
                        "event": msg["event"],
                        "data": json.dumps(msg["data"]),
                    }
                except asyncio.TimeoutError:
                    yield {"event": "ping", "data": ""}

        finally:
            store.remove_listener(on_event)

    return EventSourceResponse(event_generator())


@router.post("/api/queue/pause", response_model=ActionResponse)
async def pause_generation():
    """Pause after the image currently being generated."""
    if not get_worker().pause_generation():
        raise HTTPException(status_code=409, detail="Queue is stopped on an error; dismiss it first")
    return ActionResponse(success=True, message="Pause requested")


@router.post("/api/queue/resume", response_model=ActionResponse)
async def resume_generation():
    """Resume a paused queue."""
    resumed = get_worker().resume_generation()
    return ActionResponse(
        success=resumed,
        message="Queue resumed" if resumed else "Queue is not paused",
    )


@router.post("/api/queue/dismiss-error", response_model=ActionResponse)
async def dismiss_generation_error():
    """Clear an error stop without retrying the failed job."""
    dismissed = get_worker().dismiss_error()
    return ActionResponse(
        success=dismissed,
        message="Error dismissed" if dismissed else "Queue is not stopped on an error",
    )


# ----------------------------------------------------------------------------
# Job Endpoints
# ----------------------------------------------------------------------------

@router.post("/api/jobs", response_model=list[Job])
async def create_generation_job(req: CreateJobsRequest):
    """Queue images for a project's scenes."""
    service = get_generation_service()
    try:
        return service.create_generation_jobs(
            req.project_id,
            scene_ids=req.scene_ids,
            count=req.count,
            scene_counts=req.scene_counts,
        )
    except PreconditionError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except (ProjectNotFoundError, SceneNotFoundError) as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/api/jobs/quick", response_model=Job)
async def create_quick_generation_job(req: QuickJobRequest):
    """Queue images from inline prompts."""
    if not req.general_prompt.strip():
        raise HTTPException(status_code=400, detail="General prompt is required")

    service = get_generation_service()
    try:
        return service.create_quick_job(req.to_prompts(), req.parameters, req.count)
    except PreconditionError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/api/jobs", response_model=JobListResponse)
async def list_jobs(project_id: int | None = None):
    """Active jobs, batch timing and queue state (polling contract)."""
    return _job_list(project_id)


@router.get("/api/jobs/history", response_model=list[Job])
async def list_job_history(project_id: int | None = None, limit: int = 100):
    """All jobs, newest first."""
    return get_job_store().list_history(project_id, limit=limit if limit > 0 else None)


@router.post("/api/jobs/cancel", response_model=ActionResponse)
async def cancel_jobs(req: CancelJobsRequest):
    """Cancel pending or running jobs."""
    cancelled = get_worker().cancel_jobs(req.job_ids)
    return ActionResponse(success=True, message=f"Cancelled {len(cancelled)} job(s)")


@router.get("/api/jobs/{job_id}", response_model=Job)
async def get_job(job_id: str):
    """Get a single job."""
    try:
        return get_job_store().get_job(job_id)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="Job not found")


# ----------------------------------------------------------------------------
# Project Endpoints
# ----------------------------------------------------------------------------

@router.get("/api/projects", response_model=list[Project])
async def list_projects():
    """List all projects."""
    return get_project_service().list_projects()


@router.get("/api/projects/{project_id}", response_model=Project)
async def get_project(project_id: int):
    """Get a project's prompt sources."""
    try:
        return get_project_service().get_project(project_id)
    except ProjectNotFoundError:
        raise HTTPException(status_code=404, detail="Project not found")


@router.put("/api/projects/{project_id}", response_model=Project)
async def save_project(project_id: int, project: Project):
    """Create or replace a project."""
    if project.id != project_id:
        raise HTTPException(status_code=400, detail="Project id does not match URL")
    return get_project_service().save_project(project)


@router.get("/api/projects/{project_id}/jobs", response_model=JobListResponse)
async def list_project_jobs(project_id: int):
    """Active jobs of one project, batch timing and queue state."""
    return _job_list(project_id)


@router.get("/api/projects/{project_id}/scenes/{scene_id}/preview", response_model=PreviewResponse)
async def preview_scene_prompts(project_id: int, scene_id: int):
    """Show the prompts a scene would be generated with."""
    try:
        project = get_project_service().get_project(project_id)
        prompts = compose_prompts(project, scene_id)
    except (ProjectNotFoundError, SceneNotFoundError) as e:
        raise HTTPException(status_code=404, detail=str(e))

    return PreviewResponse(
        project_id=project_id,
        project_scene_id=scene_id,
        prompts=prompts,
        parameters=project.parameters.model_dump(),
    )


# ----------------------------------------------------------------------------
# Settings Endpoints
# ----------------------------------------------------------------------------

def _settings_response(current) -> SettingsResponse:
    key = current.api_key
    return SettingsResponse(
        api_key_set=bool(key),
        api_key_hint=f"...{key[-4:]}" if key and len(key) > 8 else None,
        generation_delay_ms=current.generation_delay_ms,
    )


@router.get("/api/settings", response_model=SettingsResponse)
async def get_settings():
    """Get runtime settings with the API key masked."""
    return _settings_response(get_settings_service().load())


@router.put("/api/settings", response_model=SettingsResponse)
async def update_settings(req: SettingsUpdateRequest):
    """Update the API key and/or the delay between images."""
    current = get_settings_service().update(
        api_key=req.api_key,
        generation_delay_ms=req.generation_delay_ms,
    )
    return _settings_response(current)
