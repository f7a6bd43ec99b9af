"""Pydantic models for the generation queue and the web server API."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, model_validator

from prompt_composer import CharacterPrompt, ComposedPrompt
from workspace import GenerationParameters


class JobStatus(str, Enum):
    """Status of a generation job."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    def can_transition_to(self, target: "JobStatus") -> bool:
        return target in ALLOWED_TRANSITIONS[self]


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})
ACTIVE_STATUSES = frozenset({JobStatus.PENDING, JobStatus.RUNNING})

ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.RUNNING, JobStatus.CANCELLED}),
    JobStatus.RUNNING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}


class StopReason(str, Enum):
    """Why the queue is halted."""
    PAUSED = "paused"
    ERROR = "error"


class Job(BaseModel):
    """A request for N images of a project, a scene, or inline prompts."""
    id: str
    project_id: int | None = None
    project_scene_id: int | None = None
    batch_id: str | None = None
    status: JobStatus = JobStatus.PENDING
    total_count: int = Field(1, ge=1)
    completed_count: int = Field(0, ge=0)
    error_message: str | None = None
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    # Inline sources for quick jobs that have no project
    prompts: ComposedPrompt | None = None
    parameters: GenerationParameters | None = None

    @property
    def remaining(self) -> int:
        return self.total_count - self.completed_count


class JobSpec(BaseModel):
    """Input for creating one job."""
    project_id: int | None = None
    project_scene_id: int | None = None
    total_count: int = Field(..., ge=1)
    prompts: ComposedPrompt | None = None
    parameters: GenerationParameters | None = None


class QueueFile(BaseModel):
    """Job records persisted to disk."""
    version: int = 1
    jobs: list[Job] = Field(default_factory=list)


class QueueState(BaseModel):
    """Snapshot of the queue processor."""
    processing: bool = False
    queue_stopped: StopReason | None = None
    current_job_id: str | None = None
    stopped_job_id: str | None = None
    error_message: str | None = None


class BatchTiming(BaseModel):
    """Progress and timing of the active batch."""
    started_at: datetime
    total_images: int
    completed_images: int
    avg_image_duration_ms: float | None = None
    eta_ms: float | None = None


# API Request Models

class CreateJobsRequest(BaseModel):
    """Request to generate images for a project."""
    project_id: int
    scene_ids: list[int] | None = None
    count: int | None = Field(None, ge=0, le=1000)
    scene_counts: dict[int, int] | None = None

    @model_validator(mode="after")
    def check_counts(self):
        if self.count is None and self.scene_counts is None:
            raise ValueError("Either count or scene_counts is required")
        if self.scene_counts and any(c < 0 or c > 1000 for c in self.scene_counts.values()):
            raise ValueError("Scene counts must be between 0 and 1000")
        return self


class QuickCharacterPrompt(BaseModel):
    """Character prompt text supplied directly by the caller."""
    name: str = Field(..., min_length=1, max_length=100)
    prompt: str = ""
    negative: str = ""


class QuickJobRequest(BaseModel):
    """Request to generate images from inline prompts."""
    general_prompt: str = Field(..., max_length=10000)
    negative_prompt: str = Field("", max_length=10000)
    characters: list[QuickCharacterPrompt] = Field(default_factory=list)
    parameters: GenerationParameters = Field(default_factory=GenerationParameters)
    count: int = Field(1, ge=1, le=1000)

    def to_prompts(self) -> ComposedPrompt:
        return ComposedPrompt(
            general_prompt=self.general_prompt,
            negative_prompt=self.negative_prompt,
            characters=[
                CharacterPrompt(name=c.name, prompt=c.prompt, negative=c.negative)
                for c in self.characters
            ],
        )


class CancelJobsRequest(BaseModel):
    """Request to cancel jobs."""
    job_ids: list[str] = Field(..., min_length=1)


class SettingsUpdateRequest(BaseModel):
    """Request to update runtime settings."""
    api_key: str | None = None
    generation_delay_ms: int | None = Field(None, ge=0, le=600000)


# API Response Models

class JobListResponse(BaseModel):
    """Polling response: jobs plus timing and queue state."""
    jobs: list[Job]
    batch_timing: BatchTiming | None
    queue_state: QueueState


class StatusResponse(BaseModel):
    """Response for the lightweight queue status endpoint."""
    queue_length: int
    processing: bool
    queue_stopped: StopReason | None


class ActionResponse(BaseModel):
    """Response after a queue control action."""
    success: bool
    message: str


class SettingsResponse(BaseModel):
    """Runtime settings with the API key masked."""
    api_key_set: bool
    api_key_hint: str | None
    generation_delay_ms: int


class PreviewResponse(BaseModel):
    """Composed prompt preview for a scene."""
    project_id: int
    project_scene_id: int
    prompts: ComposedPrompt
    parameters: dict[str, Any]
