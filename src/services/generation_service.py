"""Generation service: validates requests and enqueues jobs."""

import logging

from prompt_composer import ComposedPrompt, SceneNotFoundError
from server.job_store import JobStore
from server.models import Job, JobSpec
from workspace import GenerationParameters, Project

from .project_service import ProjectService
from .settings_service import SettingsService


logger = logging.getLogger(__name__)


class PreconditionError(Exception):
    """The request cannot be queued as given."""
    pass


def plan_jobs(
    project: Project,
    scene_ids: list[int] | None = None,
    count: int | None = None,
    scene_counts: dict[int, int] | None = None,
) -> list[JobSpec]:
    """
    Turn a generate request into one job spec per scene.

    A project without scenes gets a single project-level job. Scenes whose
    count is zero are skipped.

    Args:
        project: Project to generate for
        scene_ids: Scenes to include (all scenes by default)
        count: Images per scene when no per-scene count is given
        scene_counts: Images per scene id, overriding count

    Returns:
        Job specs in scene order

    Raises:
        SceneNotFoundError: If a requested scene is not in the project
    """
    scene_counts = scene_counts or {}

    if not project.scenes:
        if scene_ids:
            raise SceneNotFoundError(f"Project {project.id} has no scenes")
        if count:
            return [JobSpec(project_id=project.id, total_count=count)]
        return []

    if scene_ids:
        scenes = []
        for scene_id in scene_ids:
            scene = project.get_scene(scene_id)
            if scene is None:
                raise SceneNotFoundError(f"Scene {scene_id} not found in project {project.id}")
            scenes.append(scene)
    else:
        scenes = sorted(project.scenes, key=lambda s: s.sort_order)

    specs = []
    for scene in scenes:
        n = scene_counts.get(scene.id, count or 0)
        if n > 0:
            specs.append(JobSpec(
                project_id=project.id,
                project_scene_id=scene.id,
                total_count=n,
            ))
    return specs


class GenerationService:
    """Creates generation jobs and hands them to the worker."""

    def __init__(
        self,
        job_store: JobStore,
        project_service: ProjectService,
        settings_service: SettingsService,
        worker=None,
    ):
        """Initialize the service.

        Args:
            job_store: Job record store
            project_service: Source of projects
            settings_service: Source of the API key
            worker: Worker to notify about new jobs, if running
        """
        self.job_store = job_store
        self.project_service = project_service
        self.settings_service = settings_service
        self.worker = worker

    def _require_api_key(self) -> None:
        if not self.settings_service.load().api_key:
            raise PreconditionError("No API key configured. Set one in settings before generating.")

    def _enqueue(self, specs: list[JobSpec]) -> list[Job]:
        jobs = self.job_store.create_jobs(specs)
        if self.worker is not None:
            self.worker.notify_enqueued(jobs)
        return jobs

    def create_generation_jobs(
        self,
        project_id: int,
        scene_ids: list[int] | None = None,
        count: int | None = None,
        scene_counts: dict[int, int] | None = None,
    ) -> list[Job]:
        """
        Queue images for a project.

        Raises:
            PreconditionError: No API key, or nothing to generate
            ProjectNotFoundError: If the project does not exist
            SceneNotFoundError: If a requested scene does not exist
        """
        self._require_api_key()
        project = self.project_service.get_project(project_id)

        specs = plan_jobs(project, scene_ids, count, scene_counts)
        if not specs:
            raise PreconditionError("No scenes with a nonzero image count")

        jobs = self._enqueue(specs)
        total = sum(job.total_count for job in jobs)
        logger.info(f"Queued {len(jobs)} job(s), {total} image(s) for project {project_id}")
        return jobs

    def create_quick_job(
        self,
        prompts: ComposedPrompt,
        parameters: GenerationParameters,
        count: int,
    ) -> Job:
        """
        Queue images from inline prompts, outside any project.

        Raises:
            PreconditionError: No API key, or a non-positive count
        """
        self._require_api_key()
        if count < 1:
            raise PreconditionError("Image count must be at least 1")

        job = self._enqueue([JobSpec(total_count=count, prompts=prompts, parameters=parameters)])[0]
        logger.info(f"Queued quick job {job.id[:8]} ({count} image(s))")
        return job
