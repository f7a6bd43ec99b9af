"""Background worker that processes the generation queue."""

import asyncio
import logging
import time

from config import settings
from image_client import ImageClient
from image_store import ImageStore
from prompt_composer import ImageRequest, build_request, compose_prompts
from services.project_service import ProjectService
from services.settings_service import SettingsService
from workspace import GenerationParameters

from .batch_timing import BatchTimingTracker
from .job_store import JobStore, JobTransitionError
from .models import Job, JobStatus, QueueState, StopReason


logger = logging.getLogger(__name__)


class MissingApiKeyError(Exception):
    """No API key is configured."""
    pass


class Worker:
    """Sequential worker that generates one image at a time.

    The worker owns the QueueState. Callers never write it directly; they
    go through pause_generation(), resume_generation(), dismiss_error(),
    cancel_jobs() and notify_enqueued(), which take effect at the next
    suspension point (after the in-flight request, or during the delay).
    """

    def __init__(
        self,
        job_store: JobStore,
        project_service: ProjectService,
        settings_service: SettingsService,
        image_client: ImageClient,
        image_store: ImageStore,
        timing: BatchTimingTracker | None = None,
        idle_interval: float | None = None,
    ):
        """Initialize the worker.

        Args:
            job_store: Job record store
            project_service: Source of project prompt templates
            settings_service: Source of the API key and delay
            image_client: Client used to generate each image
            image_store: Where generated images are written
            timing: Batch timing tracker (a new one by default)
            idle_interval: Seconds between queue checks while idle
        """
        self.job_store = job_store
        self.project_service = project_service
        self.settings_service = settings_service
        self.image_client = image_client
        self.image_store = image_store
        self.timing = timing or BatchTimingTracker(settings.generation.timing_window)
        self.idle_interval = idle_interval if idle_interval is not None else settings.generation.idle_poll_interval

        self.state = QueueState()
        self._running = False
        self._pause_requested = False
        self._wake = asyncio.Event()
        self._interrupt = asyncio.Event()

    async def run(self):
        """Main worker loop - processes jobs until stopped."""
        self._running = True
        self._restore_timing()
        logger.info("Generation worker started")

        while self._running:
            self._wake.clear()

            # A pause that lands between jobs must not start the next one
            if self._pause_requested and self.state.queue_stopped is None:
                self._enter_pause()
                self._publish_state()

            job = None
            if self.state.queue_stopped is None:
                job = self.job_store.claim_next_job()

            if job is None:
                self._set_idle()
                await self._wait_for_work()
                continue

            try:
                await self._process_job(job)
            except Exception as e:
                logger.exception(f"Unexpected error while processing job {job.id[:8]}: {e}")
                self._enter_error(job.id, str(e) or e.__class__.__name__)

        logger.info("Generation worker stopped")

    def stop(self):
        """Stop the worker after the current suspension point."""
        self._running = False
        self._wake.set()
        self._interrupt.set()

    def snapshot(self) -> QueueState:
        """Copy of the current queue state."""
        return self.state.model_copy()

    # ------------------------------------------------------------------
    # Control requests
    # ------------------------------------------------------------------

    def notify_enqueued(self, jobs: list[Job]) -> None:
        """Add new jobs to the active batch and wake the worker."""
        self.timing.add_images(sum(job.remaining for job in jobs))
        self._wake.set()

    def pause_generation(self) -> bool:
        """Request a pause.

        While an image is in flight the pause takes effect once it returns.

        Returns:
            False if the queue is stopped on an error
        """
        if self.state.queue_stopped == StopReason.ERROR:
            return False
        if self.state.queue_stopped == StopReason.PAUSED:
            return True

        if self.state.processing:
            self._pause_requested = True
            self._interrupt.set()
            logger.info("Pause requested, waiting for the current image")
        else:
            self.state.queue_stopped = StopReason.PAUSED
            logger.info("Queue paused")
            self._publish_state()
        return True

    def resume_generation(self) -> bool:
        """Clear a pause and continue the current job.

        Returns:
            False if the queue was not paused
        """
        if self._pause_requested:
            self._pause_requested = False
            logger.info("Pause request withdrawn")
            return True
        if self.state.queue_stopped != StopReason.PAUSED:
            return False

        self.state.queue_stopped = None
        logger.info("Queue resumed")
        self._publish_state()
        self._wake.set()
        return True

    def dismiss_error(self) -> bool:
        """Clear an error stop. The failed job is not retried.

        Returns:
            False if the queue was not stopped on an error
        """
        if self.state.queue_stopped != StopReason.ERROR:
            return False

        logger.info(f"Error dismissed for job {(self.state.stopped_job_id or '')[:8]}")
        self._clear_error()
        self._wake.set()
        return True

    def cancel_jobs(self, job_ids: list[str]) -> list[Job]:
        """Cancel jobs; a running one stops after its in-flight image.

        Returns:
            The jobs that were cancelled
        """
        wanted = set(job_ids)
        cancelled = self.job_store.mark_cancelled(wanted)
        self.timing.remove_images(sum(job.remaining for job in cancelled))

        if self.state.current_job_id in wanted:
            self._interrupt.set()

        if self.state.queue_stopped == StopReason.ERROR and self.state.stopped_job_id in wanted:
            self._clear_error()
        elif not self.job_store.list_active():
            # Nothing is left to resume
            self._pause_requested = False
            if self.state.queue_stopped == StopReason.PAUSED:
                self.state.queue_stopped = None
                self._publish_state()

        if cancelled:
            logger.info(f"Cancelled {len(cancelled)} job(s)")
        self._wake.set()
        return cancelled

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    async def _process_job(self, job: Job) -> None:
        """Generate the remaining images of one job."""
        self.state.processing = True
        self.state.current_job_id = job.id
        self._publish_state()
        logger.info(f"Processing job {job.id[:8]} ({job.completed_count}/{job.total_count})")

        while self._running:
            current = self.job_store.get_job(job.id)

            if current.status == JobStatus.CANCELLED:
                logger.info(f"Job {job.id[:8]} cancelled at {current.completed_count}/{current.total_count}")
                break

            if current.completed_count >= current.total_count:
                self.job_store.mark_completed(job.id)
                logger.info(f"Job {job.id[:8]} completed ({current.total_count} images)")
                break

            if self._pause_requested:
                self._enter_pause()
                break

            updated = await self._generate_one(current)
            if updated is None:
                break

            delay_ms = self.settings_service.load().generation_delay_ms
            more_work = updated.remaining > 0 or self.job_store.pending_count() > 0
            if more_work and delay_ms > 0:
                await self._sleep(delay_ms)

        self.state.processing = False
        self.state.current_job_id = None
        self._publish_state()

    async def _generate_one(self, job: Job) -> Job | None:
        """Generate and store one image.

        Returns:
            The updated job, or None if the image failed
        """
        self._interrupt.clear()
        started = time.monotonic()
        image_number = job.completed_count + 1

        try:
            api_key = self.settings_service.load().api_key
            if not api_key:
                raise MissingApiKeyError("No API key configured")

            request = self._build_request(job)
            image = await self.image_client.generate(request, api_key)
            # Thumbnailing and file writes run off the event loop
            stored = await asyncio.to_thread(
                self.image_store.save,
                image.data,
                project_id=job.project_id,
                job_id=job.id,
                seed=image.seed,
                extension=request.parameters.image_format,
                metadata={
                    "prompts": request.prompts.model_dump(mode='json'),
                    "parameters": request.parameters.model_dump(mode='json'),
                },
            )
        except Exception as e:
            message = str(e) or e.__class__.__name__
            if self.job_store.get_job(job.id).status == JobStatus.CANCELLED:
                logger.warning(f"Image {image_number} of cancelled job {job.id[:8]} failed: {message}")
                return None
            logger.error(f"Image {image_number}/{job.total_count} of job {job.id[:8]} failed: {message}")
            self._enter_error(job.id, message)
            return None

        duration_ms = (time.monotonic() - started) * 1000
        updated = self.job_store.increment_completed(job.id)
        self.timing.record_image(duration_ms)
        self.job_store.emit("image_ready", {
            "job_id": job.id,
            "file_path": str(stored.file_path),
            "thumbnail_path": str(stored.thumbnail_path),
            "seed": image.seed,
        })
        logger.debug(f"Image {image_number}/{job.total_count} of job {job.id[:8]} took {duration_ms:.0f}ms")
        return updated

    def _build_request(self, job: Job) -> ImageRequest:
        """Compose the prompts for the next image of a job."""
        if job.prompts is not None:
            return build_request(job.prompts, job.parameters or GenerationParameters())

        project = self.project_service.get_project(job.project_id)
        prompts = compose_prompts(project, job.project_scene_id)
        return build_request(prompts, project.parameters)

    async def _sleep(self, delay_ms: int) -> None:
        """Wait between images; pause and cancel requests cut it short."""
        if self._interrupt.is_set():
            return
        try:
            await asyncio.wait_for(self._interrupt.wait(), timeout=delay_ms / 1000)
        except asyncio.TimeoutError:
            pass

    async def _wait_for_work(self) -> None:
        """Sleep until woken or the idle interval passes."""
        try:
            await asyncio.wait_for(self._wake.wait(), timeout=self.idle_interval)
        except asyncio.TimeoutError:
            pass

    # ------------------------------------------------------------------
    # State changes
    # ------------------------------------------------------------------

    def _enter_pause(self) -> None:
        self._pause_requested = False
        self.state.processing = False
        self.state.queue_stopped = StopReason.PAUSED
        logger.info(f"Queue paused during job {(self.state.current_job_id or '')[:8]}")

    def _enter_error(self, job_id: str, message: str) -> None:
        try:
            failed = self.job_store.mark_failed(job_id, message)
            self.timing.remove_images(failed.remaining)
        except JobTransitionError as e:
            logger.warning(f"Could not mark job {job_id[:8]} failed: {e}")

        self._pause_requested = False
        self.state.processing = False
        self.state.queue_stopped = StopReason.ERROR
        self.state.stopped_job_id = job_id
        self.state.error_message = message
        self._publish_state()

    def _clear_error(self) -> None:
        self.state.queue_stopped = None
        self.state.stopped_job_id = None
        self.state.error_message = None
        self._publish_state()

    def _set_idle(self) -> None:
        changed = self.state.processing or self.state.current_job_id is not None
        self.state.processing = False
        self.state.current_job_id = None
        if self._pause_requested:
            self._pause_requested = False
            self.state.queue_stopped = StopReason.PAUSED
            changed = True
        if self.state.queue_stopped is None and self.timing.active:
            self.timing.reset()
            changed = True
        if changed:
            self._publish_state()

    def _restore_timing(self) -> None:
        """Start a batch for jobs left active by a previous run."""
        if self.timing.active:
            return
        remaining = sum(job.remaining for job in self.job_store.list_active())
        if remaining:
            logger.info(f"Resuming {remaining} image(s) from a previous run")
            self.timing.add_images(remaining)

    def _publish_state(self) -> None:
        self.job_store.emit("queue_state", self.state.model_dump(mode='json'))
