"""Disk-based job record store for the generation queue."""

import json
import logging
import uuid
from datetime import datetime
from pathlib import Path
from threading import Lock
from typing import Callable, Iterable

from .models import ACTIVE_STATUSES, Job, JobSpec, JobStatus, QueueFile


class JobNotFoundError(Exception):
    """Job does not exist."""
    pass


class JobTransitionError(Exception):
    """A job status or count change would break the job invariants."""
    pass


class JobStore:
    """Persists generation jobs and notifies listeners of changes."""

    def __init__(self, queue_path: Path):
        """Initialize the job store.

        Args:
            queue_path: Path to the queue.json file
        """
        self.queue_path = queue_path
        self._lock = Lock()
        self._listeners: list[Callable[[str, dict], None]] = []

    def _load_state(self) -> QueueFile:
        """Load job records from disk."""
        if self.queue_path.exists():
            try:
                data = json.loads(self.queue_path.read_text())
                return QueueFile.model_validate(data)
            except json.JSONDecodeError as e:
                logging.warning(f"Corrupted queue file, resetting: {e}")
            except Exception as e:
                logging.error(f"Failed to load queue state: {e}")
        return QueueFile()

    def _save_state(self, state: QueueFile) -> None:
        """Save job records to disk atomically."""
        self.queue_path.parent.mkdir(parents=True, exist_ok=True)
        # Write to temp file first, then atomic rename (POSIX rename is atomic)
        tmp_path = self.queue_path.with_suffix('.tmp')
        tmp_path.write_text(state.model_dump_json(indent=2))
        tmp_path.replace(self.queue_path)

    def _notify(self, event: str, data: dict) -> None:
        """Notify all listeners of an event.

        Iterates a snapshot to allow concurrent add/remove operations.
        """
        for listener in list(self._listeners):
            try:
                listener(event, data)
            except Exception as e:
                logging.exception(f"Error in job store listener for event {event}: {e}")

    def add_listener(self, listener: Callable[[str, dict], None]) -> None:
        """Add an event listener (thread-safe)."""
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[str, dict], None]) -> None:
        """Remove an event listener (thread-safe)."""
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    @staticmethod
    def _find(state: QueueFile, job_id: str) -> Job:
        for job in state.jobs:
            if job.id == job_id:
                return job
        raise JobNotFoundError(f"Job not found: {job_id}")

    @staticmethod
    def _transition(job: Job, target: JobStatus) -> None:
        if not job.status.can_transition_to(target):
            raise JobTransitionError(
                f"Job {job.id} cannot move from {job.status.value} to {target.value}"
            )
        now = datetime.now()
        job.status = target
        job.updated_at = now
        if target == JobStatus.RUNNING:
            job.started_at = now
        elif target.is_terminal:
            job.completed_at = now

    def _queue_updated(self, state: QueueFile) -> None:
        self._notify("queue_updated", {
            "pending_count": sum(1 for j in state.jobs if j.status == JobStatus.PENDING),
            "running": next((j.id for j in state.jobs if j.status == JobStatus.RUNNING), None),
        })

    def create_job(self, spec: JobSpec) -> Job:
        """Add a single pending job.

        Args:
            spec: What to generate

        Returns:
            The created job
        """
        return self.create_jobs([spec])[0]

    def create_jobs(self, specs: Iterable[JobSpec]) -> list[Job]:
        """Add several pending jobs as one batch.

        Args:
            specs: What to generate, one entry per job

        Returns:
            The created jobs in creation order
        """
        specs = list(specs)
        if not specs:
            return []

        with self._lock:
            state = self._load_state()
            batch_id = str(uuid.uuid4())

            jobs = [
                Job(
                    id=str(uuid.uuid4()),
                    batch_id=batch_id,
                    status=JobStatus.PENDING,
                    **spec.model_dump(),
                )
                for spec in specs
            ]
            state.jobs.extend(jobs)
            self._save_state(state)

            for job in jobs:
                self._notify("job_created", job.model_dump(mode='json'))
            self._queue_updated(state)

            return jobs

    def get_job(self, job_id: str) -> Job:
        """Get a job by id.

        Raises:
            JobNotFoundError: If no job has that id
        """
        with self._lock:
            return self._find(self._load_state(), job_id)

    def mark_running(self, job_id: str) -> Job:
        """Move a pending job to running.

        Raises:
            JobTransitionError: If the job is not pending or another job runs
        """
        with self._lock:
            state = self._load_state()
            job = self._find(state, job_id)
            running = next((j for j in state.jobs if j.status == JobStatus.RUNNING), None)
            if running is not None and running.id != job_id:
                raise JobTransitionError(f"Job {running.id} is already running")
            self._transition(job, JobStatus.RUNNING)
            self._save_state(state)

            self._notify("job_started", job.model_dump(mode='json'))
            return job

    def claim_next_job(self) -> Job | None:
        """Get the job the processor should work on.

        A job already running (paused, or interrupted by a restart) is
        returned as is. Otherwise the oldest pending job is marked running.

        Returns:
            The job to process, or None if nothing is active
        """
        with self._lock:
            state = self._load_state()

            for job in state.jobs:
                if job.status == JobStatus.RUNNING:
                    return job

            # Jobs are appended in creation order
            for job in state.jobs:
                if job.status == JobStatus.PENDING:
                    self._transition(job, JobStatus.RUNNING)
                    self._save_state(state)
                    self._notify("job_started", job.model_dump(mode='json'))
                    return job

            return None

    def increment_completed(self, job_id: str) -> Job:
        """Record one finished image for a job.

        A job cancelled while its last request was in flight still counts
        that image.

        Raises:
            JobTransitionError: If the job is not running/cancelled or is full
        """
        with self._lock:
            state = self._load_state()
            job = self._find(state, job_id)

            if job.status not in (JobStatus.RUNNING, JobStatus.CANCELLED):
                raise JobTransitionError(
                    f"Cannot record progress for {job.status.value} job {job_id}"
                )
            if job.completed_count >= job.total_count:
                raise JobTransitionError(f"Job {job_id} already has all {job.total_count} images")

            job.completed_count += 1
            job.updated_at = datetime.now()
            self._save_state(state)

            self._notify("job_progress", {
                "job_id": job_id,
                "completed_count": job.completed_count,
                "total_count": job.total_count,
            })
            return job

    def mark_completed(self, job_id: str) -> Job:
        """Mark a running job as completed.

        Raises:
            JobTransitionError: If images are still missing
        """
        with self._lock:
            state = self._load_state()
            job = self._find(state, job_id)
            if job.completed_count != job.total_count:
                raise JobTransitionError(
                    f"Job {job_id} has {job.completed_count}/{job.total_count} images"
                )
            self._transition(job, JobStatus.COMPLETED)
            self._save_state(state)

            self._notify("job_completed", {"job_id": job_id})
            self._queue_updated(state)
            return job

    def mark_failed(self, job_id: str, message: str) -> Job:
        """Mark a running job as failed.

        Args:
            job_id: ID of the job
            message: Error message to keep on the job
        """
        with self._lock:
            state = self._load_state()
            job = self._find(state, job_id)
            self._transition(job, JobStatus.FAILED)
            job.error_message = message
            self._save_state(state)

            self._notify("job_failed", {"job_id": job_id, "error": message})
            self._queue_updated(state)
            return job

    def mark_cancelled(self, job_ids: Iterable[str]) -> list[Job]:
        """Cancel pending or running jobs.

        Unknown ids and jobs already in a terminal state are skipped.

        Args:
            job_ids: IDs of the jobs to cancel

        Returns:
            The jobs that were cancelled by this call
        """
        wanted = set(job_ids)
        with self._lock:
            state = self._load_state()
            cancelled = []
            for job in state.jobs:
                if job.id in wanted and job.status in ACTIVE_STATUSES:
                    self._transition(job, JobStatus.CANCELLED)
                    cancelled.append(job)

            if cancelled:
                self._save_state(state)
                for job in cancelled:
                    self._notify("job_cancelled", {"job_id": job.id})
                self._queue_updated(state)

            return cancelled

    def list_active(self, project_id: int | None = None) -> list[Job]:
        """List pending and running jobs in queue order.

        Args:
            project_id: Only include jobs of this project
        """
        with self._lock:
            state = self._load_state()
        return [
            job for job in state.jobs
            if job.status in ACTIVE_STATUSES
            and (project_id is None or job.project_id == project_id)
        ]

    def list_history(self, project_id: int | None = None, limit: int | None = 100) -> list[Job]:
        """List jobs of any status, newest first.

        Args:
            project_id: Only include jobs of this project
            limit: Maximum number of jobs to return (None for all)
        """
        with self._lock:
            state = self._load_state()
        jobs = [
            job for job in reversed(state.jobs)
            if project_id is None or job.project_id == project_id
        ]
        return jobs[:limit] if limit is not None else jobs

    def queue_length(self) -> int:
        """Number of pending and running jobs."""
        return len(self.list_active())

    def pending_count(self) -> int:
        """Number of jobs waiting to start."""
        with self._lock:
            state = self._load_state()
        return sum(1 for job in state.jobs if job.status == JobStatus.PENDING)

    def emit(self, event: str, data: dict) -> None:
        """Forward an event from the processor to listeners."""
        self._notify(event, data)
