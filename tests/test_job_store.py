"""Tests for JobStore."""

import json

import pytest

from server.job_store import JobNotFoundError, JobStore, JobTransitionError
from server.models import JobSpec, JobStatus


def spec(count=3, project_id=1, scene_id=None):
    return JobSpec(project_id=project_id, project_scene_id=scene_id, total_count=count)


class TestJobStore:
    """Tests for JobStore."""

    def test_load_empty_queue(self, queue_path):
        """Test listing from a nonexistent queue file."""
        store = JobStore(queue_path)

        assert store.list_active() == []
        assert store.list_history() == []
        assert store.queue_length() == 0

    def test_create_job(self, queue_path):
        """Test adding a job."""
        store = JobStore(queue_path)

        job = store.create_job(spec(count=5, scene_id=7))

        assert job.status == JobStatus.PENDING
        assert job.total_count == 5
        assert job.completed_count == 0
        assert job.project_scene_id == 7
        assert job.batch_id is not None

        # Verify state was saved
        assert store.get_job(job.id).id == job.id
        assert queue_path.exists()

    def test_create_jobs_share_batch(self, queue_path):
        """Test that jobs created together share a batch id."""
        store = JobStore(queue_path)

        jobs = store.create_jobs([spec(scene_id=1), spec(scene_id=2)])
        later = store.create_job(spec(scene_id=3))

        assert jobs[0].batch_id == jobs[1].batch_id
        assert later.batch_id != jobs[0].batch_id

    def test_create_no_jobs(self, queue_path):
        """Test that an empty spec list creates nothing."""
        store = JobStore(queue_path)
        assert store.create_jobs([]) == []
        assert not queue_path.exists()

    def test_get_missing_job(self, queue_path):
        """Test that unknown ids raise."""
        store = JobStore(queue_path)
        with pytest.raises(JobNotFoundError):
            store.get_job("nope")

    def test_persists_across_instances(self, queue_path):
        """Test that jobs are reloaded by a new store."""
        job = JobStore(queue_path).create_job(spec())

        reloaded = JobStore(queue_path).get_job(job.id)
        assert reloaded.total_count == 3
        assert reloaded.status == JobStatus.PENDING

    def test_corrupted_queue_file(self, queue_path):
        """Test that a corrupted file is treated as empty."""
        queue_path.write_text("{not json")
        store = JobStore(queue_path)

        assert store.list_active() == []
        job = store.create_job(spec())
        assert json.loads(queue_path.read_text())["jobs"][0]["id"] == job.id


class TestClaimNextJob:
    """Tests for picking the job to process."""

    def test_claims_oldest_pending(self, queue_path):
        """Test FIFO order."""
        store = JobStore(queue_path)
        first = store.create_job(spec(scene_id=1))
        store.create_job(spec(scene_id=2))

        claimed = store.claim_next_job()

        assert claimed.id == first.id
        assert claimed.status == JobStatus.RUNNING
        assert claimed.started_at is not None

    def test_running_job_returned_again(self, queue_path):
        """Test that a running job is resumed instead of starting another."""
        store = JobStore(queue_path)
        first = store.create_job(spec(scene_id=1))
        second = store.create_job(spec(scene_id=2))

        store.claim_next_job()
        again = store.claim_next_job()

        assert again.id == first.id
        assert store.get_job(second.id).status == JobStatus.PENDING

    def test_nothing_to_claim(self, queue_path):
        """Test that an empty queue returns None."""
        assert JobStore(queue_path).claim_next_job() is None

    def test_mark_running_rejects_second_job(self, queue_path):
        """Test that only one job can run at a time."""
        store = JobStore(queue_path)
        first = store.create_job(spec())
        second = store.create_job(spec())

        store.mark_running(first.id)
        with pytest.raises(JobTransitionError):
            store.mark_running(second.id)


class TestProgress:
    """Tests for counting images and finishing jobs."""

    def test_increment_completed(self, queue_path):
        """Test recording progress."""
        store = JobStore(queue_path)
        job = store.create_job(spec(count=2))
        store.claim_next_job()

        updated = store.increment_completed(job.id)

        assert updated.completed_count == 1
        assert updated.remaining == 1

    def test_increment_pending_rejected(self, queue_path):
        """Test that a pending job cannot record progress."""
        store = JobStore(queue_path)
        job = store.create_job(spec())

        with pytest.raises(JobTransitionError):
            store.increment_completed(job.id)

    def test_increment_past_total_rejected(self, queue_path):
        """Test that completed_count never exceeds total_count."""
        store = JobStore(queue_path)
        job = store.create_job(spec(count=1))
        store.claim_next_job()
        store.increment_completed(job.id)

        with pytest.raises(JobTransitionError):
            store.increment_completed(job.id)

    def test_increment_cancelled_job(self, queue_path):
        """Test that an image finished after cancellation still counts."""
        store = JobStore(queue_path)
        job = store.create_job(spec(count=3))
        store.claim_next_job()
        store.mark_cancelled([job.id])

        updated = store.increment_completed(job.id)

        assert updated.status == JobStatus.CANCELLED
        assert updated.completed_count == 1

    def test_mark_completed(self, queue_path):
        """Test completing a full job."""
        store = JobStore(queue_path)
        job = store.create_job(spec(count=1))
        store.claim_next_job()
        store.increment_completed(job.id)

        done = store.mark_completed(job.id)

        assert done.status == JobStatus.COMPLETED
        assert done.completed_at is not None
        assert store.list_active() == []

    def test_mark_completed_requires_all_images(self, queue_path):
        """Test that a job with images missing cannot complete."""
        store = JobStore(queue_path)
        job = store.create_job(spec(count=2))
        store.claim_next_job()
        store.increment_completed(job.id)

        with pytest.raises(JobTransitionError):
            store.mark_completed(job.id)

    def test_mark_failed(self, queue_path):
        """Test failing a running job."""
        store = JobStore(queue_path)
        job = store.create_job(spec())
        store.claim_next_job()

        failed = store.mark_failed(job.id, "NAI API error 500: boom")

        assert failed.status == JobStatus.FAILED
        assert failed.error_message == "NAI API error 500: boom"

    def test_terminal_jobs_do_not_move(self, queue_path):
        """Test that terminal states are final."""
        store = JobStore(queue_path)
        job = store.create_job(spec())
        store.claim_next_job()
        store.mark_failed(job.id, "boom")

        with pytest.raises(JobTransitionError):
            store.mark_running(job.id)


class TestCancel:
    """Tests for cancelling jobs."""

    def test_cancel_pending_and_running(self, queue_path):
        """Test cancelling active jobs."""
        store = JobStore(queue_path)
        first = store.create_job(spec())
        second = store.create_job(spec())
        keep = store.create_job(spec())
        store.claim_next_job()

        cancelled = store.mark_cancelled([first.id, second.id])

        assert {j.id for j in cancelled} == {first.id, second.id}
        assert [j.id for j in store.list_active()] == [keep.id]

    def test_cancel_is_idempotent(self, queue_path):
        """Test that cancelling twice or unknown ids changes nothing."""
        store = JobStore(queue_path)
        job = store.create_job(spec())

        assert len(store.mark_cancelled([job.id])) == 1
        assert store.mark_cancelled([job.id, "unknown"]) == []
        assert store.get_job(job.id).status == JobStatus.CANCELLED

    def test_cancel_skips_completed(self, queue_path):
        """Test that finished jobs are not cancelled."""
        store = JobStore(queue_path)
        job = store.create_job(spec(count=1))
        store.claim_next_job()
        store.increment_completed(job.id)
        store.mark_completed(job.id)

        assert store.mark_cancelled([job.id]) == []
        assert store.get_job(job.id).status == JobStatus.COMPLETED


class TestListing:
    """Tests for job listings."""

    def test_list_active_by_project(self, queue_path):
        """Test filtering active jobs by project."""
        store = JobStore(queue_path)
        a = store.create_job(spec(project_id=1))
        store.create_job(spec(project_id=2))
        quick = store.create_job(JobSpec(total_count=1))

        assert [j.id for j in store.list_active(1)] == [a.id]
        assert len(store.list_active()) == 3
        assert quick.project_id is None

    def test_list_history_newest_first(self, queue_path):
        """Test that history includes terminal jobs in reverse order."""
        store = JobStore(queue_path)
        first = store.create_job(spec())
        second = store.create_job(spec())
        store.mark_cancelled([first.id])

        history = store.list_history()

        assert [j.id for j in history] == [second.id, first.id]
        assert store.list_history(limit=1)[0].id == second.id

    def test_queue_length_and_pending_count(self, queue_path):
        """Test the queue counters."""
        store = JobStore(queue_path)
        store.create_job(spec())
        store.create_job(spec())
        store.claim_next_job()

        assert store.queue_length() == 2
        assert store.pending_count() == 1


class TestListeners:
    """Tests for event notification."""

    def test_events_emitted(self, queue_path):
        """Test that listeners receive job events in order."""
        store = JobStore(queue_path)
        events = []
        store.add_listener(lambda event, data: events.append(event))

        job = store.create_job(spec(count=1))
        store.claim_next_job()
        store.increment_completed(job.id)
        store.mark_completed(job.id)

        assert events == [
            "job_created",
            "queue_updated",
            "job_started",
            "job_progress",
            "job_completed",
            "queue_updated",
        ]

    def test_remove_listener(self, queue_path):
        """Test that removed listeners are not called."""
        store = JobStore(queue_path)
        events = []

        def listener(event, data):
            events.append(event)

        store.add_listener(listener)
        store.remove_listener(listener)
        store.create_job(spec())

        assert events == []

    def test_failing_listener_does_not_break_store(self, queue_path):
        """Test that listener errors are contained."""
        store = JobStore(queue_path)

        def broken(event, data):
            raise RuntimeError("listener bug")

        store.add_listener(broken)
        job = store.create_job(spec())

        assert store.get_job(job.id).status == JobStatus.PENDING
