import threading
from datetime import datetime, timedelta

import pytest

from streamprep.config.common import JOB_STATE_COMPLETED, JOB_STATE_FAILED, JOB_STATE_QUEUED
from streamprep.domain.exceptions import EnqueueError, NoRenditionsError, NotFoundError
from streamprep.domain.jobs import TranscodeJob
from streamprep.pipeline.job_queue import JobQueue, MemoryJobStore, RetryPolicy, YamlJobStore

NO_BACKOFF = RetryPolicy(max_attempts=3, backoff_seconds=0)


def test_retry_policy_backoff_doubles():
    policy = RetryPolicy()
    assert [policy.delay_for(n) for n in (1, 2, 3)] == [2.0, 4.0, 8.0]
    assert policy.should_retry(2)
    assert not policy.should_retry(3)


def test_job_failing_every_attempt_ends_failed_after_three_attempts():
    attempts = []

    def handler(job, report_progress):
        attempts.append(job.attempts)
        raise NoRenditionsError("All 3 renditions failed for video v1.")

    with JobQueue(handler, retry_policy=NO_BACKOFF, max_workers=1) as queue:
        status = queue.enqueue("v1", "u1")
        final = queue.wait(status.job_id, timeout=10)

    assert attempts == [1, 2, 3]
    assert final.state == JOB_STATE_FAILED
    assert final.attempts == 3
    assert final.failure_reason.startswith("NoRenditionsError")
    assert queue.status_for_video("v1").failure_reason == final.failure_reason


def test_job_succeeding_on_second_attempt_completes():
    calls = []

    def handler(job, report_progress):
        calls.append(job.attempts)
        if len(calls) == 1:
            raise RuntimeError("transient")
        report_progress(50)

    with JobQueue(handler, retry_policy=NO_BACKOFF, max_workers=1) as queue:
        final = queue.wait(queue.enqueue("v1", "u1").job_id, timeout=10)

    assert final.state == JOB_STATE_COMPLETED
    assert final.attempts == 2
    assert final.progress == 100


def test_enqueue_is_deduplicated_while_job_is_pending():
    release = threading.Event()

    def handler(job, report_progress):
        release.wait(10)

    with JobQueue(handler, max_workers=1) as queue:
        first = queue.enqueue("v1", "u1")
        second = queue.enqueue("v1", "u1")
        assert second.job_id == first.job_id
        release.set()
        queue.wait(first.job_id, timeout=10)

        third = queue.enqueue("v1", "u1")
        assert third.job_id != first.job_id
        queue.wait(third.job_id, timeout=10)


def test_get_status_of_unknown_job_raises_not_found():
    queue = JobQueue(lambda job, report: None)
    with pytest.raises(NotFoundError):
        queue.get_status("does-not-exist")
    with pytest.raises(NotFoundError):
        queue.status_for_video("v404")


def test_completed_records_are_pruned_to_retention_limit():
    with JobQueue(lambda job, report: None, max_workers=1, keep_completed=2) as queue:
        job_ids = []
        for n in range(4):
            job_id = queue.enqueue(f"v{n}", "u1").job_id
            queue.wait(job_id, timeout=10)
            job_ids.append(job_id)

        with pytest.raises(NotFoundError):
            queue.get_status(job_ids[0])
        assert queue.get_status(job_ids[-1]).state == JOB_STATE_COMPLETED
        assert queue.stats()[JOB_STATE_COMPLETED] == 2


def test_retry_failed_creates_new_jobs_and_keeps_old_records_failed():
    should_fail = {"v1": True, "v2": True}

    def handler(job, report_progress):
        if should_fail[job.video_id]:
            raise RuntimeError("encoder crashed")

    policy = RetryPolicy(max_attempts=1, backoff_seconds=0)
    with JobQueue(handler, retry_policy=policy, max_workers=2) as queue:
        old = [queue.enqueue(v, "u1").job_id for v in ("v1", "v2")]
        for job_id in old:
            queue.wait(job_id, timeout=10)

        should_fail["v1"] = should_fail["v2"] = False
        assert queue.retry_failed() == 2
        assert queue.retry_failed() == 0

        for job_id in old:
            assert queue.get_status(job_id).state == JOB_STATE_FAILED
        for video_id in ("v1", "v2"):
            new_status = queue.status_for_video(video_id)
            assert new_status.job_id not in old
            assert queue.wait(new_status.job_id, timeout=10).state == JOB_STATE_COMPLETED


def test_cleanup_evicts_old_completed_jobs():
    with JobQueue(lambda job, report: None, max_workers=1) as queue:
        old_id = queue.enqueue("v1", "u1").job_id
        new_id = queue.enqueue("v2", "u1").job_id
        queue.wait(old_id, timeout=10)
        queue.wait(new_id, timeout=10)

        queue._jobs[old_id].created_at = datetime.now() - timedelta(days=8)
        assert queue.cleanup(older_than_days=7) == 1

        with pytest.raises(NotFoundError):
            queue.get_status(old_id)
        assert queue.get_status(new_id).state == JOB_STATE_COMPLETED


class _BrokenStore(MemoryJobStore):
    def save(self, job):
        raise OSError("No space left on device")


def test_enqueue_fails_when_store_is_unavailable():
    queue = JobQueue(lambda job, report: None, store=_BrokenStore())
    try:
        with pytest.raises(EnqueueError):
            queue.enqueue("v1", "u1")
        assert queue.stats()[JOB_STATE_QUEUED] == 0
    finally:
        queue.shutdown()


def test_yaml_store_persists_and_reloads_jobs(tmp_path):
    store = YamlJobStore(tmp_path / "jobs")
    job = TranscodeJob(video_id="v1", user_id="u1")
    job.mark_active()
    store.save(job)

    assert (tmp_path / "jobs" / f"{job.job_id}.job.yaml").is_file()
    (loaded,) = store.load_all()
    assert loaded.job_id == job.job_id
    assert loaded.state == "active"
    assert loaded.attempts == 1

    store.delete(job.job_id)
    assert store.load_all() == []


def test_yaml_store_skips_unreadable_files(tmp_path):
    store = YamlJobStore(tmp_path)
    (tmp_path / "broken.job.yaml").write_text("::: not yaml [", encoding="utf-8")
    assert store.load_all() == []


def test_start_recovers_interrupted_jobs(tmp_path):
    store = YamlJobStore(tmp_path)
    interrupted = TranscodeJob(video_id="v1", user_id="u1")
    interrupted.mark_active()
    store.save(interrupted)
    waiting = TranscodeJob(video_id="v2", user_id="u1")
    store.save(waiting)

    seen = []
    queue = JobQueue(lambda job, report: seen.append(job.video_id), store=store, max_workers=1)
    try:
        assert queue.start() == 2
        assert queue.wait(interrupted.job_id, timeout=10).attempts == 2
        assert queue.wait(waiting.job_id, timeout=10).state == JOB_STATE_COMPLETED
    finally:
        queue.shutdown()
    assert sorted(seen) == ["v1", "v2"]


def test_enqueue_after_shutdown_is_rejected():
    queue = JobQueue(lambda job, report: None)
    queue.start()
    queue.shutdown()
    with pytest.raises(EnqueueError):
        queue.enqueue("v1", "u1")
