"""
This module schedules transcoding jobs onto a fixed-size worker pool.

`JobQueue` decouples "this video needs processing" from running it. Each job
occupies one worker thread for a whole attempt, so the pool size is the upper
bound on videos being transcoded at once. A failed attempt is retried after
an exponential backoff until the `RetryPolicy` is exhausted; each retry runs
the handler again from the top.

Job records are kept in a `JobStore`. `YamlJobStore` writes one YAML file per
job so that queued or interrupted work is picked up again by `start()` after
a restart (at-least-once delivery). Terminal records are pruned to the most
recent `keep_completed` / `keep_failed`.
"""

import concurrent.futures
import dataclasses
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set

import yaml
from loguru import logger

from ..config.common import (
    CLEANUP_COMPLETED_OLDER_THAN_DAYS,
    DEFAULT_MAX_WORKERS,
    JOB_FILE_SUFFIX,
    JOB_STATE_ACTIVE,
    JOB_STATE_COMPLETED,
    JOB_STATE_FAILED,
    JOB_STATE_QUEUED,
    KEEP_COMPLETED_JOBS,
    KEEP_FAILED_JOBS,
    MAX_JOB_ATTEMPTS,
    RETRY_BACKOFF_FACTOR,
    RETRY_BACKOFF_SECONDS,
)
from ..domain.exceptions import EnqueueError, NotFoundError
from ..domain.jobs import JobStatus, TranscodeJob

ProgressReporter = Callable[[int], None]
JobHandler = Callable[[TranscodeJob, ProgressReporter], object]


@dataclass(frozen=True)
class RetryPolicy:
    """
    How often and how patiently a failing job is retried.

    With the defaults a job runs at most 3 times, waiting 2s and then 4s
    between attempts (8s would follow a third failure if more attempts were
    allowed).
    """

    max_attempts: int = MAX_JOB_ATTEMPTS
    backoff_seconds: float = RETRY_BACKOFF_SECONDS
    backoff_factor: float = RETRY_BACKOFF_FACTOR

    def should_retry(self, attempts: int) -> bool:
        return attempts < self.max_attempts

    def delay_for(self, attempt: int) -> float:
        """Delay before the attempt following attempt number `attempt` (1-based)."""
        return self.backoff_seconds * self.backoff_factor ** max(0, attempt - 1)


class JobStore(ABC):
    """Durable storage of job records, keyed by job id."""

    @abstractmethod
    def save(self, job: TranscodeJob):
        ...

    @abstractmethod
    def delete(self, job_id: str):
        ...

    @abstractmethod
    def load_all(self) -> List[TranscodeJob]:
        ...


class MemoryJobStore(JobStore):
    """Keeps records in process memory; nothing survives a restart."""

    def __init__(self):
        self._records: Dict[str, dict] = {}
        self._lock = threading.Lock()

    def save(self, job: TranscodeJob):
        with self._lock:
            self._records[job.job_id] = job.to_dict()

    def delete(self, job_id: str):
        with self._lock:
            self._records.pop(job_id, None)

    def load_all(self) -> List[TranscodeJob]:
        with self._lock:
            records = list(self._records.values())
        return [TranscodeJob.from_dict(r) for r in records]


class YamlJobStore(JobStore):
    """
    One `<job_id>.job.yaml` file per job in `storage_dir`.

    `save` propagates `OSError`/`yaml.YAMLError`; the queue decides whether
    that is fatal. Unreadable files are skipped by `load_all` with a warning.
    """

    def __init__(self, storage_dir: Path):
        self.storage_dir = storage_dir.resolve()
        self.storage_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, job_id: str) -> Path:
        return self.storage_dir / f"{job_id}{JOB_FILE_SUFFIX}"

    def save(self, job: TranscodeJob):
        path = self.path_for(job.job_id)
        tmp_path = path.with_name(path.name + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as f:
            yaml.dump(job.to_dict(), f, default_flow_style=False, sort_keys=False, allow_unicode=True)
        tmp_path.replace(path)

    def delete(self, job_id: str):
        try:
            self.path_for(job_id).unlink(missing_ok=True)
        except OSError as e:
            logger.error(f"Error removing job file for {job_id}: {e}")

    def load_all(self) -> List[TranscodeJob]:
        jobs = []
        for path in sorted(self.storage_dir.glob(f"*{JOB_FILE_SUFFIX}")):
            try:
                with path.open("r", encoding="utf-8") as f:
                    data = yaml.safe_load(f)
                jobs.append(TranscodeJob.from_dict(data))
            except (OSError, yaml.YAMLError, KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping unreadable job file {path.name}: {e}")
        return jobs


class JobQueue:
    """
    Runs `handler(job, report_progress)` for every enqueued job.

    The handler receives a copy of the job record and reports overall
    progress through `report_progress(percent)`. Returning normally completes
    the job; raising counts as a failed attempt.

    Usage:
        with JobQueue(orchestrator.process) as queue:
            status = queue.enqueue(video_id, user_id)
            queue.wait(status.job_id)
    """

    def __init__(
        self,
        handler: JobHandler,
        store: Optional[JobStore] = None,
        retry_policy: Optional[RetryPolicy] = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
        keep_completed: int = KEEP_COMPLETED_JOBS,
        keep_failed: int = KEEP_FAILED_JOBS,
    ):
        self.handler = handler
        self.store = store or MemoryJobStore()
        self.retry_policy = retry_policy or RetryPolicy()
        self.max_workers = max(1, int(max_workers))
        self.keep_completed = keep_completed
        self.keep_failed = keep_failed

        self._jobs: Dict[str, TranscodeJob] = {}
        self._cond = threading.Condition()
        self._executor: Optional[concurrent.futures.ThreadPoolExecutor] = None
        self._timers: Set[threading.Timer] = set()
        self._closed = False

    def __enter__(self) -> "JobQueue":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.shutdown()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> int:
        """
        Starts the worker pool and re-dispatches unfinished jobs from the store.

        Jobs found `active` were interrupted mid-attempt; they go back to
        `queued` and keep their attempt count.

        Returns:
            The number of recovered jobs dispatched.
        """
        self._ensure_executor()
        recovered: List[str] = []
        with self._cond:
            for job in self.store.load_all():
                if job.job_id in self._jobs:
                    continue
                if job.state == JOB_STATE_ACTIVE:
                    job.mark_retrying("Interrupted before completion")
                    self._save(job)
                self._jobs[job.job_id] = job
                if job.state == JOB_STATE_QUEUED:
                    recovered.append(job.job_id)
        for job_id in recovered:
            self._submit(job_id)
        if recovered:
            logger.info(f"Recovered {len(recovered)} unfinished job(s) from the job store")
        return len(recovered)

    def shutdown(self, wait: bool = True):
        """
        Stops accepting work. Jobs that have not started stay `queued` in the
        store for the next `start()`; running attempts finish if `wait`.
        """
        with self._cond:
            self._closed = True
            timers = list(self._timers)
            self._timers.clear()
            self._cond.notify_all()
        for timer in timers:
            timer.cancel()
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
        logger.debug("Job queue shut down")

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def enqueue(self, video_id: str, user_id: str) -> JobStatus:
        """
        Queues processing of `video_id`.

        A video that already has a queued or running job is not queued again;
        the existing job's status is returned instead.

        Raises:
            EnqueueError: The job could not be persisted, or the queue is shut down.
        """
        self._ensure_executor()
        with self._cond:
            if self._closed:
                raise EnqueueError("The job queue has been shut down.")
            existing = self._pending_job_for(video_id)
            if existing is not None:
                logger.info(f"Video {video_id} already has {existing.state} job {existing.job_id}; not enqueuing again")
                return JobStatus.of(existing)
            job = TranscodeJob(video_id=video_id, user_id=user_id)
            self._persist_new(job)
            self._jobs[job.job_id] = job
        logger.info(f"Video processing job {job.job_id} added for video {video_id}")
        self._submit(job.job_id)
        return JobStatus.of(job)

    def get_status(self, job_id: str) -> JobStatus:
        """
        Raises:
            NotFoundError: No such job, or its record has been evicted.
        """
        with self._cond:
            job = self._jobs.get(job_id)
            if job is None:
                raise NotFoundError(f"Job with ID {job_id} not found")
            return JobStatus.of(job)

    def status_for_video(self, video_id: str) -> JobStatus:
        """Status of the most recently created job for `video_id`."""
        with self._cond:
            jobs = [j for j in self._jobs.values() if j.video_id == video_id]
            if not jobs:
                raise NotFoundError(f"No job found for video {video_id}")
            return JobStatus.of(max(jobs, key=lambda j: j.created_at))

    def retry_failed(self) -> int:
        """
        Queues a new job for every failed job that has not been retried yet.

        Failed records stay failed; each gets `retried_as` pointing at its
        replacement. A job that cannot be re-queued is logged and skipped.

        Returns:
            The number of jobs re-queued.
        """
        with self._cond:
            failed = [j for j in self._jobs.values() if j.state == JOB_STATE_FAILED and j.retried_as is None]

        retried_count = 0
        for old in failed:
            try:
                with self._cond:
                    if self._closed:
                        raise EnqueueError("The job queue has been shut down.")
                    if self._pending_job_for(old.video_id) is not None:
                        logger.info(f"Video {old.video_id} is already queued; not retrying job {old.job_id}")
                        continue
                    new_job = TranscodeJob(video_id=old.video_id, user_id=old.user_id)
                    self._persist_new(new_job)
                    self._jobs[new_job.job_id] = new_job
                    old.retried_as = new_job.job_id
                    self._save(old)
                self._submit(new_job.job_id)
                retried_count += 1
            except EnqueueError as e:
                logger.error(f"Failed to retry job {old.job_id}: {e}")

        logger.info(f"Retried {retried_count} failed jobs")
        return retried_count

    def cleanup(self, older_than_days: float = CLEANUP_COMPLETED_OLDER_THAN_DAYS) -> int:
        """Evicts completed job records created more than `older_than_days` ago."""
        older_than = datetime.now() - timedelta(days=older_than_days)
        with self._cond:
            stale = [
                job_id
                for job_id, job in self._jobs.items()
                if job.state == JOB_STATE_COMPLETED and job.created_at < older_than
            ]
            for job_id in stale:
                self._evict(job_id)
        logger.info(f"Cleaned {len(stale)} old completed jobs")
        return len(stale)

    def stats(self) -> Dict[str, int]:
        counts = {JOB_STATE_QUEUED: 0, JOB_STATE_ACTIVE: 0, JOB_STATE_COMPLETED: 0, JOB_STATE_FAILED: 0}
        with self._cond:
            for job in self._jobs.values():
                counts[job.state] = counts.get(job.state, 0) + 1
        return counts

    def wait(self, job_id: str, timeout: Optional[float] = None) -> JobStatus:
        """
        Blocks until the job reaches a terminal state or `timeout` expires,
        then returns its status (which is not terminal on timeout).
        """
        with self._cond:
            if job_id not in self._jobs:
                raise NotFoundError(f"Job with ID {job_id} not found")
            self._cond.wait_for(
                lambda: self._closed or job_id not in self._jobs or self._jobs[job_id].is_terminal(),
                timeout=timeout,
            )
            job = self._jobs.get(job_id)
            if job is None:
                raise NotFoundError(f"Job with ID {job_id} was evicted")
            return JobStatus.of(job)

    # ------------------------------------------------------------------
    # Workers
    # ------------------------------------------------------------------

    def _run(self, job_id: str):
        with self._cond:
            job = self._jobs.get(job_id)
            if self._closed or job is None or job.state != JOB_STATE_QUEUED:
                return
            job.mark_active()
            self._save(job)
            snapshot = dataclasses.replace(job)
            self._cond.notify_all()

        logger.info(f"Processing job {job_id} for video {job.video_id} (attempt {job.attempts}/{self.retry_policy.max_attempts})")

        def report_progress(percent: int):
            with self._cond:
                current = self._jobs.get(job_id)
                if current is not None and current.state == JOB_STATE_ACTIVE and percent > current.progress:
                    current.progress = int(percent)

        try:
            self.handler(snapshot, report_progress)
        except Exception as e:
            self._on_failure(job_id, f"{type(e).__name__}: {e}")
        else:
            self._on_success(job_id)

    def _on_success(self, job_id: str):
        with self._cond:
            job = self._jobs[job_id]
            job.mark_completed()
            self._save(job)
            self._prune()
            self._cond.notify_all()
        logger.info(f"Video processing job completed: {job_id}")

    def _on_failure(self, job_id: str, reason: str):
        with self._cond:
            job = self._jobs[job_id]
            if self.retry_policy.should_retry(job.attempts):
                job.mark_retrying(reason)
                self._save(job)
                delay = self.retry_policy.delay_for(job.attempts)
                logger.warning(f"Job {job_id} attempt {job.attempts} failed ({reason}); retrying in {delay:.1f}s")
                if not self._closed:
                    self._schedule(job_id, delay)
            else:
                job.mark_failed(reason)
                self._save(job)
                logger.error(f"Video processing job failed: {job_id} after {job.attempts} attempt(s): {reason}")
                self._prune()
            self._cond.notify_all()

    def _schedule(self, job_id: str, delay: float):
        if delay <= 0:
            self._submit(job_id)
            return

        def fire():
            with self._cond:
                self._timers.discard(timer)
            self._submit(job_id)

        timer = threading.Timer(delay, fire)
        timer.daemon = True
        self._timers.add(timer)
        timer.start()

    def _submit(self, job_id: str):
        try:
            self._executor.submit(self._run, job_id)
        except RuntimeError as e:
            # Executor already shut down; the record stays queued in the store.
            logger.warning(f"Could not dispatch job {job_id}: {e}")

    def _ensure_executor(self):
        with self._cond:
            if self._executor is None:
                self._executor = concurrent.futures.ThreadPoolExecutor(
                    max_workers=self.max_workers, thread_name_prefix="transcode"
                )
                logger.info(f"Job queue using {self.max_workers} worker thread(s)")

    # ------------------------------------------------------------------
    # Bookkeeping (callers hold self._cond)
    # ------------------------------------------------------------------

    def _pending_job_for(self, video_id: str) -> Optional[TranscodeJob]:
        for job in self._jobs.values():
            if job.video_id == video_id and job.is_pending():
                return job
        return None

    def _persist_new(self, job: TranscodeJob):
        try:
            self.store.save(job)
        except (OSError, yaml.YAMLError) as e:
            raise EnqueueError(f"Could not persist job for video {job.video_id}: {e}") from e

    def _save(self, job: TranscodeJob):
        try:
            self.store.save(job)
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Could not persist job {job.job_id} ({job.state}): {e}")

    def _prune(self):
        for state, keep in ((JOB_STATE_COMPLETED, self.keep_completed), (JOB_STATE_FAILED, self.keep_failed)):
            terminal = sorted(
                (j for j in self._jobs.values() if j.state == state),
                key=lambda j: j.updated_at,
                reverse=True,
            )
            for job in terminal[keep:]:
                self._evict(job.job_id)

    def _evict(self, job_id: str):
        self._jobs.pop(job_id, None)
        self.store.delete(job_id)
        logger.debug(f"Evicted job record {job_id}")
