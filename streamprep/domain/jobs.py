"""
Defines the durable record of one unit of queued transcoding work.
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from ..config.common import (
    JOB_STATE_ACTIVE,
    JOB_STATE_COMPLETED,
    JOB_STATE_FAILED,
    JOB_STATE_QUEUED,
    JOB_TERMINAL_STATES,
)
from .exceptions import InvalidTransitionError


def new_job_id() -> str:
    return uuid.uuid4().hex


@dataclass
class TranscodeJob:
    """
    Tracks the lifecycle of one transcoding job.

    The record is owned by the job queue: it is created on enqueue, mutated on
    dequeue, retry and terminal transition, and evicted once enough newer
    terminal records exist.

    Lifecycle:
        queued -> active -> completed
                         -> failed
                         -> queued (retry after backoff)

    A terminal state is entered exactly once. Any transition attempted after
    `completed` or `failed` raises `InvalidTransitionError`; `retry_failed`
    on the queue creates a new job instead of reviving an old one.

    Attributes:
        job_id (str): Unique identifier of the job.
        video_id (str): The video this job processes.
        user_id (str): The uploader, used to scope progress events.
        state (str): One of the JOB_STATE_* constants in `config.common`.
        attempts (int): How many times a worker picked the job up.
        progress (int): Last reported overall percentage.
        last_error (Optional[str]): "<ExceptionType>: <message>" of the last failure.
        retried_as (Optional[str]): Id of the job that replaced this failed one.
        created_at (datetime): When the job was enqueued.
        updated_at (datetime): When the record last changed.
    """

    video_id: str
    user_id: str
    job_id: str = field(default_factory=new_job_id)
    state: str = JOB_STATE_QUEUED
    attempts: int = 0
    progress: int = 0
    last_error: Optional[str] = None
    retried_as: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    def is_terminal(self) -> bool:
        return self.state in JOB_TERMINAL_STATES

    def is_pending(self) -> bool:
        """True while the job is queued or running."""
        return self.state in (JOB_STATE_QUEUED, JOB_STATE_ACTIVE)

    def _require(self, *allowed: str, target: str):
        if self.state not in allowed:
            raise InvalidTransitionError(
                f"Job {self.job_id} cannot move from '{self.state}' to '{target}'."
            )

    def _touch(self):
        self.updated_at = datetime.now()

    def mark_active(self):
        """A worker picked the job up; counts as one attempt."""
        self._require(JOB_STATE_QUEUED, target=JOB_STATE_ACTIVE)
        self.state = JOB_STATE_ACTIVE
        self.attempts += 1
        self._touch()

    def mark_retrying(self, reason: str):
        """The attempt failed but the retry policy allows another one."""
        self._require(JOB_STATE_ACTIVE, target=JOB_STATE_QUEUED)
        self.state = JOB_STATE_QUEUED
        self.last_error = reason
        self._touch()

    def mark_completed(self):
        self._require(JOB_STATE_ACTIVE, target=JOB_STATE_COMPLETED)
        self.state = JOB_STATE_COMPLETED
        self.progress = 100
        self._touch()

    def mark_failed(self, reason: str):
        self._require(JOB_STATE_ACTIVE, target=JOB_STATE_FAILED)
        self.state = JOB_STATE_FAILED
        self.last_error = reason
        self._touch()

    def to_dict(self) -> dict:
        return {
            "job_id": self.job_id,
            "video_id": self.video_id,
            "user_id": self.user_id,
            "state": self.state,
            "attempts": self.attempts,
            "progress": self.progress,
            "last_error": self.last_error,
            "retried_as": self.retried_as,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TranscodeJob":
        return cls(
            video_id=str(data["video_id"]),
            user_id=str(data.get("user_id", "")),
            job_id=str(data["job_id"]),
            state=data.get("state", JOB_STATE_QUEUED),
            attempts=int(data.get("attempts", 0)),
            progress=int(data.get("progress", 0)),
            last_error=data.get("last_error"),
            retried_as=data.get("retried_as"),
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
        )


@dataclass(frozen=True)
class JobStatus:
    """Snapshot returned by `JobQueue.get_status`."""

    job_id: str
    video_id: str
    state: str
    progress: int
    attempts: int
    failure_reason: Optional[str] = None

    @classmethod
    def of(cls, job: TranscodeJob) -> "JobStatus":
        return cls(
            job_id=job.job_id,
            video_id=job.video_id,
            state=job.state,
            progress=job.progress,
            attempts=job.attempts,
            failure_reason=job.last_error,
        )
