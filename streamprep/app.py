"""
Wiring of the pipeline components into one service object.

`TranscodeService` owns the repository, path layout, progress channel,
orchestrator and job queue, and exposes the few operations a caller (the
CLI, or an HTTP layer) needs: register an uploaded file, queue it, follow
its progress and read back the HLS package.
"""

import shutil
import uuid
from pathlib import Path
from typing import Optional

from loguru import logger

from .config.common import DEFAULT_MAX_WORKERS, JOBS_DIR_NAME
from .domain.exceptions import SourceMissingError
from .domain.jobs import JobStatus
from .pipeline.job_queue import JobQueue, JobStore, RetryPolicy, YamlJobStore
from .pipeline.orchestrator import TranscodingOrchestrator
from .services.packaging_service import SegmentPackager
from .services.progress_channel import ProgressChannel
from .services.storage import InMemoryVideoRepository, MediaPaths, VideoRecord, VideoRepository


class TranscodeService:
    def __init__(
        self,
        media_root: Optional[Path] = None,
        repository: Optional[VideoRepository] = None,
        channel: Optional[ProgressChannel] = None,
        orchestrator: Optional[TranscodingOrchestrator] = None,
        store: Optional[JobStore] = None,
        retry_policy: Optional[RetryPolicy] = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ):
        self.paths = MediaPaths(media_root) if media_root else MediaPaths()
        self.repository = repository or InMemoryVideoRepository()
        self.channel = channel or ProgressChannel()
        self.orchestrator = orchestrator or TranscodingOrchestrator(self.repository, self.channel, self.paths)
        self.packager: SegmentPackager = self.orchestrator.packager
        self.queue = JobQueue(
            self.orchestrator.process,
            store=store or YamlJobStore(self.paths.root / JOBS_DIR_NAME),
            retry_policy=retry_policy,
            max_workers=max_workers,
        )

    def __enter__(self) -> "TranscodeService":
        self.queue.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.queue.shutdown()

    def register_upload(self, source: Path, user_id: str, video_id: Optional[str] = None) -> VideoRecord:
        """
        Places `source` at its upload location and records it as a video.

        Only works with `InMemoryVideoRepository`; other repositories are
        expected to be populated by whatever handles uploads.
        """
        if not source.is_file():
            raise SourceMissingError(f"Source file not found: {source}")
        if not isinstance(self.repository, InMemoryVideoRepository):
            raise TypeError("register_upload needs an InMemoryVideoRepository")

        video_id = video_id or uuid.uuid4().hex
        destination = self.paths.source_path(user_id, source.name)
        destination.parent.mkdir(parents=True, exist_ok=True)
        if source.resolve() != destination.resolve():
            shutil.copy2(source, destination)
            logger.info(f"Copied {source} to {destination}")

        return self.repository.add_video(VideoRecord(id=video_id, uploader_id=user_id, filename=source.name))

    def submit(self, video_id: str) -> JobStatus:
        video = self.repository.get_video_by_id(video_id)
        return self.queue.enqueue(video.id, video.uploader_id)
