"""
Storage and file-system collaborators.

The pipeline only ever reads a video record by primary key and writes it
back; it never scans. `VideoRepository` is that boundary. `MediaPaths`
builds every path the pipeline touches from ids, so nothing user-supplied is
ever joined into a path at this layer.
"""
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from loguru import logger

from ..config.common import HLS_DIR_NAME, MEDIA_ROOT, UPLOADS_DIR_NAME, VIDEOS_DIR_NAME
from ..domain.exceptions import NotFoundError
from ..domain.renditions import RenditionResult


class VideoStatus(str, Enum):
    PROCESSING = "PROCESSING"
    READY = "READY"
    FAILED = "FAILED"


@dataclass(frozen=True)
class VideoRecord:
    id: str
    uploader_id: str
    filename: str
    status: VideoStatus = VideoStatus.PROCESSING
    duration: Optional[int] = None
    thumbnail_url: Optional[str] = None


class VideoRepository(ABC):
    """Read/update-by-id access to video records."""

    @abstractmethod
    def get_video_by_id(self, video_id: str) -> VideoRecord:
        """Returns the record or raises `NotFoundError`."""
        ...

    @abstractmethod
    def update_video_status(self, video_id: str, status: VideoStatus, **fields) -> VideoRecord:
        """Sets the status and any of `duration`, `thumbnail_url`."""
        ...

    @abstractmethod
    def create_rendition_records(self, video_id: str, results: Sequence[RenditionResult]) -> int:
        """
        Stores one file record per rendition and returns how many were stored.

        Replaces any records an earlier attempt stored for the same video.
        """
        ...


class InMemoryVideoRepository(VideoRepository):
    """Thread-safe in-process repository, used by the CLI and the tests."""

    def __init__(self):
        self._videos: Dict[str, VideoRecord] = {}
        self._renditions: Dict[str, List[RenditionResult]] = {}
        self._lock = threading.Lock()

    def add_video(self, record: VideoRecord) -> VideoRecord:
        with self._lock:
            self._videos[record.id] = record
        return record

    def get_video_by_id(self, video_id: str) -> VideoRecord:
        with self._lock:
            record = self._videos.get(video_id)
        if record is None:
            raise NotFoundError(f"Video with ID {video_id} not found")
        return record

    def update_video_status(self, video_id: str, status: VideoStatus, **fields) -> VideoRecord:
        unknown = set(fields) - {"duration", "thumbnail_url"}
        if unknown:
            raise ValueError(f"Unsupported video fields: {sorted(unknown)}")
        with self._lock:
            record = self._videos.get(video_id)
            if record is None:
                raise NotFoundError(f"Video with ID {video_id} not found")
            record = replace(record, status=status, **fields)
            self._videos[video_id] = record
        logger.debug(f"Video {video_id} status -> {status.value}")
        return record

    def create_rendition_records(self, video_id: str, results: Sequence[RenditionResult]) -> int:
        with self._lock:
            if video_id not in self._videos:
                raise NotFoundError(f"Video with ID {video_id} not found")
            self._renditions[video_id] = list(results)
        return len(results)

    def renditions_for(self, video_id: str) -> List[RenditionResult]:
        with self._lock:
            return list(self._renditions.get(video_id, []))


@dataclass(frozen=True)
class MediaPaths:
    """
    Deterministic locations of sources and outputs.

    Sources: <root>/uploads/videos/<uploader_id>/<filename>
    Outputs: <root>/uploads/videos/<uploader_id>/<video_id>/
    Package: <root>/uploads/videos/<uploader_id>/<video_id>/hls/
    """

    root: Path = field(default_factory=lambda: MEDIA_ROOT)

    @property
    def videos_dir(self) -> Path:
        return self.root / UPLOADS_DIR_NAME / VIDEOS_DIR_NAME

    def source_path(self, uploader_id: str, filename: str) -> Path:
        return self.videos_dir / uploader_id / filename

    def output_dir(self, uploader_id: str, video_id: str) -> Path:
        return self.videos_dir / uploader_id / video_id

    def hls_dir(self, uploader_id: str, video_id: str) -> Path:
        return self.output_dir(uploader_id, video_id) / HLS_DIR_NAME
