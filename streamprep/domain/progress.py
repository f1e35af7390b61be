"""
Progress events broadcast while a video moves through the pipeline.

Events are transient: they are never persisted, only handed to whoever is
subscribed at the moment they are published.
"""
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class ProgressStage(str, Enum):
    UPLOADING = "uploading"
    VALIDATING = "validating"
    PROCESSING = "processing"
    ENCODING = "encoding"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    ERROR = "error"


def _now_ms() -> int:
    return int(time.time() * 1000)


# Attribute name -> wire field name, in wire order.
_WIRE_FIELDS = (
    ("video_id", "videoId"),
    ("stage", "stage"),
    ("upload_progress", "uploadProgress"),
    ("processing_progress", "processingProgress"),
    ("overall_progress", "overallProgress"),
    ("current_task", "currentTask"),
    ("error", "error"),
    ("speed", "speed"),
    ("eta", "eta"),
    ("file_size", "fileSize"),
    ("uploaded_bytes", "uploadedBytes"),
    ("timestamp", "timestamp"),
)


@dataclass(frozen=True)
class ProgressEvent:
    """
    One progress update for a video.

    `overall_progress` never decreases for a given job, except for the
    `error` stage which resets it to 0.
    """

    video_id: str
    stage: ProgressStage
    overall_progress: int
    upload_progress: Optional[int] = None
    processing_progress: Optional[int] = None
    current_task: Optional[str] = None
    error: Optional[str] = None
    speed: Optional[float] = None
    eta: Optional[float] = None
    file_size: Optional[int] = None
    uploaded_bytes: Optional[int] = None
    timestamp: int = field(default_factory=_now_ms)

    def to_wire(self) -> dict:
        """The camelCase payload sent to clients; unset optional fields are omitted."""
        payload = {}
        for attr, wire_name in _WIRE_FIELDS:
            value = getattr(self, attr)
            if value is None:
                continue
            if isinstance(value, ProgressStage):
                value = value.value
            payload[wire_name] = value
        return payload
