"""
Captures the single preview frame shown for a video.
"""

from pathlib import Path
from typing import Optional

from loguru import logger

from ..config.video import THUMBNAIL_POSITION_RATIO, THUMBNAIL_QUALITY, THUMBNAIL_TIMEOUT_SECONDS
from ..domain.exceptions import ThumbnailError
from ..domain.media import MediaInspector
from ..utils.ffmpeg_utils import FFmpegRunner, tool_path


def thumbnail_filename(video_id: str) -> str:
    return f"{video_id}-thumbnail.jpg"


class ThumbnailExtractor:
    """
    Grabs one frame at 10% of the stream duration.

    A failure here is fatal to the job: a completed video is expected to
    always have a thumbnail.
    """

    def __init__(
        self,
        runner: Optional[FFmpegRunner] = None,
        inspector: Optional[MediaInspector] = None,
        timeout: float = THUMBNAIL_TIMEOUT_SECONDS,
    ):
        self.runner = runner or FFmpegRunner()
        self.inspector = inspector
        self.timeout = timeout

    def extract(self, input_path: Path, output_dir: Path, video_id: str, duration: Optional[float] = None) -> Path:
        """
        Writes `<video_id>-thumbnail.jpg` into `output_dir` and returns its path.

        Args:
            duration: Source duration in seconds. When omitted the source is
                      probed to find it.

        Raises:
            ThumbnailError: ffmpeg failed or produced no image.
            TranscodeTimeoutError: The capture exceeded its budget.
        """
        if duration is None:
            inspector = self.inspector or MediaInspector()
            duration = inspector.inspect(input_path).duration

        output_dir.mkdir(parents=True, exist_ok=True)
        thumbnail_path = output_dir / thumbnail_filename(video_id)
        position = max(0.0, duration * THUMBNAIL_POSITION_RATIO)
        cmd = [
            tool_path("ffmpeg"),
            "-hide_banner",
            "-y",
            "-ss", f"{position:.3f}",
            "-i", str(input_path),
            "-frames:v", "1",
            "-q:v", str(THUMBNAIL_QUALITY),
            str(thumbnail_path),
        ]
        result = self.runner.run(cmd, timeout=self.timeout, context="thumbnail")

        if not result.ok or not thumbnail_path.is_file():
            thumbnail_path.unlink(missing_ok=True)
            raise ThumbnailError(
                f"Thumbnail generation failed for video {video_id} (rc={result.returncode}): {result.stderr.strip()}"
            )
        logger.info(f"Thumbnail generated: {thumbnail_path}")
        return thumbnail_path
