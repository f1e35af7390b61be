"""
This module defines the RenditionEncoder, which produces one fixed-resolution,
fixed-bitrate copy of a source video per call.

The orchestrator calls it once per entry of the rendition ladder, strictly one
after another. Each call is a single ffmpeg run with a hard wall-clock budget;
percent-complete is forwarded to the caller as ffmpeg reports it.
"""

from pathlib import Path
from typing import List, Optional

from loguru import logger

from ..config.video import (
    AUDIO_BITRATE,
    AUDIO_ENCODER,
    CONSTANT_QUALITY_CRF,
    ENCODE_TIMEOUT_SECONDS,
    KEYFRAME_INTERVAL,
    OUTPUT_CONTAINER,
    VIDEO_ENCODER,
    X264_PRESET,
)
from ..domain.exceptions import EncodingError
from ..domain.renditions import RenditionResult, RenditionSpec
from ..utils.ffmpeg_utils import PROGRESS_ARGS, FFmpegRunner, ProgressCallback, tool_path
from ..utils.format_utils import format_bitrate, formatted_size


def rendition_filename(video_id: str, spec: RenditionSpec) -> str:
    return f"{video_id}-{spec.resolution}.{OUTPUT_CONTAINER}"


class RenditionEncoder:
    """
    Encodes a source file to one `RenditionSpec`.

    Either the output file named by the returned `RenditionResult` exists and
    is complete, or a typed error is raised and no output file is left behind.
    """

    def __init__(self, runner: Optional[FFmpegRunner] = None, timeout: float = ENCODE_TIMEOUT_SECONDS):
        self.runner = runner or FFmpegRunner()
        self.timeout = timeout

    def build_command(self, input_path: Path, output_path: Path, spec: RenditionSpec, has_audio: bool) -> List[str]:
        """
        Builds the ffmpeg command line for one rendition.

        Constant-quality x264 capped at the rendition's bitrate, with a fixed
        keyframe interval and scene-cut keyframes disabled so all renditions
        can be segmented on the same boundaries. Sources without audio get an
        explicit `-an`; mapping a missing audio stream makes ffmpeg fail.
        """
        cmd = [
            tool_path("ffmpeg"),
            "-hide_banner",
            "-y",
            "-i", str(input_path),
            "-vf", f"scale={spec.width}:{spec.height}",
            "-c:v", VIDEO_ENCODER,
            "-preset", X264_PRESET,
            "-crf", str(CONSTANT_QUALITY_CRF),
            "-maxrate", spec.bitrate,
            "-bufsize", f"{spec.bitrate_bps * 2 // 1000}k",
            "-g", str(KEYFRAME_INTERVAL),
            "-keyint_min", str(KEYFRAME_INTERVAL),
            "-sc_threshold", "0",
        ]
        if has_audio:
            cmd += ["-c:a", AUDIO_ENCODER, "-b:a", AUDIO_BITRATE]
        else:
            cmd += ["-an"]
        cmd += ["-movflags", "+faststart", "-f", OUTPUT_CONTAINER]
        cmd += PROGRESS_ARGS
        cmd.append(str(output_path))
        return cmd

    def encode(
        self,
        input_path: Path,
        output_path: Path,
        spec: RenditionSpec,
        has_audio: bool,
        duration: Optional[float] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> RenditionResult:
        """
        Runs the encode for `spec` and returns what it produced.

        Args:
            input_path: The source video.
            output_path: Where the rendition is written.
            spec: The ladder entry to encode.
            has_audio: False to suppress audio entirely.
            duration: Source duration in seconds; enables progress reporting
                      and the effective bitrate calculation.
            on_progress: Called with 0-100 as the encode advances.

        Raises:
            TranscodeTimeoutError: The encode exceeded its budget.
            EncodingError: ffmpeg failed or left no usable output; carries the
                           tail of ffmpeg's stderr.
        """
        output_path.parent.mkdir(parents=True, exist_ok=True)
        cmd = self.build_command(input_path, output_path, spec, has_audio)
        logger.info(f"Encoding {spec.resolution} ({spec.size} @ {spec.bitrate}) from {input_path.name}")

        try:
            result = self.runner.run(
                cmd,
                timeout=self.timeout,
                duration=duration,
                on_progress=on_progress,
                context=f"encode {spec.resolution}",
            )
        except BaseException:
            output_path.unlink(missing_ok=True)
            raise

        if not result.ok:
            output_path.unlink(missing_ok=True)
            raise EncodingError(
                f"ffmpeg exited with code {result.returncode} while encoding {spec.resolution}",
                diagnostics=result.stderr,
            )
        if not output_path.is_file() or output_path.stat().st_size == 0:
            output_path.unlink(missing_ok=True)
            raise EncodingError(
                f"ffmpeg reported success but {output_path.name} is missing or empty",
                diagnostics=result.stderr,
            )

        file_size = output_path.stat().st_size
        if duration and duration > 0:
            bitrate = int(file_size * 8 / duration)
        else:
            bitrate = spec.bitrate_bps
        logger.info(
            f"Encoded {spec.resolution}: {output_path.name} "
            f"({formatted_size(file_size)}, {format_bitrate(bitrate)}, {result.elapsed:.1f}s)"
        )
        return RenditionResult(
            resolution=spec.resolution,
            file_path=output_path,
            file_size=file_size,
            bitrate=bitrate,
        )
