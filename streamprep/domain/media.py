import json
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from pprint import pformat
from typing import Optional

from loguru import logger

from .exceptions import InspectionError
from ..config.video import PROBE_TIMEOUT_SECONDS
from ..utils.ffmpeg_utils import display_command, tool_path


def parse_duration(duration_str: str) -> float:
    """
    Parses a duration string into total seconds.

    ffprobe reports durations either as a plain number of seconds
    (e.g. "3600.5") or, in some stream tags, as a timecode 'HH:MM:SS.sss'
    (e.g. "01:00:00.500"). Hours are optional in the timecode format.

    Args:
        duration_str: The string containing the duration to parse.

    Returns:
        The total duration in seconds as a float. Returns 0.0 if parsing fails.
    """
    try:
        return float(duration_str)
    except (TypeError, ValueError):
        pattern = r"(?:(\d{1,2}):)?(\d{1,2}):(\d{1,2}(?:\.\d+)?)"
        match = re.fullmatch(pattern, str(duration_str).strip())
        if match:
            hours_str, minutes_str, seconds_str = match.groups()
            hours = int(hours_str) if hours_str else 0
            minutes = int(minutes_str)
            seconds = float(seconds_str)
            return float(hours * 3600 + minutes * 60 + seconds)
        logger.warning(f"Could not parse duration string: {duration_str}")
    return 0.0


@dataclass(frozen=True)
class MediaInfo:
    """
    The subset of probe output the pipeline depends on.

    Attributes:
        duration (float): Duration in seconds. Always positive.
        width (Optional[int]): Width of the first video stream, if reported.
        height (Optional[int]): Height of the first video stream, if reported.
        has_audio (bool): Whether at least one audio stream exists. Advisory:
                          used only to suppress audio when encoding.
    """

    duration: float
    width: Optional[int] = None
    height: Optional[int] = None
    has_audio: bool = False


class MediaInspector:
    """
    Extracts duration, dimensions and audio presence from a source file.

    The probe tool (`ffprobe`, JSON output) runs exactly once per
    `inspect` call. Failing to obtain a duration or a video stream is fatal
    and raises `InspectionError`; failing to read the audio streams is not,
    and only results in `has_audio=False`.
    """

    def __init__(self, probe_timeout: float = PROBE_TIMEOUT_SECONDS):
        self.probe_timeout = probe_timeout

    def inspect(self, file_path: Path) -> MediaInfo:
        """
        Probes `file_path` and returns its `MediaInfo`.

        Raises:
            InspectionError: If the probe fails, times out, or the output has
                             no usable duration or no video stream.
        """
        probe = self._probe(file_path)

        duration = self._extract_duration(probe)
        if duration <= 0:
            raise InspectionError(f"Could not determine the duration of {file_path.name}.")

        streams = probe.get("streams") or []
        video_stream = next(
            (s for s in streams if isinstance(s, dict) and s.get("codec_type") == "video"),
            None,
        )
        if video_stream is None:
            raise InspectionError(f"No video stream found in {file_path.name}.")

        width = self._as_int(video_stream.get("width"))
        height = self._as_int(video_stream.get("height"))

        info = MediaInfo(
            duration=duration,
            width=width,
            height=height,
            has_audio=self._detect_audio(probe, file_path),
        )
        logger.info(
            f"Inspected {file_path.name}: duration={info.duration:.2f}s, "
            f"size={info.width}x{info.height}, audio={info.has_audio}"
        )
        return info

    def build_command(self, file_path: Path) -> list:
        return [
            tool_path("ffprobe"),
            "-v", "error",
            "-show_format",
            "-show_streams",
            "-of", "json",
            str(file_path),
        ]

    def _probe(self, file_path: Path) -> dict:
        cmd = self.build_command(file_path)
        logger.debug(f"[probe] Executing: {display_command(cmd)}")
        try:
            # run() kills the child before re-raising TimeoutExpired.
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=self.probe_timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            logger.error(f"ffprobe timed out after {self.probe_timeout}s for {file_path}")
            raise InspectionError(f"ffprobe timed out for {file_path.name}") from e
        except OSError as e:
            logger.error(f"ffprobe could not be started for {file_path}: {e}")
            raise InspectionError(f"ffprobe could not be started: {e}") from e

        if result.returncode != 0:
            logger.error(f"ffprobe failed for {file_path} (rc={result.returncode}): {result.stderr}")
            raise InspectionError(f"ffprobe failed for {file_path.name}: {result.stderr.strip()}")

        try:
            probe = json.loads(result.stdout)
        except json.JSONDecodeError as e:
            raise InspectionError(f"ffprobe returned unreadable output for {file_path.name}: {e}") from e

        if not isinstance(probe, dict):
            raise InspectionError(f"ffprobe returned no data for {file_path.name}.")
        logger.trace(f"Probe data for {file_path.name}:\n{pformat(probe)}")
        return probe

    @staticmethod
    def _extract_duration(probe: dict) -> float:
        """
        Reads the container duration, falling back to the longest stream
        duration (or its DURATION tag, common in Matroska files).
        """
        format_duration = (probe.get("format") or {}).get("duration")
        if format_duration is not None:
            duration = parse_duration(format_duration)
            if duration > 0:
                return duration

        candidates = []
        for stream in probe.get("streams") or []:
            if not isinstance(stream, dict):
                continue
            value = stream.get("duration") or (stream.get("tags") or {}).get("DURATION")
            if value is not None:
                candidates.append(parse_duration(value))
        return max(candidates, default=0.0)

    @staticmethod
    def _detect_audio(probe: dict, file_path: Path) -> bool:
        try:
            return any(stream.get("codec_type") == "audio" for stream in probe["streams"])
        except (KeyError, TypeError, AttributeError) as e:
            logger.warning(f"Could not determine audio streams of {file_path.name}, assuming none: {e}")
            return False

    @staticmethod
    def _as_int(value) -> Optional[int]:
        try:
            return int(value) if value is not None else None
        except (TypeError, ValueError):
            return None
