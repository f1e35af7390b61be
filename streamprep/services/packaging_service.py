"""
This module turns encoded renditions into an HLS adaptive-streaming package.

For every rendition that encoded successfully, `SegmentPackager` remuxes the
file into 6-second MPEG-TS segments plus a per-resolution playlist, then
writes `master.m3u8` listing the playlists that actually exist, in ladder
order. The master manifest is written last and atomically: its presence is
the only signal that a video's package is ready.

The read side (`read_manifest`, `read_playlist`, `read_segment`) resolves the
package directory from the video id through the repository, so callers never
pass file-system paths in.
"""

import os
from pathlib import Path
from typing import List, Optional, Sequence

from loguru import logger

from ..config.video import (
    HLS_PLAYLIST_TYPE,
    MANIFEST_HEADER,
    MASTER_MANIFEST_NAME,
    PACKAGE_TIMEOUT_SECONDS,
    PLAYLIST_SUFFIX,
    RENDITIONS,
    SEGMENT_DURATION_SECONDS,
    SEGMENT_SUFFIX,
)
from ..domain.exceptions import NotFoundError, PackagingError, TranscodeTimeoutError
from ..domain.renditions import RenditionResult, RenditionSpec
from ..utils.ffmpeg_utils import FFmpegRunner, tool_path
from .storage import MediaPaths, VideoRepository


def playlist_name(resolution: str) -> str:
    return f"{resolution}{PLAYLIST_SUFFIX}"


def segment_pattern(resolution: str) -> str:
    return f"{resolution}_%03d{SEGMENT_SUFFIX}"


def render_master_manifest(specs: Sequence[RenditionSpec]) -> str:
    """
    Renders the master manifest text for the given ladder entries.

    >>> render_master_manifest([])
    '#EXTM3U\\n#EXT-X-VERSION:3\\n\\n'
    """
    text = MANIFEST_HEADER
    for spec in specs:
        text += f"#EXT-X-STREAM-INF:BANDWIDTH={spec.bandwidth},RESOLUTION={spec.width}x{spec.height}\n"
        text += f"{playlist_name(spec.resolution)}\n\n"
    return text


class SegmentPackager:
    def __init__(
        self,
        repository: VideoRepository,
        paths: Optional[MediaPaths] = None,
        runner: Optional[FFmpegRunner] = None,
        renditions: Sequence[RenditionSpec] = RENDITIONS,
        timeout: float = PACKAGE_TIMEOUT_SECONDS,
    ):
        self.repository = repository
        self.paths = paths or MediaPaths()
        self.runner = runner or FFmpegRunner()
        self.renditions = tuple(renditions)
        self.timeout = timeout

    # ------------------------------------------------------------------
    # Write side
    # ------------------------------------------------------------------

    def package_all(self, results: Sequence[RenditionResult], output_dir: Path) -> Path:
        """
        Packages every successful rendition and writes the master manifest.

        Args:
            results: The renditions that encoded successfully in this attempt.
            output_dir: The video's HLS directory.

        Returns:
            The path of the written master manifest.

        Raises:
            PackagingError: No rendition could be packaged, or the master
                            manifest could not be written.
        """
        output_dir.mkdir(parents=True, exist_ok=True)
        self.clear(output_dir)

        packaged = 0
        for result in results:
            try:
                self.package_rendition(result, output_dir)
                packaged += 1
            except (PackagingError, TranscodeTimeoutError) as e:
                logger.error(f"Packaging {result.resolution} failed, leaving it out of the manifest: {e}")

        if packaged == 0:
            raise PackagingError(f"None of {len(results)} rendition(s) could be packaged in {output_dir}.")
        return self.write_master_manifest(output_dir)

    def package_rendition(self, result: RenditionResult, output_dir: Path) -> Path:
        """
        Slices one rendition into segments and its playlist; no re-encode.

        Raises:
            PackagingError: ffmpeg failed or the playlist was not produced.
            TranscodeTimeoutError: Packaging exceeded its budget.
        """
        playlist_path = output_dir / playlist_name(result.resolution)
        cmd = [
            tool_path("ffmpeg"),
            "-hide_banner",
            "-y",
            "-i", str(result.file_path),
            "-c", "copy",
            "-start_number", "0",
            "-hls_time", str(SEGMENT_DURATION_SECONDS),
            "-hls_playlist_type", HLS_PLAYLIST_TYPE,
            "-hls_segment_filename", str(output_dir / segment_pattern(result.resolution)),
            "-f", "hls",
            str(playlist_path),
        ]
        run_result = self.runner.run(cmd, timeout=self.timeout, context=f"package {result.resolution}")
        if not run_result.ok or not playlist_path.is_file():
            playlist_path.unlink(missing_ok=True)
            raise PackagingError(
                f"Packaging {result.resolution} failed (rc={run_result.returncode}): {run_result.stderr.strip()}"
            )
        logger.info(f"Packaged {result.resolution}: {playlist_path.name}")
        return playlist_path

    def write_master_manifest(self, output_dir: Path) -> Path:
        """
        Writes `master.m3u8` listing, in ladder order, every per-resolution
        playlist present in `output_dir`.

        Raises:
            PackagingError: No playlist exists, or the file cannot be written.
        """
        present: List[RenditionSpec] = []
        for spec in self.renditions:
            if (output_dir / playlist_name(spec.resolution)).is_file():
                present.append(spec)
            else:
                logger.warning(f"Resolution {spec.resolution} playlist not found, skipping")
        if not present:
            raise PackagingError(f"No rendition playlists found in {output_dir}.")

        manifest_path = output_dir / MASTER_MANIFEST_NAME
        tmp_path = manifest_path.with_name(manifest_path.name + ".tmp")
        try:
            tmp_path.write_text(render_master_manifest(present), encoding="utf-8")
            os.replace(tmp_path, manifest_path)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise PackagingError(f"Could not write master manifest {manifest_path}: {e}") from e
        logger.info(f"Master playlist generated: {manifest_path} ({', '.join(s.resolution for s in present)})")
        return manifest_path

    @staticmethod
    def clear(output_dir: Path):
        """Removes playlists, segments and the manifest left by an earlier attempt."""
        removed = 0
        for pattern in (f"*{PLAYLIST_SUFFIX}", f"*{SEGMENT_SUFFIX}", f"{MASTER_MANIFEST_NAME}.tmp"):
            for stale in output_dir.glob(pattern):
                stale.unlink(missing_ok=True)
                removed += 1
        if removed:
            logger.debug(f"Removed {removed} stale file(s) from {output_dir}")

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def hls_dir(self, video_id: str) -> Path:
        video = self.repository.get_video_by_id(video_id)
        return self.paths.hls_dir(video.uploader_id, video_id)

    def is_ready(self, video_id: str) -> bool:
        try:
            return (self.hls_dir(video_id) / MASTER_MANIFEST_NAME).is_file()
        except NotFoundError:
            return False

    def read_manifest(self, video_id: str) -> str:
        path = self.hls_dir(video_id) / MASTER_MANIFEST_NAME
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            raise NotFoundError(f"HLS manifest not found for video {video_id}") from e

    def read_playlist(self, video_id: str, name: str) -> str:
        path = self._package_file(video_id, name, PLAYLIST_SUFFIX)
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            raise NotFoundError(f"Playlist file {name} not found for video {video_id}") from e

    def read_segment(self, video_id: str, name: str) -> bytes:
        path = self._package_file(video_id, name, SEGMENT_SUFFIX)
        try:
            return path.read_bytes()
        except OSError as e:
            raise NotFoundError(f"Segment file {name} not found for video {video_id}") from e

    def _package_file(self, video_id: str, name: str, suffix: str) -> Path:
        # Only bare file names of the expected kind; nothing outside the package.
        if not name or Path(name).name != name or name in (".", "..") or not name.endswith(suffix):
            raise NotFoundError(f"File {name!r} not found for video {video_id}")
        return self.hls_dir(video_id) / name
