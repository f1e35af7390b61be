from pathlib import Path
from typing import Dict, List, Optional

import pytest

from streamprep.domain.exceptions import InspectionError, TranscodeTimeoutError
from streamprep.domain.media import MediaInfo
from streamprep.pipeline.orchestrator import TranscodingOrchestrator
from streamprep.services.packaging_service import SegmentPackager
from streamprep.services.progress_channel import ProgressChannel
from streamprep.services.rendition_encoder import RenditionEncoder
from streamprep.services.storage import InMemoryVideoRepository, MediaPaths, VideoRecord
from streamprep.services.thumbnail_service import ThumbnailExtractor
from streamprep.utils.ffmpeg_utils import ToolResult


class FakeRunner:
    """
    Stands in for FFmpegRunner. Writes the files ffmpeg would write, unless
    the invocation's context was told to fail or time out.
    """

    def __init__(self):
        self.calls: List[dict] = []
        self.behaviour: Dict[str, str] = {}

    def fail(self, context: str):
        self.behaviour[context] = "fail"

    def time_out(self, context: str):
        self.behaviour[context] = "timeout"

    def produce_nothing(self, context: str):
        self.behaviour[context] = "no-output"

    def contexts(self) -> List[str]:
        return [c["context"] for c in self.calls]

    def run(self, cmd, timeout, duration=None, on_progress=None, context="ffmpeg"):
        self.calls.append({"cmd": list(cmd), "timeout": timeout, "context": context})
        action = self.behaviour.get(context, "ok")
        if action == "timeout":
            raise TranscodeTimeoutError(f"{context} timed out after {timeout:.0f}s", timeout=timeout)
        if action == "fail":
            return ToolResult(returncode=1, stderr=f"{context}: Invalid data found when processing input", elapsed=0.1)

        if on_progress is not None and duration:
            for percent in (25, 50, 100):
                on_progress(percent)

        if action == "ok":
            output = Path(cmd[-1])
            output.parent.mkdir(parents=True, exist_ok=True)
            if "-hls_segment_filename" in cmd:
                pattern = cmd[cmd.index("-hls_segment_filename") + 1]
                Path(pattern % 0).write_bytes(b"\x47" * 188)
                output.write_text(
                    "#EXTM3U\n#EXT-X-VERSION:3\n#EXT-X-TARGETDURATION:6\n"
                    f"#EXTINF:6.0,\n{Path(pattern % 0).name}\n#EXT-X-ENDLIST\n",
                    encoding="utf-8",
                )
            else:
                output.write_bytes(b"\x00" * 4096)
        return ToolResult(returncode=0, stderr="", elapsed=0.1)


class FakeInspector:
    def __init__(self, info: Optional[MediaInfo] = None, error: Optional[Exception] = None):
        self.info = info or MediaInfo(duration=20.0, width=1920, height=1080, has_audio=True)
        self.error = error
        self.calls = 0

    def inspect(self, file_path: Path) -> MediaInfo:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.info


@pytest.fixture
def fake_runner():
    return FakeRunner()


@pytest.fixture
def fake_inspector():
    return FakeInspector()


@pytest.fixture
def paths(tmp_path):
    return MediaPaths(tmp_path / "media")


@pytest.fixture
def repository(paths):
    repo = InMemoryVideoRepository()
    repo.add_video(VideoRecord(id="v1", uploader_id="u1", filename="clip.mp4"))
    source = paths.source_path("u1", "clip.mp4")
    source.parent.mkdir(parents=True, exist_ok=True)
    source.write_bytes(b"\x00" * 1024)
    return repo


@pytest.fixture
def channel():
    return ProgressChannel()


@pytest.fixture
def packager(repository, paths, fake_runner):
    return SegmentPackager(repository, paths, runner=fake_runner)


@pytest.fixture
def orchestrator(repository, channel, paths, fake_runner, fake_inspector, packager):
    return TranscodingOrchestrator(
        repository,
        channel,
        paths,
        inspector=fake_inspector,
        thumbnailer=ThumbnailExtractor(runner=fake_runner),
        encoder=RenditionEncoder(runner=fake_runner),
        packager=packager,
    )


@pytest.fixture
def probe_failure():
    return InspectionError("ffprobe failed for clip.mp4: moov atom not found")
