import json
import subprocess
import sys
import time
from pathlib import Path

import pytest

from streamprep.domain.exceptions import InspectionError
from streamprep.domain.media import MediaInspector, parse_duration

VIDEO_STREAM = {"codec_type": "video", "width": 1920, "height": 1080}
AUDIO_STREAM = {"codec_type": "audio"}


def _fake_run(stdout="", returncode=0, stderr="", error=None):
    calls = []

    def run(cmd, **kwargs):
        calls.append({"cmd": list(cmd), **kwargs})
        if error is not None:
            raise error
        return subprocess.CompletedProcess(cmd, returncode, stdout=stdout, stderr=stderr)

    return run, calls


def _probe_output(data: dict) -> str:
    return json.dumps(data)


def test_parse_duration():
    assert parse_duration("12.5") == 12.5
    assert parse_duration("01:00:00.500") == 3600.5
    assert parse_duration("02:03") == 123.0
    assert parse_duration("garbage") == 0.0


def test_inspect_reads_duration_dimensions_and_audio(monkeypatch):
    run, calls = _fake_run(_probe_output({"format": {"duration": "42.0"}, "streams": [VIDEO_STREAM, AUDIO_STREAM]}))
    monkeypatch.setattr(subprocess, "run", run)

    info = MediaInspector(probe_timeout=7).inspect(Path("clip.mp4"))

    assert len(calls) == 1
    assert calls[0]["cmd"][-1] == "clip.mp4"
    assert calls[0]["timeout"] == 7
    assert info.duration == 42.0
    assert (info.width, info.height) == (1920, 1080)
    assert info.has_audio


def test_source_without_audio(monkeypatch):
    run, _ = _fake_run(_probe_output({"format": {"duration": "5"}, "streams": [VIDEO_STREAM]}))
    monkeypatch.setattr(subprocess, "run", run)

    assert MediaInspector().inspect(Path("silent.mp4")).has_audio is False


def test_duration_falls_back_to_stream_tags(monkeypatch):
    stream = dict(VIDEO_STREAM, tags={"DURATION": "00:01:30.000000000"})
    run, _ = _fake_run(_probe_output({"format": {}, "streams": [stream]}))
    monkeypatch.setattr(subprocess, "run", run)

    assert MediaInspector().inspect(Path("clip.mkv")).duration == 90.0


@pytest.mark.parametrize(
    "run_kwargs",
    [
        {"stdout": _probe_output({"format": {"duration": "0"}, "streams": [VIDEO_STREAM]})},
        {"stdout": _probe_output({"format": {"duration": "10"}, "streams": [AUDIO_STREAM]})},
        {"returncode": 1, "stderr": "moov atom not found"},
        {"stdout": ""},
        {"stdout": "{not json"},
        {"stdout": "[]"},
        {"error": subprocess.TimeoutExpired("ffprobe", 30)},
        {"error": FileNotFoundError("ffprobe")},
    ],
)
def test_unusable_probe_raises_inspection_error(monkeypatch, run_kwargs):
    run, _ = _fake_run(**run_kwargs)
    monkeypatch.setattr(subprocess, "run", run)

    with pytest.raises(InspectionError):
        MediaInspector().inspect(Path("broken.mp4"))


@pytest.mark.skipif(sys.platform == "win32", reason="uses a POSIX shell script as ffprobe")
def test_hung_ffprobe_is_killed_at_the_timeout(tmp_path, monkeypatch):
    fake_ffprobe = tmp_path / "ffprobe"
    fake_ffprobe.write_text("#!/bin/sh\nexec sleep 5\n", encoding="utf-8")
    fake_ffprobe.chmod(0o755)
    monkeypatch.setattr("streamprep.domain.media.tool_path", lambda name: str(fake_ffprobe))

    started = time.monotonic()
    with pytest.raises(InspectionError, match="timed out"):
        MediaInspector(probe_timeout=0.5).inspect(tmp_path / "clip.mp4")
    assert time.monotonic() - started < 4
