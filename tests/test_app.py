from streamprep.app import TranscodeService
from streamprep.config.common import JOB_STATE_COMPLETED, JOB_STATE_FAILED
from streamprep.domain.media import MediaInfo
from streamprep.domain.progress import ProgressStage
from streamprep.pipeline.job_queue import MemoryJobStore, RetryPolicy
from streamprep.services.storage import VideoStatus


def _service(paths, repository, channel, orchestrator):
    return TranscodeService(
        media_root=paths.root,
        repository=repository,
        channel=channel,
        orchestrator=orchestrator,
        store=MemoryJobStore(),
        retry_policy=RetryPolicy(max_attempts=3, backoff_seconds=0),
        max_workers=2,
    )


def test_queued_video_completes_without_failed_rendition(paths, repository, channel, orchestrator, fake_runner, fake_inspector):
    fake_inspector.info = MediaInfo(duration=12.0, has_audio=False)
    fake_runner.time_out("encode 720p")
    events = []
    channel.subscribe_to_user("u1", events.append)

    with _service(paths, repository, channel, orchestrator) as service:
        status = service.submit("v1")
        final = service.queue.wait(status.job_id, timeout=10)
        manifest = service.packager.read_manifest("v1")

    assert final.state == JOB_STATE_COMPLETED
    assert final.attempts == 1
    assert manifest.count("#EXT-X-STREAM-INF") == 2
    assert "720p.m3u8" not in manifest
    assert events[-1].overall_progress == 100
    assert repository.get_video_by_id("v1").status is VideoStatus.READY


def test_video_failing_every_attempt_is_left_failed(paths, repository, channel, orchestrator, fake_runner):
    for resolution in ("360p", "720p", "1080p"):
        fake_runner.fail(f"encode {resolution}")
    events = []
    channel.subscribe_to_user("u1", events.append)

    with _service(paths, repository, channel, orchestrator) as service:
        final = service.queue.wait(service.submit("v1").job_id, timeout=10)
        by_video = service.queue.status_for_video("v1")

    assert final.state == JOB_STATE_FAILED
    assert final.attempts == 3
    assert by_video.failure_reason.startswith("NoRenditionsError")
    assert repository.get_video_by_id("v1").status is VideoStatus.FAILED
    assert [e.stage for e in events].count(ProgressStage.ERROR) == 3
    assert fake_runner.contexts().count("thumbnail") == 3


def test_register_upload_copies_source(tmp_path, paths, repository, channel, orchestrator):
    source = tmp_path / "holiday.mov"
    source.write_bytes(b"\x00" * 64)

    service = _service(paths, repository, channel, orchestrator)
    record = service.register_upload(source, "u2", video_id="v9")

    assert record.uploader_id == "u2"
    assert paths.source_path("u2", "holiday.mov").read_bytes() == source.read_bytes()
    assert service.repository.get_video_by_id("v9").filename == "holiday.mov"
