import pytest

from streamprep.config.video import RENDITIONS
from streamprep.domain.exceptions import NotFoundError, PackagingError
from streamprep.domain.renditions import RenditionResult
from streamprep.services.packaging_service import render_master_manifest


def _results(paths, *resolutions):
    out_dir = paths.output_dir("u1", "v1")
    out_dir.mkdir(parents=True, exist_ok=True)
    results = []
    for resolution in resolutions:
        file_path = out_dir / f"v1-{resolution}.mp4"
        file_path.write_bytes(b"\x00" * 512)
        results.append(RenditionResult(resolution=resolution, file_path=file_path, file_size=512, bitrate=1000))
    return results


def test_manifest_format_is_exact():
    text = render_master_manifest([RENDITIONS[0], RENDITIONS[2]])
    assert text == (
        "#EXTM3U\n"
        "#EXT-X-VERSION:3\n"
        "\n"
        "#EXT-X-STREAM-INF:BANDWIDTH=800000,RESOLUTION=640x360\n"
        "360p.m3u8\n"
        "\n"
        "#EXT-X-STREAM-INF:BANDWIDTH=4000000,RESOLUTION=1920x1080\n"
        "1080p.m3u8\n"
        "\n"
    )


def test_round_trip_lists_only_packaged_renditions_in_ladder_order(packager, paths):
    hls_dir = paths.hls_dir("u1", "v1")
    manifest_path = packager.package_all(_results(paths, "1080p", "360p"), hls_dir)

    assert manifest_path == hls_dir / "master.m3u8"
    assert packager.is_ready("v1")

    manifest = packager.read_manifest("v1")
    entries = [line for line in manifest.splitlines() if line.endswith(".m3u8")]
    assert manifest.count("#EXT-X-STREAM-INF") == 2
    assert entries == ["360p.m3u8", "1080p.m3u8"]
    for name in entries:
        assert "#EXTINF" in packager.read_playlist("v1", name)
    assert packager.read_segment("v1", "360p_000.ts")


def test_segment_names_are_deterministic(packager, paths, fake_runner):
    packager.package_all(_results(paths, "720p"), paths.hls_dir("u1", "v1"))

    cmd = fake_runner.calls[0]["cmd"]
    assert cmd[cmd.index("-hls_time") + 1] == "6"
    assert cmd[cmd.index("-hls_playlist_type") + 1] == "vod"
    assert cmd[cmd.index("-hls_segment_filename") + 1].endswith("720p_%03d.ts")


def test_stale_playlists_from_previous_attempt_are_cleared(packager, paths):
    hls_dir = paths.hls_dir("u1", "v1")
    packager.package_all(_results(paths, "360p", "720p"), hls_dir)
    packager.package_all(_results(paths, "360p"), hls_dir)

    assert "720p.m3u8" not in packager.read_manifest("v1")
    assert not (hls_dir / "720p_000.ts").exists()


def test_failed_rendition_is_left_out(packager, paths, fake_runner):
    fake_runner.fail("package 720p")
    packager.package_all(_results(paths, "360p", "720p"), paths.hls_dir("u1", "v1"))

    manifest = packager.read_manifest("v1")
    assert "360p.m3u8" in manifest
    assert "720p.m3u8" not in manifest


def test_nothing_packaged_raises_and_writes_no_manifest(packager, paths, fake_runner):
    fake_runner.fail("package 360p")

    with pytest.raises(PackagingError):
        packager.package_all(_results(paths, "360p"), paths.hls_dir("u1", "v1"))
    assert not packager.is_ready("v1")


def test_lookups_before_packaging_raise_not_found(packager):
    with pytest.raises(NotFoundError):
        packager.read_manifest("v1")
    with pytest.raises(NotFoundError):
        packager.read_playlist("v1", "360p.m3u8")
    with pytest.raises(NotFoundError):
        packager.read_segment("v1", "360p_000.ts")


def test_lookups_for_unknown_video_raise_not_found(packager):
    with pytest.raises(NotFoundError):
        packager.read_manifest("nope")
    assert not packager.is_ready("nope")


@pytest.mark.parametrize("name", ["../clip.mp4", "../../u1/clip.m3u8", "sub/360p.m3u8", ""])
def test_names_outside_the_package_are_rejected(packager, paths, name):
    packager.package_all(_results(paths, "360p"), paths.hls_dir("u1", "v1"))
    with pytest.raises(NotFoundError):
        packager.read_playlist("v1", name)
