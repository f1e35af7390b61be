"""
Configuration settings related to video processing.

This module defines the rendition ladder, encoder parameters, adaptive
streaming packaging parameters, file naming and the wall-clock budgets given
to every external tool invocation.
"""
from ..domain.renditions import RenditionSpec

# --- Rendition Ladder ---
# Order matters: it is the encode order and the master manifest order.
RENDITIONS = (
    RenditionSpec("360p", 640, 360, "500k", 800_000),
    RenditionSpec("720p", 1280, 720, "1500k", 2_000_000),
    RenditionSpec("1080p", 1920, 1080, "3000k", 4_000_000),
)

# --- Encoder Settings ---
VIDEO_ENCODER = "libx264"
AUDIO_ENCODER = "aac"
AUDIO_BITRATE = "128k"
X264_PRESET = "medium"
CONSTANT_QUALITY_CRF = 23
# Fixed keyframe interval (frames); scene-cut keyframes are disabled so
# segment boundaries line up across renditions.
KEYFRAME_INTERVAL = 48
OUTPUT_CONTAINER = "mp4"

# --- Adaptive Streaming Settings ---
SEGMENT_DURATION_SECONDS = 6
HLS_PLAYLIST_TYPE = "vod"
MASTER_MANIFEST_NAME = "master.m3u8"
PLAYLIST_SUFFIX = ".m3u8"
SEGMENT_SUFFIX = ".ts"
MANIFEST_HEADER = "#EXTM3U\n#EXT-X-VERSION:3\n\n"

# --- Thumbnail Settings ---
THUMBNAIL_POSITION_RATIO = 0.1  # Grab the frame at 10% of the duration.
THUMBNAIL_QUALITY = 2  # mjpeg qscale, 2 is near-lossless.

# --- Timeouts (seconds) ---
ENCODE_TIMEOUT_SECONDS = 10 * 60
PACKAGE_TIMEOUT_SECONDS = 5 * 60
THUMBNAIL_TIMEOUT_SECONDS = 60
PROBE_TIMEOUT_SECONDS = 30

# Seconds to wait after SIGTERM before a hung tool is killed.
TERMINATE_GRACE_SECONDS = 5

# --- Progress Schedule (overall percent) ---
PROGRESS_VALIDATING = 35
PROGRESS_METADATA = 40
PROGRESS_THUMBNAIL = 50
PROGRESS_ENCODING_START = 60
PROGRESS_ENCODING_END = 90
PROGRESS_PACKAGING = 90
PROGRESS_COMPLETED = 100
