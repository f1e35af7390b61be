"""
Common configuration settings used throughout the application.

This module centralizes parameters for logging, directory layout, the job
queue (retry policy, retention, worker count) and job states. It also loads
user-specific overrides from an external YAML file so that deployments can
change paths and queue sizing without modifying the source code.
"""
import os
from pathlib import Path

import yaml
from loguru import logger

# --- User-Defined Configuration ---
# Values below can be overridden from 'config.user.yaml' at the project root.

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
USER_CONFIG_PATH = PROJECT_ROOT / "config.user.yaml"

# Directory holding the ffmpeg/ffprobe executables. None means "use PATH".
MODULE_PATH: Path | None = None

# Root under which uploads and processed outputs are stored.
MEDIA_ROOT: Path = Path.cwd()

# --- Job Queue Configuration ---

# Worker pool size; the hard upper bound on simultaneously transcoding videos.
DEFAULT_MAX_WORKERS = os.cpu_count() or 2

# Total attempts per job (first run included) before it is marked failed.
MAX_JOB_ATTEMPTS = 3

# Exponential backoff between attempts: 2s, 4s, 8s...
RETRY_BACKOFF_SECONDS = 2.0
RETRY_BACKOFF_FACTOR = 2.0

# Number of terminal job records kept for inspection before eviction.
KEEP_COMPLETED_JOBS = 10
KEEP_FAILED_JOBS = 50

# Default age threshold for `JobQueue.cleanup`.
CLEANUP_COMPLETED_OLDER_THAN_DAYS = 7

_user_config: dict = {}
if USER_CONFIG_PATH.is_file():
    try:
        with USER_CONFIG_PATH.open("r", encoding="utf-8") as f:
            _user_config = yaml.safe_load(f) or {}
    except Exception as e:
        logger.warning(f"Could not load or parse '{USER_CONFIG_PATH}': {e}")
        _user_config = {}
else:
    logger.debug(f"User config '{USER_CONFIG_PATH}' not found. Using built-in defaults.")

if isinstance(_user_config, dict):
    _paths_config = _user_config.get("paths") or {}
    _queue_config = _user_config.get("queue") or {}

    if _paths_config.get("ffmpeg_dir"):
        MODULE_PATH = Path(_paths_config["ffmpeg_dir"])
    if _paths_config.get("media_root"):
        MEDIA_ROOT = Path(_paths_config["media_root"])

    if _queue_config.get("workers"):
        DEFAULT_MAX_WORKERS = int(_queue_config["workers"])
    if _queue_config.get("max_attempts"):
        MAX_JOB_ATTEMPTS = int(_queue_config["max_attempts"])
    if _queue_config.get("backoff_seconds") is not None:
        RETRY_BACKOFF_SECONDS = float(_queue_config["backoff_seconds"])


# --- Logging Configuration ---

# The format string for the Loguru logger.
LOGGER_FORMAT = (
    "<green>{time:MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "{thread.name} - <level>{message}</level>"
)

# Per-video file logs, written inside the video's output directory.
ERROR_LOG_FILE_NAME = "error.txt"
SUCCESS_LOG_FILE_NAME = "processing_log.yaml"

# Number of trailing stderr lines of an external tool kept as diagnostics.
STDERR_TAIL_LINES = 40


# --- Directory Layout ---
# Sources: <MEDIA_ROOT>/uploads/videos/<uploader>/<filename>
# Outputs: <MEDIA_ROOT>/uploads/videos/<uploader>/<video_id>/
UPLOADS_DIR_NAME = "uploads"
VIDEOS_DIR_NAME = "videos"
HLS_DIR_NAME = "hls"

# Job records of `YamlJobStore`, relative to MEDIA_ROOT.
JOBS_DIR_NAME = ".jobs"

# Suffix of the per-job YAML records written by `YamlJobStore`.
JOB_FILE_SUFFIX = ".job.yaml"


# --- Job State Constants ---
JOB_STATE_QUEUED = "queued"  # Waiting for a worker (first run or backoff).
JOB_STATE_ACTIVE = "active"  # Occupying a worker.
JOB_STATE_COMPLETED = "completed"  # Terminal, success.
JOB_STATE_FAILED = "failed"  # Terminal, all attempts used.

JOB_TERMINAL_STATES = (JOB_STATE_COMPLETED, JOB_STATE_FAILED)
