"""
Main entry point for StreamPrep.

This script verifies the external tools, parses the command-line arguments,
registers the given source file as a video, queues it for processing and
prints progress events until the job reaches a terminal state.
"""

import sys

from loguru import logger

from streamprep.app import TranscodeService
from streamprep.cli import get_args
from streamprep.config.common import JOB_STATE_COMPLETED, LOGGER_FORMAT
from streamprep.domain.progress import ProgressEvent
from streamprep.utils.module_updater import Modules


# Configure the logger for initial setup.
# The level is overridden once the command-line arguments are parsed.
logger.remove()
logger.add(sys.stderr, level="INFO", format=LOGGER_FORMAT)


def print_event(event: ProgressEvent):
    task = f" - {event.current_task}" if event.current_task else ""
    error = f" ({event.error})" if event.error else ""
    print(f"[{event.video_id}] {event.stage.value:<10} {event.overall_progress:>3}%{task}{error}", flush=True)


def main() -> int:
    """
    Runs one video through the pipeline.

    Returns:
        The process exit code: 0 if the job completed, 1 otherwise.
    """
    args = get_args()

    logger.remove()
    logger.add(sys.stderr, level=args.log_level, format=LOGGER_FORMAT)
    logger.debug(f"Parsed arguments: {args}")

    if not Modules.verify_tools():
        logger.error("ffmpeg/ffprobe are not available; aborting.")
        return 1

    with TranscodeService(media_root=args.media_root, max_workers=args.workers) as service:
        video = service.register_upload(args.source, args.user_id, args.video_id)
        service.channel.subscribe_to_user(video.uploader_id, print_event)
        status = service.submit(video.id)
        logger.info(f"Queued job {status.job_id} for video {video.id}")

        final = service.queue.wait(status.job_id)

    if final.state != JOB_STATE_COMPLETED:
        logger.error(f"Job {final.job_id} ended as {final.state} after {final.attempts} attempt(s): {final.failure_reason}")
        return 1

    logger.success(f"Video {video.id} is ready: {service.packager.hls_dir(video.id)}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
