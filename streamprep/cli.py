"""
Command-line interface for StreamPrep.

This module uses Python's `argparse` to define and parse the arguments of
`main.py`, which transcodes a single source video into an HLS package.
"""
import argparse
from pathlib import Path

from .config.common import DEFAULT_MAX_WORKERS, MEDIA_ROOT


def get_args(argv=None) -> argparse.Namespace:
    """
    Parses command-line arguments.

    Args:
        argv: Argument list to parse; defaults to `sys.argv[1:]`.

    Returns:
        argparse.Namespace: The parsed arguments. `source` and `media_root`
                            are resolved `Path` objects.
    """
    parser = argparse.ArgumentParser(
        description="Transcode a video into a rendition ladder and package it for HLS streaming."
    )
    parser.add_argument(
        "--source", type=Path, required=True, help="Source video file to process."
    )
    parser.add_argument(
        "--video-id", type=str, default=None, help="Video id to use (default: a new random id)."
    )
    parser.add_argument(
        "--user-id", type=str, default="local", help="Uploader id; outputs are stored under it."
    )
    parser.add_argument(
        "--media-root", type=Path, default=MEDIA_ROOT,
        help="Root directory of the uploads/videos tree."
    )
    parser.add_argument(
        "--workers", type=int, default=DEFAULT_MAX_WORKERS, help="Number of worker threads."
    )
    parser.add_argument(
        "--log-level", type=str, default="INFO", choices=["TRACE", "DEBUG", "INFO", "WARNING", "ERROR"],
        help="Set the logging level."
    )

    args = parser.parse_args(argv)

    if args.workers < 1:
        parser.error("--workers must be at least 1")
    args.source = args.source.expanduser().resolve()
    args.media_root = args.media_root.expanduser().resolve()
    if not args.source.is_file():
        parser.error(f"source file does not exist: {args.source}")
    return args
