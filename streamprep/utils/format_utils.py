"""
Human-readable formatting for sizes, bitrates and durations, as they appear
in log messages and in the per-video processing log.
"""

from datetime import timedelta
from typing import Union

_SIZE_UNITS = ("B", "KB", "MB", "GB", "TB")


def format_timedelta(elapsed: Union[timedelta, float]) -> str:
    """
    Formats an elapsed time as "HH:MM:SS".

    Accepts a `timedelta` or a number of seconds; anything else gives "00:00:00".
    """
    if isinstance(elapsed, timedelta):
        total_seconds = int(elapsed.total_seconds())
    elif isinstance(elapsed, (int, float)):
        total_seconds = int(elapsed)
    else:
        return "00:00:00"

    hours, remainder = divmod(max(0, total_seconds), 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{hours:02}:{minutes:02}:{seconds:02}"


def formatted_size(size_bytes: int) -> str:
    """
    Converts a byte count to a short string in binary units.

    >>> formatted_size(1536)
    '1.50 KB'
    >>> formatted_size(2097152)
    '2 MB'
    """
    size = float(max(0, size_bytes))
    for unit in _SIZE_UNITS:
        if size < 1024 or unit == _SIZE_UNITS[-1]:
            if unit == "B":
                return f"{int(size)} B"
            return f"{size:.2f} {unit}".replace(".00 ", " ")
        size /= 1024
    return f"{size:.2f} {_SIZE_UNITS[-1]}"


def format_bitrate(bits_per_second: int) -> str:
    """1500000 -> "1500 kb/s"."""
    return f"{max(0, bits_per_second) // 1000} kb/s"
