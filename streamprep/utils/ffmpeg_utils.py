"""
This module runs the external encoding tool on behalf of every pipeline stage.

`FFmpegRunner` wraps `subprocess.Popen` with the three things the pipeline
needs from a long-running encode: a hard wall-clock timeout that terminates
the process, incremental percent-complete reporting parsed from ffmpeg's
`-progress pipe:1` output, and a bounded tail of stderr for diagnostics.
"""

import collections
import shlex
import subprocess
import sys
import threading
import time
from dataclasses import dataclass
from typing import Callable, IO, List, Optional

from loguru import logger

from ..config.common import MODULE_PATH, STDERR_TAIL_LINES
from ..config.video import TERMINATE_GRACE_SECONDS
from ..domain.exceptions import TranscodeTimeoutError

ProgressCallback = Callable[[int], None]

# Arguments that make ffmpeg print machine-readable progress on stdout.
PROGRESS_ARGS = ["-progress", "pipe:1", "-nostats"]


def tool_path(name: str) -> str:
    """
    Determines the executable to invoke for an external tool.

    The directory configured as `paths.ffmpeg_dir` wins when it holds the
    executable; otherwise the bare name is returned and resolved via PATH.

    Args:
        name: "ffmpeg" or "ffprobe".
    """
    exe_name = f"{name}.exe" if sys.platform == "win32" else name
    if MODULE_PATH and MODULE_PATH.is_dir():
        configured = MODULE_PATH / exe_name
        if configured.is_file():
            return str(configured)
        logger.warning(f"`ffmpeg_dir` is configured, but '{exe_name}' was not found there. Falling back to system PATH.")
    return name


def display_command(cmd: List[str]) -> str:
    return shlex.join(cmd)


@dataclass
class ToolResult:
    """Outcome of one external tool invocation that finished within its budget."""

    returncode: int
    stderr: str
    elapsed: float

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def parse_progress_line(line: str, duration: Optional[float]) -> Optional[int]:
    """
    Converts one `-progress` key=value line into a percentage.

    ffmpeg reports the output position as `out_time_us` and, confusingly, also
    as `out_time_ms` in microseconds. Both are accepted.

    Returns:
        The percentage (0-100), or None if the line carries no position or the
        duration is unknown.
    """
    if not duration or duration <= 0:
        return None
    key, sep, value = line.strip().partition("=")
    if not sep or key not in ("out_time_us", "out_time_ms"):
        return None
    try:
        position_seconds = int(value) / 1_000_000
    except ValueError:
        return None
    if position_seconds < 0:
        return None
    return max(0, min(100, int(position_seconds / duration * 100)))


class FFmpegRunner:
    """
    Runs external tool command lines with a timeout and progress reporting.

    One runner can be shared by every stage and every worker thread; it keeps
    no per-invocation state on the instance.
    """

    def __init__(self, terminate_grace: float = TERMINATE_GRACE_SECONDS):
        self.terminate_grace = terminate_grace

    def run(
        self,
        cmd: List[str],
        timeout: float,
        duration: Optional[float] = None,
        on_progress: Optional[ProgressCallback] = None,
        context: str = "ffmpeg",
    ) -> ToolResult:
        """
        Executes `cmd` and waits for it for at most `timeout` seconds.

        Args:
            cmd: The command as a list of arguments. Never passed to a shell.
            timeout: Wall-clock budget in seconds, measured from spawn.
            duration: Media duration in seconds, used to turn output positions
                      into percentages. Without it no progress is reported.
            on_progress: Called with each new, strictly larger percentage.
            context: Short label for log messages (e.g. "encode 720p").

        Returns:
            A `ToolResult`. A tool that cannot be started is reported as a
            result with return code -1 and the OS error as stderr.

        Raises:
            TranscodeTimeoutError: If the budget expired. The process has been
                                   terminated (and killed if needed).
        """
        logger.debug(f"[{context}] Executing: {display_command(cmd)}")
        started = time.monotonic()
        try:
            process = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                shell=False,
            )
        except OSError as e:
            logger.error(f"[{context}] Could not start '{cmd[0]}': {e}")
            return ToolResult(returncode=-1, stderr=str(e), elapsed=0.0)

        stderr_tail = collections.deque(maxlen=STDERR_TAIL_LINES)
        stderr_reader = threading.Thread(
            target=self._drain, args=(process.stderr, stderr_tail), daemon=True
        )
        stdout_reader = threading.Thread(
            target=self._read_progress,
            args=(process.stdout, duration, on_progress, context),
            daemon=True,
        )
        stderr_reader.start()
        stdout_reader.start()

        try:
            returncode = process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            elapsed = time.monotonic() - started
            logger.error(f"[{context}] Exceeded {timeout:.0f}s limit (ran for {elapsed:.0f}s). Terminating.")
            self._terminate(process, context)
            raise TranscodeTimeoutError(
                f"{context} timed out after {timeout:.0f}s", timeout=timeout
            )
        finally:
            # Progress callbacks must all have fired before the caller moves on.
            stdout_reader.join()
            stderr_reader.join()

        elapsed = time.monotonic() - started
        stderr_text = "\n".join(stderr_tail)
        if returncode != 0:
            logger.debug(f"[{context}] stderr (rc={returncode}):\n{stderr_text}")
        else:
            logger.trace(f"[{context}] finished in {elapsed:.1f}s")
        return ToolResult(returncode=returncode, stderr=stderr_text, elapsed=elapsed)

    @staticmethod
    def _drain(stream: IO[str], sink: collections.deque):
        for line in stream:
            line = line.rstrip()
            if line:
                sink.append(line)
        stream.close()

    @staticmethod
    def _read_progress(
        stream: IO[str],
        duration: Optional[float],
        on_progress: Optional[ProgressCallback],
        context: str,
    ):
        last_percent = -1
        for line in stream:
            percent = parse_progress_line(line, duration)
            if percent is None or percent <= last_percent:
                continue
            last_percent = percent
            if on_progress is None:
                continue
            try:
                on_progress(percent)
            except Exception as e:
                logger.error(f"[{context}] Progress callback failed: {e}")
        stream.close()

    def _terminate(self, process: subprocess.Popen, context: str):
        if process.poll() is not None:
            return
        try:
            process.terminate()
            process.wait(timeout=self.terminate_grace)
        except subprocess.TimeoutExpired:
            logger.warning(f"[{context}] Did not exit after SIGTERM, killing.")
            process.kill()
            process.wait()
        except (ProcessLookupError, OSError):
            pass
