"""
This module provides the Modules class to verify the external tools the
pipeline depends on (ffmpeg and ffprobe) before any job is accepted.
"""
import subprocess

from loguru import logger

from .ffmpeg_utils import tool_path

REQUIRED_TOOLS = ("ffmpeg", "ffprobe")


class Modules:
    """
    Startup checks for external modules.

    Executables are looked up through `tool_path`, so a `paths.ffmpeg_dir`
    entry in the user config takes precedence over the system PATH.
    """

    @staticmethod
    def verify_tool(name: str) -> bool:
        """
        Runs `<tool> -version` and logs the first line of its output.

        Returns:
            True if the tool ran successfully, False otherwise.
        """
        cmd = tool_path(name)
        try:
            result = subprocess.run(
                [cmd, "-version"],
                check=True,
                capture_output=True,
                text=True,
                encoding="utf-8",
                timeout=15,
            )
        except subprocess.CalledProcessError as e:
            logger.error(f"{name} version command failed (return code {e.returncode}):\n{e.stderr}")
            return False
        except FileNotFoundError:
            logger.error(
                f"{name} command not found. Please ensure it is installed and accessible.\n"
                "You can either add it to your system's PATH or set `paths.ffmpeg_dir` in 'config.user.yaml'."
            )
            return False
        except subprocess.TimeoutExpired:
            logger.error(f"{name} did not answer `-version` within 15s.")
            return False

        version_output_lines = result.stdout.splitlines()
        first_line = version_output_lines[0] if version_output_lines else "(no output)"
        logger.info(f"{name} version check successful: {first_line}")
        return True

    @staticmethod
    def verify_tools() -> bool:
        """Verifies every required tool; returns True only if all of them work."""
        results = [Modules.verify_tool(name) for name in REQUIRED_TOOLS]
        return all(results)
