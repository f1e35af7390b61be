"""
This module writes the per-video file logs that sit next to the outputs.

`ErrorLog` appends a human-readable record of every failed attempt, which is
what an operator reads first when a video ends up failed. `SuccessLog`
writes a machine-readable YAML record of each completed transcode. Both are
best-effort: a log that cannot be written is reported through loguru and
never interrupts the pipeline.
"""

from datetime import datetime
from pathlib import Path
from typing import Dict, List, Union

import yaml
from loguru import logger

from ..config.common import ERROR_LOG_FILE_NAME, SUCCESS_LOG_FILE_NAME


class Log:
    """
    Base class for the file logs; resolves and creates the log directory.
    """

    # A decorative separator line used in text-based logs for better readability.
    linesep_marker: str = "=" * 50

    def __init__(self, log_base_path: Path):
        """
        Args:
            log_base_path: A directory, or a file path whose parent is used.
        """
        self.log_file_path: Path
        if log_base_path.is_dir() or not log_base_path.suffix:
            self.log_dir: Path = log_base_path.resolve()
        else:
            self.log_dir: Path = log_base_path.parent.resolve()
        self.log_dir.mkdir(parents=True, exist_ok=True)

    def write(self, log_content: Union[dict, list, str]):
        raise NotImplementedError("Subclasses must implement the write() method.")


class ErrorLog(Log):
    """
    Appends error records to a plain text file, one block per failure.
    """

    def __init__(self, error_log_dir: Path, filename: str = ERROR_LOG_FILE_NAME):
        super().__init__(error_log_dir)
        self.log_file_path = self.log_dir / filename

    def write(self, *error_messages: str):
        """
        Appends the given messages, one per line, followed by a separator.
        """
        if not error_messages:
            return

        stamp = datetime.now().isoformat(timespec="seconds")
        content_to_write = f"[{stamp}]\n" + "\n".join(error_messages) + "\n" + self.linesep_marker + "\n"

        try:
            with self.log_file_path.open("a", encoding="utf-8") as f:
                f.write(content_to_write)
        except OSError as e:
            # Keep the message in the console log if the file is not writable.
            logger.error(f"Failed to write to error log {self.log_file_path}: {e}")
            for msg in error_messages:
                logger.error(f"  - {msg}")


class SuccessLog(Log):
    """
    Structured YAML log of completed transcodes.

    The file holds a list of entries; each `write` appends one entry with an
    increasing `index`, so re-processing a video keeps its history.
    """

    def __init__(self, success_log_dir: Path, filename: str = SUCCESS_LOG_FILE_NAME):
        super().__init__(success_log_dir)
        self.log_file_path = self.log_dir / filename
        self.log_entries: List[Dict] = []

    def write(self, new_log_entry: dict):
        if not isinstance(new_log_entry, dict):
            logger.error("SuccessLog.write expects a dictionary as a log entry.")
            return

        if self.log_file_path.is_file():
            try:
                with self.log_file_path.open("r", encoding="utf-8") as f:
                    loaded_entries = yaml.safe_load(f)
                if isinstance(loaded_entries, list):
                    self.log_entries = loaded_entries
                else:
                    if loaded_entries is not None:
                        logger.warning(
                            f"Success log {self.log_file_path} contained unexpected data. Starting a new log."
                        )
                    self.log_entries = []
            except (OSError, yaml.YAMLError) as e:
                logger.error(f"Error reading/parsing success log {self.log_file_path}: {e}. Starting a new log.")
                self.log_entries = []

        current_max_index = max(
            (entry.get("index", 0) for entry in self.log_entries if isinstance(entry, dict)),
            default=0,
        )
        entry = dict(new_log_entry)
        entry["index"] = current_max_index + 1
        self.log_entries.append(entry)

        try:
            with self.log_file_path.open("w", encoding="utf-8") as f:
                yaml.dump(self.log_entries, f, default_flow_style=False, sort_keys=False, allow_unicode=True)
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to write success log {self.log_file_path}: {e}")
