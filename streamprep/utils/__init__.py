"""
Utilities Package for StreamPrep.

Helpers that are not specific to one pipeline stage.

Modules:
    - ffmpeg_utils.py: `FFmpegRunner`, which runs ffmpeg with a wall-clock
      timeout and turns its `-progress` output into percent callbacks, and
      `tool_path` for resolving executables.
    - format_utils.py: Human-readable sizes and durations for log messages.
    - module_updater.py: Startup verification of the external tools.
"""
