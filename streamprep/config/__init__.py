"""
Configuration Package for StreamPrep.

Static settings live here as module-level constants so that the rest of the
application never hardcodes a path, a timeout or a bitrate.

This package includes settings for:
- Logging format, directory layout and job queue policy (`common.py`).
- The rendition ladder, encoder parameters, HLS packaging parameters and
  external tool timeouts (`video.py`).

A handful of values can be overridden from a `config.user.yaml` file at the
project root; see `config.user.example.yaml`.
"""
