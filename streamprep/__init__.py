"""
StreamPrep: transcoding and adaptive-streaming packaging for uploaded videos.

The package is split the same way as the rest of the code base expects:

- ``config``: static settings and user overrides.
- ``domain``: exceptions, media inspection and the data models shared by
  every stage (jobs, renditions, progress events).
- ``services``: the single-purpose workers (rendition encoder, thumbnail
  extractor, segment packager, progress channel, storage collaborators).
- ``pipeline``: the transcoding orchestrator and the job queue that drives it.
- ``utils``: the external tool runner and small formatting helpers.
"""

__version__ = "0.3.0"
