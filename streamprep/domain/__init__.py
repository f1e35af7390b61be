"""
This package contains the core domain models of StreamPrep.

The domain layer describes what the pipeline works with, independent of the
external tools, the queue backend or any transport.

Modules:
    exceptions.py: The error taxonomy. Each pipeline stage raises its own
                   exception type so the orchestrator can tell recoverable
                   per-rendition failures from fatal ones.
    media.py: The `MediaInspector`, which wraps `ffprobe` (run as a subprocess)
              and returns a `MediaInfo`.
    renditions.py: `RenditionSpec` (the configured ladder entries) and
                   `RenditionResult` (what a successful encode produced).
    jobs.py: `TranscodeJob`, the queue's durable record of one unit of work,
             and its lifecycle rules.
    progress.py: `ProgressEvent` and the stage enum broadcast to observers.
"""
