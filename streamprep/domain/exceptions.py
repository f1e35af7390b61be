"""
Defines custom exception types for StreamPrep.

The orchestrator relies on these types to decide what happens next: a
rendition that fails with `EncodingError` or `TranscodeTimeoutError` is
skipped, every other error aborts the attempt and is handed to the job
queue's retry policy.

All custom exceptions inherit from the base `StreamPrepException`.
"""


class StreamPrepException(Exception):
    """Base class for all custom exceptions in StreamPrep."""

    pass


# --- Orchestrator Stage Exceptions ---
class SourceMissingError(StreamPrepException):
    """
    Raised when the uploaded source file is not on disk.

    Fatal for the attempt. The job queue may still retry the whole job, which
    re-runs validation from the top.
    """

    pass


class InspectionError(StreamPrepException):
    """
    Raised when the probe tool fails or the duration/dimensions of the source
    cannot be determined.
    """

    pass


class ThumbnailError(StreamPrepException):
    """Raised when the preview frame could not be captured."""

    pass


class EncodingError(StreamPrepException):
    """
    Raised when the encoding tool exits unsuccessfully or does not leave the
    expected output file behind.

    Attributes:
        diagnostics: The tail of the tool's stderr, kept for logs and job
                     failure reasons.
    """

    def __init__(self, message: str, diagnostics: str = ""):
        super().__init__(message)
        self.diagnostics = diagnostics

    def __str__(self):
        base = super().__str__()
        if self.diagnostics:
            return f"{base}\n{self.diagnostics}"
        return base


class TranscodeTimeoutError(StreamPrepException, TimeoutError):
    """
    Raised when an external tool exceeds its wall-clock budget.

    The process has already been terminated when this is raised.
    """

    def __init__(self, message: str, timeout: float = 0.0):
        super().__init__(message)
        self.timeout = timeout


class NoRenditionsError(StreamPrepException):
    """Raised when every rendition of a video failed to encode."""

    pass


class PackagingError(StreamPrepException):
    """
    Raised when no rendition could be packaged or the master manifest could
    not be written.
    """

    pass


# --- Queue / Lookup Exceptions ---
class EnqueueError(StreamPrepException):
    """Raised when a job cannot be recorded because the job store is unavailable."""

    pass


class NotFoundError(StreamPrepException, LookupError):
    """
    Raised when a job record, a video record or a packaged file does not exist.

    Callers that need to tell "evicted" or "not yet processed" apart from
    "never existed" must also look at the job or video status.
    """

    pass


class InvalidTransitionError(StreamPrepException):
    """Raised when a lifecycle transition is attempted from a state that forbids it."""

    pass
