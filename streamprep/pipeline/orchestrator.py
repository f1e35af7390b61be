"""
This module sequences the processing stages for one video.

`TranscodingOrchestrator.process` walks a fixed state machine:

    Validating -> MetadataExtraction -> ThumbnailGeneration
               -> RenditionEncoding -> Packaging -> Completed

with `Failed` reachable from every non-terminal state. Every transition
publishes a `ProgressEvent` on the `ProgressChannel`. Renditions are encoded
one after another; a failed or timed-out rendition is logged and skipped,
every other failure aborts the run, marks the video failed and is re-raised
so the job queue can apply its retry policy. A retry always starts over from
`Validating`.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, FrozenSet, List, Optional, Sequence

from loguru import logger

from ..config.video import (
    PROGRESS_COMPLETED,
    PROGRESS_ENCODING_END,
    PROGRESS_ENCODING_START,
    PROGRESS_METADATA,
    PROGRESS_PACKAGING,
    PROGRESS_THUMBNAIL,
    PROGRESS_VALIDATING,
    RENDITIONS,
)
from ..domain.exceptions import (
    EncodingError,
    InvalidTransitionError,
    NoRenditionsError,
    SourceMissingError,
    TranscodeTimeoutError,
)
from ..domain.jobs import TranscodeJob
from ..domain.media import MediaInfo, MediaInspector
from ..domain.progress import ProgressEvent, ProgressStage
from ..domain.renditions import RenditionResult, RenditionSpec
from ..services.logging_service import ErrorLog, SuccessLog
from ..services.packaging_service import SegmentPackager
from ..services.progress_channel import ProgressChannel
from ..services.rendition_encoder import RenditionEncoder, rendition_filename
from ..services.storage import MediaPaths, VideoRepository, VideoStatus
from ..services.thumbnail_service import ThumbnailExtractor
from ..utils.format_utils import format_bitrate, format_timedelta, formatted_size


class OrchestratorState(str, Enum):
    VALIDATING = "Validating"
    METADATA_EXTRACTION = "MetadataExtraction"
    THUMBNAIL_GENERATION = "ThumbnailGeneration"
    RENDITION_ENCODING = "RenditionEncoding"
    PACKAGING = "Packaging"
    COMPLETED = "Completed"
    FAILED = "Failed"


_TRANSITIONS: Dict[OrchestratorState, FrozenSet[OrchestratorState]] = {
    OrchestratorState.VALIDATING: frozenset({OrchestratorState.METADATA_EXTRACTION, OrchestratorState.FAILED}),
    OrchestratorState.METADATA_EXTRACTION: frozenset({OrchestratorState.THUMBNAIL_GENERATION, OrchestratorState.FAILED}),
    OrchestratorState.THUMBNAIL_GENERATION: frozenset({OrchestratorState.RENDITION_ENCODING, OrchestratorState.FAILED}),
    OrchestratorState.RENDITION_ENCODING: frozenset({OrchestratorState.PACKAGING, OrchestratorState.FAILED}),
    OrchestratorState.PACKAGING: frozenset({OrchestratorState.COMPLETED, OrchestratorState.FAILED}),
    OrchestratorState.COMPLETED: frozenset(),
    OrchestratorState.FAILED: frozenset(),
}


@dataclass
class TranscodeOutcome:
    """What one successful run produced."""

    video_id: str
    manifest_path: Path
    thumbnail_path: Path
    duration: float
    renditions: List[RenditionResult] = field(default_factory=list)
    failed_renditions: Dict[str, str] = field(default_factory=dict)
    elapsed: float = 0.0


class _ProgressReporter:
    """
    Publishes the events of one run and keeps `overall_progress` monotonic.

    Values lower than what was already reported are raised to it; an event
    that would repeat the previous stage, percentage and task is dropped.
    """

    def __init__(
        self,
        channel: ProgressChannel,
        job: TranscodeJob,
        on_progress: Optional[Callable[[int], None]] = None,
    ):
        self.channel = channel
        self.job = job
        self.on_progress = on_progress
        self.last_overall = 0
        self._last_key = None

    def emit(
        self,
        stage: ProgressStage,
        overall: float,
        current_task: Optional[str] = None,
        processing_progress: Optional[int] = None,
    ):
        overall = max(self.last_overall, min(PROGRESS_COMPLETED, int(overall)))
        key = (stage, overall, current_task)
        if key == self._last_key:
            return
        self._last_key = key
        self.last_overall = overall
        self._publish(
            ProgressEvent(
                video_id=self.job.video_id,
                stage=stage,
                overall_progress=overall,
                processing_progress=processing_progress,
                current_task=current_task,
            )
        )
        if self.on_progress is not None:
            try:
                self.on_progress(overall)
            except Exception as e:
                logger.warning(f"Job progress callback failed for {self.job.job_id}: {e}")

    def error(self, message: str):
        # The one place overall progress goes back down.
        self.last_overall = 0
        self._last_key = None
        self._publish(
            ProgressEvent(
                video_id=self.job.video_id,
                stage=ProgressStage.ERROR,
                overall_progress=0,
                error=message,
                current_task="Processing failed",
            )
        )

    def _publish(self, event: ProgressEvent):
        logger.debug(f"[{self.job.video_id}] {event.stage.value} {event.overall_progress}% {event.current_task or ''}")
        self.channel.publish(self.job.job_id, self.job.user_id, event)


class _Run:
    """Per-invocation state of the stage machine."""

    def __init__(self, job: TranscodeJob):
        self.job = job
        self.state = OrchestratorState.VALIDATING
        self.output_dir: Optional[Path] = None
        self.manifest_path: Optional[Path] = None

    def transition(self, target: OrchestratorState):
        if target not in _TRANSITIONS[self.state]:
            raise InvalidTransitionError(f"Cannot move from {self.state.value} to {target.value}.")
        logger.debug(f"[{self.job.video_id}] {self.state.value} -> {target.value}")
        self.state = target


class TranscodingOrchestrator:
    """
    Runs the stage sequence for one video per `process` call.

    All collaborators are injected; the defaults talk to the real ffmpeg
    tools. Instances hold no per-run state and may be shared by every worker
    thread of the job queue.
    """

    def __init__(
        self,
        repository: VideoRepository,
        channel: ProgressChannel,
        paths: Optional[MediaPaths] = None,
        inspector: Optional[MediaInspector] = None,
        thumbnailer: Optional[ThumbnailExtractor] = None,
        encoder: Optional[RenditionEncoder] = None,
        packager: Optional[SegmentPackager] = None,
        renditions: Sequence[RenditionSpec] = RENDITIONS,
    ):
        self.repository = repository
        self.channel = channel
        self.paths = paths or MediaPaths()
        self.inspector = inspector or MediaInspector()
        self.thumbnailer = thumbnailer or ThumbnailExtractor(inspector=self.inspector)
        self.encoder = encoder or RenditionEncoder()
        self.packager = packager or SegmentPackager(repository, self.paths, renditions=renditions)
        self.renditions = tuple(renditions)

    def process(self, job: TranscodeJob, on_progress: Optional[Callable[[int], None]] = None) -> TranscodeOutcome:
        """
        Processes `job.video_id` from source file to ready HLS package.

        Args:
            job: The job being run; supplies the video, user and job ids.
            on_progress: Receives each new overall percentage, for the queue's
                         own bookkeeping.

        Returns:
            A `TranscodeOutcome` describing the produced files.

        Raises:
            StreamPrepException: Any fatal stage failure, after the video was
                                 marked failed and an `error` event was
                                 published.
        """
        started = time.monotonic()
        run = _Run(job)
        reporter = _ProgressReporter(self.channel, job, on_progress)
        logger.info(f"Starting video processing for video {job.video_id} (job {job.job_id})")

        try:
            outcome = self._run_stages(run, reporter)
        except Exception as e:
            self._fail(run, reporter, e)
            raise

        outcome.elapsed = time.monotonic() - started
        self._write_success_log(run, outcome)
        logger.success(
            f"Video processing completed for video {job.video_id}: "
            f"{len(outcome.renditions)} rendition(s) in {format_timedelta(outcome.elapsed)}"
        )
        return outcome

    def _run_stages(self, run: _Run, reporter: _ProgressReporter) -> TranscodeOutcome:
        video_id = run.job.video_id

        reporter.emit(ProgressStage.VALIDATING, PROGRESS_VALIDATING, "Validating source file")
        video = self.repository.get_video_by_id(video_id)
        run.output_dir = self.paths.output_dir(video.uploader_id, video_id)
        source = self.paths.source_path(video.uploader_id, video.filename)
        if not source.is_file():
            raise SourceMissingError(f"Source file for video {video_id} not found: {source}")
        run.output_dir.mkdir(parents=True, exist_ok=True)

        run.transition(OrchestratorState.METADATA_EXTRACTION)
        reporter.emit(ProgressStage.PROCESSING, PROGRESS_METADATA, "Extracting metadata")
        info = self.inspector.inspect(source)

        run.transition(OrchestratorState.THUMBNAIL_GENERATION)
        reporter.emit(ProgressStage.PROCESSING, PROGRESS_THUMBNAIL, "Generating thumbnail")
        thumbnail_path = self.thumbnailer.extract(source, run.output_dir, video_id, duration=info.duration)

        run.transition(OrchestratorState.RENDITION_ENCODING)
        reporter.emit(ProgressStage.ENCODING, PROGRESS_ENCODING_START, "Encoding renditions", processing_progress=0)
        results, failures = self._encode_renditions(source, run.output_dir, info, video_id, reporter)
        if not results:
            details = "; ".join(f"{res}: {reason}" for res, reason in failures.items())
            raise NoRenditionsError(f"All {len(self.renditions)} renditions failed for video {video_id}. {details}")

        run.transition(OrchestratorState.PACKAGING)
        reporter.emit(ProgressStage.FINALIZING, PROGRESS_PACKAGING, "Generating HLS streams")
        run.manifest_path = self.packager.package_all(results, self.paths.hls_dir(video.uploader_id, video_id))

        self.repository.create_rendition_records(video_id, results)
        self.repository.update_video_status(
            video_id,
            VideoStatus.READY,
            duration=int(round(info.duration)),
            thumbnail_url=str(thumbnail_path),
        )

        run.transition(OrchestratorState.COMPLETED)
        reporter.emit(ProgressStage.COMPLETED, PROGRESS_COMPLETED, "Processing completed")
        return TranscodeOutcome(
            video_id=video_id,
            manifest_path=run.manifest_path,
            thumbnail_path=thumbnail_path,
            duration=info.duration,
            renditions=results,
            failed_renditions=failures,
        )

    def _encode_renditions(
        self,
        source: Path,
        output_dir: Path,
        info: MediaInfo,
        video_id: str,
        reporter: _ProgressReporter,
    ):
        """
        Encodes the ladder sequentially, skipping renditions that fail.

        Encoding progress maps onto the 60-90% band, each rendition getting an
        equal share of it.

        Returns:
            (results in ladder order, {resolution: failure reason})
        """
        results: List[RenditionResult] = []
        failures: Dict[str, str] = {}
        total = len(self.renditions)
        span = PROGRESS_ENCODING_END - PROGRESS_ENCODING_START

        for index, spec in enumerate(self.renditions):
            task = f"Encoding {spec.resolution} ({index + 1}/{total})"

            def forward(percent: int, index=index, task=task):
                overall = PROGRESS_ENCODING_START + span * (index + percent / 100) / total
                reporter.emit(ProgressStage.ENCODING, overall, task, processing_progress=percent)

            forward(0)
            output_path = output_dir / rendition_filename(video_id, spec)
            try:
                result = self.encoder.encode(
                    source,
                    output_path,
                    spec,
                    info.has_audio,
                    duration=info.duration,
                    on_progress=forward,
                )
                results.append(result)
            except (EncodingError, TranscodeTimeoutError) as e:
                failures[spec.resolution] = f"{type(e).__name__}: {e}"
                logger.error(f"Rendition {spec.resolution} failed for video {video_id}, skipping: {e}")
            forward(100)

        logger.info(
            f"Encoded {len(results)}/{total} renditions for video {video_id}"
            + (f" (failed: {', '.join(failures)})" if failures else "")
        )
        return results, failures

    def _fail(self, run: _Run, reporter: _ProgressReporter, error: Exception):
        video_id = run.job.video_id
        failed_in = run.state
        reason = f"{type(error).__name__}: {error}"
        if run.state not in (OrchestratorState.COMPLETED, OrchestratorState.FAILED):
            run.transition(OrchestratorState.FAILED)
        logger.error(f"Video processing failed for video {video_id} during {failed_in.value}: {reason}")

        try:
            self.repository.update_video_status(video_id, VideoStatus.FAILED)
        except Exception as e:
            logger.error(f"Could not mark video {video_id} as failed: {e}")

        if run.manifest_path is not None:
            # A manifest without a ready status must not look like a finished package.
            try:
                run.manifest_path.unlink(missing_ok=True)
            except OSError as e:
                logger.error(f"Could not remove {run.manifest_path}: {e}")

        if run.output_dir is not None:
            try:
                ErrorLog(run.output_dir).write(
                    f"Job: {run.job.job_id} (attempt {run.job.attempts})",
                    f"Video: {video_id}",
                    f"Stage: {failed_in.value}",
                    f"Error: {reason}",
                )
            except OSError as e:
                logger.error(f"Could not open the error log in {run.output_dir}: {e}")
        reporter.error(str(error))

    def _write_success_log(self, run: _Run, outcome: TranscodeOutcome):
        entry = {
            "job_id": run.job.job_id,
            "video_id": outcome.video_id,
            "duration": round(outcome.duration, 3),
            "thumbnail": outcome.thumbnail_path.name,
            "manifest": str(outcome.manifest_path),
            "renditions": [
                {
                    "resolution": r.resolution,
                    "file": r.file_path.name,
                    "size": formatted_size(r.file_size),
                    "bitrate": format_bitrate(r.bitrate),
                }
                for r in outcome.renditions
            ],
            "failed_renditions": dict(outcome.failed_renditions),
            "elapsed": format_timedelta(outcome.elapsed),
            "finished_at": time.strftime("%Y-%m-%d %H:%M:%S"),
        }
        try:
            SuccessLog(run.output_dir).write(entry)
        except OSError as e:
            logger.error(f"Could not open the processing log in {run.output_dir}: {e}")
