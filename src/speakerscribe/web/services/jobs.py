"""Background diarization jobs.

Each job runs the synchronous pipeline on a daemon thread and appends progress
to an event log. Every SSE reader replays the log from the start, so late or
reconnecting viewers still see the final event. Runs are serialized with one
lock because all jobs share the same model handles.
"""

import logging
import shutil
import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from speakerscribe import config
from speakerscribe.pipeline import (
    CancellationToken,
    DiarizationPipeline,
    DiarizationResult,
    PipelineCancelled,
    ProgressEvent,
)
from speakerscribe.pipeline.runner import check_models

from ..models import JobState, JobStatus, ProgressMessage, SegmentOut, TranscribeOptions

logger = logging.getLogger(__name__)

PipelineFactory = Callable[[TranscribeOptions], DiarizationPipeline]

# Finished jobs kept in memory before the oldest are dropped
MAX_FINISHED_JOBS = 100

FINISHED_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


@dataclass
class Job:
    """In-memory job record."""

    id: str
    filename: str
    audio_path: Path
    options: TranscribeOptions
    status: JobStatus = JobStatus.QUEUED
    token: CancellationToken = field(default_factory=CancellationToken)
    events: list[tuple[str, dict | str | None]] = field(default_factory=list)
    progress: ProgressMessage | None = None
    result: DiarizationResult | None = None
    error: str | None = None


class JobService:
    """Creates, runs and tracks diarization jobs."""

    def __init__(
        self,
        pipeline_factory: PipelineFactory,
        jobs_dir: Path | None = None,
        preflight: Callable[[], None] | None = check_models,
        max_finished_jobs: int = MAX_FINISHED_JOBS,
    ):
        self.pipeline_factory = pipeline_factory
        self.jobs_dir = jobs_dir or config.JOBS_DIR
        self.jobs_dir.mkdir(parents=True, exist_ok=True)
        self.preflight = preflight
        self.max_finished_jobs = max_finished_jobs
        self._jobs: dict[str, Job] = {}
        self._run_lock = threading.Lock()

    def check_ready(self) -> None:
        """Raise PreconditionError when models are missing."""
        if self.preflight is not None:
            self.preflight()

    def create(self, filename: str, content: bytes, options: TranscribeOptions) -> Job:
        """Store uploaded audio and register a queued job."""
        job_id = str(uuid.uuid4())
        job_dir = self.jobs_dir / job_id
        job_dir.mkdir(parents=True, exist_ok=True)
        audio_path = job_dir / Path(filename).name
        audio_path.write_bytes(content)

        job = Job(id=job_id, filename=filename, audio_path=audio_path, options=options)
        self._jobs[job_id] = job
        return job

    def get(self, job_id: str) -> Job | None:
        return self._jobs.get(job_id)

    def start(self, job: Job) -> threading.Thread:
        """Run ``job`` in a background thread."""
        thread = threading.Thread(target=self._run, args=(job,), daemon=True)
        thread.start()
        return thread

    def cancel(self, job_id: str) -> bool:
        """Request cancellation; returns False if the job is unknown or finished."""
        job = self._jobs.get(job_id)
        if job is None or job.status in FINISHED_STATUSES:
            return False
        job.token.cancel()
        return True

    def _on_progress(self, job: Job, event: ProgressEvent) -> None:
        job.progress = ProgressMessage(**event.to_dict())
        job.events.append(("item", event.to_dict()))

    def _run(self, job: Job) -> None:
        with self._run_lock:
            final: tuple[str, str | None] = ("error", "Job interrupted")
            try:
                if job.token.cancelled:
                    raise PipelineCancelled("Cancelled before start")
                job.status = JobStatus.RUNNING
                pipeline = self.pipeline_factory(job.options)
                job.result = pipeline.run_file(
                    job.audio_path,
                    cancel_token=job.token,
                    on_progress=lambda event: self._on_progress(job, event),
                )
            except PipelineCancelled:
                job.status = JobStatus.CANCELLED
                final = ("cancelled", None)
            except Exception as e:
                logger.exception("Job %s failed", job.id)
                job.status = JobStatus.FAILED
                job.error = str(e)
                final = ("error", str(e))
            else:
                job.status = JobStatus.COMPLETED
                final = ("done", None)
            finally:
                # Clean up before readers can observe the final event
                shutil.rmtree(job.audio_path.parent, ignore_errors=True)
                job.events.append(final)
                self._evict_finished()

    def _evict_finished(self) -> None:
        """Drop the oldest finished jobs beyond ``max_finished_jobs``."""
        finished = [
            job_id for job_id, job in list(self._jobs.items()) if job.status in FINISHED_STATUSES
        ]
        for job_id in finished[: max(0, len(finished) - self.max_finished_jobs)]:
            self._jobs.pop(job_id, None)

    def state(self, job: Job) -> JobState:
        """Snapshot of ``job`` for the API."""
        segments = []
        transcript = None
        if job.result is not None:
            segments = [SegmentOut(**s.to_dict()) for s in job.result.segments]
            transcript = job.result.transcript
        return JobState(
            id=job.id,
            status=job.status,
            filename=job.filename,
            options=job.options,
            progress=job.progress,
            segments=segments,
            transcript=transcript,
            error=job.error,
        )


_job_service: JobService | None = None


def get_job_service() -> JobService:
    """Get the job service singleton."""
    global _job_service
    if _job_service is None:
        from .pipeline import get_model_cache

        _job_service = JobService(lambda options: get_model_cache().build_pipeline(options))
    return _job_service
