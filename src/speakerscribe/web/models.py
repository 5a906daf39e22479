"""Pydantic models for web API."""

from enum import Enum

from pydantic import BaseModel, Field

from speakerscribe import config


class JobStatus(str, Enum):
    """Job status."""

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class TranscribeOptions(BaseModel):
    """Diarized transcription options."""

    max_speakers: int = Field(default=config.DEFAULT_MAX_SPEAKERS, ge=1)
    threshold: float = Field(default=config.DEFAULT_THRESHOLD, ge=-1.0, le=1.0)
    model: str = config.DEFAULT_WHISPER_MODEL
    language: str | None = config.DEFAULT_LANGUAGE


class ProgressMessage(BaseModel):
    """Pipeline progress event."""

    stage: str
    current: int | None = None
    total: int | None = None
    message: str | None = None


class SegmentOut(BaseModel):
    """Transcribed speaker turn."""

    speaker: int | None
    start_ms: int
    end_ms: int
    text: str


class JobState(BaseModel):
    """Complete job state."""

    id: str
    status: JobStatus = JobStatus.QUEUED
    filename: str
    options: TranscribeOptions
    progress: ProgressMessage | None = None
    segments: list[SegmentOut] = []
    transcript: str | None = None
    error: str | None = None


class CreateJobResponse(BaseModel):
    """Response for job creation."""

    job_id: str
