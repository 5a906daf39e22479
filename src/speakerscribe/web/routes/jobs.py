"""Diarization job routes with SSE progress."""

import asyncio
import json
from collections.abc import AsyncGenerator

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import StreamingResponse

from speakerscribe import config
from speakerscribe.pipeline import PreconditionError

from ..models import CreateJobResponse, JobState, TranscribeOptions
from ..services.jobs import JobService, get_job_service

router = APIRouter()


async def stream_events(
    events: list,
    check_interval: float = 0.1,
) -> AsyncGenerator[str, None]:
    """Replay a job's event log from the start as SSE events, then follow it."""
    position = 0
    while True:
        if position >= len(events):
            # No new message yet, wait a bit
            await asyncio.sleep(check_interval)
            continue

        msg_type, data = events[position]
        position += 1

        if msg_type == "item":
            yield f"data: {json.dumps(data)}\n\n"
            continue

        if msg_type == "error":
            yield f"data: {json.dumps({'error': data})}\n\n"
        elif msg_type == "cancelled":
            yield 'data: {"cancelled": true}\n\n'
        else:
            yield 'data: {"done": true}\n\n'
        break


@router.post("", response_model=CreateJobResponse)
async def create_job(
    file: UploadFile = File(...),
    max_speakers: int = Form(config.DEFAULT_MAX_SPEAKERS),
    threshold: float = Form(config.DEFAULT_THRESHOLD),
    model: str = Form(config.DEFAULT_WHISPER_MODEL),
    language: str | None = Form(config.DEFAULT_LANGUAGE),
    service: JobService = Depends(get_job_service),
):
    """Upload audio and start diarized transcription (use the SSE endpoint for progress)."""
    try:
        options = TranscribeOptions(
            max_speakers=max_speakers, threshold=threshold, model=model, language=language
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    try:
        service.check_ready()
    except PreconditionError as e:
        raise HTTPException(status_code=503, detail=str(e))

    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="Empty upload")

    job = service.create(file.filename or "audio.wav", content, options)
    service.start(job)
    return CreateJobResponse(job_id=job.id)


@router.get("/{job_id}", response_model=JobState)
async def get_job(job_id: str, service: JobService = Depends(get_job_service)):
    """Get job status and, once completed, its segments and transcript."""
    job = service.get(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return service.state(job)


@router.get("/{job_id}/stream")
async def stream_job(job_id: str, service: JobService = Depends(get_job_service)):
    """Stream job progress via SSE."""
    job = service.get(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return StreamingResponse(stream_events(job.events), media_type="text/event-stream")


@router.delete("/{job_id}")
async def cancel_job(job_id: str, service: JobService = Depends(get_job_service)):
    """Request cooperative cancellation of a running job."""
    job = service.get(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    if not service.cancel(job_id):
        raise HTTPException(status_code=409, detail=f"Job already {job.status.value}")
    return {"status": "cancelling"}
