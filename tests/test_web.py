"""Tests for the jobs API, using fake backends and a stubbed decoder."""

import asyncio
import json
import threading

import pytest
from fastapi.testclient import TestClient

from speakerscribe.config import DiarizationConfig
from speakerscribe.pipeline import DiarizationPipeline, PcmBuffer, PreconditionError
from speakerscribe.web.app import create_app
from speakerscribe.web.models import JobStatus, TranscribeOptions
from speakerscribe.web.routes.jobs import stream_events
from speakerscribe.web.services.jobs import JobService, get_job_service

from fakes import (
    SR,
    FakeEmbeddingModel,
    FakeSegmentationModel,
    FakeTranscriber,
    alternating_embeddings,
    tone,
)

SPANS = [(0.0, 1.0), (2.0, 3.0), (4.0, 5.0)]
UPLOAD = {"file": ("meeting.wav", b"RIFF fake audio", "audio/wav")}


@pytest.fixture(autouse=True)
def fake_decoder(monkeypatch):
    def load(path):
        return PcmBuffer(samples=tone(6.0), sample_rate=SR)

    monkeypatch.setattr("speakerscribe.pipeline.runner.load_audio_file", load)


def make_factory(transcriber_factory=FakeTranscriber):
    def factory(options):
        return DiarizationPipeline(
            FakeSegmentationModel(SPANS),
            FakeEmbeddingModel(alternating_embeddings(len(SPANS))),
            transcriber_factory(),
            diarization_config=DiarizationConfig(
                max_speakers=options.max_speakers, similarity_threshold=options.threshold
            ),
        )

    return factory


def make_client(service: JobService) -> TestClient:
    app = create_app()
    app.dependency_overrides[get_job_service] = lambda: service
    return TestClient(app)


def read_events(client: TestClient, job_id: str) -> list[dict]:
    response = client.get(f"/api/jobs/{job_id}/stream")
    assert response.status_code == 200
    return [
        json.loads(line[len("data: "):])
        for line in response.text.splitlines()
        if line.startswith("data: ")
    ]


def test_health(tmp_path):
    client = make_client(JobService(make_factory(), jobs_dir=tmp_path, preflight=None))
    assert client.get("/api/health").json() == {"status": "ok"}


def test_job_lifecycle(tmp_path):
    service = JobService(make_factory(), jobs_dir=tmp_path, preflight=None)
    client = make_client(service)

    response = client.post("/api/jobs", files=UPLOAD, data={"max_speakers": "2"})
    assert response.status_code == 200
    job_id = response.json()["job_id"]

    events = read_events(client, job_id)
    assert events[0]["stage"] == "loading"
    assert events[-1] == {"done": True}
    assert {"stage": "transcribing", "current": 3, "total": 3} in events

    state = client.get(f"/api/jobs/{job_id}").json()
    assert state["status"] == "completed"
    assert state["filename"] == "meeting.wav"
    assert state["options"]["max_speakers"] == 2
    assert [s["speaker"] for s in state["segments"]] == [0, 1, 0]
    assert state["transcript"].splitlines()[0] == "[Speaker 0] words 0"
    assert not (tmp_path / job_id / "meeting.wav").exists()


def test_unknown_job(tmp_path):
    client = make_client(JobService(make_factory(), jobs_dir=tmp_path, preflight=None))
    assert client.get("/api/jobs/nope").status_code == 404
    assert client.get("/api/jobs/nope/stream").status_code == 404
    assert client.delete("/api/jobs/nope").status_code == 404


def test_missing_models_is_service_unavailable(tmp_path):
    def preflight():
        raise PreconditionError(["/models/vad/hyperparams.yaml"])

    client = make_client(JobService(make_factory(), jobs_dir=tmp_path, preflight=preflight))
    response = client.post("/api/jobs", files=UPLOAD)
    assert response.status_code == 503
    assert "install-models" in response.json()["detail"]


def test_invalid_options(tmp_path):
    client = make_client(JobService(make_factory(), jobs_dir=tmp_path, preflight=None))
    response = client.post("/api/jobs", files=UPLOAD, data={"max_speakers": "0"})
    assert response.status_code == 422


def test_empty_upload(tmp_path):
    client = make_client(JobService(make_factory(), jobs_dir=tmp_path, preflight=None))
    response = client.post("/api/jobs", files={"file": ("empty.wav", b"", "audio/wav")})
    assert response.status_code == 400


def test_failed_job_reports_error(tmp_path, monkeypatch):
    def broken(path):
        raise RuntimeError("cannot decode")

    monkeypatch.setattr("speakerscribe.pipeline.runner.load_audio_file", broken)
    client = make_client(JobService(make_factory(), jobs_dir=tmp_path, preflight=None))
    job_id = client.post("/api/jobs", files=UPLOAD).json()["job_id"]

    events = read_events(client, job_id)
    assert events[-2] == {"stage": "error", "message": "cannot decode"}
    assert events[-1] == {"error": "cannot decode"}

    state = client.get(f"/api/jobs/{job_id}").json()
    assert state["status"] == "failed"
    assert state["error"] == "cannot decode"


def test_cancel_running_job(tmp_path):
    release = threading.Event()

    def transcriber():
        return FakeTranscriber(on_call=lambda i: release.wait(5))

    service = JobService(make_factory(transcriber), jobs_dir=tmp_path, preflight=None)
    client = make_client(service)
    job_id = client.post("/api/jobs", files=UPLOAD).json()["job_id"]

    response = client.delete(f"/api/jobs/{job_id}")
    assert response.json() == {"status": "cancelling"}
    release.set()

    events = read_events(client, job_id)
    assert events[-1] == {"cancelled": True}
    assert all(e.get("stage") not in ("done", "error") for e in events)
    assert client.get(f"/api/jobs/{job_id}").json()["status"] == "cancelled"
    assert client.delete(f"/api/jobs/{job_id}").status_code == 409


def test_job_service_runs_to_completion(tmp_path):
    service = JobService(make_factory(), jobs_dir=tmp_path, preflight=None)
    job = service.create("a.wav", b"data", TranscribeOptions(max_speakers=2))
    service.start(job).join(timeout=10)

    assert service.state(job).status.value == "completed"
    assert len(job.result.segments) == 3
    assert not service.cancel(job.id)


def run_job(service: JobService, name: str = "a.wav"):
    job = service.create(name, b"data", TranscribeOptions(max_speakers=2))
    service.start(job).join(timeout=10)
    return job


async def collect(stream) -> list[str]:
    return [chunk async for chunk in stream]


def test_stream_can_be_reopened_after_job_finishes(tmp_path):
    service = JobService(make_factory(), jobs_dir=tmp_path, preflight=None)
    client = make_client(service)
    job_id = client.post("/api/jobs", files=UPLOAD).json()["job_id"]

    first = read_events(client, job_id)
    second = read_events(client, job_id)
    assert first[-1] == {"done": True}
    assert second == first


def test_every_reader_gets_the_final_event(tmp_path):
    service = JobService(make_factory(), jobs_dir=tmp_path, preflight=None)
    job = run_job(service)

    for _ in range(2):
        chunks = asyncio.run(asyncio.wait_for(collect(stream_events(job.events)), timeout=2))
        assert chunks[0] == 'data: {"stage": "loading"}\n\n'
        assert chunks[-1] == 'data: {"done": true}\n\n'


def test_job_directory_removed_after_run(tmp_path):
    service = JobService(make_factory(), jobs_dir=tmp_path, preflight=None)
    for i in range(3):
        run_job(service, f"{i}.wav")
    assert list(tmp_path.iterdir()) == []


def test_oldest_finished_jobs_are_evicted(tmp_path):
    service = JobService(make_factory(), jobs_dir=tmp_path, preflight=None, max_finished_jobs=2)
    jobs = [run_job(service) for _ in range(3)]

    assert service.get(jobs[0].id) is None
    assert service.get(jobs[1].id) is jobs[1]
    assert service.get(jobs[2].id) is jobs[2]


def test_job_cancelled_before_start(tmp_path):
    service = JobService(make_factory(), jobs_dir=tmp_path, preflight=None)
    job = service.create("a.wav", b"data", TranscribeOptions())
    assert service.cancel(job.id)
    service.start(job).join(timeout=10)

    assert job.status == JobStatus.CANCELLED
    assert job.events == [("cancelled", None)]
    assert list(tmp_path.iterdir()) == []
