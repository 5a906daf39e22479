"""FastAPI application for the SpeakerScribe job API."""

from fastapi import FastAPI

from speakerscribe import __version__

from .routes import jobs


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="SpeakerScribe",
        description="Speaker-attributed transcription with online diarization",
        version=__version__,
    )

    app.include_router(jobs.router, prefix="/api/jobs", tags=["jobs"])

    @app.get("/api/health")
    async def health():
        return {"status": "ok"}

    return app


def run(host: str = "127.0.0.1", port: int = 8000) -> None:
    """Run the web server."""
    import uvicorn

    from speakerscribe import config

    # Ensure directories exist
    config.ensure_dirs()

    app = create_app()
    print("\n  SpeakerScribe API")
    print(f"  http://{host}:{port}/docs\n")
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    run()
