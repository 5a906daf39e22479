"""Error types raised by the diarization pipeline."""


class PipelineError(RuntimeError):
    """Base class for pipeline failures."""


class PreconditionError(PipelineError):
    """Raised when required model artifacts are missing."""

    def __init__(self, missing: list[str]):
        self.missing = list(missing)
        super().__init__(
            "Missing model files: " + ", ".join(self.missing)
            + "\nRun `speakerscribe install-models` first."
        )


class SegmentationError(PipelineError):
    """Raised when speech detection cannot run at all."""


class EmbeddingError(PipelineError):
    """Raised when a speaker embedding cannot be computed for a region."""


class TranscriptionError(PipelineError):
    """Raised when the transcription backend fails.

    ``chunk_index`` is the 1-based chunk that failed when the input was split.
    """

    def __init__(self, message: str, chunk_index: int | None = None):
        self.chunk_index = chunk_index
        if chunk_index is not None:
            message = f"Transcription failed on chunk {chunk_index}: {message}"
        else:
            message = f"Transcription failed: {message}"
        super().__init__(message)


class PipelineCancelled(PipelineError):
    """Raised when a run is aborted through its cancellation token."""
