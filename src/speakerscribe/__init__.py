"""SpeakerScribe - Speaker-attributed transcription with online diarization."""

__version__ = "0.1.0"

from .pipeline import (
    CancellationToken,
    DiarizationPipeline,
    DiarizationResult,
    DiarizedSegment,
    PcmBuffer,
    Stage,
)

__all__ = [
    "__version__",
    "CancellationToken",
    "DiarizationPipeline",
    "DiarizationResult",
    "DiarizedSegment",
    "PcmBuffer",
    "Stage",
]
