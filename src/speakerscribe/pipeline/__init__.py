"""Pipeline modules for speaker-attributed transcription."""

from . import audio
from .audio import PcmBuffer, normalize
from .diarization import DiarizedSegment, SpeakerClusterer, SpeakerRegistry
from .embeddings import EcapaEmbeddingModel, SpeakerEmbedder
from .errors import (
    EmbeddingError,
    PipelineCancelled,
    PipelineError,
    PreconditionError,
    SegmentationError,
    TranscriptionError,
)
from .progress import CancellationToken, ProgressEvent, Stage
from .runner import DiarizationPipeline, DiarizationResult
from .transcription import WhisperTranscriber, transcribe_long
from .vad import SpeechBrainSegmenter, SpeechSegmenter

__all__ = [
    "audio",
    "PcmBuffer",
    "normalize",
    "DiarizedSegment",
    "SpeakerClusterer",
    "SpeakerRegistry",
    "EcapaEmbeddingModel",
    "SpeakerEmbedder",
    "EmbeddingError",
    "PipelineCancelled",
    "PipelineError",
    "PreconditionError",
    "SegmentationError",
    "TranscriptionError",
    "CancellationToken",
    "ProgressEvent",
    "Stage",
    "DiarizationPipeline",
    "DiarizationResult",
    "WhisperTranscriber",
    "transcribe_long",
    "SpeechBrainSegmenter",
    "SpeechSegmenter",
]
