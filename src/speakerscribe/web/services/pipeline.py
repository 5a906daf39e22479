"""Model loading for the web service.

Inference handles are loaded once and shared by every job; the job service
runs one job at a time, so handles are never used concurrently.
"""

import threading
from pathlib import Path

from speakerscribe import config
from speakerscribe.pipeline import (
    DiarizationPipeline,
    EcapaEmbeddingModel,
    SpeechBrainSegmenter,
    WhisperTranscriber,
)
from speakerscribe.pipeline.runner import check_models

from ..models import TranscribeOptions

_environment_setup = False


def ensure_environment() -> None:
    """Ensure environment is set up (called once)."""
    global _environment_setup
    if not _environment_setup:
        config.setup_environment()
        _environment_setup = True


class ModelCache:
    """Loads model handles lazily and builds per-job pipelines around them."""

    def __init__(self, models_dir: Path | None = None, device: str | None = None):
        ensure_environment()
        self.models_dir = models_dir or config.MODELS_DIR
        self.device = device or config.get_default_device()
        self._lock = threading.Lock()
        self.segmenter: SpeechBrainSegmenter | None = None
        self.embedder: EcapaEmbeddingModel | None = None
        self.transcribers: dict[tuple[str, str | None], WhisperTranscriber] = {}

    def _ensure_diarization_models(self) -> None:
        """Load diarization models if not already loaded."""
        check_models(self.models_dir)
        if self.segmenter is None:
            self.segmenter = SpeechBrainSegmenter(device=self.device, cache_dir=self.models_dir)
        if self.embedder is None:
            self.embedder = EcapaEmbeddingModel(device=self.device, cache_dir=self.models_dir)

    def _ensure_transcription_model(self, model_size: str, language: str | None) -> WhisperTranscriber:
        """Load transcription model if not already loaded."""
        key = (model_size, language)
        if key not in self.transcribers:
            self.transcribers[key] = WhisperTranscriber(
                model_size=model_size, device=self.device, language=language
            )
        return self.transcribers[key]

    def build_pipeline(self, options: TranscribeOptions) -> DiarizationPipeline:
        """Create a pipeline for ``options`` backed by the shared handles."""
        with self._lock:
            self._ensure_diarization_models()
            transcriber = self._ensure_transcription_model(options.model, options.language)
        return DiarizationPipeline(
            self.segmenter,
            self.embedder,
            transcriber,
            diarization_config=config.DiarizationConfig(
                max_speakers=options.max_speakers,
                similarity_threshold=options.threshold,
            ),
        )


# Singleton model cache
_model_cache: ModelCache | None = None


def get_model_cache() -> ModelCache:
    """Get the model cache singleton."""
    global _model_cache
    if _model_cache is None:
        _model_cache = ModelCache()
    return _model_cache
