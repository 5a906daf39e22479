"""Diarization pipeline orchestration.

    loading -> diarizing -> transcribing -> done
                  |             |
                  +---> error <-+

The pipeline is synchronous and owns its model handles; a lock serializes
runs on one instance. Asynchronous callers run it in a worker thread and
cancel through a CancellationToken.
"""

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from .. import config
from .audio import PcmBuffer, load_audio_file, normalize
from .diarization import DiarizedSegment, RawDiarizedSegment, SpeakerClusterer, diarize_regions
from .embeddings import EcapaEmbeddingModel, SpeakerEmbedder
from .errors import PipelineCancelled, PreconditionError, TranscriptionError
from .interfaces import EmbeddingModel, SegmentationModel, TranscriptionModel
from .progress import CancellationToken, ProgressCallback, ProgressEvent, Stage, notify
from .transcript import flatten_transcript
from .transcription import WhisperTranscriber, transcribe_long
from .vad import SpeechBrainSegmenter, SpeechSegmenter

logger = logging.getLogger(__name__)

# Model sub-directories under MODELS_DIR and the file that marks them complete
MODEL_SUBDIRS = {"segmentation": "vad", "embedding": "embeddings"}
MODEL_MARKER = "hyperparams.yaml"


@dataclass
class DiarizationResult:
    """Output of one pipeline run."""

    segments: list[DiarizedSegment] = field(default_factory=list)
    transcript: str = ""

    @property
    def num_speakers(self) -> int:
        return len({s.speaker for s in self.segments if s.speaker is not None})


def missing_models(models_dir: Path = config.MODELS_DIR) -> list[str]:
    """Return the model artifacts not present under ``models_dir``."""
    return [
        str(Path(models_dir) / subdir / MODEL_MARKER)
        for subdir in MODEL_SUBDIRS.values()
        if not (Path(models_dir) / subdir / MODEL_MARKER).exists()
    ]


def models_installed(models_dir: Path = config.MODELS_DIR) -> bool:
    return not missing_models(models_dir)


def check_models(models_dir: Path = config.MODELS_DIR) -> None:
    """Raise PreconditionError if any model artifact is missing."""
    missing = missing_models(models_dir)
    if missing:
        raise PreconditionError(missing)


def install_models(models_dir: Path = config.MODELS_DIR, device: str = "cpu") -> None:
    """Fetch the segmentation and embedding models into ``models_dir``."""
    models_dir = Path(models_dir)
    models_dir.mkdir(parents=True, exist_ok=True)
    if not (models_dir / MODEL_SUBDIRS["segmentation"] / MODEL_MARKER).exists():
        logger.info("Downloading segmentation model %s", SpeechBrainSegmenter.MODEL_SOURCE)
        SpeechBrainSegmenter(device=device, cache_dir=models_dir)
    if not (models_dir / MODEL_SUBDIRS["embedding"] / MODEL_MARKER).exists():
        logger.info("Downloading embedding model %s", EcapaEmbeddingModel.MODEL_SOURCE)
        EcapaEmbeddingModel(device=device, cache_dir=models_dir)
    check_models(models_dir)


class DiarizationPipeline:
    """Normalize, segment, cluster and transcribe audio into speaker turns."""

    def __init__(
        self,
        segmentation_model: SegmentationModel,
        embedding_model: EmbeddingModel,
        transcriber: TranscriptionModel,
        diarization_config: config.DiarizationConfig | None = None,
        on_progress: ProgressCallback | None = None,
    ):
        self.config = diarization_config or config.DiarizationConfig()
        self.config.validate()
        self.segmenter = SpeechSegmenter(segmentation_model)
        self.embedder = SpeakerEmbedder(embedding_model)
        self.transcriber = transcriber
        self.on_progress = on_progress
        self._lock = threading.Lock()

    @classmethod
    def from_models_dir(
        cls,
        models_dir: Path = config.MODELS_DIR,
        device: str = "cpu",
        whisper_model: str = config.DEFAULT_WHISPER_MODEL,
        language: str | None = config.DEFAULT_LANGUAGE,
        diarization_config: config.DiarizationConfig | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> "DiarizationPipeline":
        """Load installed models; raises PreconditionError if any are missing."""
        check_models(models_dir)
        return cls(
            SpeechBrainSegmenter(device=device, cache_dir=Path(models_dir)),
            EcapaEmbeddingModel(device=device, cache_dir=Path(models_dir)),
            WhisperTranscriber(model_size=whisper_model, device=device, language=language),
            diarization_config=diarization_config,
            on_progress=on_progress,
        )

    def run(
        self,
        audio: PcmBuffer,
        cancel_token: CancellationToken | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> DiarizationResult:
        """Diarize and transcribe an in-memory buffer."""
        return self._run_guarded(lambda: audio, cancel_token, on_progress)

    def run_file(
        self,
        path: Path,
        cancel_token: CancellationToken | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> DiarizationResult:
        """Decode ``path`` (inside the loading stage) and run the pipeline on it."""
        return self._run_guarded(lambda: load_audio_file(path), cancel_token, on_progress)

    def _run_guarded(
        self,
        load: Callable[[], PcmBuffer],
        cancel_token: CancellationToken | None,
        on_progress: ProgressCallback | None,
    ) -> DiarizationResult:
        callback = on_progress or self.on_progress
        with self._lock:
            try:
                return self._run(load, cancel_token, callback)
            except PipelineCancelled:
                logger.info("Diarization run cancelled; partial results discarded")
                raise
            except Exception as e:
                logger.error("Diarization run failed: %s", e)
                notify(callback, ProgressEvent(Stage.ERROR, message=str(e)))
                raise

    def _run(
        self,
        load: Callable[[], PcmBuffer],
        cancel_token: CancellationToken | None,
        callback: ProgressCallback | None,
    ) -> DiarizationResult:
        notify(callback, ProgressEvent(Stage.LOADING))
        audio = normalize(load(), self.config.target_rate)
        if cancel_token is not None:
            cancel_token.check()

        notify(callback, ProgressEvent(Stage.DIARIZING))
        regions = self.segmenter.segment(audio)
        if not regions:
            logger.warning("No speech segments found in audio")
            notify(callback, ProgressEvent(Stage.DONE))
            return DiarizationResult()

        clusterer = SpeakerClusterer(self.config.max_speakers, self.config.similarity_threshold)
        raw_segments = diarize_regions(regions, self.embedder, clusterer, cancel_token)

        segments = self.transcribe_segments(raw_segments, cancel_token, callback)

        notify(callback, ProgressEvent(Stage.DONE))
        logger.info("Diarized transcription complete: %d segments", len(segments))
        return DiarizationResult(segments=segments, transcript=flatten_transcript(segments))

    def transcribe_segments(
        self,
        raw_segments: list[RawDiarizedSegment],
        cancel_token: CancellationToken | None = None,
        callback: ProgressCallback | None = None,
    ) -> list[DiarizedSegment]:
        """Transcribe each region; failed or empty regions are dropped."""
        total = len(raw_segments)
        notify(callback, ProgressEvent(Stage.TRANSCRIBING, total=total))

        segments = []
        for i, seg in enumerate(raw_segments):
            if cancel_token is not None:
                cancel_token.check()

            text = ""
            if len(seg.samples) > 0:
                try:
                    text = transcribe_long(seg.samples, self.transcriber, cancel_token)
                except TranscriptionError as e:
                    logger.warning(
                        "Transcription failed for segment %d (%d-%d ms): %s",
                        i,
                        seg.start_ms,
                        seg.end_ms,
                        e,
                    )

            trimmed = text.strip()
            if trimmed:
                segments.append(
                    DiarizedSegment(
                        speaker=seg.speaker,
                        start_ms=seg.start_ms,
                        end_ms=seg.end_ms,
                        text=trimmed,
                    )
                )

            notify(callback, ProgressEvent(Stage.TRANSCRIBING, current=i + 1, total=total))

        return segments
