"""Audio transcription using OpenAI Whisper, with fixed-size chunking for long input."""

import logging

import numpy as np
from tqdm import tqdm

from .. import config
from .audio import PcmBuffer
from .errors import TranscriptionError
from .interfaces import TranscriptionModel
from .progress import CancellationToken

logger = logging.getLogger(__name__)

# 30 seconds at the working sample rate (Whisper's context window)
CHUNK_SIZE = config.TARGET_SAMPLE_RATE * 30


def _transcribe_once(transcriber: TranscriptionModel, samples: np.ndarray) -> str:
    try:
        return transcriber.transcribe(samples)
    except TranscriptionError:
        raise
    except Exception as e:
        raise TranscriptionError(str(e)) from e


def transcribe_long(
    samples: np.ndarray | PcmBuffer,
    transcriber: TranscriptionModel,
    cancel_token: CancellationToken | None = None,
    show_progress: bool = False,
) -> str:
    """Transcribe audio of any length.

    Input longer than CHUNK_SIZE is split into consecutive non-overlapping
    chunks (the last may be shorter). Each chunk is transcribed in order and
    trimmed; empty chunks are dropped and the rest joined with one space.

    Raises:
        TranscriptionError: If any chunk fails; ``chunk_index`` is 1-based.
        PipelineCancelled: If ``cancel_token`` is cancelled between chunks.
    """
    if isinstance(samples, PcmBuffer):
        samples = samples.samples

    if len(samples) <= CHUNK_SIZE:
        if cancel_token is not None:
            cancel_token.check()
        return _transcribe_once(transcriber, samples).strip()

    total_chunks = -(-len(samples) // CHUNK_SIZE)
    logger.info(
        "Transcribing %d samples in %d chunks of ~30s each", len(samples), total_chunks
    )

    parts = []
    starts = range(0, len(samples), CHUNK_SIZE)
    if show_progress:
        starts = tqdm(starts, total=total_chunks, desc="  Transcribing", unit="chunk", leave=False)

    for i, start in enumerate(starts, 1):
        if cancel_token is not None:
            cancel_token.check()
        logger.debug("Transcribing chunk %d/%d", i, total_chunks)
        chunk = samples[start:start + CHUNK_SIZE]
        try:
            text = transcriber.transcribe(chunk)
        except Exception as e:
            raise TranscriptionError(str(e), chunk_index=i) from e
        trimmed = text.strip()
        if trimmed:
            parts.append(trimmed)

    return " ".join(parts)


def is_silent(samples: np.ndarray, threshold_db: float = -40.0) -> bool:
    """Check if audio is silent based on RMS energy."""
    if len(samples) == 0:
        return True

    rms = float(np.sqrt(np.mean(np.square(samples, dtype=np.float64))))
    if rms < 1e-10:
        return True

    return 20 * np.log10(rms) < threshold_db


class WhisperTranscriber:
    """Transcription using openai-whisper (PyTorch)."""

    DEFAULT_MODEL = config.DEFAULT_WHISPER_MODEL
    DEFAULT_LANGUAGE = config.DEFAULT_LANGUAGE

    BEAM_SIZE = 5
    CONDITION_ON_PREVIOUS_TEXT = False
    TEMPERATURE = 0.0
    NO_SPEECH_THRESHOLD = 0.5
    COMPRESSION_RATIO_THRESHOLD = 2.4
    SILENCE_THRESHOLD_DB = -40.0

    def __init__(
        self,
        model_size: str = DEFAULT_MODEL,
        device: str = "cpu",
        language: str | None = DEFAULT_LANGUAGE,
    ):
        self.model_size = model_size
        self.device = device
        self.language = language
        self._model = None
        self._load_model()

    def _load_model(self):
        import whisper

        self._model = whisper.load_model(self.model_size, device=self.device)

    def transcribe(self, samples: np.ndarray) -> str:
        """Transcribe mono 16 kHz float32 samples; silent input yields ""."""
        samples = np.ascontiguousarray(samples, dtype=np.float32)

        # Skip silent chunks (prevents hallucinations)
        if is_silent(samples, threshold_db=self.SILENCE_THRESHOLD_DB):
            return ""

        result = self._model.transcribe(
            samples,
            language=self.language,
            beam_size=self.BEAM_SIZE,
            condition_on_previous_text=self.CONDITION_ON_PREVIOUS_TEXT,
            temperature=self.TEMPERATURE,
            no_speech_threshold=self.NO_SPEECH_THRESHOLD,
            compression_ratio_threshold=self.COMPRESSION_RATIO_THRESHOLD,
            fp16=self.device != "cpu",
            verbose=None,
        )
        return " ".join(seg["text"].strip() for seg in result["segments"] if seg["text"].strip())
