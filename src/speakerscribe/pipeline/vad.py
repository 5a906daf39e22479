"""Speech segmentation: turns mono PCM into time-bounded speech regions."""

import logging
import tempfile
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from .audio import PcmBuffer, float_to_int16, int16_to_float
from .errors import SegmentationError
from .interfaces import DetectedRegion, SegmentationModel

logger = logging.getLogger(__name__)


@dataclass
class SpeechRegion:
    """A segment of detected speech with its audio."""

    start_ms: int
    end_ms: int
    samples: np.ndarray

    @property
    def duration_ms(self) -> int:
        return self.end_ms - self.start_ms


class SpeechSegmenter:
    """Runs a segmentation backend and converts its output to SpeechRegions.

    Regions the backend flags as errored are logged and skipped so that one
    bad region does not lose the rest of the recording.
    """

    def __init__(self, model: SegmentationModel):
        self.model = model

    def segment(self, audio: PcmBuffer) -> list[SpeechRegion]:
        """Detect speech regions in normalized mono audio.

        Returns:
            Regions ordered by start time; empty when no speech was found.

        Raises:
            SegmentationError: If the backend fails as a whole.
        """
        if audio.channels != 1:
            raise ValueError(f"Segmentation expects mono audio, got {audio.channels} channels")

        pcm16 = float_to_int16(audio.samples)
        regions = []
        skipped = 0
        try:
            for i, detected in enumerate(self.model.detect(pcm16, audio.sample_rate)):
                if detected.error:
                    skipped += 1
                    logger.warning(
                        "Skipping region %d (%.2fs-%.2fs) due to error: %s",
                        i,
                        detected.start,
                        detected.end,
                        detected.error,
                    )
                    continue
                regions.append(
                    SpeechRegion(
                        start_ms=int(detected.start * 1000),
                        end_ms=int(detected.end * 1000),
                        samples=int16_to_float(detected.samples),
                    )
                )
        except SegmentationError:
            raise
        except Exception as e:
            raise SegmentationError(f"Segmentation failed: {e}") from e

        logger.info("Segmentation found %d speech regions (%d skipped)", len(regions), skipped)
        return regions


class SpeechBrainSegmenter:
    """Voice Activity Detection using SpeechBrain.

    Uses CRDNN model with energy-based double-checking to reduce hallucinations.
    Parameters follow WhisperX-style naming conventions.
    """

    MODEL_SOURCE = "speechbrain/vad-crdnn-libriparty"
    SAMPLE_RATE = 16000

    # VAD parameters (WhisperX-style naming)
    VAD_ONSET = 0.5  # Speech start threshold (0-1), higher = stricter
    VAD_OFFSET = 0.25  # Speech end threshold, lower = less likely to cut off speech
    MIN_SPEECH_MS = 250  # Minimum speech segment duration (ms)
    MIN_SILENCE_MS = 250  # Minimum silence to split segments (ms)

    # SpeechBrain-specific
    LARGE_CHUNK_SIZE = 30  # Seconds, for initial pass
    SMALL_CHUNK_SIZE = 10  # Seconds, for refinement
    APPLY_ENERGY_VAD = True  # Energy-based double-check (reduces hallucinations)

    def __init__(self, device: str = "cpu", cache_dir: Path | None = None):
        from speechbrain.inference.VAD import VAD
        from speechbrain.utils.fetching import LocalStrategy

        self.device = device
        savedir = str(cache_dir / "vad") if cache_dir else "pretrained_models/vad"

        self.model = VAD.from_hparams(
            source=self.MODEL_SOURCE,
            savedir=savedir,
            run_opts={"device": device},
            local_strategy=LocalStrategy.COPY,
        )

    def detect(self, samples: np.ndarray, sample_rate: int) -> Iterator[DetectedRegion]:
        """Detect speech regions in int16 PCM."""
        import torch
        import torchaudio

        if sample_rate != self.SAMPLE_RATE:
            raise ValueError(f"VAD model expects {self.SAMPLE_RATE} Hz audio, got {sample_rate}")
        if len(samples) == 0:
            return

        # SpeechBrain VAD reads from a file
        waveform = torch.from_numpy(int16_to_float(samples)).unsqueeze(0)
        with tempfile.NamedTemporaryFile(suffix=".wav", delete=False) as tmp:
            tmp_path = Path(tmp.name)
        try:
            torchaudio.save(str(tmp_path), waveform, sample_rate)
            boundaries = self.model.get_speech_segments(
                tmp_path.as_posix(),
                large_chunk_size=self.LARGE_CHUNK_SIZE,
                small_chunk_size=self.SMALL_CHUNK_SIZE,
                overlap_small_chunk=True,
                apply_energy_VAD=self.APPLY_ENERGY_VAD,
                double_check=True,
                activation_th=self.VAD_ONSET,
                deactivation_th=self.VAD_OFFSET,
                close_th=self.MIN_SILENCE_MS / 1000,
                len_th=self.MIN_SPEECH_MS / 1000,
            )
        finally:
            tmp_path.unlink(missing_ok=True)

        for boundary in boundaries:
            start_sec, end_sec = boundary[0].item(), boundary[1].item()
            if (end_sec - start_sec) * 1000 < self.MIN_SPEECH_MS:
                continue

            start_sample = int(start_sec * sample_rate)
            end_sample = min(int(end_sec * sample_rate), len(samples))
            if end_sample <= start_sample:
                yield DetectedRegion(
                    start=start_sec,
                    end=end_sec,
                    samples=np.zeros(0, dtype=np.int16),
                    error="region lies outside the audio",
                )
                continue

            yield DetectedRegion(
                start=start_sec, end=end_sec, samples=samples[start_sample:end_sample]
            )
