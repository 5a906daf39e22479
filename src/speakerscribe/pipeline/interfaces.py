"""Capability interfaces for the inference backends.

The pipeline only talks to these protocols, so any backend (SpeechBrain,
Whisper, ONNX, a test fake) can be plugged in without touching orchestration.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Protocol

import numpy as np


@dataclass
class DetectedRegion:
    """Speech region as reported by a segmentation backend.

    ``samples`` are int16 PCM at the rate passed to ``detect``. A non-empty
    ``error`` marks a region the backend could not process.
    """

    start: float
    end: float
    samples: np.ndarray
    error: str | None = None


class SegmentationModel(Protocol):
    """Voice activity / speech segmentation engine."""

    def detect(self, samples: np.ndarray, sample_rate: int) -> Iterable[DetectedRegion]:
        """Detect speech regions in mono int16 PCM, ordered by start time."""
        ...


class EmbeddingModel(Protocol):
    """Speaker embedding engine."""

    def embed(self, samples: np.ndarray) -> np.ndarray:
        """Return a fixed-length speaker vector for mono float32 PCM."""
        ...


class TranscriptionModel(Protocol):
    """Speech-to-text engine."""

    def transcribe(self, samples: np.ndarray) -> str:
        """Transcribe mono float32 PCM at 16 kHz into text."""
        ...
