"""Speaker diarization using bounded-cardinality online clustering.

Regions are assigned to speakers one at a time in the order they occur. Each
speaker keeps a running-mean centroid, and no more than ``max_speakers`` ids
are ever created in one run.
"""

import logging
from dataclasses import dataclass

import numpy as np

from .embeddings import SpeakerEmbedder, cosine_similarity
from .errors import EmbeddingError
from .progress import CancellationToken
from .vad import SpeechRegion

logger = logging.getLogger(__name__)


@dataclass
class RawDiarizedSegment:
    """Speech region with speaker assignment, before transcription."""

    speaker: int | None
    start_ms: int
    end_ms: int
    samples: np.ndarray


@dataclass
class DiarizedSegment:
    """Transcribed speech segment with speaker assignment."""

    speaker: int | None
    start_ms: int
    end_ms: int
    text: str

    def to_dict(self) -> dict:
        return {
            "speaker": self.speaker,
            "start_ms": self.start_ms,
            "end_ms": self.end_ms,
            "text": self.text,
        }


class SpeakerRegistry:
    """Speaker ids (dense, from 0) mapped to running centroid embeddings."""

    def __init__(self):
        self._centroids: list[np.ndarray] = []
        self._counts: list[int] = []

    def __len__(self) -> int:
        return len(self._centroids)

    @property
    def dim(self) -> int | None:
        return self._centroids[0].shape[0] if self._centroids else None

    def centroid(self, speaker_id: int) -> np.ndarray:
        return self._centroids[speaker_id]

    def count(self, speaker_id: int) -> int:
        return self._counts[speaker_id]

    def similarities(self, embedding: np.ndarray) -> np.ndarray:
        """Cosine similarity of ``embedding`` against every centroid, indexed by id."""
        return np.array([cosine_similarity(embedding, c) for c in self._centroids])

    def create(self, embedding: np.ndarray) -> int:
        """Add a new speaker seeded with ``embedding`` and return its id."""
        self._centroids.append(np.array(embedding, dtype=np.float64))
        self._counts.append(1)
        return len(self._centroids) - 1

    def update(self, speaker_id: int, embedding: np.ndarray) -> None:
        """Fold ``embedding`` into the speaker's running-mean centroid."""
        self._counts[speaker_id] += 1
        n = self._counts[speaker_id]
        centroid = self._centroids[speaker_id]
        centroid += (embedding - centroid) / n


def assign(
    embedding: np.ndarray,
    registry: SpeakerRegistry,
    max_speakers: int,
    threshold: float,
) -> int:
    """Assign ``embedding`` to a speaker id, creating one if allowed.

    Below the cap, the best-matching speaker is used when its similarity
    reaches ``threshold``; otherwise a new speaker is created. At the cap, the
    best match always wins. Ties go to the lowest id.
    """
    embedding = np.asarray(embedding, dtype=np.float64).reshape(-1)
    if registry.dim is not None and embedding.shape[0] != registry.dim:
        raise EmbeddingError(
            f"Embedding dimension {embedding.shape[0]} does not match registry ({registry.dim})"
        )

    if len(registry) == 0:
        return registry.create(embedding)

    sims = registry.similarities(embedding)
    best = int(np.argmax(sims))  # first maximum = lowest id

    if len(registry) >= max_speakers or sims[best] >= threshold:
        registry.update(best, embedding)
        return best

    return registry.create(embedding)


class SpeakerClusterer:
    """Online speaker clustering with a hard cap on the number of speakers."""

    def __init__(self, max_speakers: int = 6, threshold: float = 0.5):
        if max_speakers < 1:
            raise ValueError(f"max_speakers must be >= 1, got {max_speakers}")
        if not -1.0 <= threshold <= 1.0:
            raise ValueError(f"threshold must be within [-1, 1], got {threshold}")
        self.max_speakers = max_speakers
        self.threshold = threshold
        self.registry = SpeakerRegistry()

    @property
    def num_speakers(self) -> int:
        return len(self.registry)

    def assign(self, embedding: np.ndarray) -> int:
        return assign(embedding, self.registry, self.max_speakers, self.threshold)


def diarize_regions(
    regions: list[SpeechRegion],
    embedder: SpeakerEmbedder,
    clusterer: SpeakerClusterer,
    cancel_token: CancellationToken | None = None,
) -> list[RawDiarizedSegment]:
    """Embed and cluster each region in order.

    A region whose embedding fails keeps its audio with ``speaker=None``.
    """
    result = []
    for i, region in enumerate(regions):
        if cancel_token is not None:
            cancel_token.check()

        try:
            speaker = clusterer.assign(embedder.embed(region.samples))
        except EmbeddingError as e:
            logger.warning(
                "Region %d (%d-%d ms): speaker unknown, %s",
                i,
                region.start_ms,
                region.end_ms,
                e,
            )
            speaker = None

        result.append(
            RawDiarizedSegment(
                speaker=speaker,
                start_ms=region.start_ms,
                end_ms=region.end_ms,
                samples=region.samples,
            )
        )

    logger.info(
        "Diarization complete: %d segments, %d speakers detected",
        len(result),
        clusterer.num_speakers,
    )
    return result
