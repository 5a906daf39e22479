"""Speaker embedding extraction."""

from pathlib import Path

import numpy as np

from .errors import EmbeddingError
from .interfaces import EmbeddingModel


def cosine_similarity(emb1: np.ndarray, emb2: np.ndarray) -> float:
    """Compute cosine similarity between embeddings (0.0 if either is all-zero)."""
    norm1 = np.linalg.norm(emb1)
    norm2 = np.linalg.norm(emb2)
    if norm1 == 0 or norm2 == 0:
        return 0.0
    return float(np.dot(emb1, emb2) / (norm1 * norm2))


class SpeakerEmbedder:
    """Stateless wrapper turning a backend's output into a validated embedding."""

    def __init__(self, model: EmbeddingModel):
        self.model = model

    def embed(self, samples: np.ndarray) -> np.ndarray:
        """Compute the speaker embedding for a region.

        Raises:
            EmbeddingError: If the backend fails or returns an unusable vector.
        """
        if len(samples) == 0:
            raise EmbeddingError("Cannot embed an empty region")
        try:
            embedding = self.model.embed(np.asarray(samples, dtype=np.float32))
        except Exception as e:
            raise EmbeddingError(f"Embedding computation failed: {e}") from e

        embedding = np.asarray(embedding, dtype=np.float32).reshape(-1)
        if embedding.size == 0:
            raise EmbeddingError("Embedding backend returned an empty vector")
        if not np.all(np.isfinite(embedding)):
            raise EmbeddingError("Embedding backend returned non-finite values")
        return embedding


class EcapaEmbeddingModel:
    """Extract speaker embeddings using SpeechBrain ECAPA-TDNN."""

    MODEL_SOURCE = "speechbrain/spkrec-ecapa-voxceleb"
    SAMPLE_RATE = 16000

    def __init__(self, device: str = "cpu", cache_dir: Path | None = None):
        from speechbrain.inference.speaker import EncoderClassifier
        from speechbrain.utils.fetching import LocalStrategy

        self.device = device
        savedir = str(cache_dir / "embeddings") if cache_dir else "pretrained_models/embeddings"

        self.model = EncoderClassifier.from_hparams(
            source=self.MODEL_SOURCE,
            savedir=savedir,
            run_opts={"device": device},
            local_strategy=LocalStrategy.COPY,
        )

    def embed(self, samples: np.ndarray) -> np.ndarray:
        """Extract embedding from mono float32 samples at 16 kHz."""
        import torch

        waveform = torch.from_numpy(np.ascontiguousarray(samples, dtype=np.float32)).unsqueeze(0)
        with torch.no_grad():
            embedding = self.model.encode_batch(waveform.to(self.device))
            return embedding.squeeze().cpu().numpy()
