"""Tests for online speaker clustering."""

import numpy as np
import pytest

from speakerscribe.pipeline.diarization import (
    SpeakerClusterer,
    SpeakerRegistry,
    assign,
    diarize_regions,
)
from speakerscribe.pipeline.embeddings import SpeakerEmbedder, cosine_similarity
from speakerscribe.pipeline.errors import EmbeddingError, PipelineCancelled
from speakerscribe.pipeline.progress import CancellationToken
from speakerscribe.pipeline.vad import SpeechRegion

from fakes import FakeEmbeddingModel, alternating_embeddings


def orthogonal(n: int, dim: int = 8) -> list[np.ndarray]:
    return [np.eye(dim)[i] for i in range(n)]


class TestAssign:
    def test_first_embedding_is_speaker_zero(self):
        registry = SpeakerRegistry()
        assert assign(np.array([0.3, -0.2]), registry, max_speakers=4, threshold=0.99) == 0
        assert len(registry) == 1

    def test_dissimilar_below_cap_creates_new_speaker(self):
        clusterer = SpeakerClusterer(max_speakers=4, threshold=0.5)
        ids = [clusterer.assign(e) for e in orthogonal(3)]
        assert ids == [0, 1, 2]

    def test_similar_embedding_joins_existing_speaker(self):
        clusterer = SpeakerClusterer(max_speakers=4, threshold=0.5)
        assert clusterer.assign(np.array([1.0, 0.0])) == 0
        assert clusterer.assign(np.array([0.9, 0.1])) == 0
        assert clusterer.num_speakers == 1

    def test_single_speaker_cap(self):
        clusterer = SpeakerClusterer(max_speakers=1, threshold=0.9)
        rng = np.random.default_rng(1)
        ids = {clusterer.assign(rng.normal(size=16)) for _ in range(50)}
        assert ids == {0}

    def test_cap_is_never_exceeded(self):
        k = 3
        clusterer = SpeakerClusterer(max_speakers=k, threshold=0.5)
        embeddings = orthogonal(6) * 3
        ids = [clusterer.assign(e) for e in embeddings]
        assert len(set(ids)) <= k
        assert max(ids) <= k - 1
        assert len(clusterer.registry) == k

    def test_at_cap_assigns_best_match_regardless_of_threshold(self):
        clusterer = SpeakerClusterer(max_speakers=2, threshold=0.99)
        clusterer.assign(np.array([1.0, 0.0, 0.0]))
        clusterer.assign(np.array([0.0, 1.0, 0.0]))
        assert clusterer.assign(np.array([0.2, 0.9, 0.4])) == 1

    def test_tie_breaks_to_lowest_id(self):
        clusterer = SpeakerClusterer(max_speakers=2, threshold=0.5)
        clusterer.assign(np.array([1.0, 0.0]))
        clusterer.assign(np.array([0.0, 1.0]))
        assert clusterer.assign(np.array([1.0, 1.0])) == 0

    def test_identical_embeddings_share_id(self):
        clusterer = SpeakerClusterer(max_speakers=4, threshold=0.5)
        a, b = orthogonal(2)
        assert [clusterer.assign(e) for e in (a, b, a, b, a)] == [0, 1, 0, 1, 0]

    def test_alternating_speakers_stay_stable(self):
        clusterer = SpeakerClusterer(max_speakers=2, threshold=0.5)
        ids = [clusterer.assign(e) for e in alternating_embeddings(40)]
        assert ids == [i % 2 for i in range(40)]

    def test_centroid_is_running_mean(self):
        clusterer = SpeakerClusterer(max_speakers=2, threshold=0.5)
        for e in ([1.0, 0.0], [0.8, 0.6], [1.0, 0.0]):
            assert clusterer.assign(np.array(e)) == 0
        registry = clusterer.registry
        assert registry.count(0) == 3
        np.testing.assert_allclose(registry.centroid(0), [2.8 / 3, 0.2])

    def test_dimension_mismatch(self):
        clusterer = SpeakerClusterer()
        clusterer.assign(np.ones(4))
        with pytest.raises(EmbeddingError):
            clusterer.assign(np.ones(5))

    def test_invalid_configuration(self):
        with pytest.raises(ValueError):
            SpeakerClusterer(max_speakers=0)
        with pytest.raises(ValueError):
            SpeakerClusterer(threshold=1.5)


class TestCosineSimilarity:
    def test_zero_vector(self):
        assert cosine_similarity(np.zeros(3), np.ones(3)) == 0.0

    def test_parallel(self):
        assert cosine_similarity(np.array([1.0, 2.0]), np.array([2.0, 4.0])) == pytest.approx(1.0)


class TestSpeakerEmbedder:
    def test_backend_failure_becomes_embedding_error(self):
        embedder = SpeakerEmbedder(FakeEmbeddingModel([RuntimeError("onnx")]))
        with pytest.raises(EmbeddingError, match="onnx"):
            embedder.embed(np.ones(100, dtype=np.float32))

    def test_empty_region(self):
        embedder = SpeakerEmbedder(FakeEmbeddingModel([]))
        with pytest.raises(EmbeddingError):
            embedder.embed(np.zeros(0, dtype=np.float32))

    def test_non_finite_vector(self):
        embedder = SpeakerEmbedder(FakeEmbeddingModel([[np.nan, 1.0]]))
        with pytest.raises(EmbeddingError):
            embedder.embed(np.ones(10, dtype=np.float32))

    def test_flattens_output(self):
        embedder = SpeakerEmbedder(FakeEmbeddingModel([[[0.5, 0.25]]]))
        out = embedder.embed(np.ones(10, dtype=np.float32))
        assert out.shape == (2,)
        assert out.dtype == np.float32


class TestDiarizeRegions:
    def _regions(self, n):
        return [
            SpeechRegion(start_ms=i * 1000, end_ms=i * 1000 + 500, samples=np.ones(8000, np.float32))
            for i in range(n)
        ]

    def test_embedding_failure_keeps_region_unknown(self):
        vectors = [[1.0, 0.0], RuntimeError("boom"), [0.0, 1.0]]
        result = diarize_regions(
            self._regions(3),
            SpeakerEmbedder(FakeEmbeddingModel(vectors)),
            SpeakerClusterer(max_speakers=2, threshold=0.5),
        )
        assert [s.speaker for s in result] == [0, None, 1]
        assert [s.start_ms for s in result] == [0, 1000, 2000]

    def test_cancelled_before_first_region(self):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(PipelineCancelled):
            diarize_regions(
                self._regions(2),
                SpeakerEmbedder(FakeEmbeddingModel([[1.0], [1.0]])),
                SpeakerClusterer(),
                token,
            )
