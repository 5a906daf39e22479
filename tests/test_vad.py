"""Tests for the speech segmenter wrapper."""

import numpy as np
import pytest

from speakerscribe.pipeline.audio import PcmBuffer
from speakerscribe.pipeline.errors import SegmentationError
from speakerscribe.pipeline.vad import SpeechBrainSegmenter, SpeechSegmenter

from fakes import SR, FakeSegmentationModel, tone


def _buffer(seconds=5.0):
    return PcmBuffer(samples=tone(seconds), sample_rate=SR)


def test_regions_in_milliseconds_with_float_samples():
    model = FakeSegmentationModel([(0.5, 1.5), (2.0, 3.25)])
    regions = SpeechSegmenter(model).segment(_buffer())

    assert [(r.start_ms, r.end_ms) for r in regions] == [(500, 1500), (2000, 3250)]
    assert regions[0].samples.dtype == np.float32
    assert len(regions[0].samples) == SR
    assert np.max(np.abs(regions[0].samples)) == pytest.approx(0.5, abs=1e-3)


def test_backend_receives_int16():
    model = FakeSegmentationModel([(0.0, 1.0)])
    SpeechSegmenter(model).segment(_buffer())
    assert model.calls == [{"dtype": np.int16, "sample_rate": SR, "len": 5 * SR}]


def test_errored_region_is_skipped_not_fatal(caplog):
    model = FakeSegmentationModel([(0.0, 1.0), (1.5, 2.0), (3.0, 4.0)], errored={1})
    regions = SpeechSegmenter(model).segment(_buffer())

    assert [r.start_ms for r in regions] == [0, 3000]
    assert "bad frame" in caplog.text


def test_no_speech_is_empty_list():
    model = FakeSegmentationModel([(0.0, 1.0)])
    silent = PcmBuffer(samples=np.zeros(SR * 2), sample_rate=SR)
    assert SpeechSegmenter(model).segment(silent) == []


def test_backend_failure_raises_segmentation_error():
    model = FakeSegmentationModel([(0.0, 1.0)], fail=OSError("model file corrupt"))
    with pytest.raises(SegmentationError, match="model file corrupt"):
        SpeechSegmenter(model).segment(_buffer())


def test_rejects_multichannel_input():
    stereo = PcmBuffer(samples=np.zeros(SR * 2), sample_rate=SR, channels=2)
    with pytest.raises(ValueError):
        SpeechSegmenter(FakeSegmentationModel([])).segment(stereo)


class _BoundaryModel:
    """Stands in for the SpeechBrain VAD, returning fixed boundaries in seconds."""

    def __init__(self, boundaries):
        self.boundaries = boundaries
        self.paths = []

    def get_speech_segments(self, path, **kwargs):
        import torch

        self.paths.append(path)
        return torch.tensor(self.boundaries)


def _offline_segmenter(boundaries) -> SpeechBrainSegmenter:
    segmenter = SpeechBrainSegmenter.__new__(SpeechBrainSegmenter)
    segmenter.device = "cpu"
    segmenter.model = _BoundaryModel(boundaries)
    return segmenter


class TestSpeechBrainSegmenter:
    @pytest.fixture(autouse=True)
    def _temp_dir(self, tmp_path, monkeypatch):
        import tempfile

        monkeypatch.setattr(tempfile, "tempdir", str(tmp_path))
        self.tmp_path = tmp_path

    def test_temp_wav_removed_when_save_fails(self, monkeypatch):
        torchaudio = pytest.importorskip("torchaudio")

        def failing_save(path, *args, **kwargs):
            raise RuntimeError("no audio backend")

        monkeypatch.setattr(torchaudio, "save", failing_save)
        segmenter = _offline_segmenter([[0.0, 1.0]])
        with pytest.raises(RuntimeError, match="no audio backend"):
            list(segmenter.detect(np.ones(SR, dtype=np.int16), SR))
        assert list(self.tmp_path.iterdir()) == []

    def test_regions_sliced_and_temp_wav_removed(self, monkeypatch):
        torchaudio = pytest.importorskip("torchaudio")

        def fake_save(path, *args, **kwargs):
            with open(path, "wb") as f:
                f.write(b"RIFF")

        monkeypatch.setattr(torchaudio, "save", fake_save)
        segmenter = _offline_segmenter([[0.5, 1.5], [2.0, 2.1]])
        samples = (np.arange(3 * SR) % 30000).astype(np.int16)
        regions = list(segmenter.detect(samples, SR))

        # the 100 ms span is below the minimum speech length
        assert [(r.start, r.end) for r in regions] == [(0.5, 1.5)]
        np.testing.assert_array_equal(regions[0].samples, samples[SR // 2:SR + SR // 2])
        assert list(self.tmp_path.iterdir()) == []
