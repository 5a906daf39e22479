"""Audio decoding and normalization.

Decoding goes through torchaudio for WAV and the FFmpeg binary for everything
else. Normalization (downmix + resample) is plain numpy so results are
deterministic and independent of any resampling library.
"""

import logging
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from .. import config

logger = logging.getLogger(__name__)

FFMPEG_BIN = "ffmpeg"

FFMPEG_INSTALL_HELP = """
FFmpeg is required but not found. Install it:

  Windows:   winget install "FFmpeg (Shared)"
  macOS:     brew install ffmpeg
  Linux:     sudo apt install ffmpeg

After installation, restart your terminal.
""".strip()

INT16_SCALE = 32767.0


class FFmpegNotFoundError(RuntimeError):
    """Raised when FFmpeg is not available."""

    def __init__(self):
        super().__init__(FFMPEG_INSTALL_HELP)


@dataclass
class PcmBuffer:
    """Float32 PCM samples tagged with sample rate and channel count.

    Multi-channel audio is stored interleaved (frame by frame).
    """

    samples: np.ndarray
    sample_rate: int
    channels: int = 1

    def __post_init__(self):
        self.samples = np.asarray(self.samples, dtype=np.float32).reshape(-1)
        if self.channels < 1:
            raise ValueError(f"channels must be >= 1, got {self.channels}")
        if self.sample_rate <= 0:
            raise ValueError(f"sample_rate must be positive, got {self.sample_rate}")

    def __len__(self) -> int:
        return len(self.samples)

    @property
    def num_frames(self) -> int:
        return -(-len(self.samples) // self.channels)

    @property
    def duration_ms(self) -> int:
        return int(self.num_frames * 1000 / self.sample_rate)

    def is_normalized(self, target_rate: int = config.TARGET_SAMPLE_RATE) -> bool:
        return self.channels == 1 and self.sample_rate == target_rate


def float_to_int16(samples: np.ndarray) -> np.ndarray:
    """Convert [-1, 1] float PCM to int16, clamping out-of-range values."""
    clipped = np.clip(np.asarray(samples, dtype=np.float32), -1.0, 1.0)
    return (clipped * INT16_SCALE).astype(np.int16)


def int16_to_float(samples: np.ndarray) -> np.ndarray:
    """Convert int16 PCM back to float32."""
    return np.asarray(samples, dtype=np.int16).astype(np.float32) / INT16_SCALE


def downmix(samples: np.ndarray, channels: int) -> np.ndarray:
    """Average interleaved channels into a mono signal.

    A trailing partial frame is zero-padded, so its sum is still divided by
    the full channel count.
    """
    samples = np.asarray(samples, dtype=np.float32)
    if channels == 1:
        return samples
    remainder = len(samples) % channels
    if remainder:
        samples = np.concatenate([samples, np.zeros(channels - remainder, dtype=np.float32)])
    frames = samples.reshape(-1, channels)
    return (frames.sum(axis=1, dtype=np.float32) / np.float32(channels)).astype(np.float32)


def resample(samples: np.ndarray, src_rate: int, target_rate: int) -> np.ndarray:
    """Resample mono audio by linear interpolation.

    No anti-aliasing filter is applied. The last input sample is held when
    interpolation would read past the end.
    """
    samples = np.asarray(samples, dtype=np.float32)
    if src_rate == target_rate:
        return samples

    ratio = src_rate / target_rate
    out_len = int(len(samples) / ratio)
    if out_len == 0:
        return np.zeros(0, dtype=np.float32)

    src_pos = np.arange(out_len, dtype=np.float64) * ratio
    idx = np.minimum(np.floor(src_pos).astype(np.int64), len(samples) - 1)
    frac = (src_pos - idx).astype(np.float32)

    a = samples[idx]
    b = samples[np.minimum(idx + 1, len(samples) - 1)]
    return (a + (b - a) * frac).astype(np.float32)


def normalize(raw: PcmBuffer, target_rate: int = config.TARGET_SAMPLE_RATE) -> PcmBuffer:
    """Downmix to mono and resample to ``target_rate``.

    Returns ``raw`` itself when it is already mono at the target rate.
    """
    if raw.is_normalized(target_rate):
        return raw

    mono = downmix(raw.samples, raw.channels)
    out = resample(mono, raw.sample_rate, target_rate)
    logger.debug(
        "Normalized audio: %d ch @ %d Hz -> mono @ %d Hz (%d -> %d samples)",
        raw.channels,
        raw.sample_rate,
        target_rate,
        len(raw.samples),
        len(out),
    )
    return PcmBuffer(samples=out, sample_rate=target_rate, channels=1)


def get_ffmpeg_bin() -> str | None:
    """Locate an FFmpeg binary: system PATH first, then imageio-ffmpeg's bundled one."""
    system_bin = shutil.which(FFMPEG_BIN)
    if system_bin is not None:
        return system_bin
    try:
        import imageio_ffmpeg

        return imageio_ffmpeg.get_ffmpeg_exe()
    except (ImportError, RuntimeError):
        return None


def check_ffmpeg() -> str:
    """Check that FFmpeg is available and return its path.

    Raises:
        FFmpegNotFoundError: If FFmpeg is not found.
    """
    ffmpeg_bin = get_ffmpeg_bin()
    if ffmpeg_bin is None:
        raise FFmpegNotFoundError()
    return ffmpeg_bin


def convert_to_wav(
    input_path: Path, output_path: Path, sample_rate: int = config.TARGET_SAMPLE_RATE
) -> Path:
    """Convert audio file to mono WAV.

    Args:
        input_path: Path to input audio or video file.
        output_path: Path for output WAV file.
        sample_rate: Output sample rate.

    Returns:
        Path to converted file.

    Raises:
        FFmpegNotFoundError: If FFmpeg is not available.
        RuntimeError: If conversion fails.
    """
    cmd = [
        check_ffmpeg(),
        "-y",
        "-nostdin",
        "-i", str(input_path),
        "-vn",
        "-ac", "1",
        "-ar", str(sample_rate),
        str(output_path),
    ]
    result = subprocess.run(cmd, capture_output=True, text=True)
    if result.returncode != 0:
        raise RuntimeError(f"Failed to convert {input_path.name}: {result.stderr}")
    return output_path


def load_wav(path: Path) -> PcmBuffer:
    """Decode a WAV file keeping its native sample rate and channel layout."""
    import torchaudio

    waveform, sr = torchaudio.load(str(path))
    channels = waveform.shape[0]
    # (channels, frames) -> interleaved frames
    interleaved = waveform.t().contiguous().reshape(-1).numpy()
    return PcmBuffer(samples=interleaved, sample_rate=int(sr), channels=int(channels))


def load_audio_file(path: Path) -> PcmBuffer:
    """Decode any audio/video file into a PcmBuffer.

    WAV files are read directly; other formats are converted with FFmpeg first.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Audio file not found: {path}")

    if path.suffix.lower() == ".wav":
        return load_wav(path)

    with tempfile.TemporaryDirectory() as tmp:
        wav_path = convert_to_wav(path, Path(tmp) / f"{path.stem}.wav")
        return load_wav(wav_path)
