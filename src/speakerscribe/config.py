"""Configuration and paths management."""

import os
import sys
from dataclasses import dataclass
from pathlib import Path


def get_data_dir() -> Path:
    """Get platform-specific data directory for SpeakerScribe.

    Windows: %LOCALAPPDATA%/speakerscribe
    macOS: ~/Library/Application Support/speakerscribe
    Linux: ~/.local/share/speakerscribe (XDG_DATA_HOME)
    """
    if sys.platform == "win32":
        base = Path(os.environ.get("LOCALAPPDATA", Path.home() / "AppData" / "Local"))
    elif sys.platform == "darwin":
        base = Path.home() / "Library" / "Application Support"
    else:
        base = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local" / "share"))

    return base / "speakerscribe"


def get_cache_dir() -> Path:
    """Get platform-specific cache directory for SpeakerScribe.

    Windows: %LOCALAPPDATA%/speakerscribe/cache
    macOS: ~/Library/Caches/speakerscribe
    Linux: ~/.cache/speakerscribe (XDG_CACHE_HOME)
    """
    if sys.platform == "win32":
        base = Path(os.environ.get("LOCALAPPDATA", Path.home() / "AppData" / "Local"))
        return base / "speakerscribe" / "cache"
    elif sys.platform == "darwin":
        return Path.home() / "Library" / "Caches" / "speakerscribe"
    else:
        base = Path(os.environ.get("XDG_CACHE_HOME", Path.home() / ".cache"))
        return base / "speakerscribe"


# Directory paths
DATA_DIR = get_data_dir()
CACHE_DIR = get_cache_dir()
MODELS_DIR = CACHE_DIR / "models"
LOGS_DIR = DATA_DIR / "logs"
JOBS_DIR = CACHE_DIR / "jobs"

# Audio
TARGET_SAMPLE_RATE = 16000

# Diarization defaults
DEFAULT_MAX_SPEAKERS = 6
DEFAULT_THRESHOLD = 0.5

# Transcription defaults
DEFAULT_WHISPER_MODEL = "medium"
DEFAULT_LANGUAGE = "en"


@dataclass
class DiarizationConfig:
    """Tunables for a single diarization run."""

    max_speakers: int = DEFAULT_MAX_SPEAKERS
    similarity_threshold: float = DEFAULT_THRESHOLD
    target_rate: int = TARGET_SAMPLE_RATE

    def validate(self) -> None:
        """Raise ValueError on out-of-range settings."""
        if self.max_speakers < 1:
            raise ValueError(f"max_speakers must be >= 1, got {self.max_speakers}")
        if not -1.0 <= self.similarity_threshold <= 1.0:
            raise ValueError(
                f"similarity_threshold must be within [-1, 1], got {self.similarity_threshold}"
            )
        # Chunk length, the VAD model and Whisper are all fixed at 16 kHz
        if self.target_rate != TARGET_SAMPLE_RATE:
            raise ValueError(
                f"target_rate must be {TARGET_SAMPLE_RATE} Hz, got {self.target_rate}"
            )


def ensure_dirs() -> None:
    """Create all necessary directories."""
    for d in [
        DATA_DIR,
        CACHE_DIR,
        MODELS_DIR,
        LOGS_DIR,
        JOBS_DIR,
    ]:
        d.mkdir(parents=True, exist_ok=True)


def get_default_device() -> str:
    import torch

    return "cuda" if torch.cuda.is_available() else "cpu"


def setup_environment() -> None:
    """Configure runtime environment: model fetching and CUDA DLLs on Windows."""
    os.environ["HF_HUB_DISABLE_SYMLINKS_WARNING"] = "1"
    os.environ["SPEECHBRAIN_LOCAL_STRATEGY"] = "copy"

    # Add NVIDIA DLLs to PATH for Windows CUDA
    if sys.platform == "win32":
        site_packages = Path(sys.prefix) / "Lib" / "site-packages" / "nvidia"
        if site_packages.exists():
            for lib_dir in site_packages.iterdir():
                bin_dir = lib_dir / "bin"
                if bin_dir.exists():
                    os.add_dll_directory(str(bin_dir))
                    os.environ["PATH"] = str(bin_dir) + os.pathsep + os.environ.get("PATH", "")
