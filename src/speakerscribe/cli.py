#!/usr/bin/env python3
"""
SpeakerScribe - Speaker-attributed transcription with online diarization

Usage:
    speakerscribe install-models
    speakerscribe transcribe meeting.wav -o meeting.md
    speakerscribe transcribe call.mp3 -o call.txt --format txt --max-speakers 2
    speakerscribe transcribe-plain lecture.m4a -o lecture.txt
    speakerscribe serve --port 8000
    speakerscribe info
"""

import argparse
import logging
import threading
import time
import warnings
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

import colorama
from tqdm import tqdm

from . import config
from .pipeline import (
    CancellationToken,
    DiarizationPipeline,
    PipelineCancelled,
    ProgressEvent,
    Stage,
    WhisperTranscriber,
    transcribe_long,
)
from .pipeline.audio import load_audio_file, normalize
from .pipeline.runner import install_models, missing_models
from .pipeline.transcript import flatten_transcript, format_json, format_markdown

# Enable ANSI colors on Windows
colorama.just_fix_windows_console()

# === Colors ===
C_RESET = "\033[0m"
C_BOLD = "\033[1m"
C_DIM = "\033[2m"
C_GREEN = "\033[92m"
C_CYAN = "\033[96m"
C_YELLOW = "\033[93m"
C_RED = "\033[91m"
C_MAGENTA = "\033[95m"

OUTPUT_FORMATS = ("md", "txt", "json")


def setup_logging() -> Path:
    """Log everything to a timestamped file, errors to the console."""
    config.ensure_dirs()
    log_file = config.LOGS_DIR / f"{datetime.now():%Y-%m-%d_%H-%M-%S}.log"

    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(
        logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    )

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.ERROR)
    console_handler.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))

    logging.basicConfig(level=logging.DEBUG, handlers=[file_handler, console_handler])
    logging.captureWarnings(True)
    warnings.filterwarnings("default")
    return log_file


# === Helpers ===


def _format_elapsed(seconds: float) -> str:
    """Format elapsed seconds as human-readable string."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes = int(seconds // 60)
    secs = seconds % 60
    return f"{minutes}m {secs:.1f}s"


@contextmanager
def step(num: int, total: int, desc: str, emoji: str = "🔄"):
    """Context manager that prints step header and elapsed time on completion."""
    print(f"\n{C_CYAN}[{num}/{total}]{C_RESET} {emoji}  {C_BOLD}{desc}{C_RESET}")
    t = time.time()
    yield
    elapsed = time.time() - t
    print(f"  {C_GREEN}✅ Done {C_DIM}({_format_elapsed(elapsed)}){C_RESET}")


def ok(msg: str) -> None:
    """Print a success sub-status line."""
    print(f"  {C_GREEN}✔{C_RESET}  {msg}")


def warn(msg: str) -> None:
    """Print a warning sub-status line."""
    print(f"  {C_YELLOW}⚠️{C_RESET}  {msg}")


def info(msg: str) -> None:
    """Print an info sub-status line."""
    print(f"  {C_DIM}→{C_RESET}  {msg}")


def banner(title: str, emoji: str, rows: list[tuple[str, str]]) -> None:
    print(f"\n{C_MAGENTA}{'═' * 60}{C_RESET}")
    print(f"  {emoji}  {C_BOLD}{title}{C_RESET}")
    print(f"{C_MAGENTA}{'═' * 60}{C_RESET}")
    for label, value in rows:
        print(f"  {label} {value}")
    print(f"{C_MAGENTA}{'═' * 60}{C_RESET}")


class ConsoleProgress:
    """Renders pipeline progress events as stage lines and a tqdm bar."""

    STAGE_LABELS = {
        Stage.LOADING: ("🎵", "Loading audio"),
        Stage.DIARIZING: ("👥", "Detecting speech and speakers"),
        Stage.TRANSCRIBING: ("✍️", "Transcribing segments"),
    }

    def __init__(self):
        self._pbar: tqdm | None = None
        self._stage: Stage | None = None
        self._t = time.time()

    def __call__(self, event: ProgressEvent) -> None:
        if event.stage != self._stage:
            self._finish_stage()
            self._stage = event.stage
            self._t = time.time()
            if event.stage in self.STAGE_LABELS:
                emoji, desc = self.STAGE_LABELS[event.stage]
                print(f"\n  {emoji}  {C_BOLD}{desc}{C_RESET}")

        if event.stage == Stage.TRANSCRIBING and event.total:
            if self._pbar is None:
                self._pbar = tqdm(total=event.total, desc="    Segments", unit="seg", leave=False)
            if event.current is not None:
                self._pbar.update(event.current - self._pbar.n)

    def _finish_stage(self) -> None:
        if self._pbar is not None:
            self._pbar.close()
            self._pbar = None
        if self._stage in self.STAGE_LABELS:
            print(f"      {C_DIM}({_format_elapsed(time.time() - self._t)}){C_RESET}")

    def close(self) -> None:
        self._finish_stage()
        self._stage = None


def run_cancellable(func, token: CancellationToken):
    """Run ``func`` on a worker thread; Ctrl+C cancels it cooperatively."""
    outcome: dict = {}

    def target():
        try:
            outcome["result"] = func()
        except BaseException as e:
            outcome["error"] = e

    thread = threading.Thread(target=target, daemon=True)
    thread.start()
    while thread.is_alive():
        try:
            thread.join(timeout=0.2)
        except KeyboardInterrupt:
            warn("Cancelling after the current unit of work...")
            token.cancel()

    if "error" in outcome:
        raise outcome["error"]
    return outcome["result"]


def parse_speaker_names(values: list[str] | None) -> dict[int, str]:
    """Parse ``ID=Name`` pairs into a speaker name mapping."""
    names = {}
    for value in values or []:
        speaker_id, sep, name = value.partition("=")
        if not sep or not speaker_id.strip().isdigit() or not name.strip():
            raise ValueError(f"Invalid speaker name '{value}', expected ID=Name (e.g. 0=Alice)")
        names[int(speaker_id)] = name.strip()
    return names


def _resolve_output(output: str, input_path: Path, fmt: str) -> Path:
    output_path = Path(output)
    if output_path.is_dir():
        output_path = output_path / f"{input_path.stem}.{fmt}"
    return output_path


# === Commands ===


def cmd_transcribe(args):
    """Diarized transcription of one audio/video file."""
    input_path = Path(args.input)
    if not input_path.exists():
        raise FileNotFoundError(f"File not found: {input_path}")

    speaker_names = parse_speaker_names(args.speaker)
    output_path = _resolve_output(args.output, input_path, args.format)
    device = config.get_default_device()
    diarization_config = config.DiarizationConfig(
        max_speakers=args.max_speakers, similarity_threshold=args.threshold
    )
    diarization_config.validate()

    banner(
        "SpeakerScribe",
        "🎙️",
        [
            ("🎵 Input: ", f"{C_BOLD}{input_path.name}{C_RESET}"),
            ("👥 Speakers:", f"{C_CYAN}≤ {args.max_speakers}{C_RESET} (threshold {args.threshold})"),
            ("💻 Device:", f"{C_CYAN}{device}{C_RESET}"),
            ("📄 Output:", f"{C_DIM}{output_path}{C_RESET}"),
        ],
    )

    total_start = time.time()

    with step(1, 3, "Loading models", "🧠"):
        pipeline = DiarizationPipeline.from_models_dir(
            config.MODELS_DIR,
            device=device,
            whisper_model=args.model,
            language=args.language,
            diarization_config=diarization_config,
        )

    token = CancellationToken()
    progress = ConsoleProgress()
    with step(2, 3, "Diarizing and transcribing", "🎤"):
        try:
            result = run_cancellable(
                lambda: pipeline.run_file(input_path, cancel_token=token, on_progress=progress),
                token,
            )
        except PipelineCancelled:
            progress.close()
            warn("Cancelled, nothing written")
            raise SystemExit(130)
        progress.close()
        if not result.segments:
            warn("No speech found")
        ok(f"{len(result.segments)} segments, {result.num_speakers} speaker(s)")

    with step(3, 3, "Writing output", "💾"):
        if args.format == "md":
            text = format_markdown(result.segments, speaker_names)
        elif args.format == "json":
            text = format_json(result.segments)
        else:
            text = flatten_transcript(result.segments, speaker_names)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(text, encoding="utf-8")
        ok(f"{len(result.segments)} segments written")

    total_elapsed = time.time() - total_start
    print(f"\n{C_GREEN}{'═' * 60}{C_RESET}")
    print(f"  🎉 {C_GREEN}{C_BOLD}Done!{C_RESET} {C_DIM}({_format_elapsed(total_elapsed)}){C_RESET}")
    print(f"  📄 Output: {output_path}")
    print(f"{C_GREEN}{'═' * 60}{C_RESET}\n")


def cmd_transcribe_plain(args):
    """Chunked transcription without speaker attribution."""
    input_path = Path(args.input)
    if not input_path.exists():
        raise FileNotFoundError(f"File not found: {input_path}")

    output_path = _resolve_output(args.output, input_path, "txt")
    device = config.get_default_device()

    banner(
        "Plain Transcription",
        "✍️",
        [
            ("🎵 Input: ", f"{C_BOLD}{input_path.name}{C_RESET}"),
            ("💻 Device:", f"{C_CYAN}{device}{C_RESET}"),
            ("📄 Output:", f"{C_DIM}{output_path}{C_RESET}"),
        ],
    )

    with step(1, 3, "Loading audio and model", "🧠"):
        audio = normalize(load_audio_file(input_path), config.TARGET_SAMPLE_RATE)
        info(f"{audio.duration_ms / 1000:.1f}s of audio")
        transcriber = WhisperTranscriber(model_size=args.model, device=device, language=args.language)

    token = CancellationToken()
    with step(2, 3, "Transcribing", "🎤"):
        try:
            text = run_cancellable(
                lambda: transcribe_long(audio, transcriber, token, show_progress=True), token
            )
        except PipelineCancelled:
            warn("Cancelled, nothing written")
            raise SystemExit(130)

    with step(3, 3, "Writing output", "💾"):
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(text, encoding="utf-8")
        ok(f"{len(text.split())} words written")


def cmd_install_models(args):
    """Download segmentation and embedding models."""
    banner("Install Models", "📦", [("🧠 Models:", f"{C_DIM}{config.MODELS_DIR}{C_RESET}")])
    with step(1, 1, "Downloading models", "⬇️"):
        install_models(config.MODELS_DIR, device=config.get_default_device())
        ok("Segmentation and embedding models installed")


def cmd_check_models(args):
    """Report whether the required model files are present."""
    missing = missing_models(config.MODELS_DIR)
    if not missing:
        ok(f"All models installed in {config.MODELS_DIR}")
        return
    for path in missing:
        warn(f"Missing: {path}")
    raise SystemExit(1)


def cmd_serve(args):
    """Run the job API server."""
    from .web.app import run

    run(host=args.host, port=args.port)


def cmd_info(args):
    """Show data directories and configuration."""
    print(f"\n{C_MAGENTA}{'═' * 60}{C_RESET}")
    print(f"  ℹ️  {C_BOLD}SpeakerScribe Configuration{C_RESET}")
    print(f"{C_MAGENTA}{'═' * 60}{C_RESET}\n")
    print(f"  📂 Data:       {C_DIM}{config.DATA_DIR}{C_RESET}")
    print(f"  📦 Cache:      {C_DIM}{config.CACHE_DIR}{C_RESET}")
    print(f"  🧠 Models:     {C_DIM}{config.MODELS_DIR}{C_RESET}")
    print(f"  🗂️  Jobs:       {C_DIM}{config.JOBS_DIR}{C_RESET}")
    print(f"  📋 Logs:       {C_DIM}{config.LOGS_DIR}{C_RESET}")
    print(f"\n  💻 Device: {C_CYAN}{config.get_default_device()}{C_RESET}")
    print()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="SpeakerScribe - Speaker-attributed transcription with online diarization"
    )
    subs = parser.add_subparsers(dest="command", required=True)

    # transcribe
    p = subs.add_parser("transcribe", help="Diarized transcription of an audio/video file")
    p.add_argument("input", help="Audio or video file")
    p.add_argument("-o", "--output", required=True, help="Output file or directory")
    p.add_argument("-m", "--model", default=config.DEFAULT_WHISPER_MODEL, help="Whisper model")
    p.add_argument("-l", "--language", default=config.DEFAULT_LANGUAGE, help="Language")
    p.add_argument(
        "--max-speakers", type=int, default=config.DEFAULT_MAX_SPEAKERS, help="Max speakers"
    )
    p.add_argument(
        "--threshold", type=float, default=config.DEFAULT_THRESHOLD, help="Similarity threshold"
    )
    p.add_argument("--format", choices=OUTPUT_FORMATS, default="md", help="Output format")
    p.add_argument(
        "--speaker", action="append", metavar="ID=NAME", help="Rename a speaker (repeatable)"
    )
    p.set_defaults(func=cmd_transcribe)

    # transcribe-plain
    p = subs.add_parser("transcribe-plain", help="Transcribe without speaker attribution")
    p.add_argument("input", help="Audio or video file")
    p.add_argument("-o", "--output", required=True, help="Output file or directory")
    p.add_argument("-m", "--model", default=config.DEFAULT_WHISPER_MODEL, help="Whisper model")
    p.add_argument("-l", "--language", default=config.DEFAULT_LANGUAGE, help="Language")
    p.set_defaults(func=cmd_transcribe_plain)

    # install-models
    p = subs.add_parser("install-models", help="Download diarization models")
    p.set_defaults(func=cmd_install_models)

    # check-models
    p = subs.add_parser("check-models", help="Check that diarization models are installed")
    p.set_defaults(func=cmd_check_models)

    # serve
    p = subs.add_parser("serve", help="Run the job API server")
    p.add_argument("--host", default="127.0.0.1", help="Bind address")
    p.add_argument("--port", type=int, default=8000, help="Port")
    p.set_defaults(func=cmd_serve)

    # info
    p = subs.add_parser("info", help="Show configuration and data directories")
    p.set_defaults(func=cmd_info)

    return parser


def main():
    config.setup_environment()
    setup_logging()

    args = build_parser().parse_args()
    try:
        args.func(args)
    except SystemExit:
        raise
    except Exception as e:
        logging.getLogger(__name__).debug("Command failed", exc_info=True)
        print(f"\n  {C_RED}❌ Error:{C_RESET} {e}")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
