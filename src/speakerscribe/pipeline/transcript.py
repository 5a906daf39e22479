"""Rendering diarized segments as human-readable transcripts."""

import json

from .diarization import DiarizedSegment


def speaker_name(speaker: int | None, speaker_names: dict[int, str] | None = None) -> str:
    """Display name for a speaker id, honoring user-assigned names."""
    if speaker is None:
        return "Unknown"
    if speaker_names and speaker in speaker_names:
        return speaker_names[speaker]
    return f"Speaker {speaker}"


def flatten_transcript(
    segments: list[DiarizedSegment], speaker_names: dict[int, str] | None = None
) -> str:
    """One ``[Label] text`` line per segment, in segment order."""
    return "\n".join(
        f"[{speaker_name(s.speaker, speaker_names)}] {s.text}" for s in segments
    )


def format_ts(ms: int) -> str:
    """Format milliseconds as MM:SS."""
    return f"{ms // 60000:02d}:{(ms // 1000) % 60:02d}"


def format_markdown(
    segments: list[DiarizedSegment], speaker_names: dict[int, str] | None = None
) -> str:
    """Render segments as markdown dialogue with timestamps."""
    return "\n\n".join(
        f"**[{format_ts(s.start_ms)}] {speaker_name(s.speaker, speaker_names)}:** {s.text}"
        for s in segments
    )


def format_json(segments: list[DiarizedSegment]) -> str:
    return json.dumps([s.to_dict() for s in segments], indent=2, ensure_ascii=False)
