#!/usr/bin/env python3
from __future__ import annotations

from typing import List, Sequence


def format_srt_timestamp(seconds: float) -> str:
    """`HH:MM:SS,mmm`, truncating to whole milliseconds."""
    total_ms = int(max(0.0, float(seconds)) * 1000)
    hours, rest = divmod(total_ms, 3_600_000)
    minutes, rest = divmod(rest, 60_000)
    secs, millis = divmod(rest, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d},{millis:03d}"


def build_srt(narrations: Sequence[str], *, scene_duration_seconds: float = 8.0) -> str:
    """One cue per scene; cue i spans [i * duration, (i + 1) * duration)."""
    entries: List[str] = []
    for position, text in enumerate(narrations):
        start = format_srt_timestamp(position * scene_duration_seconds)
        end = format_srt_timestamp((position + 1) * scene_duration_seconds)
        entries.append(f"{position + 1}\n{start} --> {end}\n{str(text or '').strip()}\n")
    return "\n".join(entries)
