#!/usr/bin/env python3
from __future__ import annotations

"""Scene timeline helpers: fixed-duration padding, silence and concatenation."""

from array import array
from typing import Sequence

from .errors import FormatMismatchError
from .pcm import DEFAULT_CHANNELS, DEFAULT_SAMPLE_RATE, SampleBuffer


def target_sample_count(target_seconds: float, sample_rate: int) -> int:
    return int(round(float(target_seconds) * int(sample_rate)))


def silence(
    seconds: float,
    *,
    sample_rate: int = DEFAULT_SAMPLE_RATE,
    channels: int = DEFAULT_CHANNELS,
) -> SampleBuffer:
    frames = target_sample_count(seconds, sample_rate)
    return SampleBuffer(
        samples=array("d", bytes(8 * frames * channels)),
        sample_rate=sample_rate,
        channels=channels,
    )


def normalize_duration(buffer: SampleBuffer, target_seconds: float, sample_rate: int) -> SampleBuffer:
    """Zero-pad `buffer` to exactly `target_seconds`.

    Buffers already at or past the target come back as the same object;
    long narration is never cut.
    """
    if buffer.sample_rate != sample_rate:
        raise FormatMismatchError(
            f"Cannot normalize {buffer.sample_rate} Hz audio against a {sample_rate} Hz timeline"
        )
    target = target_sample_count(target_seconds, sample_rate)
    if len(buffer) >= target:
        return buffer
    missing = (target - len(buffer)) * buffer.channels
    padded = array("d", buffer.samples)
    padded.extend(array("d", bytes(8 * missing)))
    return SampleBuffer(samples=padded, sample_rate=buffer.sample_rate, channels=buffer.channels)


def concatenate(buffers: Sequence[SampleBuffer]) -> SampleBuffer:
    if not buffers:
        raise ValueError("Nothing to concatenate")
    first = buffers[0]
    merged = array("d")
    for position, item in enumerate(buffers):
        if item.sample_rate != first.sample_rate or item.channels != first.channels:
            raise FormatMismatchError(
                f"Buffer {position} is {item.channels}ch/{item.sample_rate} Hz, "
                f"expected {first.channels}ch/{first.sample_rate} Hz"
            )
        merged.extend(item.samples)
    return SampleBuffer(samples=merged, sample_rate=first.sample_rate, channels=first.channels)
