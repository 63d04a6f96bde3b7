#!/usr/bin/env python3
from __future__ import annotations

"""In-memory sample buffers and the raw PCM decoder."""

import sys
from array import array
from dataclasses import dataclass
from typing import Iterable

DEFAULT_SAMPLE_RATE = 24000
DEFAULT_CHANNELS = 1


@dataclass(frozen=True)
class SampleBuffer:
    """Float samples in [-1.0, 1.0]. Treat `samples` as read-only."""

    samples: array
    sample_rate: int = DEFAULT_SAMPLE_RATE
    channels: int = DEFAULT_CHANNELS

    def __post_init__(self) -> None:
        if self.sample_rate <= 0:
            raise ValueError(f"sample_rate must be positive, got {self.sample_rate}")
        if self.channels <= 0:
            raise ValueError(f"channels must be positive, got {self.channels}")

    @staticmethod
    def from_values(
        values: Iterable[float],
        *,
        sample_rate: int = DEFAULT_SAMPLE_RATE,
        channels: int = DEFAULT_CHANNELS,
    ) -> "SampleBuffer":
        return SampleBuffer(samples=array("d", values), sample_rate=sample_rate, channels=channels)

    def __len__(self) -> int:
        return len(self.samples) // self.channels

    @property
    def duration_seconds(self) -> float:
        return len(self) / float(self.sample_rate)


def decode_pcm16le(
    data: bytes,
    *,
    sample_rate: int = DEFAULT_SAMPLE_RATE,
    channels: int = DEFAULT_CHANNELS,
) -> SampleBuffer:
    """Decode signed 16-bit little-endian PCM.

    Any length is accepted; a dangling final byte is padded with a zero high
    byte, so N bytes always yield ceil(N / 2) samples.
    """
    raw = bytes(data or b"")
    if len(raw) % 2:
        raw += b"\x00"
    ints = array("h")
    ints.frombytes(raw)
    if sys.byteorder != "little":
        ints.byteswap()
    samples = array("d", (value / 32768.0 for value in ints))
    return SampleBuffer(samples=samples, sample_rate=sample_rate, channels=channels)
