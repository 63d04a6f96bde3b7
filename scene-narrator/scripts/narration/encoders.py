#!/usr/bin/env python3
from __future__ import annotations

"""Container encoders for scene and story audio.

WAV is written in-process. MP3 goes through an ffmpeg subprocess; when ffmpeg
is missing or fails, the WAV bytes are delivered instead and the artifact is
flagged as a substitution.
"""

import os
import shutil
import struct
import subprocess
import sys
import tempfile
from array import array
from dataclasses import dataclass
from typing import Optional, Protocol, runtime_checkable

from .config import EncoderConfig
from .errors import EncoderUnavailableError
from .logging_utils import Logger
from .pcm import SampleBuffer

CONTAINER_WAV = "wav"
CONTAINER_MP3 = "mp3"
MIME_TYPES = {
    CONTAINER_WAV: "audio/wav",
    CONTAINER_MP3: "audio/mpeg",
}
WAV_HEADER_BYTES = 44
# One MPEG-1 Layer III frame.
MP3_BLOCK_SAMPLES = 1152


@dataclass(frozen=True)
class EncodedArtifact:
    data: bytes
    container: str
    substituted_from: Optional[str] = None

    @property
    def mime_type(self) -> str:
        return MIME_TYPES[self.container]

    @property
    def file_extension(self) -> str:
        return self.container

    @property
    def substituted(self) -> bool:
        return self.substituted_from is not None


def float_to_int16(sample: float) -> int:
    clamped = max(-1.0, min(1.0, float(sample)))
    scaled = round(clamped * 32768.0) if clamped < 0 else round(clamped * 32767.0)
    return max(-32768, min(32767, int(scaled)))


def _pcm16le_bytes(buffer: SampleBuffer) -> bytes:
    ints = array("h", (float_to_int16(value) for value in buffer.samples))
    if sys.byteorder != "little":
        ints.byteswap()
    return ints.tobytes()


def wav_header(*, data_size: int, sample_rate: int, channels: int, bits_per_sample: int = 16) -> bytes:
    block_align = channels * bits_per_sample // 8
    byte_rate = sample_rate * block_align
    return struct.pack(
        "<4sI4s4sIHHIIHH4sI",
        b"RIFF",
        36 + data_size,
        b"WAVE",
        b"fmt ",
        16,
        1,
        channels,
        sample_rate,
        byte_rate,
        block_align,
        bits_per_sample,
        b"data",
        data_size,
    )


def encode_wav(buffer: SampleBuffer) -> EncodedArtifact:
    payload = _pcm16le_bytes(buffer)
    header = wav_header(data_size=len(payload), sample_rate=buffer.sample_rate, channels=buffer.channels)
    return EncodedArtifact(data=header + payload, container=CONTAINER_WAV)


@runtime_checkable
class Mp3Encoder(Protocol):
    name: str

    def encode(self, buffer: SampleBuffer) -> EncodedArtifact:
        ...


@dataclass
class UnavailableMp3Encoder:
    """Stands in when no MP3 encoder exists; always returns WAV."""

    logger: Logger
    name: str = "unavailable"

    def encode(self, buffer: SampleBuffer) -> EncodedArtifact:
        artifact = encode_wav(buffer)
        self.logger.warn("mp3_encoder_unavailable_wav_substituted", samples=len(buffer))
        return EncodedArtifact(data=artifact.data, container=CONTAINER_WAV, substituted_from=CONTAINER_MP3)


@dataclass
class NativeMp3Encoder:
    """Streams s16le PCM into ffmpeg frame by frame; closing stdin flushes the final frame."""

    config: EncoderConfig
    logger: Logger
    name: str = "ffmpeg"

    def _command(self, buffer: SampleBuffer, out_path: str) -> list[str]:
        return [
            self.config.ffmpeg_binary,
            "-hide_banner",
            "-loglevel",
            self.config.ffmpeg_loglevel,
            "-y",
            "-f",
            "s16le",
            "-ar",
            str(buffer.sample_rate),
            "-ac",
            str(buffer.channels),
            "-i",
            "pipe:0",
            "-codec:a",
            "libmp3lame",
            "-b:a",
            f"{self.config.mp3_bitrate_kbps}k",
            "-f",
            "mp3",
            out_path,
        ]

    def encode(self, buffer: SampleBuffer) -> EncodedArtifact:
        pcm = _pcm16le_bytes(buffer)
        block_bytes = MP3_BLOCK_SAMPLES * buffer.channels * 2
        with tempfile.TemporaryDirectory(prefix="narration_mp3_") as tmp:
            out_path = os.path.join(tmp, "story.mp3")
            command = self._command(buffer, out_path)
            self.logger.debug("run_command", command=" ".join(command))
            with tempfile.TemporaryFile() as stderr_sink:
                try:
                    proc = subprocess.Popen(
                        command,
                        stdin=subprocess.PIPE,
                        stdout=subprocess.DEVNULL,
                        stderr=stderr_sink,
                    )
                except OSError as exc:
                    raise EncoderUnavailableError(f"Cannot start MP3 encoder: {exc}") from exc
                try:
                    for offset in range(0, len(pcm), block_bytes):
                        proc.stdin.write(pcm[offset:offset + block_bytes])
                    proc.stdin.close()
                    returncode = proc.wait(timeout=self.config.timeout_seconds)
                except (BrokenPipeError, subprocess.TimeoutExpired) as exc:
                    proc.kill()
                    proc.wait()
                    raise EncoderUnavailableError(f"MP3 encoder aborted: {exc}") from exc
                if returncode != 0:
                    stderr_sink.seek(0)
                    detail = stderr_sink.read().decode("utf-8", errors="ignore")[-1000:]
                    self.logger.error(
                        "command_failed",
                        command=" ".join(command),
                        returncode=returncode,
                        stderr=detail,
                    )
                    raise EncoderUnavailableError(f"MP3 encoder exited with status {returncode}")
            with open(out_path, "rb") as f:
                data = f.read()
        if not data:
            raise EncoderUnavailableError("MP3 encoder produced no output")
        return EncodedArtifact(data=data, container=CONTAINER_MP3)


def select_mp3_encoder(config: EncoderConfig, logger: Logger) -> Mp3Encoder:
    """Native ffmpeg encoder when the binary is on PATH, otherwise the WAV stand-in."""
    if shutil.which(config.ffmpeg_binary) is None:
        logger.warn("ffmpeg_not_found", binary=config.ffmpeg_binary)
        return UnavailableMp3Encoder(logger=logger)
    return NativeMp3Encoder(config=config, logger=logger)


def encode_mp3_with_fallback(encoder: Mp3Encoder, buffer: SampleBuffer, logger: Logger) -> EncodedArtifact:
    try:
        return encoder.encode(buffer)
    except EncoderUnavailableError as exc:
        logger.warn("mp3_encode_failed_wav_substituted", encoder=encoder.name, error=str(exc))
        artifact = encode_wav(buffer)
        return EncodedArtifact(data=artifact.data, container=CONTAINER_WAV, substituted_from=CONTAINER_MP3)
