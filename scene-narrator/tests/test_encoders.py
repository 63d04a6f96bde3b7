import os
import struct
import sys
import unittest
from typing import List
from unittest import mock


SCRIPTS_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "scripts"))
if SCRIPTS_DIR not in sys.path:
    sys.path.insert(0, SCRIPTS_DIR)

from narration.config import EncoderConfig, LoggingConfig  # noqa: E402
from narration.encoders import (  # noqa: E402
    MP3_BLOCK_SAMPLES,
    WAV_HEADER_BYTES,
    NativeMp3Encoder,
    UnavailableMp3Encoder,
    encode_mp3_with_fallback,
    encode_wav,
    float_to_int16,
    select_mp3_encoder,
)
from narration.errors import EncoderUnavailableError  # noqa: E402
from narration.logging_utils import Logger  # noqa: E402
from narration.pcm import SampleBuffer, decode_pcm16le  # noqa: E402


def _logger() -> Logger:
    return Logger.create(LoggingConfig(level="ERROR", heartbeat_seconds=1, debug_events=False, include_event_ids=False))


def _encoder_config() -> EncoderConfig:
    return EncoderConfig(ffmpeg_binary="ffmpeg", mp3_bitrate_kbps=128, ffmpeg_loglevel="error", timeout_seconds=30)


class _FakeStdin:
    def __init__(self) -> None:
        self.chunks: List[bytes] = []
        self.closed = False

    def write(self, data: bytes) -> int:
        self.chunks.append(bytes(data))
        return len(data)

    def close(self) -> None:
        self.closed = True


class _FakeProc:
    instances: List["_FakeProc"] = []

    def __init__(self, command, stdin=None, stdout=None, stderr=None):  # noqa: ANN001
        self.command = list(command)
        self.stdin = _FakeStdin()
        _FakeProc.instances.append(self)

    def wait(self, timeout=None):  # noqa: ANN001, ANN201
        if not self.stdin.closed:
            raise AssertionError("encoder waited before input was flushed")
        with open(self.command[-1], "wb") as f:
            f.write(b"ID3" + b"\x00" * 10)
        return 0

    def kill(self) -> None:
        pass


class WavEncoderTests(unittest.TestCase):
    def test_header_layout(self) -> None:
        artifact = encode_wav(SampleBuffer.from_values([0.0, 0.5, -0.5]))
        data = artifact.data
        self.assertEqual(len(data), WAV_HEADER_BYTES + 6)
        self.assertEqual(data[0:4], b"RIFF")
        self.assertEqual(struct.unpack("<I", data[4:8])[0], 36 + 6)
        self.assertEqual(data[8:16], b"WAVEfmt ")
        fmt_size, fmt_code, channels, rate, byte_rate, block_align, bits = struct.unpack("<IHHIIHH", data[16:36])
        self.assertEqual((fmt_size, fmt_code, channels, rate), (16, 1, 1, 24000))
        self.assertEqual((byte_rate, block_align, bits), (48000, 2, 16))
        self.assertEqual(data[36:40], b"data")
        self.assertEqual(struct.unpack("<I", data[40:44])[0], 6)
        self.assertEqual(artifact.container, "wav")
        self.assertEqual(artifact.mime_type, "audio/wav")
        self.assertFalse(artifact.substituted)

    def test_sample_conversion_is_asymmetric_and_clamped(self) -> None:
        self.assertEqual(float_to_int16(1.0), 32767)
        self.assertEqual(float_to_int16(-1.0), -32768)
        self.assertEqual(float_to_int16(0.5), 16384)
        self.assertEqual(float_to_int16(3.0), 32767)
        self.assertEqual(float_to_int16(-7.0), -32768)
        self.assertEqual(float_to_int16(0.0), 0)

    def test_round_trip_within_one_quantization_step(self) -> None:
        values = [0.0, 0.123, -0.456, 0.25, -0.999, 1.0, -1.0, 0.5]
        decoded = decode_pcm16le(encode_wav(SampleBuffer.from_values(values)).data[WAV_HEADER_BYTES:])
        for original, restored in zip(values, decoded.samples):
            self.assertLessEqual(abs(original - restored), 1 / 32767)


class Mp3EncoderTests(unittest.TestCase):
    def setUp(self) -> None:
        _FakeProc.instances = []

    def test_native_encoder_streams_frame_blocks_and_flushes(self) -> None:
        buffer = SampleBuffer.from_values([0.1] * (MP3_BLOCK_SAMPLES * 2 + 100))
        encoder = NativeMp3Encoder(config=_encoder_config(), logger=_logger())
        with mock.patch("narration.encoders.subprocess.Popen", side_effect=_FakeProc):
            artifact = encoder.encode(buffer)
        proc = _FakeProc.instances[0]
        self.assertEqual([len(chunk) for chunk in proc.stdin.chunks], [2304, 2304, 200])
        self.assertTrue(proc.stdin.closed)
        self.assertIn("128k", proc.command)
        self.assertEqual(proc.command[proc.command.index("-ar") + 1], "24000")
        self.assertEqual(artifact.container, "mp3")
        self.assertEqual(artifact.mime_type, "audio/mpeg")
        self.assertTrue(artifact.data.startswith(b"ID3"))

    def test_native_encoder_missing_binary_raises_unavailable(self) -> None:
        encoder = NativeMp3Encoder(config=_encoder_config(), logger=_logger())
        with mock.patch("narration.encoders.subprocess.Popen", side_effect=FileNotFoundError("ffmpeg")):
            with self.assertRaises(EncoderUnavailableError):
                encoder.encode(SampleBuffer.from_values([0.0]))

    def test_fallback_substitutes_wav_with_flag(self) -> None:
        buffer = SampleBuffer.from_values([0.25, -0.25])
        encoder = NativeMp3Encoder(config=_encoder_config(), logger=_logger())
        with mock.patch("narration.encoders.subprocess.Popen", side_effect=FileNotFoundError("ffmpeg")):
            artifact = encode_mp3_with_fallback(encoder, buffer, _logger())
        self.assertEqual(artifact.container, "wav")
        self.assertEqual(artifact.substituted_from, "mp3")
        self.assertEqual(artifact.data, encode_wav(buffer).data)

    def test_unavailable_encoder_always_returns_flagged_wav(self) -> None:
        artifact = UnavailableMp3Encoder(logger=_logger()).encode(SampleBuffer.from_values([0.0]))
        self.assertEqual(artifact.container, "wav")
        self.assertTrue(artifact.substituted)
        self.assertEqual(artifact.mime_type, "audio/wav")

    def test_select_encoder_by_binary_presence(self) -> None:
        with mock.patch("narration.encoders.shutil.which", return_value=None):
            self.assertIsInstance(select_mp3_encoder(_encoder_config(), _logger()), UnavailableMp3Encoder)
        with mock.patch("narration.encoders.shutil.which", return_value="/usr/bin/ffmpeg"):
            self.assertIsInstance(select_mp3_encoder(_encoder_config(), _logger()), NativeMp3Encoder)


if __name__ == "__main__":
    unittest.main()
