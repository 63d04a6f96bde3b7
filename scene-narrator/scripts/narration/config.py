#!/usr/bin/env python3
from __future__ import annotations

"""Centralized runtime configuration for the scene narration pipeline.

This module maps environment variables and optional CLI overrides into typed
dataclasses used by the speech client, retry layer, timeline and encoders.
"""

import dataclasses
import hashlib
import json
import math
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

SPEECH_VOICES = ("Puck", "Charon", "Kore", "Fenrir", "Zephyr")
NARRATION_LANGUAGES = {
    "vi": "Vietnamese",
    "en": "English",
    "ja": "Japanese",
    "ko": "Korean",
    "zh": "Chinese",
    "fr": "French",
    "es": "Spanish",
    "de": "German",
}
DEFAULT_AUDIO_STYLE = "Cinematic, balanced"


def _env_str(name: str, default: str) -> str:
    """Read string env var with trim + default fallback."""
    v = os.environ.get(name)
    return default if v is None else str(v).strip()


def _env_int(name: str, default: int) -> int:
    """Read integer env var or default when unset or malformed."""
    v = os.environ.get(name)
    if v is None or str(v).strip() == "":
        return default
    try:
        return int(str(v).strip())
    except (TypeError, ValueError):
        return default


def _env_float(name: str, default: float) -> float:
    """Read finite float env var or default when unset or malformed."""
    v = os.environ.get(name)
    if v is None or str(v).strip() == "":
        return default
    try:
        value = float(str(v).strip())
        if not math.isfinite(value):
            return default
        return value
    except (TypeError, ValueError):
        return default


def _env_bool(name: str, default: bool) -> bool:
    """Read boolean env var from common truthy literals."""
    v = os.environ.get(name)
    if v is None or str(v).strip() == "":
        return default
    return v.strip().lower() in {"1", "true", "yes", "on"}


def _clamp_float(value: float, low: float, high: float) -> float:
    """Clamp float to inclusive range."""
    return max(low, min(high, value))


def _clamp_int(value: int, low: int, high: int) -> int:
    """Clamp integer to inclusive range."""
    return max(low, min(high, value))


@dataclass(frozen=True)
class LoggingConfig:
    """Logging behavior used by `Logger`."""

    level: str
    heartbeat_seconds: int
    debug_events: bool
    include_event_ids: bool

    @staticmethod
    def from_env() -> "LoggingConfig":
        """Build logging config from environment."""
        return LoggingConfig(
            level=_env_str("LOG_LEVEL", "INFO").upper(),
            heartbeat_seconds=max(1, _env_int("LOG_HEARTBEAT_SECONDS", 15)),
            debug_events=_env_bool("LOG_DEBUG_EVENTS", False),
            include_event_ids=_env_bool("LOG_INCLUDE_EVENT_IDS", True),
        )


@dataclass(frozen=True)
class RetryConfig:
    """Attempt ceiling and delay schedule for remote calls."""

    max_attempts: int
    speech_base_delay_ms: int
    text_base_delay_ms: int
    rotation_delay_ms: int
    jitter_ms: int

    @staticmethod
    def from_env() -> "RetryConfig":
        """Build retry config from environment."""
        return RetryConfig(
            max_attempts=_clamp_int(_env_int("NARRATOR_MAX_ATTEMPTS", 5), 1, 20),
            speech_base_delay_ms=max(0, _env_int("NARRATOR_SPEECH_BASE_DELAY_MS", 2000)),
            text_base_delay_ms=max(0, _env_int("NARRATOR_TEXT_BASE_DELAY_MS", 1000)),
            rotation_delay_ms=max(0, _env_int("NARRATOR_ROTATION_DELAY_MS", 100)),
            jitter_ms=max(0, _env_int("NARRATOR_JITTER_MS", 500)),
        )


@dataclass(frozen=True)
class SpeechConfig:
    """Remote speech/text service settings."""

    provider: str
    base_url: str
    tts_model: str
    text_model: str
    voice: str
    style: str
    language: str
    timeout_seconds: int

    @staticmethod
    def from_env(
        *,
        voice: Optional[str] = None,
        style: Optional[str] = None,
        language: Optional[str] = None,
    ) -> "SpeechConfig":
        """Build speech config from environment plus optional CLI overrides."""
        resolved_voice = voice if voice is not None else _env_str("NARRATOR_VOICE", "Puck")
        if resolved_voice not in SPEECH_VOICES:
            resolved_voice = "Puck"
        resolved_language = (language if language is not None else _env_str("NARRATOR_LANGUAGE", "vi")).lower()
        if resolved_language not in NARRATION_LANGUAGES:
            resolved_language = "vi"
        resolved_style = style if style is not None else _env_str("NARRATOR_AUDIO_STYLE", DEFAULT_AUDIO_STYLE)
        return SpeechConfig(
            provider=_env_str("SPEECH_PROVIDER", "gemini").lower() or "gemini",
            base_url=_env_str(
                "GEMINI_BASE_URL",
                "https://generativelanguage.googleapis.com/v1beta",
            ).rstrip("/"),
            tts_model=_env_str("GEMINI_TTS_MODEL", "gemini-2.5-flash-preview-tts"),
            text_model=_env_str("GEMINI_TEXT_MODEL", "gemini-2.5-flash"),
            voice=resolved_voice,
            style=resolved_style.strip() or DEFAULT_AUDIO_STYLE,
            language=resolved_language,
            timeout_seconds=max(5, _env_int("NARRATOR_HTTP_TIMEOUT_SECONDS", 90)),
        )


@dataclass(frozen=True)
class TimelineConfig:
    """Scene timeline contract and pacing."""

    sample_rate: int
    scene_duration_seconds: float
    inter_scene_delay_ms: int

    @staticmethod
    def from_env() -> "TimelineConfig":
        """Build timeline config from environment."""
        return TimelineConfig(
            sample_rate=24000,
            scene_duration_seconds=_clamp_float(_env_float("NARRATOR_SCENE_SECONDS", 8.0), 1.0, 60.0),
            inter_scene_delay_ms=max(0, _env_int("NARRATOR_INTER_SCENE_DELAY_MS", 1100)),
        )


@dataclass(frozen=True)
class EncoderConfig:
    """Container encoder settings."""

    ffmpeg_binary: str
    mp3_bitrate_kbps: int
    ffmpeg_loglevel: str
    timeout_seconds: int

    @staticmethod
    def from_env() -> "EncoderConfig":
        """Build encoder config from environment."""
        return EncoderConfig(
            ffmpeg_binary=_env_str("FFMPEG_BINARY", "ffmpeg") or "ffmpeg",
            mp3_bitrate_kbps=_clamp_int(_env_int("NARRATOR_MP3_BITRATE_KBPS", 128), 32, 320),
            ffmpeg_loglevel=_env_str("FFMPEG_LOGLEVEL", "warning"),
            timeout_seconds=max(5, _env_int("NARRATOR_ENCODER_TIMEOUT_SECONDS", 120)),
        )


@dataclass(frozen=True)
class CredentialsConfig:
    """Where API credentials are loaded from."""

    credentials_file: str

    @staticmethod
    def from_env(*, credentials_file: Optional[str] = None) -> "CredentialsConfig":
        """Build credential source config from environment."""
        return CredentialsConfig(
            credentials_file=(
                credentials_file
                if credentials_file is not None
                else _env_str("NARRATOR_CREDENTIALS_FILE", "")
            ),
        )


@dataclass(frozen=True)
class RefineConfig:
    """Batching for the optional narration refiner."""

    batch_size: int
    batch_delay_ms: int

    @staticmethod
    def from_env() -> "RefineConfig":
        """Build refiner config from environment."""
        return RefineConfig(
            batch_size=_clamp_int(_env_int("NARRATOR_REFINE_BATCH_SIZE", 5), 1, 50),
            batch_delay_ms=max(0, _env_int("NARRATOR_REFINE_BATCH_DELAY_MS", 1000)),
        )


def fingerprint_dict(value: Dict[str, Any]) -> str:
    """Return stable SHA-256 hash for a dictionary payload."""
    encoded = json.dumps(value, sort_keys=True, ensure_ascii=True).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()


def config_fingerprint(
    speech_cfg: Optional[SpeechConfig] = None,
    retry_cfg: Optional[RetryConfig] = None,
    timeline_cfg: Optional[TimelineConfig] = None,
    encoder_cfg: Optional[EncoderConfig] = None,
    extra: Optional[Dict[str, Any]] = None,
) -> str:
    """Build a composite fingerprint across config sections."""
    payload: Dict[str, Any] = {}
    if speech_cfg is not None:
        payload["speech"] = dataclasses.asdict(speech_cfg)
    if retry_cfg is not None:
        payload["retry"] = dataclasses.asdict(retry_cfg)
    if timeline_cfg is not None:
        payload["timeline"] = dataclasses.asdict(timeline_cfg)
    if encoder_cfg is not None:
        payload["encoder"] = dataclasses.asdict(encoder_cfg)
    if extra:
        payload["extra"] = extra
    return fingerprint_dict(payload)
