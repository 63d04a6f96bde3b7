#!/usr/bin/env python3
from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from .config import NARRATION_LANGUAGES, SpeechConfig
from .errors import (
    ERROR_KIND_OTHER,
    ERROR_KIND_SYNTHESIS_FAILED,
    ServiceCallError,
    SynthesisError,
    classify_service_exception,
)
from .gemini_http import build_speech_payload, extract_inline_audio, generate_content
from .logging_utils import Logger
from .retry import RetryingInvoker


@runtime_checkable
class SpeechSynthesisClient(Protocol):
    """Turns one narration into raw mono 16-bit little-endian PCM at 24 kHz.

    Implementations raise `ValueError` for empty text and `SynthesisError`
    (carrying the classified cause in `error_kind`) for anything else.
    """

    provider_name: str
    model_name: str

    def synthesize(self, text: str, voice: str, style: str, target_language: str) -> bytes:
        ...


def build_speech_prompt(text: str, style: str, target_language: str) -> str:
    language = NARRATION_LANGUAGES.get(str(target_language or "").lower(), target_language)
    return (
        f"Please read the following text in {language} language with a {style} tone.\n"
        f'Text: "{text}"'
    )


@dataclass
class GeminiSpeechClient:
    config: SpeechConfig
    invoker: RetryingInvoker
    logger: Logger
    provider_name: str = "gemini"

    @property
    def model_name(self) -> str:
        return self.config.tts_model

    def _request_audio(self, *, api_key: str, prompt: str, voice: str) -> bytes:
        response = generate_content(
            base_url=self.config.base_url,
            model=self.config.tts_model,
            api_key=api_key,
            payload=build_speech_payload(prompt=prompt, voice=voice),
            timeout_seconds=self.config.timeout_seconds,
            logger=self.logger,
            stage="speech",
        )
        encoded = extract_inline_audio(response)
        if not encoded:
            raise ServiceCallError("No audio data returned from API", error_kind=ERROR_KIND_OTHER)
        try:
            return base64.b64decode(encoded, validate=False)
        except (binascii.Error, ValueError) as exc:
            raise ServiceCallError("Audio payload is not valid base64", error_kind=ERROR_KIND_OTHER) from exc

    def synthesize(self, text: str, voice: str, style: str, target_language: str) -> bytes:
        narration = str(text or "").strip()
        if not narration:
            raise ValueError("Narration text is empty")
        prompt = build_speech_prompt(narration, style, target_language)
        try:
            return self.invoker.invoke(
                lambda api_key: self._request_audio(api_key=api_key, prompt=prompt, voice=voice),
                context="generateSceneAudio",
            )
        except InterruptedError:
            raise
        except Exception as exc:
            kind = classify_service_exception(exc)
            if kind == ERROR_KIND_OTHER:
                kind = ERROR_KIND_SYNTHESIS_FAILED
            raise SynthesisError(f"Speech synthesis failed: {exc}", error_kind=kind) from exc
