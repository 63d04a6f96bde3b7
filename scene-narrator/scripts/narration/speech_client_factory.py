#!/usr/bin/env python3
from __future__ import annotations

from .config import RetryConfig, SpeechConfig
from .logging_utils import Logger
from .retry import RetryingInvoker
from .speech_client import GeminiSpeechClient, SpeechSynthesisClient


def create_speech_client(
    *,
    speech_cfg: SpeechConfig,
    retry_cfg: RetryConfig,
    invoker: RetryingInvoker,
    logger: Logger,
) -> SpeechSynthesisClient:
    provider = str(speech_cfg.provider or "gemini").strip().lower()
    if provider != "gemini":
        raise RuntimeError("Unsupported SPEECH_PROVIDER value. Use gemini.")
    if not speech_cfg.base_url.startswith("https://"):
        raise RuntimeError(
            "GEMINI_BASE_URL must be a valid https URL "
            "(example: https://generativelanguage.googleapis.com/v1beta)"
        )
    return GeminiSpeechClient(
        config=speech_cfg,
        invoker=invoker.with_base_delay(retry_cfg.speech_base_delay_ms / 1000.0),
        logger=logger,
    )
