#!/usr/bin/env python3
from __future__ import annotations

"""Single-attempt HTTPS transport for the Gemini `generateContent` API.

Retries, backoff and credential rotation live in `retry.RetryingInvoker`;
every function here performs exactly one request with the key it is given.
"""

import json
import time
import urllib.error
import urllib.parse
import urllib.request
from typing import Any, Dict, List, Optional

from .errors import ERROR_KIND_OTHER, ServiceCallError, classify_http_failure
from .logging_utils import Logger, redact_secrets


def _endpoint(base_url: str, model: str) -> str:
    model_path = urllib.parse.quote(str(model or "").strip(), safe="-._")
    return f"{str(base_url).rstrip('/')}/models/{model_path}:generateContent"


def generate_content(
    *,
    base_url: str,
    model: str,
    api_key: str,
    payload: Dict[str, Any],
    timeout_seconds: int,
    logger: Logger,
    stage: str,
) -> Dict[str, Any]:
    request = urllib.request.Request(
        _endpoint(base_url, model),
        data=json.dumps(payload).encode("utf-8"),
        headers={
            "x-goog-api-key": api_key,
            "Content-Type": "application/json",
        },
        method="POST",
    )
    started = time.time()
    try:
        with urllib.request.urlopen(request, timeout=timeout_seconds) as resp:
            raw = resp.read().decode("utf-8")
    except urllib.error.HTTPError as exc:
        code = int(getattr(exc, "code", 0) or 0)
        detail = redact_secrets(exc.read().decode("utf-8", errors="ignore")[:500], [api_key])
        logger.debug("gemini_http_error", stage=stage, model=model, code=code, detail=detail)
        raise ServiceCallError(
            f"HTTP {code}: {detail}",
            error_kind=classify_http_failure(code, detail),
        ) from exc
    try:
        parsed = json.loads(raw)
    except ValueError as exc:
        raise ServiceCallError(
            f"Gemini returned a non-JSON body for stage={stage}",
            error_kind=ERROR_KIND_OTHER,
        ) from exc
    if not isinstance(parsed, dict):
        raise ServiceCallError(f"Gemini returned an unexpected body for stage={stage}", error_kind=ERROR_KIND_OTHER)
    logger.debug(
        "gemini_request_ok",
        stage=stage,
        model=model,
        elapsed_ms=int((time.time() - started) * 1000),
    )
    return parsed


def _first_parts(response: Dict[str, Any]) -> List[Dict[str, Any]]:
    candidates = response.get("candidates") or []
    if not isinstance(candidates, list) or not candidates:
        return []
    content = candidates[0].get("content") if isinstance(candidates[0], dict) else None
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        return []
    return [part for part in parts if isinstance(part, dict)]


def extract_inline_audio(response: Dict[str, Any]) -> Optional[str]:
    """Return base64 audio data of the first inline part, if any."""
    for part in _first_parts(response):
        inline = part.get("inlineData") or part.get("inline_data")
        if isinstance(inline, dict):
            data = str(inline.get("data", "") or "")
            if data:
                return data
    return None


def extract_text(response: Dict[str, Any]) -> str:
    return "".join(str(part.get("text", "") or "") for part in _first_parts(response))


def build_speech_payload(*, prompt: str, voice: str) -> Dict[str, Any]:
    return {
        "contents": [{"parts": [{"text": prompt}]}],
        "generationConfig": {
            "responseModalities": ["AUDIO"],
            "speechConfig": {
                "voiceConfig": {
                    "prebuiltVoiceConfig": {"voiceName": voice},
                },
            },
        },
    }


def build_json_payload(
    *,
    prompt: str,
    response_schema: Dict[str, Any],
    system_instruction: str = "",
    temperature: float = 0.7,
) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "contents": [{"parts": [{"text": prompt}]}],
        "generationConfig": {
            "responseMimeType": "application/json",
            "responseSchema": response_schema,
            "temperature": temperature,
        },
    }
    if system_instruction:
        payload["systemInstruction"] = {"parts": [{"text": system_instruction}]}
    return payload
