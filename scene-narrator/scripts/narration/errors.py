#!/usr/bin/env python3
from __future__ import annotations

import socket
import urllib.error
from typing import Any, Iterable, List

ERROR_KIND_RATE_LIMIT = "rate_limit"
ERROR_KIND_UNAVAILABLE = "unavailable"
ERROR_KIND_TIMEOUT = "timeout"
ERROR_KIND_NETWORK = "network"
ERROR_KIND_OTHER = "other"
ERROR_KIND_EMPTY_NARRATION = "empty_narration"
ERROR_KIND_EMPTY_CREDENTIAL_POOL = "empty_credential_pool"
ERROR_KIND_SYNTHESIS_FAILED = "synthesis_failed"
ERROR_KIND_DECODE_FAILURE = "decode_failure"
ERROR_KIND_FORMAT_MISMATCH = "format_mismatch"
ERROR_KIND_ENCODER_UNAVAILABLE = "encoder_unavailable"
ERROR_KIND_INTERRUPTED = "interrupted"

# Transient kinds that a fresh attempt may clear after waiting.
BACKOFF_ERROR_KINDS = {
    ERROR_KIND_UNAVAILABLE,
    ERROR_KIND_TIMEOUT,
    ERROR_KIND_NETWORK,
}


def is_backoff_error_kind(kind: str) -> bool:
    return str(kind or "").strip().lower() in BACKOFF_ERROR_KINDS


class NarrationOperationError(RuntimeError):
    def __init__(self, message: str, *, error_kind: str) -> None:
        super().__init__(message)
        self.error_kind = str(error_kind or ERROR_KIND_OTHER).strip().lower()


class ServiceCallError(NarrationOperationError):
    """Remote call failed after the retry budget was spent."""

    def __init__(self, message: str, *, error_kind: str, attempts: int = 0) -> None:
        super().__init__(message, error_kind=error_kind)
        self.attempts = int(attempts)


class SynthesisError(NarrationOperationError):
    """Speech synthesis could not produce audio for one narration."""


class EmptyCredentialPoolError(NarrationOperationError):
    def __init__(self, message: str = "No API credential configured") -> None:
        super().__init__(message, error_kind=ERROR_KIND_EMPTY_CREDENTIAL_POOL)


class DecodeFailureError(NarrationOperationError):
    def __init__(self, message: str) -> None:
        super().__init__(message, error_kind=ERROR_KIND_DECODE_FAILURE)


class FormatMismatchError(NarrationOperationError):
    def __init__(self, message: str) -> None:
        super().__init__(message, error_kind=ERROR_KIND_FORMAT_MISMATCH)


class EncoderUnavailableError(NarrationOperationError):
    def __init__(self, message: str) -> None:
        super().__init__(message, error_kind=ERROR_KIND_ENCODER_UNAVAILABLE)


class RunCancelledError(InterruptedError):
    """Generation stopped between scenes; `partial` holds what was produced."""

    def __init__(self, message: str, *, partial: Any = None) -> None:
        super().__init__(message)
        self.partial = partial
        self.error_kind = ERROR_KIND_INTERRUPTED


def _iter_exception_chain(exc: BaseException) -> Iterable[BaseException]:
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        yield current
        seen.add(id(current))
        next_exc = getattr(current, "__cause__", None) or getattr(current, "__context__", None)
        current = next_exc if isinstance(next_exc, BaseException) else None


def _classify_message(message: str) -> str:
    message = str(message or "").lower()
    if (
        "429" in message
        or "quota" in message
        or "resource exhausted" in message
        or "resource_exhausted" in message
    ):
        return ERROR_KIND_RATE_LIMIT
    if "503" in message or "overloaded" in message or "unavailable" in message:
        return ERROR_KIND_UNAVAILABLE
    return ERROR_KIND_OTHER


def classify_http_failure(code: int, detail: str = "") -> str:
    code = int(code or 0)
    if code == 429:
        return ERROR_KIND_RATE_LIMIT
    if code == 503:
        return ERROR_KIND_UNAVAILABLE
    if code in {408, 504}:
        return ERROR_KIND_TIMEOUT
    return _classify_message(f"HTTP {code}: {detail}")


def classify_service_exception(exc: BaseException) -> str:
    messages: List[str] = []
    for item in _iter_exception_chain(exc):
        if isinstance(item, NarrationOperationError):
            return item.error_kind
        if isinstance(item, InterruptedError):
            return ERROR_KIND_INTERRUPTED
        if isinstance(item, urllib.error.HTTPError):
            kind = classify_http_failure(int(getattr(item, "code", 0) or 0))
            if kind != ERROR_KIND_OTHER:
                return kind
            messages.append(str(item or ""))
            continue
        if isinstance(item, (TimeoutError, socket.timeout)):
            return ERROR_KIND_TIMEOUT
        if isinstance(item, urllib.error.URLError):
            reason = getattr(item, "reason", None)
            if isinstance(reason, (TimeoutError, socket.timeout)):
                return ERROR_KIND_TIMEOUT
            return ERROR_KIND_NETWORK
        if isinstance(item, ConnectionError):
            return ERROR_KIND_NETWORK
        messages.append(str(item or ""))
    return _classify_message(" ".join(messages))


def summarize_failure_kinds(kinds: Iterable[str]) -> List[str]:
    out: List[str] = []
    for kind in kinds:
        normalized = str(kind or ERROR_KIND_OTHER).strip().lower()
        if not normalized:
            normalized = ERROR_KIND_OTHER
        if normalized not in out:
            out.append(normalized)
    return out
