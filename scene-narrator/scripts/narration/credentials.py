#!/usr/bin/env python3
from __future__ import annotations

"""API credential pool with circular rotation."""

import json
import os
import re
import threading
from typing import Iterable, List, Optional, Sequence

from .errors import EmptyCredentialPoolError
from .io_utils import read_text_file_with_fallback

FALLBACK_CREDENTIAL_ENV_VARS = ("GEMINI_API_KEY", "API_KEY")


def _clean(credentials: Iterable[object]) -> List[str]:
    out: List[str] = []
    for item in credentials:
        value = str(item or "").strip()
        if value:
            out.append(value)
    return out


class CredentialPool:
    """Ordered credentials plus the index of the one in use.

    The pool is replaced wholesale by `load`; rotation only moves the index.
    """

    def __init__(self, credentials: Optional[Sequence[str]] = None) -> None:
        self._lock = threading.Lock()
        self._credentials: List[str] = []
        self._index = 0
        if credentials:
            self.load(credentials)

    def load(self, credentials: Iterable[object]) -> None:
        cleaned = _clean(credentials)
        with self._lock:
            self._credentials = cleaned
            self._index = 0

    def current(self) -> str:
        with self._lock:
            if not self._credentials:
                raise EmptyCredentialPoolError("Credential pool is empty")
            return self._credentials[self._index]

    def rotate(self) -> bool:
        """Advance to the next credential; False when there is nothing to rotate to."""
        with self._lock:
            if len(self._credentials) <= 1:
                return False
            self._index = (self._index + 1) % len(self._credentials)
            return True

    @property
    def index(self) -> int:
        with self._lock:
            return self._index

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._credentials)

    def __len__(self) -> int:
        return self.size

    def secrets(self) -> List[str]:
        with self._lock:
            return list(self._credentials)


def fallback_credential_from_env() -> str:
    for name in FALLBACK_CREDENTIAL_ENV_VARS:
        value = str(os.environ.get(name, "") or "").strip()
        if value:
            return value
    return ""


def resolve_credential(pool: CredentialPool, fallback: str = "") -> str:
    """Active pool credential, or the environment default when the pool is empty."""
    try:
        return pool.current()
    except EmptyCredentialPoolError:
        value = str(fallback or "").strip()
        if value:
            return value
        raise


def credentials_from_env(name: str = "NARRATOR_API_KEYS") -> List[str]:
    raw = str(os.environ.get(name, "") or "")
    return _clean(re.split(r"[,\n]", raw))


def load_credentials_file(path: str) -> List[str]:
    """Read credentials from a JSON list, `{"api_keys": [...]}` or one key per line."""
    text = read_text_file_with_fallback(path)
    stripped = text.strip()
    if not stripped:
        return []
    if stripped[0] in "[{":
        payload = json.loads(stripped)
        if isinstance(payload, dict):
            payload = payload.get("api_keys", [])
        if not isinstance(payload, list):
            raise ValueError(f"Credentials file must hold a list of keys: {path}")
        return _clean(payload)
    return _clean(line for line in stripped.splitlines() if not line.lstrip().startswith("#"))
