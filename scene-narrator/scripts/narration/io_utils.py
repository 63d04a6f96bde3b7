#!/usr/bin/env python3
from __future__ import annotations

"""File helpers shared by the narration entrypoint and artifact writer."""

import json
import os
import tempfile
from typing import Any, Callable, Optional

_TEXT_ENCODINGS = ("utf-8-sig", "cp1252", "latin-1")


def read_text_file_with_fallback(
    path: str,
    *,
    on_fallback: Optional[Callable[[str], None]] = None,
) -> str:
    """Read a text file, retrying with legacy encodings when UTF-8 fails."""
    last_exc: UnicodeDecodeError | None = None
    for enc in _TEXT_ENCODINGS:
        try:
            with open(path, "r", encoding=enc) as f:
                data = f.read()
        except UnicodeDecodeError as exc:
            last_exc = exc
            continue
        if enc != _TEXT_ENCODINGS[0] and on_fallback is not None:
            on_fallback(enc)
        return data
    raise RuntimeError(f"Failed to decode {path} with supported encodings: {last_exc}")


def atomic_write_bytes(path: str, data: bytes) -> None:
    """Write through a temp file in the same directory, then rename into place."""
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(prefix=".tmp_", dir=directory)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise


def atomic_write_text(path: str, text: str) -> None:
    atomic_write_bytes(path, text.encode("utf-8"))


def atomic_write_json(path: str, payload: Any) -> None:
    atomic_write_text(path, json.dumps(payload, indent=2, ensure_ascii=False) + "\n")
