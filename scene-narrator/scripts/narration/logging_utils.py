#!/usr/bin/env python3
from __future__ import annotations

"""Structured stderr logger shared by the narration modules."""

import json
import re
import sys
import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Iterator, Optional

from .config import LoggingConfig


LEVEL_TO_INT = {
    "DEBUG": 10,
    "INFO": 20,
    "WARN": 30,
    "ERROR": 40,
}

_API_KEY_PATTERN = re.compile(r"(key=|x-goog-api-key[\"':\s]+|Bearer\s+)[A-Za-z0-9_\-\.]+", re.IGNORECASE)


def redact_secrets(text: str, secrets: Iterable[str] = ()) -> str:
    """Mask credential-looking fragments before they reach a log line."""
    out = _API_KEY_PATTERN.sub(lambda m: f"{m.group(1)}***", str(text or ""))
    for secret in secrets:
        token = str(secret or "")
        if len(token) >= 6:
            out = out.replace(token, "***")
    return out


def _safe_json(value: object) -> str:
    return json.dumps(value, ensure_ascii=True, sort_keys=True, default=str)


@dataclass
class Logger:
    """Run-scoped structured logger writing one line per event to stderr."""

    config: LoggingConfig
    run_id: str

    @staticmethod
    def create(config: LoggingConfig) -> "Logger":
        return Logger(config=config, run_id=uuid.uuid4().hex[:10])

    def _enabled(self, level: str) -> bool:
        current = LEVEL_TO_INT.get(self.config.level, 20)
        wanted = LEVEL_TO_INT.get(level, 20)
        return wanted >= current

    def _emit(self, level: str, event: str, fields: Dict[str, object]) -> None:
        if not self._enabled(level):
            return
        timestamp = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime())
        suffix = " " + _safe_json(fields) if fields else ""
        prefix = f"[{timestamp}] [{level}] [run:{self.run_id}]"
        if self.config.include_event_ids:
            prefix += f" [event:{uuid.uuid4().hex[:8]}]"
        print(f"{prefix} {event}{suffix}", file=sys.stderr, flush=True)

    def debug(self, event: str, **fields: object) -> None:
        """DEBUG lines are emitted only with debug events enabled."""
        if self.config.debug_events:
            self._emit("DEBUG", event, fields)

    def info(self, event: str, **fields: object) -> None:
        self._emit("INFO", event, fields)

    def warn(self, event: str, **fields: object) -> None:
        self._emit("WARN", event, fields)

    def error(self, event: str, **fields: object) -> None:
        self._emit("ERROR", event, fields)

    @contextmanager
    def timed(self, stage: str, **fields: object) -> Iterator[None]:
        """Log `<stage>_started` / `<stage>_completed` with elapsed milliseconds."""
        started = time.time()
        self.info(f"{stage}_started", **fields)
        try:
            yield
        finally:
            end_fields = dict(fields)
            end_fields["elapsed_ms"] = int((time.time() - started) * 1000)
            self.info(f"{stage}_completed", **end_fields)

    @contextmanager
    def heartbeat(
        self,
        label: str,
        status_fn: Optional[Callable[[], Dict[str, object]]] = None,
    ) -> Iterator[None]:
        """Emit a periodic heartbeat line while a long stage runs."""
        stop = threading.Event()
        interval = max(1, int(self.config.heartbeat_seconds))

        def loop() -> None:
            while not stop.wait(interval):
                payload: Dict[str, object] = {"label": label}
                if status_fn is not None:
                    try:
                        payload.update(status_fn())
                    except Exception as exc:  # pragma: no cover - debug path
                        payload["status_error"] = str(exc)
                self.info("heartbeat", **payload)

        thread = threading.Thread(target=loop, name=f"hb-{label}", daemon=True)
        thread.start()
        try:
            yield
        finally:
            stop.set()
            thread.join(timeout=interval)
