#!/usr/bin/env python3
from __future__ import annotations

"""Retry wrapper for calls to the metered generation service.

The delay schedule and the rotate/backoff/fail decision are plain functions;
`RetryingInvoker` only composes them with a credential pool and a clock.
"""

import random
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, TypeVar

from .credentials import CredentialPool, resolve_credential
from .errors import (
    ERROR_KIND_OTHER,
    ERROR_KIND_RATE_LIMIT,
    ServiceCallError,
    classify_service_exception,
    is_backoff_error_kind,
)
from .logging_utils import Logger, redact_secrets

T = TypeVar("T")

DECISION_ROTATE = "rotate"
DECISION_BACKOFF = "backoff"
DECISION_FAIL = "fail"


def backoff_delay_seconds(attempt_index: int, *, base_delay_s: float, jitter_s: float = 0.0) -> float:
    """Delay before retrying after the attempt numbered `attempt_index` (0-based)."""
    return max(0.0, float(base_delay_s)) * (2 ** max(0, int(attempt_index))) + max(0.0, float(jitter_s))


def decide_retry(error_kind: str, *, can_rotate: bool) -> str:
    kind = str(error_kind or "").strip().lower()
    if kind == ERROR_KIND_RATE_LIMIT:
        return DECISION_ROTATE if can_rotate else DECISION_BACKOFF
    if is_backoff_error_kind(kind):
        return DECISION_BACKOFF
    return DECISION_FAIL


@dataclass
class RetryingInvoker:
    pool: CredentialPool
    logger: Logger
    fallback_credential: str = ""
    max_attempts: int = 5
    base_delay_s: float = 2.0
    rotation_delay_s: float = 0.1
    jitter_max_s: float = 0.5
    sleep_fn: Callable[[float], None] = time.sleep
    random_fn: Callable[[], float] = random.random
    cancel_check: Optional[Callable[[], bool]] = None
    _attempts_total: int = 0
    _retries_total: int = 0
    _rotations_total: int = 0
    _state_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def with_base_delay(self, base_delay_s: float) -> "RetryingInvoker":
        """Invoker sharing this pool and clock but using another backoff base."""
        return RetryingInvoker(
            pool=self.pool,
            logger=self.logger,
            fallback_credential=self.fallback_credential,
            max_attempts=self.max_attempts,
            base_delay_s=base_delay_s,
            rotation_delay_s=self.rotation_delay_s,
            jitter_max_s=self.jitter_max_s,
            sleep_fn=self.sleep_fn,
            random_fn=self.random_fn,
            cancel_check=self.cancel_check,
        )

    @property
    def attempts_total(self) -> int:
        with self._state_lock:
            return int(self._attempts_total)

    @property
    def retries_total(self) -> int:
        with self._state_lock:
            return int(self._retries_total)

    @property
    def rotations_total(self) -> int:
        with self._state_lock:
            return int(self._rotations_total)

    def _count(self, name: str) -> None:
        with self._state_lock:
            setattr(self, name, getattr(self, name) + 1)

    def _redact(self, text: str) -> str:
        return redact_secrets(text, [*self.pool.secrets(), self.fallback_credential])

    def _sleep(self, delay_s: float) -> None:
        if delay_s <= 0:
            return
        if self.cancel_check is None:
            self.sleep_fn(delay_s)
            return
        wake_interval_s = max(0.05, min(0.25, delay_s))
        remaining = delay_s
        while remaining > 0:
            if self.cancel_check():
                raise InterruptedError("Interrupted during retry backoff")
            step = min(wake_interval_s, remaining)
            self.sleep_fn(step)
            remaining -= step

    def invoke(self, operation: Callable[[str], T], *, context: str) -> T:
        """Run `operation(credential)` until it succeeds or the budget is spent.

        Errors classified as neither rate-limit nor transient are re-raised
        unchanged after the first attempt.
        """
        attempts = max(1, int(self.max_attempts))
        last_exc: Optional[BaseException] = None
        last_kind = ERROR_KIND_OTHER
        for attempt_index in range(attempts):
            credential = resolve_credential(self.pool, self.fallback_credential)
            self._count("_attempts_total")
            try:
                return operation(credential)
            except Exception as exc:
                last_exc = exc
                last_kind = classify_service_exception(exc)
                decision = decide_retry(last_kind, can_rotate=self.pool.size > 1)
                self.logger.warn(
                    "service_call_failed",
                    context=context,
                    attempt=attempt_index + 1,
                    max_attempts=attempts,
                    error_kind=last_kind,
                    decision=decision,
                    error=self._redact(str(exc))[:300],
                )
                if decision == DECISION_FAIL:
                    raise
            if attempt_index + 1 >= attempts:
                break
            if decision == DECISION_ROTATE:
                self.pool.rotate()
                self._count("_rotations_total")
                self.logger.info(
                    "credential_rotated",
                    context=context,
                    index=self.pool.index,
                    pool_size=self.pool.size,
                )
                delay_s = self.rotation_delay_s
            else:
                delay_s = backoff_delay_seconds(
                    attempt_index,
                    base_delay_s=self.base_delay_s,
                    jitter_s=self.random_fn() * self.jitter_max_s,
                )
            self._count("_retries_total")
            self.logger.debug("service_call_retry_wait", context=context, delay_ms=int(delay_s * 1000))
            self._sleep(delay_s)
        safe_error = self._redact(str(last_exc))
        raise ServiceCallError(
            f"{context} failed after {attempts} attempts: {safe_error}",
            error_kind=last_kind,
            attempts=attempts,
        ) from last_exc
