#!/usr/bin/env python3
from __future__ import annotations

"""Per-scene narration audio generation.

Scenes are synthesized one at a time in ascending id order. A scene whose
synthesis fails still occupies its full slot on the timeline as silence, so
the merged track always lines up with the subtitle cues.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from .config import SpeechConfig, TimelineConfig
from .credentials import CredentialPool, resolve_credential
from .encoders import EncodedArtifact, Mp3Encoder, encode_mp3_with_fallback, encode_wav
from .errors import (
    ERROR_KIND_EMPTY_NARRATION,
    ERROR_KIND_SYNTHESIS_FAILED,
    RunCancelledError,
    classify_service_exception,
    summarize_failure_kinds,
)
from .logging_utils import Logger
from .pcm import SampleBuffer, decode_pcm16le
from .speech_client import SpeechSynthesisClient
from .subtitles import build_srt
from .timeline import concatenate, normalize_duration, silence

RUN_STATE_NOT_STARTED = "not_started"
RUN_STATE_RUNNING = "running"
RUN_STATE_COMPLETED = "completed"
RUN_STATE_FAILED_PARTIAL = "failed_partial"
RUN_STATE_CANCELLED = "cancelled"
RUN_STATE_FAILED = "failed"

SCENE_STATUS_DONE = "done"
SCENE_STATUS_FAILED = "failed"


@dataclass(frozen=True)
class SceneAudioTask:
    scene_id: int
    narration_text: str
    target_duration_seconds: float = 8.0


@dataclass(frozen=True)
class ProgressEvent:
    current: int
    total: int
    scene_id: int
    status: str


@dataclass(frozen=True)
class SceneAudioResult:
    scene_id: int
    status: str
    narration_text: str
    buffer: SampleBuffer
    artifact: Optional[EncodedArtifact] = None
    error_kind: str = ""
    error: str = ""
    elapsed_ms: int = 0

    @property
    def failed(self) -> bool:
        return self.status == SCENE_STATUS_FAILED

    def to_summary(self) -> Dict[str, Any]:
        return {
            "scene_id": self.scene_id,
            "status": self.status,
            "duration_seconds": round(self.buffer.duration_seconds, 3),
            "error_kind": self.error_kind,
            "error": self.error,
            "elapsed_ms": self.elapsed_ms,
        }


@dataclass
class GenerationResult:
    state: str
    scenes: List[SceneAudioResult] = field(default_factory=list)
    merged_buffer: Optional[SampleBuffer] = None
    merged_artifact: Optional[EncodedArtifact] = None
    subtitles: str = ""

    @property
    def failed_scenes(self) -> int:
        return sum(1 for scene in self.scenes if scene.failed)

    @property
    def substitutions(self) -> List[str]:
        out: List[str] = []
        if self.merged_artifact is not None and self.merged_artifact.substituted:
            out.append(f"{self.merged_artifact.substituted_from}->{self.merged_artifact.container}")
        return out

    def to_summary(self) -> Dict[str, Any]:
        merged = self.merged_artifact
        return {
            "state": self.state,
            "scene_count": len(self.scenes),
            "failed_scenes": self.failed_scenes,
            "failure_kinds": summarize_failure_kinds(s.error_kind for s in self.scenes if s.failed),
            "merged_container": merged.container if merged is not None else "",
            "merged_substituted_from": (merged.substituted_from or "") if merged is not None else "",
            "merged_duration_seconds": (
                round(self.merged_buffer.duration_seconds, 3) if self.merged_buffer is not None else 0.0
            ),
            "scenes": [scene.to_summary() for scene in self.scenes],
        }


def order_tasks(tasks: Sequence[SceneAudioTask]) -> List[SceneAudioTask]:
    """Validate scene ids and return tasks in ascending id order."""
    seen: set[int] = set()
    for task in tasks:
        scene_id = task.scene_id
        if isinstance(scene_id, bool) or not isinstance(scene_id, int) or scene_id <= 0:
            raise ValueError(f"scene_id must be a positive integer, got {scene_id!r}")
        if scene_id in seen:
            raise ValueError(f"Duplicate scene_id {scene_id}")
        seen.add(scene_id)
    return sorted(tasks, key=lambda task: task.scene_id)


@dataclass
class GenerationOrchestrator:
    """Sequential scene loop: synthesize, decode, pad, encode, then merge."""

    speech: SpeechConfig
    timeline: TimelineConfig
    logger: Logger
    client: SpeechSynthesisClient
    credential_pool: CredentialPool
    mp3_encoder: Mp3Encoder
    fallback_credential: str = ""
    sleep_fn: Callable[[float], None] = time.sleep
    on_progress: Optional[Callable[[ProgressEvent], None]] = None
    state: str = RUN_STATE_NOT_STARTED

    def _silent_result(self, task: SceneAudioTask, *, error_kind: str, error: str, elapsed_ms: int) -> SceneAudioResult:
        return SceneAudioResult(
            scene_id=task.scene_id,
            status=SCENE_STATUS_FAILED,
            narration_text=task.narration_text,
            buffer=silence(task.target_duration_seconds, sample_rate=self.timeline.sample_rate),
            error_kind=error_kind,
            error=error,
            elapsed_ms=elapsed_ms,
        )

    def _process_scene(self, task: SceneAudioTask) -> SceneAudioResult:
        started = time.time()
        text = str(task.narration_text or "").strip()
        if not text:
            self.logger.warn("scene_audio_skipped_empty_narration", scene_id=task.scene_id)
            return self._silent_result(
                task,
                error_kind=ERROR_KIND_EMPTY_NARRATION,
                error="Narration text is empty",
                elapsed_ms=0,
            )
        try:
            raw = self.client.synthesize(text, self.speech.voice, self.speech.style, self.speech.language)
        except InterruptedError:
            raise
        except Exception as exc:
            kind = classify_service_exception(exc)
            elapsed_ms = int((time.time() - started) * 1000)
            self.logger.warn(
                "scene_audio_failed_silence_substituted",
                scene_id=task.scene_id,
                error_kind=kind,
                error=str(exc)[:300],
                elapsed_ms=elapsed_ms,
            )
            return self._silent_result(
                task,
                error_kind=kind or ERROR_KIND_SYNTHESIS_FAILED,
                error=str(exc),
                elapsed_ms=elapsed_ms,
            )
        decoded = decode_pcm16le(raw, sample_rate=self.timeline.sample_rate)
        normalized = normalize_duration(decoded, task.target_duration_seconds, self.timeline.sample_rate)
        artifact = encode_wav(normalized)
        elapsed_ms = int((time.time() - started) * 1000)
        self.logger.info(
            "scene_audio_done",
            scene_id=task.scene_id,
            decoded_seconds=round(decoded.duration_seconds, 3),
            padded=normalized is not decoded,
            elapsed_ms=elapsed_ms,
        )
        return SceneAudioResult(
            scene_id=task.scene_id,
            status=SCENE_STATUS_DONE,
            narration_text=task.narration_text,
            buffer=normalized,
            artifact=artifact,
            elapsed_ms=elapsed_ms,
        )

    def _emit_progress(self, event: ProgressEvent) -> None:
        self.logger.info(
            "scene_progress",
            current=event.current,
            total=event.total,
            scene_id=event.scene_id,
            status=event.status,
        )
        if self.on_progress is not None:
            self.on_progress(event)

    def _subtitles(self, scenes: List[SceneAudioResult]) -> str:
        return build_srt(
            [scene.narration_text for scene in scenes],
            scene_duration_seconds=self.timeline.scene_duration_seconds,
        )

    def _merge(self, scenes: List[SceneAudioResult]) -> GenerationResult:
        subtitles = self._subtitles(scenes)
        if not scenes:
            return GenerationResult(state=RUN_STATE_COMPLETED, subtitles=subtitles)
        merged = concatenate([scene.buffer for scene in scenes])
        with self.logger.timed("story_audio_encode", samples=len(merged)):
            artifact = encode_mp3_with_fallback(self.mp3_encoder, merged, self.logger)
        failed = sum(1 for scene in scenes if scene.failed)
        return GenerationResult(
            state=RUN_STATE_FAILED_PARTIAL if failed else RUN_STATE_COMPLETED,
            scenes=scenes,
            merged_buffer=merged,
            merged_artifact=artifact,
            subtitles=subtitles,
        )

    def run(
        self,
        tasks: Sequence[SceneAudioTask],
        *,
        cancel_check: Optional[Callable[[], bool]] = None,
    ) -> GenerationResult:
        """Generate every scene and the merged story track.

        Raises `EmptyCredentialPoolError` before any scene when no credential
        is available, and `RunCancelledError` (carrying the scenes finished so
        far) when `cancel_check` turns true between scenes.
        """
        ordered = order_tasks(tasks)
        resolve_credential(self.credential_pool, self.fallback_credential)
        self.state = RUN_STATE_RUNNING
        total = len(ordered)
        scenes: List[SceneAudioResult] = []
        inter_scene_delay_s = self.timeline.inter_scene_delay_ms / 1000.0

        def heartbeat_status() -> Dict[str, object]:
            return {
                "done": len(scenes),
                "total": total,
                "failed": sum(1 for scene in scenes if scene.failed),
            }

        def cancel(reason: str) -> RunCancelledError:
            self.state = RUN_STATE_CANCELLED
            self.logger.warn("generation_cancelled", completed=len(scenes), total=total, reason=reason)
            return RunCancelledError(
                f"Generation cancelled after {len(scenes)}/{total} scenes",
                partial=GenerationResult(
                    state=RUN_STATE_CANCELLED,
                    scenes=list(scenes),
                    subtitles=self._subtitles(scenes),
                ),
            )

        try:
            with self.logger.heartbeat("scene_audio", status_fn=heartbeat_status):
                for position, task in enumerate(ordered, start=1):
                    if cancel_check is not None and cancel_check():
                        raise cancel("cancel_requested")
                    try:
                        result = self._process_scene(task)
                    except InterruptedError as exc:
                        raise cancel(str(exc)) from exc
                    scenes.append(result)
                    self._emit_progress(
                        ProgressEvent(current=position, total=total, scene_id=task.scene_id, status=result.status)
                    )
                    if inter_scene_delay_s > 0:
                        self.sleep_fn(inter_scene_delay_s)
            outcome = self._merge(scenes)
        except RunCancelledError:
            raise
        except Exception:
            self.state = RUN_STATE_FAILED
            raise
        self.state = outcome.state
        self.logger.info(
            "generation_finished",
            state=outcome.state,
            scenes=len(outcome.scenes),
            failed_scenes=outcome.failed_scenes,
            merged_container=outcome.merged_artifact.container if outcome.merged_artifact else "",
        )
        return outcome
