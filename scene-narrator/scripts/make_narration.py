#!/usr/bin/env python3
from __future__ import annotations

import argparse
import dataclasses
import json
import os
import signal
import sys
import time
from typing import Any, List

from narration.artifacts import write_generation_outputs, write_run_summary
from narration.config import (
    NARRATION_LANGUAGES,
    SPEECH_VOICES,
    CredentialsConfig,
    EncoderConfig,
    LoggingConfig,
    RefineConfig,
    RetryConfig,
    SpeechConfig,
    TimelineConfig,
    config_fingerprint,
)
from narration.credentials import (
    CredentialPool,
    credentials_from_env,
    fallback_credential_from_env,
    load_credentials_file,
)
from narration.encoders import select_mp3_encoder
from narration.errors import (
    ERROR_KIND_INTERRUPTED,
    ERROR_KIND_OTHER,
    EmptyCredentialPoolError,
    NarrationOperationError,
    RunCancelledError,
)
from narration.io_utils import read_text_file_with_fallback
from narration.logging_utils import Logger
from narration.orchestrator import RUN_STATE_COMPLETED, GenerationOrchestrator, SceneAudioTask
from narration.retry import RetryingInvoker
from narration.scene_segmenter import GeminiNarrationRefiner, WordCapSegmenter
from narration.speech_client_factory import create_speech_client

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_PARTIAL = 2
EXIT_INTERRUPTED = 130


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Generate fixed-length narrated scene audio, a merged story track and subtitles."
    )
    parser.add_argument("scenes_path", help="Scenes JSON (list of scenes) or plain-text script with --from-text")
    parser.add_argument("outdir", help="Output directory")
    parser.add_argument("--from-text", action="store_true", help="Split a plain-text script into scenes")
    parser.add_argument("--refine", action="store_true", help="Rewrite scene narration with the text model first")
    parser.add_argument("--voice", choices=list(SPEECH_VOICES), default=None)
    parser.add_argument("--style", default=None, help="Audio style / mood, e.g. 'Cinematic, balanced'")
    parser.add_argument("--language", choices=sorted(NARRATION_LANGUAGES), default=None)
    parser.add_argument("--credentials-file", default=None)
    parser.add_argument("--verbose", action="store_true")
    parser.add_argument("--debug", action="store_true")
    return parser.parse_args(argv)


def _scene_text(item: Any) -> str:
    if isinstance(item, str):
        return item
    if not isinstance(item, dict):
        raise ValueError(f"Unsupported scene entry: {item!r}")
    for key in ("narration", "dialogue", "text", "description"):
        value = item.get(key)
        if isinstance(value, str) and value.strip():
            return value
    return ""


def _scene_entries(content: str) -> List[Any]:
    payload = json.loads(content)
    if isinstance(payload, dict):
        payload = payload.get("scenes", [])
    if not isinstance(payload, list):
        raise ValueError("Scenes JSON must be a list or an object with a 'scenes' list")
    return payload


def load_scene_texts(path: str, *, from_text: bool, language: str) -> List[str]:
    """Raw narration per scene, in file order."""
    content = read_text_file_with_fallback(path)
    if from_text:
        return WordCapSegmenter(language=language).split(content)
    return [_scene_text(item) for item in _scene_entries(content)]


def _scene_id(item: Any, position: int) -> int:
    if not isinstance(item, dict) or "scene_id" not in item:
        return position
    value = item["scene_id"]
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().isdecimal():
        return int(value.strip())
    raise ValueError(f"scene_id must be an integer, got {value!r}")


def load_scene_tasks(path: str, *, scene_seconds: float) -> List[SceneAudioTask]:
    """Tasks honouring explicit `scene_id` values when the JSON carries them."""
    tasks: List[SceneAudioTask] = []
    for position, item in enumerate(_scene_entries(read_text_file_with_fallback(path)), start=1):
        tasks.append(
            SceneAudioTask(
                scene_id=_scene_id(item, position),
                narration_text=_scene_text(item),
                target_duration_seconds=scene_seconds,
            )
        )
    return tasks


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    started = time.time()

    log_cfg = LoggingConfig.from_env()
    if args.debug:
        log_cfg = dataclasses.replace(log_cfg, level="DEBUG", debug_events=True)
    elif args.verbose:
        log_cfg = dataclasses.replace(log_cfg, level="INFO")
    logger = Logger.create(log_cfg)
    shutdown = {"requested": False}

    def _signal_handler(signum, _frame):  # type: ignore[no-untyped-def]
        shutdown["requested"] = True
        logger.warn("signal_received", signal=signum)

    signal.signal(signal.SIGINT, _signal_handler)
    sigterm = getattr(signal, "SIGTERM", None)
    if sigterm is not None:
        signal.signal(sigterm, _signal_handler)

    speech_cfg = SpeechConfig.from_env(voice=args.voice, style=args.style, language=args.language)
    retry_cfg = RetryConfig.from_env()
    timeline_cfg = TimelineConfig.from_env()
    encoder_cfg = EncoderConfig.from_env()
    creds_cfg = CredentialsConfig.from_env(credentials_file=args.credentials_file)
    refine_cfg = RefineConfig.from_env()
    os.makedirs(args.outdir, exist_ok=True)
    summary_extra = {
        "config_fingerprint": config_fingerprint(speech_cfg, retry_cfg, timeline_cfg, encoder_cfg),
        "voice": speech_cfg.voice,
        "language": speech_cfg.language,
    }

    def _fail(status: str, kind: str, exc: BaseException) -> None:
        write_run_summary(
            output_dir=args.outdir,
            run_id=logger.run_id,
            status=status,
            started_at=started,
            failure={"kind": kind, "message": str(exc)},
            extra=summary_extra,
        )

    try:
        pool = CredentialPool()
        if creds_cfg.credentials_file:
            pool.load(load_credentials_file(creds_cfg.credentials_file))
        else:
            pool.load(credentials_from_env())
        invoker = RetryingInvoker(
            pool=pool,
            logger=logger,
            fallback_credential=fallback_credential_from_env(),
            max_attempts=retry_cfg.max_attempts,
            base_delay_s=retry_cfg.text_base_delay_ms / 1000.0,
            rotation_delay_s=retry_cfg.rotation_delay_ms / 1000.0,
            jitter_max_s=retry_cfg.jitter_ms / 1000.0,
            cancel_check=lambda: shutdown["requested"],
        )
        logger.info("credentials_loaded", pool_size=pool.size, fallback=bool(invoker.fallback_credential))

        if args.from_text or args.refine:
            texts = load_scene_texts(args.scenes_path, from_text=args.from_text, language=speech_cfg.language)
            if args.refine:
                refiner = GeminiNarrationRefiner(
                    config=speech_cfg,
                    invoker=invoker.with_base_delay(retry_cfg.speech_base_delay_ms / 1000.0),
                    logger=logger,
                    batch_size=refine_cfg.batch_size,
                    batch_delay_s=refine_cfg.batch_delay_ms / 1000.0,
                )
                with logger.timed("narration_refine", scenes=len(texts)):
                    texts = [scene.narration for scene in refiner.refine(texts)]
            tasks = [
                SceneAudioTask(
                    scene_id=position,
                    narration_text=text,
                    target_duration_seconds=timeline_cfg.scene_duration_seconds,
                )
                for position, text in enumerate(texts, start=1)
            ]
        else:
            tasks = load_scene_tasks(args.scenes_path, scene_seconds=timeline_cfg.scene_duration_seconds)

        orchestrator = GenerationOrchestrator(
            speech=speech_cfg,
            timeline=timeline_cfg,
            logger=logger,
            client=create_speech_client(
                speech_cfg=speech_cfg,
                retry_cfg=retry_cfg,
                invoker=invoker,
                logger=logger,
            ),
            credential_pool=pool,
            mp3_encoder=select_mp3_encoder(encoder_cfg, logger),
            fallback_credential=invoker.fallback_credential,
        )
        with logger.timed("scene_audio_generation", scenes=len(tasks)):
            result = orchestrator.run(tasks, cancel_check=lambda: shutdown["requested"])
        written = write_generation_outputs(result, args.outdir)
        write_run_summary(
            output_dir=args.outdir,
            run_id=logger.run_id,
            status=result.state,
            started_at=started,
            result=result,
            written=written,
            extra=summary_extra,
        )
        if written.story_audio_path:
            print(written.story_audio_path)
        return EXIT_OK if result.state == RUN_STATE_COMPLETED else EXIT_PARTIAL
    except RunCancelledError as exc:
        logger.error("narration_interrupted", error=str(exc))
        partial = exc.partial
        written = write_generation_outputs(partial, args.outdir) if partial is not None else None
        write_run_summary(
            output_dir=args.outdir,
            run_id=logger.run_id,
            status="interrupted",
            started_at=started,
            result=partial,
            written=written,
            failure={"kind": ERROR_KIND_INTERRUPTED, "message": str(exc)},
            extra=summary_extra,
        )
        return EXIT_INTERRUPTED
    except (InterruptedError, KeyboardInterrupt) as exc:
        logger.error("narration_interrupted", error=str(exc))
        _fail("interrupted", ERROR_KIND_INTERRUPTED, exc)
        return EXIT_INTERRUPTED
    except EmptyCredentialPoolError as exc:
        logger.error(
            "narration_no_credentials",
            error=str(exc),
            hint="Set NARRATOR_API_KEYS, GEMINI_API_KEY or pass --credentials-file",
        )
        _fail("failed", exc.error_kind, exc)
        return EXIT_FATAL
    except NarrationOperationError as exc:
        logger.error("narration_failed", error=str(exc), error_kind=exc.error_kind)
        _fail("failed", exc.error_kind, exc)
        return EXIT_FATAL
    except (OSError, ValueError, RuntimeError) as exc:
        logger.error("narration_failed", error=str(exc))
        _fail("failed", ERROR_KIND_OTHER, exc)
        return EXIT_FATAL


if __name__ == "__main__":
    sys.exit(main())
