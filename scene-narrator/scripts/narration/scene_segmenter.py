#!/usr/bin/env python3
from __future__ import annotations

"""Turn a story script into per-scene narration lines.

`WordCapSegmenter` splits locally so each line reads aloud in roughly one
8-second scene. `GeminiNarrationRefiner` asks the text model to rewrite raw
scene inputs in batches and falls back to the raw input when a batch fails.
"""

import json
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Protocol, Sequence, runtime_checkable

from .config import NARRATION_LANGUAGES, SpeechConfig
from .errors import (
    ERROR_KIND_OTHER,
    EmptyCredentialPoolError,
    ServiceCallError,
    classify_service_exception,
)
from .gemini_http import build_json_payload, extract_text, generate_content
from .logging_utils import Logger
from .retry import RetryingInvoker

CJK_LANGUAGES = {"ja", "zh", "ko"}
# Korean separates words with spaces; Japanese and Chinese do not.
UNSPACED_LANGUAGES = {"ja", "zh"}
# Both caps are exclusive: a Latin scene stays under 18 words, a CJK scene under 35 characters.
MAX_WORDS_PER_SCENE = 18
MAX_CJK_CHARS_PER_SCENE = 35
FALLBACK_NARRATION_CHARS = 100

# Latin terminators end a sentence only before whitespace.
_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+|(?<=[。！？])\s*")


@runtime_checkable
class SceneTextSegmenter(Protocol):
    def split(self, script: str) -> List[str]:
        ...


def _cjk_len(text: str) -> int:
    return len(re.sub(r"\s+", "", text))


def _split_sentences(paragraph: str) -> List[str]:
    return [s.strip() for s in _SENTENCE_SPLIT.split(paragraph) if s.strip()]


def _split_long_chars(sentence: str, cap: int) -> List[str]:
    compact = re.sub(r"\s+", "", sentence)
    return [compact[i : i + cap] for i in range(0, len(compact), cap)]


def _pack_words(sentence: str, cap: int, measure: Callable[[str], int]) -> List[str]:
    """Greedy word packing; only a single word longer than `cap` is cut inside."""
    pieces: List[str] = []
    current: List[str] = []
    current_size = 0
    for word in sentence.split():
        size = measure(word)
        if size > cap:
            if current:
                pieces.append(" ".join(current))
                current, current_size = [], 0
            pieces.extend(_split_long_chars(word, cap))
            continue
        if current and current_size + size > cap:
            pieces.append(" ".join(current))
            current, current_size = [], 0
        current.append(word)
        current_size += size
    if current:
        pieces.append(" ".join(current))
    return pieces


@dataclass
class WordCapSegmenter:
    """Sentence-aware splitter; sentences are packed until the next one would break the cap."""

    language: str = "vi"

    @property
    def is_cjk(self) -> bool:
        return self.language.lower() in CJK_LANGUAGES

    @property
    def is_unspaced(self) -> bool:
        return self.language.lower() in UNSPACED_LANGUAGES

    def _measure(self, text: str) -> int:
        return _cjk_len(text) if self.is_cjk else len(text.split())

    def _cap(self) -> int:
        return (MAX_CJK_CHARS_PER_SCENE if self.is_cjk else MAX_WORDS_PER_SCENE) - 1

    def _split_long(self, sentence: str, cap: int) -> List[str]:
        if self.is_unspaced:
            return _split_long_chars(sentence, cap)
        return _pack_words(sentence, cap, self._measure)

    def split(self, script: str) -> List[str]:
        cap = self._cap()
        joiner = "" if self.is_unspaced else " "
        scenes: List[str] = []
        for paragraph in re.split(r"\n\s*\n", str(script or "")):
            current: List[str] = []
            current_size = 0
            for sentence in _split_sentences(paragraph.replace("\n", " ")):
                size = self._measure(sentence)
                if size > cap:
                    if current:
                        scenes.append(joiner.join(current))
                        current, current_size = [], 0
                    scenes.extend(self._split_long(sentence, cap))
                    continue
                if current and current_size + size > cap:
                    scenes.append(joiner.join(current))
                    current, current_size = [], 0
                current.append(sentence)
                current_size += size
            if current:
                scenes.append(joiner.join(current))
        return [scene for scene in scenes if scene.strip()]


@dataclass(frozen=True)
class RefinedScene:
    original_input: str
    narration: str
    visual_description: str
    refined: bool = True


REFINED_SCENE_LIST_SCHEMA: Dict[str, Any] = {
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": {
            "originalInput": {"type": "STRING"},
            "refinedNarration": {
                "type": "STRING",
                "description": "The coherent spoken text, strictly timed for 8 seconds.",
            },
            "visualDescription": {"type": "STRING", "description": "Detailed visual prompt based on input."},
        },
        "required": ["originalInput", "refinedNarration", "visualDescription"],
    },
}


def refine_system_instruction(*, language: str, style: str) -> str:
    language_name = NARRATION_LANGUAGES.get(language, language)
    return (
        "You are an expert storyteller and screenwriter.\n"
        "Read the story context, then rewrite the narration for the requested batch of scenes only.\n"
        "Each narration must take roughly 6 to 8 seconds to read aloud: "
        f"under {MAX_WORDS_PER_SCENE} words for Vietnamese, English or European languages, "
        f"under {MAX_CJK_CHARS_PER_SCENE} characters for Japanese, Chinese or Korean.\n"
        f"Write every refinedNarration in {language_name}.\n"
        "If the mood is a review, travel, vlog or documentary, write an engaging voiceover that "
        "describes the scene instead of rephrasing the input.\n"
        "If an input is only a visual description, write a fitting voiceover. Never output silence.\n"
        f"Mood: {style}"
    )


def refine_batch_prompt(raw_scenes: Sequence[str], start: int, batch: Sequence[str]) -> str:
    context = "\n".join(f"Scene {i + 1}: {s}" for i, s in enumerate(raw_scenes))
    first = start + 1
    last = start + len(batch)
    inputs = "\n".join(f"Scene {first + i}: {s}" for i, s in enumerate(batch))
    return (
        f'FULL STORY CONTEXT (reference only):\n"""\n{context}\n"""\n\n'
        f"Process ONLY scenes {first} to {last}.\n"
        f"Raw inputs for this batch:\n{inputs}\n\n"
        f"Return a JSON array with exactly {len(batch)} items, one per scene, in order."
    )


def _parse_refined(text: str, batch: Sequence[str]) -> List[RefinedScene]:
    payload = json.loads(text)
    if not isinstance(payload, list) or len(payload) != len(batch):
        raise ServiceCallError(
            f"Expected {len(batch)} refined scenes, got {len(payload) if isinstance(payload, list) else 'non-list'}",
            error_kind=ERROR_KIND_OTHER,
        )
    out: List[RefinedScene] = []
    for raw, item in zip(batch, payload):
        if not isinstance(item, dict):
            raise ServiceCallError("Refined scene is not an object", error_kind=ERROR_KIND_OTHER)
        narration = str(item.get("refinedNarration", "") or "").strip()
        out.append(
            RefinedScene(
                original_input=str(item.get("originalInput", raw) or raw),
                narration=narration or raw[:FALLBACK_NARRATION_CHARS],
                visual_description=str(item.get("visualDescription", "") or raw),
            )
        )
    return out


@dataclass
class GeminiNarrationRefiner:
    config: SpeechConfig
    invoker: RetryingInvoker
    logger: Logger
    batch_size: int = 5
    batch_delay_s: float = 1.0
    sleep_fn: Callable[[float], None] = time.sleep

    def _request_batch(self, *, api_key: str, prompt: str) -> str:
        response = generate_content(
            base_url=self.config.base_url,
            model=self.config.text_model,
            api_key=api_key,
            payload=build_json_payload(
                prompt=prompt,
                response_schema=REFINED_SCENE_LIST_SCHEMA,
                system_instruction=refine_system_instruction(
                    language=self.config.language,
                    style=self.config.style,
                ),
            ),
            timeout_seconds=self.config.timeout_seconds,
            logger=self.logger,
            stage="refine",
        )
        text = extract_text(response)
        if not text.strip():
            raise ServiceCallError("Text model returned no content", error_kind=ERROR_KIND_OTHER)
        return text

    def refine(self, raw_scenes: Sequence[str]) -> List[RefinedScene]:
        scenes = [str(s or "").strip() for s in raw_scenes]
        size = max(1, int(self.batch_size))
        out: List[RefinedScene] = []
        for start in range(0, len(scenes), size):
            batch = scenes[start : start + size]
            batch_number = start // size + 1
            if start > 0 and self.batch_delay_s > 0:
                self.sleep_fn(self.batch_delay_s)
            prompt = refine_batch_prompt(scenes, start, batch)
            try:
                text = self.invoker.invoke(
                    lambda api_key: self._request_batch(api_key=api_key, prompt=prompt),
                    context=f"refineScenes batch {batch_number}",
                )
                out.extend(_parse_refined(text, batch))
                self.logger.info("refine_batch_done", batch=batch_number, scenes=len(batch))
            except (InterruptedError, EmptyCredentialPoolError):
                raise
            except Exception as exc:
                self.logger.warn(
                    "refine_batch_failed_raw_fallback",
                    batch=batch_number,
                    first_scene=start + 1,
                    error_kind=classify_service_exception(exc),
                    error=str(exc)[:300],
                )
                out.extend(
                    RefinedScene(
                        original_input=raw,
                        narration=raw[:FALLBACK_NARRATION_CHARS],
                        visual_description=raw,
                        refined=False,
                    )
                    for raw in batch
                )
        return out
