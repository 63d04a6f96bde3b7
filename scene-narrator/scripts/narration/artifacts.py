#!/usr/bin/env python3
from __future__ import annotations

"""Write generation outputs to disk.

Layout under the output directory:
    scenes/scene_001.wav ...   one WAV per successfully synthesized scene
    full_story_audio.mp3       merged track (.wav when MP3 was substituted)
    subtitles.srt
    run_summary.json
"""

import os
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .io_utils import atomic_write_bytes, atomic_write_json, atomic_write_text
from .orchestrator import GenerationResult

SCENES_DIRNAME = "scenes"
STORY_AUDIO_BASENAME = "full_story_audio"
SUBTITLES_FILENAME = "subtitles.srt"
RUN_SUMMARY_FILENAME = "run_summary.json"


@dataclass
class WrittenArtifacts:
    output_dir: str
    scene_files: List[str] = field(default_factory=list)
    story_audio_path: Optional[str] = None
    subtitles_path: Optional[str] = None
    summary_path: Optional[str] = None


def scene_file_name(scene_id: int, extension: str = "wav") -> str:
    return f"scene_{int(scene_id):03d}.{extension}"


def write_generation_outputs(result: GenerationResult, output_dir: str) -> WrittenArtifacts:
    written = WrittenArtifacts(output_dir=output_dir)
    scenes_dir = os.path.join(output_dir, SCENES_DIRNAME)
    for scene in result.scenes:
        if scene.artifact is None:
            continue
        path = os.path.join(scenes_dir, scene_file_name(scene.scene_id, scene.artifact.file_extension))
        atomic_write_bytes(path, scene.artifact.data)
        written.scene_files.append(path)
    if result.merged_artifact is not None:
        path = os.path.join(output_dir, f"{STORY_AUDIO_BASENAME}.{result.merged_artifact.file_extension}")
        atomic_write_bytes(path, result.merged_artifact.data)
        written.story_audio_path = path
    if result.scenes and result.subtitles:
        path = os.path.join(output_dir, SUBTITLES_FILENAME)
        atomic_write_text(path, result.subtitles)
        written.subtitles_path = path
    return written


def write_run_summary(
    *,
    output_dir: str,
    run_id: str,
    status: str,
    started_at: float,
    result: Optional[GenerationResult] = None,
    written: Optional[WrittenArtifacts] = None,
    failure: Optional[Dict[str, Any]] = None,
    extra: Optional[Dict[str, Any]] = None,
) -> str:
    payload: Dict[str, Any] = {
        "run_id": run_id,
        "status": status,
        "started_at": int(started_at),
        "completed_at": int(time.time()),
        "elapsed_seconds": round(max(0.0, time.time() - started_at), 3),
    }
    if result is not None:
        payload["generation"] = result.to_summary()
    if written is not None:
        payload["outputs"] = {
            "scene_files": [os.path.relpath(p, output_dir) for p in written.scene_files],
            "story_audio": os.path.relpath(written.story_audio_path, output_dir) if written.story_audio_path else "",
            "subtitles": os.path.relpath(written.subtitles_path, output_dir) if written.subtitles_path else "",
        }
    if failure:
        payload["failure"] = dict(failure)
    if extra:
        payload.update(extra)
    path = os.path.join(output_dir, RUN_SUMMARY_FILENAME)
    atomic_write_json(path, payload)
    return path
