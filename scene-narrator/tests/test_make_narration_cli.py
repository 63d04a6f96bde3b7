"""Entrypoint behavior: outputs on disk, run summary contents and exit codes."""

import base64
import io
import json
import os
import struct
import sys
import tempfile
import unittest
import urllib.error
from typing import List
from unittest import mock


SCRIPTS_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "scripts"))
if SCRIPTS_DIR not in sys.path:
    sys.path.insert(0, SCRIPTS_DIR)

import make_narration  # noqa: E402
from narration.errors import ERROR_KIND_EMPTY_CREDENTIAL_POOL  # noqa: E402


class _Resp:
    def __init__(self, *, data: bytes) -> None:
        self._data = data

    def read(self) -> bytes:
        return self._data

    def __enter__(self):  # noqa: ANN204
        return self

    def __exit__(self, exc_type, exc, tb):  # noqa: ANN001, ANN204
        return False


def _audio_response(seconds: float = 1.0) -> _Resp:
    pcm = struct.pack("<h", 2048) * int(seconds * 24000)
    body = {
        "candidates": [
            {"content": {"parts": [{"inlineData": {"mimeType": "audio/L16", "data": base64.b64encode(pcm).decode("ascii")}}]}}
        ]
    }
    return _Resp(data=json.dumps(body).encode("utf-8"))


def _base_env(**extra: str) -> dict:
    env = {
        "LOG_LEVEL": "ERROR",
        "NARRATOR_INTER_SCENE_DELAY_MS": "0",
        "NARRATOR_API_KEYS": "key-one,key-two",
        "PATH": os.environ.get("PATH", ""),
    }
    env.update(extra)
    return env


class MakeNarrationCliTests(unittest.TestCase):
    def _run(self, argv: List[str], env: dict, urlopen) -> int:  # noqa: ANN001
        with mock.patch.dict(os.environ, env, clear=True), mock.patch(
            "make_narration.signal.signal"
        ), mock.patch("narration.encoders.shutil.which", return_value=None), mock.patch(
            "narration.gemini_http.urllib.request.urlopen", side_effect=urlopen
        ), mock.patch("builtins.print"):
            return make_narration.main(argv)

    def _summary(self, outdir: str) -> dict:
        with open(os.path.join(outdir, "run_summary.json"), "r", encoding="utf-8") as f:
            return json.load(f)

    def test_scenes_json_run_writes_all_outputs(self) -> None:
        prompts: List[str] = []

        def fake_urlopen(req, timeout):  # noqa: ANN001
            prompts.append(json.loads(req.data.decode("utf-8"))["contents"][0]["parts"][0]["text"])
            return _audio_response()

        with tempfile.TemporaryDirectory() as tmp:
            scenes_path = os.path.join(tmp, "scenes.json")
            with open(scenes_path, "w", encoding="utf-8") as f:
                json.dump(
                    [{"scene_id": 2, "narration": "second scene"}, {"scene_id": 1, "dialogue": "first scene"}],
                    f,
                )
            outdir = os.path.join(tmp, "out")
            code = self._run([scenes_path, outdir, "--language", "en"], _base_env(), fake_urlopen)
            self.assertEqual(code, make_narration.EXIT_OK)
            self.assertIn('Text: "first scene"', prompts[0])
            self.assertIn("English language", prompts[0])
            self.assertTrue(os.path.exists(os.path.join(outdir, "scenes", "scene_001.wav")))
            self.assertTrue(os.path.exists(os.path.join(outdir, "scenes", "scene_002.wav")))
            story = os.path.join(outdir, "full_story_audio.wav")
            self.assertEqual(os.path.getsize(story), 44 + 2 * 2 * 8 * 24000)
            with open(os.path.join(outdir, "subtitles.srt"), "r", encoding="utf-8") as f:
                self.assertTrue(f.read().startswith("1\n00:00:00,000 --> 00:00:08,000\nfirst scene\n"))
            summary = self._summary(outdir)
            self.assertEqual(summary["status"], "completed")
            self.assertEqual(summary["generation"]["scene_count"], 2)
            self.assertEqual(summary["generation"]["merged_substituted_from"], "mp3")
            self.assertEqual(summary["outputs"]["story_audio"], "full_story_audio.wav")
            self.assertEqual(summary["language"], "en")
            self.assertNotIn("key-one", json.dumps(summary))

    def test_failed_scene_exits_partial(self) -> None:
        def fake_urlopen(req, timeout):  # noqa: ANN001
            if b"broken" in req.data:
                raise urllib.error.HTTPError(
                    "https://generativelanguage.googleapis.com", 400, "bad", hdrs=None, fp=io.BytesIO(b"bad request")
                )
            return _audio_response()

        with tempfile.TemporaryDirectory() as tmp:
            scenes_path = os.path.join(tmp, "scenes.json")
            with open(scenes_path, "w", encoding="utf-8") as f:
                json.dump({"scenes": [{"narration": "fine"}, {"narration": "broken"}]}, f)
            outdir = os.path.join(tmp, "out")
            code = self._run([scenes_path, outdir], _base_env(), fake_urlopen)
            self.assertEqual(code, make_narration.EXIT_PARTIAL)
            self.assertFalse(os.path.exists(os.path.join(outdir, "scenes", "scene_002.wav")))
            summary = self._summary(outdir)
            self.assertEqual(summary["status"], "failed_partial")
            self.assertEqual(summary["generation"]["failed_scenes"], 1)
            self.assertEqual(summary["generation"]["merged_duration_seconds"], 16.0)

    def test_plain_text_script_is_split_into_scenes(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            script_path = os.path.join(tmp, "story.txt")
            with open(script_path, "w", encoding="utf-8") as f:
                f.write("The lighthouse keeper woke early.\n\nThe storm had passed by dawn.")
            outdir = os.path.join(tmp, "out")
            code = self._run(
                [script_path, outdir, "--from-text", "--language", "en"],
                _base_env(),
                lambda req, timeout: _audio_response(),
            )
            self.assertEqual(code, make_narration.EXIT_OK)
            self.assertEqual(self._summary(outdir)["generation"]["scene_count"], 2)

    def test_missing_credentials_is_fatal(self) -> None:
        calls: List[object] = []

        def fake_urlopen(req, timeout):  # noqa: ANN001
            calls.append(req)
            return _audio_response()

        with tempfile.TemporaryDirectory() as tmp:
            scenes_path = os.path.join(tmp, "scenes.json")
            with open(scenes_path, "w", encoding="utf-8") as f:
                json.dump(["only scene"], f)
            outdir = os.path.join(tmp, "out")
            env = _base_env()
            env.pop("NARRATOR_API_KEYS")
            code = self._run([scenes_path, outdir], env, fake_urlopen)
            self.assertEqual(code, make_narration.EXIT_FATAL)
            self.assertEqual(calls, [])
            summary = self._summary(outdir)
            self.assertEqual(summary["status"], "failed")
            self.assertEqual(summary["failure"]["kind"], ERROR_KIND_EMPTY_CREDENTIAL_POOL)

    def test_credentials_file_is_used(self) -> None:
        seen_keys: List[str] = []

        def fake_urlopen(req, timeout):  # noqa: ANN001
            seen_keys.append(req.get_header("X-goog-api-key"))
            return _audio_response()

        with tempfile.TemporaryDirectory() as tmp:
            scenes_path = os.path.join(tmp, "scenes.json")
            with open(scenes_path, "w", encoding="utf-8") as f:
                json.dump(["only scene"], f)
            keys_path = os.path.join(tmp, "keys.json")
            with open(keys_path, "w", encoding="utf-8") as f:
                json.dump({"api_keys": ["file-key"]}, f)
            outdir = os.path.join(tmp, "out")
            code = self._run([scenes_path, outdir, "--credentials-file", keys_path], _base_env(), fake_urlopen)
            self.assertEqual(code, make_narration.EXIT_OK)
            self.assertEqual(seen_keys, ["file-key"])

    def test_non_integer_scene_id_is_fatal_with_summary(self) -> None:
        for bad_id in (None, 2.7, [1], True, "two"):
            with self.subTest(scene_id=bad_id), tempfile.TemporaryDirectory() as tmp:
                calls: List[object] = []

                def fake_urlopen(req, timeout):  # noqa: ANN001
                    calls.append(req)
                    return _audio_response()

                scenes_path = os.path.join(tmp, "scenes.json")
                with open(scenes_path, "w", encoding="utf-8") as f:
                    json.dump([{"scene_id": bad_id, "narration": "only scene"}], f)
                outdir = os.path.join(tmp, "out")
                code = self._run([scenes_path, outdir], _base_env(), fake_urlopen)
                self.assertEqual(code, make_narration.EXIT_FATAL)
                self.assertEqual(calls, [])
                summary = self._summary(outdir)
                self.assertEqual(summary["status"], "failed")
                self.assertIn("scene_id must be an integer", summary["failure"]["message"])

    def test_digit_string_scene_id_is_accepted(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            scenes_path = os.path.join(tmp, "scenes.json")
            with open(scenes_path, "w", encoding="utf-8") as f:
                json.dump([{"scene_id": " 7 ", "narration": "only scene"}], f)
            tasks = make_narration.load_scene_tasks(scenes_path, scene_seconds=8.0)
        self.assertEqual([task.scene_id for task in tasks], [7])

    def test_malformed_scenes_file_is_fatal(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            scenes_path = os.path.join(tmp, "scenes.json")
            with open(scenes_path, "w", encoding="utf-8") as f:
                f.write('{"scenes": 3}')
            outdir = os.path.join(tmp, "out")
            code = self._run([scenes_path, outdir], _base_env(), lambda req, timeout: _audio_response())
            self.assertEqual(code, make_narration.EXIT_FATAL)
            self.assertEqual(self._summary(outdir)["status"], "failed")


if __name__ == "__main__":
    unittest.main()
