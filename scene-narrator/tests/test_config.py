import dataclasses
import os
import sys
import unittest
from unittest import mock


SCRIPTS_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "scripts"))
if SCRIPTS_DIR not in sys.path:
    sys.path.insert(0, SCRIPTS_DIR)

from narration.config import (  # noqa: E402
    DEFAULT_AUDIO_STYLE,
    CredentialsConfig,
    EncoderConfig,
    LoggingConfig,
    RefineConfig,
    RetryConfig,
    SpeechConfig,
    TimelineConfig,
    _env_bool,
    config_fingerprint,
)


class ConfigDefaultsTests(unittest.TestCase):
    def test_defaults_without_environment(self) -> None:
        with mock.patch.dict(os.environ, {}, clear=True):
            speech = SpeechConfig.from_env()
            retry = RetryConfig.from_env()
            timeline = TimelineConfig.from_env()
            refine = RefineConfig.from_env()
            logging_cfg = LoggingConfig.from_env()
        self.assertEqual(speech.provider, "gemini")
        self.assertEqual(speech.tts_model, "gemini-2.5-flash-preview-tts")
        self.assertEqual(speech.text_model, "gemini-2.5-flash")
        self.assertEqual((speech.voice, speech.language, speech.style), ("Puck", "vi", DEFAULT_AUDIO_STYLE))
        self.assertEqual(retry.max_attempts, 5)
        self.assertEqual(retry.rotation_delay_ms, 100)
        self.assertEqual((timeline.sample_rate, timeline.scene_duration_seconds), (24000, 8.0))
        self.assertEqual(timeline.inter_scene_delay_ms, 1100)
        self.assertEqual((refine.batch_size, refine.batch_delay_ms), (5, 1000))
        self.assertEqual(logging_cfg.level, "INFO")

    def test_cli_overrides_win_and_unknown_values_fall_back(self) -> None:
        with mock.patch.dict(os.environ, {"NARRATOR_VOICE": "Kore", "NARRATOR_LANGUAGE": "en"}, clear=True):
            self.assertEqual(SpeechConfig.from_env().voice, "Kore")
            overridden = SpeechConfig.from_env(voice="Fenrir", language="JA", style="Horror, tense")
            self.assertEqual((overridden.voice, overridden.language), ("Fenrir", "ja"))
            self.assertEqual(overridden.style, "Horror, tense")
            fallback = SpeechConfig.from_env(voice="Nobody", language="xx", style="   ")
            self.assertEqual((fallback.voice, fallback.language), ("Puck", "vi"))
            self.assertEqual(fallback.style, DEFAULT_AUDIO_STYLE)

    def test_numeric_values_are_clamped(self) -> None:
        env = {
            "NARRATOR_SCENE_SECONDS": "500",
            "NARRATOR_MAX_ATTEMPTS": "0",
            "NARRATOR_MP3_BITRATE_KBPS": "9999",
            "NARRATOR_INTER_SCENE_DELAY_MS": "-5",
        }
        with mock.patch.dict(os.environ, env, clear=True):
            self.assertEqual(TimelineConfig.from_env().scene_duration_seconds, 60.0)
            self.assertEqual(TimelineConfig.from_env().inter_scene_delay_ms, 0)
            self.assertEqual(RetryConfig.from_env().max_attempts, 1)
            self.assertEqual(EncoderConfig.from_env().mp3_bitrate_kbps, 320)

    def test_non_finite_and_garbage_values_use_defaults(self) -> None:
        with mock.patch.dict(os.environ, {"NARRATOR_SCENE_SECONDS": "nan", "NARRATOR_MAX_ATTEMPTS": "many"}, clear=True):
            self.assertEqual(TimelineConfig.from_env().scene_duration_seconds, 8.0)
            self.assertEqual(RetryConfig.from_env().max_attempts, 5)

    def test_refine_batching_is_separate_from_credential_source(self) -> None:
        env = {
            "NARRATOR_CREDENTIALS_FILE": "/tmp/keys.json",
            "NARRATOR_REFINE_BATCH_SIZE": "500",
            "NARRATOR_REFINE_BATCH_DELAY_MS": "250",
        }
        with mock.patch.dict(os.environ, env, clear=True):
            creds = CredentialsConfig.from_env()
            override = CredentialsConfig.from_env(credentials_file="cli.json")
            refine = RefineConfig.from_env()
        self.assertEqual(dataclasses.asdict(creds), {"credentials_file": "/tmp/keys.json"})
        self.assertEqual(override.credentials_file, "cli.json")
        self.assertEqual((refine.batch_size, refine.batch_delay_ms), (50, 250))

    def test_empty_bool_uses_default(self) -> None:
        with mock.patch.dict(os.environ, {"TEST_BOOL_EMPTY_CONFIG": ""}, clear=False):
            self.assertTrue(_env_bool("TEST_BOOL_EMPTY_CONFIG", True))
            self.assertFalse(_env_bool("TEST_BOOL_EMPTY_CONFIG", False))

    def test_fingerprint_is_stable_and_sensitive(self) -> None:
        with mock.patch.dict(os.environ, {}, clear=True):
            first = config_fingerprint(SpeechConfig.from_env(), RetryConfig.from_env(), TimelineConfig.from_env())
            second = config_fingerprint(SpeechConfig.from_env(), RetryConfig.from_env(), TimelineConfig.from_env())
            changed = config_fingerprint(
                SpeechConfig.from_env(voice="Charon"),
                RetryConfig.from_env(),
                TimelineConfig.from_env(),
            )
        self.assertEqual(first, second)
        self.assertNotEqual(first, changed)


if __name__ == "__main__":
    unittest.main()
