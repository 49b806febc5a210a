"""Tests for configuration loading and validation."""

from __future__ import annotations

import tempfile
from pathlib import Path
import unittest

from chat_reconciler.config import DEFAULT_CONFIG, load_config


class ConfigTests(unittest.TestCase):
    """Validate config merge and fallback behavior."""

    def _load(self, text: str | None) -> dict:
        with tempfile.TemporaryDirectory() as temp_dir:
            config_path = Path(temp_dir) / "config.toml"
            if text is not None:
                config_path.write_text(text, encoding="utf-8")
            return load_config(config_path=config_path)

    def test_missing_config_uses_defaults(self) -> None:
        config = self._load(None)
        self.assertEqual(config, DEFAULT_CONFIG)
        self.assertEqual(config["rephrase"]["partial_overlap_threshold"], 0.7)
        self.assertEqual(config["rephrase"]["marker_label"], "Rephrased")
        self.assertEqual(config["reasoning"]["placeholder_text"], "__thinking__")

    def test_partial_override_is_merged(self) -> None:
        config = self._load('[rephrase]\nmin_word_length = 3\n')
        self.assertEqual(config["rephrase"]["min_word_length"], 3)
        self.assertEqual(config["rephrase"]["anchor_word_length"], 4)
        self.assertEqual(config["ollama"]["host"], DEFAULT_CONFIG["ollama"]["host"])

    def test_thinking_models_are_normalised(self) -> None:
        config = self._load(
            '[capabilities]\nthinking_models = ["QwQ", "qwq", " deepseek-r1 "]\n'
        )
        self.assertEqual(config["capabilities"]["thinking_models"], ["qwq", "deepseek-r1"])

    def test_invalid_values_fall_back_to_defaults(self) -> None:
        with self.assertLogs("chat_reconciler.config", level="WARNING"):
            config = self._load("[rephrase]\npartial_overlap_threshold = 3.5\n")
        self.assertEqual(config, DEFAULT_CONFIG)

    def test_marker_label_cannot_break_marker_syntax(self) -> None:
        with self.assertLogs("chat_reconciler.config", level="WARNING"):
            config = self._load('[rephrase]\nmarker_label = "a]b"\n')
        self.assertEqual(config["rephrase"]["marker_label"], "Rephrased")

    def test_remote_host_rejected_without_opt_in(self) -> None:
        with self.assertLogs("chat_reconciler.config", level="WARNING"):
            config = self._load('[ollama]\nhost = "http://example.com:11434"\n')
        self.assertEqual(config["ollama"]["host"], DEFAULT_CONFIG["ollama"]["host"])

    def test_remote_host_allowed_with_opt_in(self) -> None:
        config = self._load(
            '[ollama]\nhost = "http://example.com:11434"\n'
            "[security]\nallow_remote_hosts = true\n"
        )
        self.assertEqual(config["ollama"]["host"], "http://example.com:11434")

    def test_unparseable_toml_uses_defaults(self) -> None:
        with self.assertLogs("chat_reconciler.config", level="WARNING"):
            config = self._load("this is = = not toml")
        self.assertEqual(config, DEFAULT_CONFIG)


if __name__ == "__main__":
    unittest.main()
