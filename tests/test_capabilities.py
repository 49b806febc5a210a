"""Tests for thinking capability lookup and its persistent cache."""

from __future__ import annotations

import json
from pathlib import Path
import tempfile
import time
import unittest
from typing import Any

from chat_reconciler.capabilities import (
    CapabilityRecord,
    CapabilityRegistry,
    CapabilityStore,
    parse_capabilities,
)


class FakeShowClient:
    def __init__(self, response: Any = None, error: Exception | None = None) -> None:
        self.response = response
        self.error = error
        self.calls: list[str] = []

    async def show(self, model: str) -> Any:
        self.calls.append(model)
        if self.error is not None:
            raise self.error
        return self.response


class ParseCapabilitiesTests(unittest.TestCase):
    def test_list_dict_and_string_shapes(self) -> None:
        self.assertEqual(
            parse_capabilities({"capabilities": ["Completion", "thinking"]}).caps,
            frozenset({"completion", "thinking"}),
        )
        self.assertEqual(
            parse_capabilities({"capabilities": {"tools": True, "vision": False}}).caps,
            frozenset({"tools"}),
        )
        self.assertEqual(
            parse_capabilities({"capabilities": "tools, thinking"}).caps,
            frozenset({"tools", "thinking"}),
        )

    def test_missing_field_is_unknown(self) -> None:
        report = parse_capabilities({"modelfile": ""})
        self.assertFalse(report.known)
        self.assertTrue(parse_capabilities({"capabilities": []}).known)


class CapabilityRegistryTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self._temp_dir = tempfile.TemporaryDirectory()
        self.cache_file = Path(self._temp_dir.name) / "model_capabilities.json"

    def tearDown(self) -> None:
        self._temp_dir.cleanup()

    def test_configured_names_match_tags_and_variants(self) -> None:
        registry = CapabilityRegistry(["o3", "ollama:qwen3"])
        self.assertTrue(registry.supports_thinking("o3"))
        self.assertTrue(registry.supports_thinking("O3-mini"))
        self.assertTrue(registry.supports_thinking("ollama:qwen3:8b"))
        self.assertFalse(registry.supports_thinking("o30"))
        self.assertFalse(registry.supports_thinking("gpt-4o"))

    async def test_refresh_caches_detected_capabilities(self) -> None:
        client = FakeShowClient({"capabilities": ["completion", "thinking"]})
        store = CapabilityStore(self.cache_file)
        registry = CapabilityRegistry([], store=store, client=client)

        self.assertFalse(registry.supports_thinking("ollama:magistral"))
        record = await registry.refresh("ollama:magistral")

        self.assertIsNotNone(record)
        self.assertEqual(client.calls, ["magistral"])
        self.assertTrue(registry.supports_thinking("ollama:magistral"))
        stored = json.loads(self.cache_file.read_text(encoding="utf-8"))
        self.assertEqual(stored[0]["model_name"], "magistral")
        self.assertIn("thinking", stored[0]["capabilities"])

        reloaded = CapabilityRegistry([], store=CapabilityStore(self.cache_file))
        self.assertTrue(reloaded.supports_thinking("ollama:magistral"))

    async def test_detected_capabilities_override_configured_names(self) -> None:
        client = FakeShowClient({"capabilities": ["completion"]})
        registry = CapabilityRegistry(
            ["ollama:qwen3"],
            store=CapabilityStore(self.cache_file),
            client=client,
        )
        await registry.refresh("ollama:qwen3")
        self.assertFalse(registry.supports_thinking("ollama:qwen3"))

    async def test_failed_or_unknown_detection_is_not_cached(self) -> None:
        store = CapabilityStore(self.cache_file)
        failing = CapabilityRegistry(
            [], store=store, client=FakeShowClient(error=ConnectionError())
        )
        self.assertIsNone(await failing.refresh("ollama:x"))
        unknown = CapabilityRegistry(
            [], store=store, client=FakeShowClient({"license": ""})
        )
        self.assertIsNone(await unknown.refresh("ollama:x"))
        self.assertIsNone(store.lookup("x", 60))

    async def test_refresh_ignores_non_ollama_models(self) -> None:
        client = FakeShowClient({"capabilities": ["thinking"]})
        registry = CapabilityRegistry([], client=client)
        self.assertIsNone(await registry.refresh("o3"))
        self.assertEqual(client.calls, [])

    def test_stale_entries_are_ignored(self) -> None:
        store = CapabilityStore(self.cache_file)
        store.remember(
            CapabilityRecord("old", ("thinking",), fetched_at=time.time() - 10_000)
        )
        self.assertIsNone(store.lookup("old", max_age_seconds=60))
        self.assertIsNotNone(store.lookup("old", max_age_seconds=100_000))
        store.forget("old")
        self.assertIsNone(CapabilityStore(self.cache_file).lookup("old", 100_000))

    def test_corrupt_cache_file_is_logged(self) -> None:
        self.cache_file.write_text("{broken", encoding="utf-8")
        with self.assertLogs("chat_reconciler.capabilities", level="WARNING"):
            store = CapabilityStore(self.cache_file)
        self.assertIsNone(store.lookup("anything", 60))

    def test_from_config_without_detection(self) -> None:
        registry = CapabilityRegistry.from_config(
            {"capabilities": {"thinking_models": ["deepseek-r1"]}}
        )
        self.assertTrue(registry.supports_thinking("deepseek-r1:14b"))


if __name__ == "__main__":
    unittest.main()
