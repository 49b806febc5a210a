"""Model capability lookup used to gate the thinking placeholder."""

from __future__ import annotations

from dataclasses import dataclass
import json
import logging
from pathlib import Path
import time
from typing import Any

from ollama import AsyncClient

LOGGER = logging.getLogger(__name__)

OLLAMA_PREFIX = "ollama:"
CACHE_FILE_NAME = "model_capabilities.json"


@dataclass(frozen=True)
class CapabilityRecord:
    """Capabilities reported by Ollama for one model, with the time of the query."""

    model_name: str
    capabilities: tuple[str, ...]
    fetched_at: float

    @property
    def supports_thinking(self) -> bool:
        return "thinking" in self.capabilities

    @property
    def supports_tools(self) -> bool:
        return "tools" in self.capabilities

    @property
    def supports_vision(self) -> bool:
        return "vision" in self.capabilities

    def expired(self, max_age_seconds: float, now: float | None = None) -> bool:
        current = time.time() if now is None else now
        return current - self.fetched_at > max_age_seconds

    def to_dict(self) -> dict[str, Any]:
        return {
            "model_name": self.model_name,
            "capabilities": list(self.capabilities),
            "fetched_at": self.fetched_at,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> CapabilityRecord:
        return cls(
            model_name=str(payload["model_name"]),
            capabilities=tuple(str(item) for item in payload["capabilities"]),
            fetched_at=float(payload["fetched_at"]),
        )


@dataclass(frozen=True)
class CapabilityReport:
    """Parsed ``/api/show`` capabilities.

    ``known`` is False when the response had no capabilities field at all; an
    empty ``caps`` with ``known`` set means the model has none.
    """

    caps: frozenset[str]
    known: bool


class CapabilityStore:
    """JSON file of :class:`CapabilityRecord` keyed by model name."""

    def __init__(self, path: Path | None = None) -> None:
        if path is None:
            from .config import ensure_config_dir

            path = ensure_config_dir() / CACHE_FILE_NAME
        self.path = path
        self._records: dict[str, CapabilityRecord] = self._read()

    def _read(self) -> dict[str, CapabilityRecord]:
        if not self.path.exists():
            return {}
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            LOGGER.warning(
                "capability_store.read.failed",
                extra={"event": "capability_store.read.failed", "error": str(exc)},
            )
            return {}
        records: dict[str, CapabilityRecord] = {}
        for entry in raw if isinstance(raw, list) else []:
            try:
                record = CapabilityRecord.from_dict(entry)
            except (KeyError, TypeError, ValueError) as exc:
                LOGGER.warning(
                    "capability_store.entry.invalid",
                    extra={"event": "capability_store.entry.invalid", "error": str(exc)},
                )
                continue
            records[record.model_name] = record
        return records

    def _write(self) -> None:
        payload = [record.to_dict() for record in self._records.values()]
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError as exc:
            LOGGER.warning(
                "capability_store.write.failed",
                extra={"event": "capability_store.write.failed", "error": str(exc)},
            )

    def lookup(self, model_name: str, max_age_seconds: float) -> CapabilityRecord | None:
        """Return the record for ``model_name`` unless it is missing or expired."""
        record = self._records.get(model_name)
        if record is None or record.expired(max_age_seconds):
            return None
        return record

    def remember(self, record: CapabilityRecord) -> None:
        self._records[record.model_name] = record
        self._write()

    def forget(self, model_name: str) -> None:
        if self._records.pop(model_name, None) is not None:
            self._write()


def parse_capabilities(response: Any) -> CapabilityReport:
    """Normalise an Ollama ``show`` response into a :class:`CapabilityReport`."""
    if isinstance(response, dict):
        known = "capabilities" in response
        raw = response.get("capabilities")
    else:
        raw = getattr(response, "capabilities", None)
        known = raw is not None

    if isinstance(raw, dict):
        # Some servers send {"thinking": true, ...}.
        names = [key for key, enabled in raw.items() if enabled]
    elif isinstance(raw, str):
        names = raw.replace(",", " ").split()
    elif isinstance(raw, list):
        names = raw
    else:
        names = []
    caps = frozenset(str(name).strip().lower() for name in names) - {""}
    return CapabilityReport(caps=caps, known=known)


class CapabilityRegistry:
    """Answer ``supports_thinking`` from configured model names and cached detection.

    Model ids are matched the way the chat client names them: a configured
    entry matches itself, ``<entry>:<tag>`` and ``<entry>-<variant>``.
    Ollama models (``ollama:<name>``) prefer capability metadata detected via
    ``/api/show`` when it has been cached by :meth:`refresh`.
    """

    def __init__(
        self,
        thinking_models: list[str],
        store: CapabilityStore | None = None,
        client: Any | None = None,
        max_age_seconds: int = 86400,
    ) -> None:
        self.thinking_models = [m.strip().lower() for m in thinking_models if m.strip()]
        self._store = store
        self._client = client
        self.max_age_seconds = max_age_seconds

    @classmethod
    def from_config(
        cls, config: dict[str, Any], store: CapabilityStore | None = None
    ) -> CapabilityRegistry:
        section = config.get("capabilities", {})
        client = None
        if section.get("detect_with_ollama", False):
            ollama_section = config.get("ollama", {})
            client = AsyncClient(
                host=ollama_section.get("host", "http://localhost:11434"),
                timeout=ollama_section.get("timeout", 120),
            )
            store = store or CapabilityStore()
        return cls(
            thinking_models=list(section.get("thinking_models", [])),
            store=store,
            client=client,
            max_age_seconds=int(section.get("cache_max_age_seconds", 86400)),
        )

    def supports_thinking(self, model_id: str) -> bool:
        name = model_id.strip().lower()
        if name.startswith(OLLAMA_PREFIX) and self._store is not None:
            record = self._store.lookup(name[len(OLLAMA_PREFIX) :], self.max_age_seconds)
            if record is not None:
                return record.supports_thinking
        return any(
            name == entry or name.startswith(f"{entry}:") or name.startswith(f"{entry}-")
            for entry in self.thinking_models
        )

    async def refresh(self, model_id: str) -> CapabilityRecord | None:
        """Query Ollama for an ``ollama:`` model and cache the result when known."""
        name = model_id.strip().lower()
        if self._client is None or not name.startswith(OLLAMA_PREFIX):
            return None
        model_name = name[len(OLLAMA_PREFIX) :]
        try:
            report = parse_capabilities(await self._client.show(model_name))
        except Exception as exc:  # noqa: BLE001 - detection is optional.
            LOGGER.debug(
                "capability.show.failed",
                extra={
                    "event": "capability.show.failed",
                    "model": model_name,
                    "error": str(exc),
                },
            )
            return None
        if not report.known:
            return None
        record = CapabilityRecord(
            model_name=model_name,
            capabilities=tuple(sorted(report.caps)),
            fetched_at=time.time(),
        )
        if self._store is not None:
            self._store.remember(record)
        LOGGER.info(
            "capability.refreshed",
            extra={
                "event": "capability.refreshed",
                "model": model_name,
                "thinking": record.supports_thinking,
            },
        )
        return record
