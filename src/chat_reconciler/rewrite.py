"""Ollama-backed AI rewrite action (explain, translate, rephrase, summarize)."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Literal

import httpx
from ollama import AsyncClient

from .exceptions import (
    RewriteActionError,
    RewriteConnectionError,
    RewriteModelNotFoundError,
)

LOGGER = logging.getLogger(__name__)

RewriteKind = Literal["explain", "translate", "rephrase", "summarize"]

DEFAULT_TARGET_LANGUAGE = "Spanish"

PROMPTS: dict[str, str] = {
    "explain": (
        "Please explain the following text in simple, clear terms. Break down any "
        "complex concepts and provide context where helpful:\n\n\"{text}\""
    ),
    "translate": (
        "Please translate the following text to {language}. Provide only the "
        "translation without any additional commentary:\n\n\"{text}\""
    ),
    "rephrase": (
        "Please rephrase the following text while maintaining the same meaning. "
        "Make it clearer and more concise:\n\n\"{text}\""
    ),
    "summarize": (
        "Please provide a concise summary of the following text, highlighting the "
        "key points:\n\n\"{text}\""
    ),
}


def build_prompt(action: str, text: str, target_language: str | None = None) -> str:
    template = PROMPTS.get(action)
    if template is None:
        raise RewriteActionError(f"Unsupported rewrite action {action!r}.")
    return template.format(
        text=text, language=target_language or DEFAULT_TARGET_LANGUAGE
    )


def temperature_for(action: str) -> float:
    # Translation should stay literal.
    return 0.1 if action == "translate" else 0.7


def _extract_response(payload: Any) -> str:
    value = getattr(payload, "response", None)
    if value is None and isinstance(payload, dict):
        value = payload.get("response")
    return value if isinstance(value, str) else ""


class OllamaRewriteAction:
    """Callable rewrite action that asks an Ollama model for a one-shot completion.

    Returns ``None`` when the model produced no usable text. Transport errors are
    retried ``retries`` times and then raised as :class:`RewriteActionError`
    subclasses.
    """

    def __init__(
        self,
        host: str,
        model: str,
        timeout: int = 120,
        retries: int = 2,
        retry_backoff_seconds: float = 0.5,
        client: Any | None = None,
    ) -> None:
        self.host = host
        self.model = model
        self.retries = retries
        self.retry_backoff_seconds = retry_backoff_seconds
        self._client = client if client is not None else AsyncClient(host=host, timeout=timeout)

    @classmethod
    def from_config(cls, config: dict[str, Any], client: Any | None = None) -> OllamaRewriteAction:
        section = config.get("ollama", {})
        return cls(
            host=section.get("host", "http://localhost:11434"),
            model=section.get("model", "llama3.2"),
            timeout=int(section.get("timeout", 120)),
            retries=int(section.get("retries", 2)),
            retry_backoff_seconds=float(section.get("retry_backoff_seconds", 0.5)),
            client=client,
        )

    async def __call__(
        self, action: str, text: str, target_language: str | None = None
    ) -> str | None:
        if not text.strip():
            return None
        prompt = build_prompt(action, text, target_language)
        options = {"temperature": temperature_for(action)}

        for attempt in range(self.retries + 1):
            try:
                response = await self._client.generate(
                    model=self.model, prompt=prompt, stream=False, options=options
                )
                break
            except asyncio.CancelledError:
                LOGGER.info(
                    "rewrite.request.cancelled",
                    extra={"event": "rewrite.request.cancelled", "action": action},
                )
                raise
            except Exception as exc:  # noqa: BLE001 - external API can fail in many ways.
                mapped_exc = self._map_exception(exc)
                LOGGER.warning(
                    "rewrite.request.retry",
                    extra={
                        "event": "rewrite.request.retry",
                        "attempt": attempt + 1,
                        "error_type": mapped_exc.__class__.__name__,
                    },
                )
                if attempt >= self.retries or isinstance(
                    mapped_exc, RewriteModelNotFoundError
                ):
                    raise mapped_exc from exc
                await asyncio.sleep(self.retry_backoff_seconds * (attempt + 1))

        result = _extract_response(response).strip()
        LOGGER.info(
            "rewrite.request.completed",
            extra={
                "event": "rewrite.request.completed",
                "action": action,
                "chars": len(result),
            },
        )
        return result or None

    def _map_exception(self, exc: Exception) -> RewriteActionError:
        if isinstance(exc, RewriteActionError):
            return exc

        if isinstance(
            exc,
            (
                httpx.ConnectError,
                httpx.ConnectTimeout,
                httpx.ReadTimeout,
                httpx.NetworkError,
            ),
        ):
            return RewriteConnectionError(f"Unable to connect to Ollama host {self.host}.")

        lower_message = str(exc).lower()
        if "model" in lower_message and ("not found" in lower_message or "404" in lower_message):
            return RewriteModelNotFoundError(
                f"Model {self.model!r} was not found on {self.host}."
            )

        return RewriteActionError(f"Rewrite request to Ollama at {self.host} failed: {exc}")
