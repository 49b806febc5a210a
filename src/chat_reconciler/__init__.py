"""Top-level package for chat-reconciler."""

from __future__ import annotations

from importlib import import_module
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .attempts import RegenerationAttemptTracker
    from .capabilities import CapabilityRegistry
    from .config import ensure_config_dir, load_config
    from .document import InMemoryDocument, SpanRange
    from .events import EventBus, EventNotifier
    from .exceptions import (
        ConfigValidationError,
        ReconcilerError,
        RegenerationError,
        RephraseStateError,
        RewriteActionError,
        StorageError,
    )
    from .message_store import MessageStore
    from .messages import Attachment, Message, MessagePart
    from .placeholder import PlaceholderLifecycle
    from .reasoning import ReasoningReconciler
    from .rephrase import RephraseApplicator
    from .rewrite import OllamaRewriteAction
    from .state import CoordinationGate, RephraseState
    from .storage import JsonMessageStorage
    from .stream_events import OllamaReasoningSource, ReasoningLineParser
    from .text_locator import LocatorPlan, locate

_EXPORTS: dict[str, str] = {
    "Attachment": "messages",
    "CapabilityRegistry": "capabilities",
    "ConfigValidationError": "exceptions",
    "CoordinationGate": "state",
    "EventBus": "events",
    "EventNotifier": "events",
    "InMemoryDocument": "document",
    "JsonMessageStorage": "storage",
    "LocatorPlan": "text_locator",
    "Message": "messages",
    "MessagePart": "messages",
    "MessageStore": "message_store",
    "OllamaReasoningSource": "stream_events",
    "OllamaRewriteAction": "rewrite",
    "PlaceholderLifecycle": "placeholder",
    "ReasoningLineParser": "stream_events",
    "ReasoningReconciler": "reasoning",
    "ReconcilerError": "exceptions",
    "RegenerationAttemptTracker": "attempts",
    "RegenerationError": "exceptions",
    "RephraseApplicator": "rephrase",
    "RephraseState": "state",
    "RephraseStateError": "exceptions",
    "RewriteActionError": "exceptions",
    "SpanRange": "document",
    "StorageError": "exceptions",
    "ensure_config_dir": "config",
    "load_config": "config",
    "locate": "text_locator",
}

__all__ = sorted(_EXPORTS)


def __getattr__(name: str) -> Any:
    """Lazily import symbols so importing the package does not pull in ollama."""
    module_name = _EXPORTS.get(name)
    if module_name is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    return getattr(import_module(f".{module_name}", __name__), name)
