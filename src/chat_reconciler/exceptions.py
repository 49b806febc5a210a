"""Domain exception hierarchy for the chat reconciliation layer."""

from __future__ import annotations


class ReconcilerError(RuntimeError):
    """Base class for all domain-level reconciliation errors."""


class ConfigValidationError(ReconcilerError):
    """Raised when configuration cannot be validated safely."""


class RewriteActionError(ReconcilerError):
    """Raised when the AI rewrite action fails for non-connectivity reasons."""


class RewriteConnectionError(RewriteActionError):
    """Raised when the rewrite backend cannot be reached."""


class RewriteModelNotFoundError(RewriteActionError):
    """Raised when the configured rewrite model is unavailable."""


class StorageError(ReconcilerError):
    """Raised when the storage collaborator cannot complete an operation."""


class StorageFormatError(StorageError):
    """Raised when a persisted payload cannot be decoded safely."""


class RephraseStateError(ReconcilerError):
    """Raised on an illegal rephrase state transition."""


class RegenerationError(ReconcilerError):
    """Raised when a regeneration request cannot be issued."""
