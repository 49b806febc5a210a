"""JSON file storage for thread messages."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from datetime import UTC, datetime
import json
import logging
import os
from pathlib import Path
import re
from typing import Any

from .exceptions import StorageError, StorageFormatError
from .messages import Attachment, Message, find_index, with_content

LOGGER = logging.getLogger(__name__)

_THREAD_ID = re.compile(r"^[A-Za-z0-9_.-]+$")


class JsonMessageStorage:
    """Keep one JSON document per thread under ``directory``.

    The async methods implement the ``MessageStorage`` collaborator; file I/O
    runs in a worker thread.
    """

    def __init__(self, directory: str | Path, thread_id: str) -> None:
        if not _THREAD_ID.match(thread_id) or thread_id in {".", ".."}:
            raise StorageError(f"Invalid thread id {thread_id!r}.")
        self.directory = Path(directory).expanduser()
        self.thread_id = thread_id
        self.path = self.directory / f"{thread_id}.json"

    @classmethod
    def from_config(cls, config: dict[str, Any], thread_id: str) -> JsonMessageStorage:
        return cls(config.get("storage", {}).get("directory", "."), thread_id)

    def _enforce_permissions(self, path: Path, mode: int = 0o600) -> None:
        if os.name != "posix":
            return
        try:
            path.chmod(mode)
        except OSError:
            LOGGER.warning("Unable to enforce %o permissions for %s", mode, path)

    def _ensure_paths(self) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        self._enforce_permissions(self.directory, 0o700)

    def load_messages(self) -> list[Message]:
        """Read every message of the thread; a missing file is an empty thread."""
        if not self.path.exists():
            return []
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except OSError as exc:
            raise StorageError(f"Unable to read {self.path}: {exc}") from exc
        except ValueError as exc:
            raise StorageFormatError(f"Thread file {self.path} is not valid JSON.") from exc
        if not isinstance(payload, dict) or not isinstance(payload.get("messages"), list):
            raise StorageFormatError("Thread payload is invalid.")
        try:
            return [Message.from_dict(item) for item in payload["messages"]]
        except (KeyError, TypeError, ValueError) as exc:
            raise StorageFormatError(f"Thread payload is invalid: {exc}") from exc

    def save_messages(self, messages: Sequence[Message]) -> Path:
        """Replace the thread document with ``messages``."""
        self._ensure_paths()
        payload: dict[str, Any] = {
            "thread_id": self.thread_id,
            "updated_at": datetime.now(UTC).isoformat(),
            "messages": [message.to_dict() for message in messages],
        }
        try:
            self.path.write_text(
                json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True),
                encoding="utf-8",
            )
        except OSError as exc:
            raise StorageError(f"Unable to write {self.path}: {exc}") from exc
        self._enforce_permissions(self.path)
        return self.path

    def _require(self, messages: list[Message], message_id: str) -> int:
        index = find_index(messages, message_id)
        if index < 0:
            raise StorageError(f"Message {message_id!r} not found in {self.thread_id!r}.")
        return index

    def _update_content(self, message_id: str, content: str) -> bool:
        messages = self.load_messages()
        index = find_index(messages, message_id)
        if index < 0:
            LOGGER.warning(
                "storage.update.missing",
                extra={"event": "storage.update.missing", "message_id": message_id},
            )
            return False
        messages[index] = with_content(messages[index], content)
        self.save_messages(messages)
        return True

    def _content(self, message_id: str) -> str:
        messages = self.load_messages()
        return messages[self._require(messages, message_id)].content

    def _attachments(self, message_id: str) -> list[Attachment]:
        messages = self.load_messages()
        return messages[self._require(messages, message_id)].attachments()

    def _delete_trailing(self, message_id: str) -> int:
        messages = self.load_messages()
        index = self._require(messages, message_id)
        removed = len(messages) - index - 1
        if removed:
            self.save_messages(messages[: index + 1])
        return removed

    async def update_message_content(self, message_id: str, content: str) -> bool:
        return await asyncio.to_thread(self._update_content, message_id, content)

    async def get_message_content(self, message_id: str) -> str:
        return await asyncio.to_thread(self._content, message_id)

    async def get_file_attachments_by_message_id(
        self, message_id: str
    ) -> list[Attachment]:
        return await asyncio.to_thread(self._attachments, message_id)

    async def delete_trailing_messages(self, message_id: str) -> int:
        """Delete every message stored after ``message_id``; return how many."""
        return await asyncio.to_thread(self._delete_trailing, message_id)
