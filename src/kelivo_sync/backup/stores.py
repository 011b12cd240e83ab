"""Collaborator contracts consumed by the backup engine, plus JSON-backed implementations.

The engine never talks to the host application's storage directly.  It is
handed three collaborators:

* ``SettingsStore`` -- flat key/value settings (``snapshot`` /
  ``restore_all`` / ``restore_single``).
* ``ChatService`` -- conversations, messages, tool events and model
  thought signatures.
* ``AppDirectories`` -- the ``upload``, ``images`` and ``avatars`` roots.

``JsonSettingsStore`` and ``JsonChatStore`` persist to a single JSON file
each and are what the MCP server wires up.  Writes go to a temp file that
atomically replaces the target, so readers never see partial data.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

# Device-specific window state; never leaves or enters a device.
LOCAL_ONLY_KEYS: frozenset[str] = frozenset(
    {
        "window_width_v1",
        "window_height_v1",
        "window_pos_x_v1",
        "window_pos_y_v1",
        "window_maximized_v1",
    }
)

TREE_NAMES: tuple[str, ...] = ("upload", "images", "avatars")


# ---------------------------------------------------------------------------
# Chat data contracts
# ---------------------------------------------------------------------------


class Conversation(BaseModel):
    """A chat conversation.  Unknown fields are preserved verbatim."""

    id: str
    title: str = ""

    model_config = {"frozen": True, "extra": "allow"}

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class ChatMessage(BaseModel):
    """A chat message.  Ids are unique across all conversations."""

    id: str
    conversation_id: str = Field(alias="conversationId")
    role: str
    content: str = ""

    model_config = {
        "frozen": True,
        "extra": "allow",
        "populate_by_name": True,
    }

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


class SettingsStore(Protocol):
    """Flat key/value settings storage."""

    def snapshot(self) -> dict[str, Any]:
        """Return every setting except ``LOCAL_ONLY_KEYS``."""
        ...  # pragma: no cover

    def restore_all(self, data: dict[str, Any]) -> None:
        """Write every entry of *data* (local-only keys are rejected)."""
        ...  # pragma: no cover

    def restore_single(self, key: str, value: Any) -> None:
        """Write one setting (local-only keys are rejected)."""
        ...  # pragma: no cover


class ChatService(Protocol):
    """Chat storage consumed by snapshot and restore."""

    def get_all_conversations(self) -> list[Conversation]: ...  # pragma: no cover

    def get_messages(self, conversation_id: str) -> list[ChatMessage]: ...  # pragma: no cover

    def get_tool_events(self, message_id: str) -> list[dict]: ...  # pragma: no cover

    def get_gemini_thought_signature(self, message_id: str) -> str | None: ...  # pragma: no cover

    def set_tool_events(self, message_id: str, events: list[dict]) -> None: ...  # pragma: no cover

    def set_gemini_thought_signature(self, message_id: str, signature: str) -> None: ...  # pragma: no cover

    def clear_all_data(self) -> None: ...  # pragma: no cover

    def restore_conversation(
        self, conversation: Conversation, messages: list[ChatMessage]
    ) -> None: ...  # pragma: no cover

    def add_message_directly(
        self, conversation_id: str, message: ChatMessage
    ) -> None: ...  # pragma: no cover


@dataclass(frozen=True)
class AppDirectories:
    """The three user file roots carried by a backup."""

    upload: Path
    images: Path
    avatars: Path

    @classmethod
    def under(cls, root: Path) -> AppDirectories:
        """Resolve the standard sub-directories of a data root."""
        return cls(
            upload=root / "upload",
            images=root / "images",
            avatars=root / "avatars",
        )

    def trees(self) -> list[tuple[str, Path]]:
        """``(archive_prefix, directory)`` pairs in restore order."""
        return [(name, getattr(self, name)) for name in TREE_NAMES]


# ---------------------------------------------------------------------------
# Persistence helpers
# ---------------------------------------------------------------------------


def atomic_write_json(path: Path, data: Any) -> None:
    """Write *data* as JSON to *path* via temp file + ``os.replace``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(data, fh, ensure_ascii=False)
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def coerce_setting(value: Any) -> Any | None:
    """Coerce *value* to a storable setting type, or ``None`` if unsupported.

    Supported: bool, int, float, str, and lists (non-string items dropped).
    """
    if isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, list):
        return [v for v in value if isinstance(v, str)]
    return None


# ---------------------------------------------------------------------------
# JSON-backed settings store
# ---------------------------------------------------------------------------


class JsonSettingsStore:
    """``SettingsStore`` persisted to one JSON object on disk.

    Args:
        path: JSON file holding the settings map.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._data: dict[str, Any] = {}
        if path.exists():
            with open(path, encoding="utf-8") as fh:
                loaded = json.load(fh)
            if isinstance(loaded, dict):
                self._data = loaded

    def get(self, key: str) -> Any:
        return self._data.get(key)

    def set_local(self, key: str, value: Any) -> None:
        """Write a setting directly, local-only keys included."""
        self._data[key] = value
        self._save()

    def snapshot(self) -> dict[str, Any]:
        return {
            k: v for k, v in self._data.items() if k not in LOCAL_ONLY_KEYS
        }

    def restore_all(self, data: dict[str, Any]) -> None:
        for key, value in data.items():
            self._put(key, value)
        self._save()

    def restore_single(self, key: str, value: Any) -> None:
        if self._put(key, value):
            self._save()

    def _put(self, key: str, value: Any) -> bool:
        if key in LOCAL_ONLY_KEYS:
            logger.debug("Rejected local-only setting %s", key)
            return False
        coerced = coerce_setting(value)
        if coerced is None:
            logger.debug(
                "Unsupported value type %s for setting %s",
                type(value).__name__,
                key,
            )
            return False
        self._data[key] = coerced
        return True

    def _save(self) -> None:
        atomic_write_json(self._path, self._data)


# ---------------------------------------------------------------------------
# JSON-backed chat store
# ---------------------------------------------------------------------------


class JsonChatStore:
    """``ChatService`` persisted to one JSON document on disk.

    Args:
        path: JSON file holding conversations, messages, tool events and
            thought signatures.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._conversations: dict[str, Conversation] = {}
        self._messages: dict[str, list[ChatMessage]] = {}
        self._tool_events: dict[str, list[dict]] = {}
        self._signatures: dict[str, str] = {}
        if path.exists():
            self._load()

    def _load(self) -> None:
        with open(self._path, encoding="utf-8") as fh:
            doc = json.load(fh)
        for raw in doc.get("conversations", []):
            conv = Conversation.model_validate(raw)
            self._conversations[conv.id] = conv
        for raw in doc.get("messages", []):
            msg = ChatMessage.model_validate(raw)
            self._messages.setdefault(msg.conversation_id, []).append(msg)
        self._tool_events = dict(doc.get("toolEvents", {}))
        self._signatures = dict(doc.get("geminiThoughtSigs", {}))

    def _save(self) -> None:
        atomic_write_json(
            self._path,
            {
                "conversations": [
                    c.to_json() for c in self._conversations.values()
                ],
                "messages": [
                    m.to_json()
                    for msgs in self._messages.values()
                    for m in msgs
                ],
                "toolEvents": self._tool_events,
                "geminiThoughtSigs": self._signatures,
            },
        )

    def get_all_conversations(self) -> list[Conversation]:
        return list(self._conversations.values())

    def get_messages(self, conversation_id: str) -> list[ChatMessage]:
        return list(self._messages.get(conversation_id, []))

    def get_tool_events(self, message_id: str) -> list[dict]:
        return list(self._tool_events.get(message_id, []))

    def get_gemini_thought_signature(self, message_id: str) -> str | None:
        return self._signatures.get(message_id)

    def set_tool_events(self, message_id: str, events: list[dict]) -> None:
        self._tool_events[message_id] = list(events)
        self._save()

    def set_gemini_thought_signature(
        self, message_id: str, signature: str
    ) -> None:
        self._signatures[message_id] = signature
        self._save()

    def clear_all_data(self) -> None:
        self._conversations.clear()
        self._messages.clear()
        self._tool_events.clear()
        self._signatures.clear()
        self._save()

    def restore_conversation(
        self, conversation: Conversation, messages: list[ChatMessage]
    ) -> None:
        self._conversations[conversation.id] = conversation
        self._messages[conversation.id] = list(messages)
        self._save()

    def add_message_directly(
        self, conversation_id: str, message: ChatMessage
    ) -> None:
        self._messages.setdefault(conversation_id, []).append(message)
        self._save()
