"""Shared pytest fixtures for kelivo-sync tests."""

import io
import json
import zipfile
from typing import Any
from unittest.mock import Mock

import pytest

from kelivo_sync.backup.models import WebDavConfig
from kelivo_sync.backup.stores import (
    LOCAL_ONLY_KEYS,
    AppDirectories,
    ChatMessage,
    Conversation,
)


def pytest_addoption(parser):
    """Add custom CLI options for test filtering."""
    parser.addoption(
        "--run-live",
        action="store_true",
        default=False,
        help="Run tests that require a live WebDAV server",
    )


def pytest_collection_modifyitems(config, items):
    """Skip live tests unless --run-live is passed."""
    if config.getoption("--run-live"):
        return
    skip_live = pytest.mark.skip(reason="need --run-live option to run")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


# ---------------------------------------------------------------------------
# In-memory collaborators
# ---------------------------------------------------------------------------


class FakeSettingsStore:
    """In-memory SettingsStore that records every write."""

    def __init__(self, data: dict[str, Any] | None = None) -> None:
        self.data: dict[str, Any] = dict(data or {})
        self.writes: list[str] = []

    def snapshot(self) -> dict[str, Any]:
        return {
            k: v for k, v in self.data.items() if k not in LOCAL_ONLY_KEYS
        }

    def restore_all(self, data: dict[str, Any]) -> None:
        for key, value in data.items():
            self.restore_single(key, value)

    def restore_single(self, key: str, value: Any) -> None:
        if key in LOCAL_ONLY_KEYS:
            return
        self.data[key] = value
        self.writes.append(key)


class FakeChatService:
    """In-memory ChatService."""

    def __init__(self) -> None:
        self.conversations: dict[str, Conversation] = {}
        self.messages: dict[str, list[ChatMessage]] = {}
        self.tool_events: dict[str, list[dict]] = {}
        self.signatures: dict[str, str] = {}
        self.cleared = 0

    def add(self, conversation_id: str, *messages: ChatMessage, title: str = "") -> None:
        self.conversations[conversation_id] = Conversation(
            id=conversation_id, title=title
        )
        self.messages.setdefault(conversation_id, []).extend(messages)

    def all_message_ids(self) -> list[str]:
        return [m.id for msgs in self.messages.values() for m in msgs]

    def get_all_conversations(self) -> list[Conversation]:
        return list(self.conversations.values())

    def get_messages(self, conversation_id: str) -> list[ChatMessage]:
        return list(self.messages.get(conversation_id, []))

    def get_tool_events(self, message_id: str) -> list[dict]:
        return list(self.tool_events.get(message_id, []))

    def get_gemini_thought_signature(self, message_id: str) -> str | None:
        return self.signatures.get(message_id)

    def set_tool_events(self, message_id: str, events: list[dict]) -> None:
        self.tool_events[message_id] = list(events)

    def set_gemini_thought_signature(self, message_id: str, signature: str) -> None:
        self.signatures[message_id] = signature

    def clear_all_data(self) -> None:
        self.cleared += 1
        self.conversations.clear()
        self.messages.clear()
        self.tool_events.clear()
        self.signatures.clear()

    def restore_conversation(
        self, conversation: Conversation, messages: list[ChatMessage]
    ) -> None:
        self.conversations[conversation.id] = conversation
        self.messages[conversation.id] = list(messages)

    def add_message_directly(self, conversation_id: str, message: ChatMessage) -> None:
        self.messages.setdefault(conversation_id, []).append(message)


def msg(message_id: str, conversation_id: str, role: str = "user", content: str = "") -> ChatMessage:
    """Shorthand ChatMessage constructor."""
    return ChatMessage(
        id=message_id,
        conversation_id=conversation_id,
        role=role,
        content=content or f"text of {message_id}",
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def webdav_cfg():
    return WebDavConfig(
        url="https://dav.example.com/remote.php/webdav/",
        username="alice",
        password="secret",
        path="kelivo/backups",
    )


@pytest.fixture
def settings_store():
    return FakeSettingsStore()


@pytest.fixture
def chat_service():
    return FakeChatService()


@pytest.fixture
def app_dirs(tmp_path):
    return AppDirectories.under(tmp_path / "app")


@pytest.fixture
def make_archive():
    """Factory fixture building an archive blob from plain data.

    ``files`` maps archive paths (e.g. ``upload/a.txt``) to contents.
    """

    def _make(
        settings: dict | None = None,
        chats: dict | None = None,
        files: dict[str, bytes] | None = None,
    ) -> bytes:
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w") as zf:
            if settings is not None:
                zf.writestr("settings.json", json.dumps(settings))
            if chats is not None:
                zf.writestr("chats.json", json.dumps(chats))
            for name, data in (files or {}).items():
                zf.writestr(name, data)
        return buffer.getvalue()

    return _make


@pytest.fixture
def mock_response():
    """Factory fixture for requests.Response mocks."""

    def _create(status_code: int = 200, content: bytes | str = b""):
        response = Mock()
        response.status_code = status_code
        response.content = (
            content.encode() if isinstance(content, str) else content
        )
        return response

    return _create
