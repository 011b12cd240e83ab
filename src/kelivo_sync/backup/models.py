"""Pydantic models for the backup/restore engine.

Defines the data contracts shared across all backup modules:

- ``WebDavConfig``: Remote endpoint plus export toggles.
- ``RestoreAction`` / ``RestoreMode``: Per-category and legacy restore modes.
- ``RestoreOptions``: One ``RestoreAction`` per data category.
- ``BackupFileItem``: One entry of a remote backup listing.
- ``CategoryResult`` / ``RestoreReport``: Outcome of a restore run.

All models are frozen (immutable) for safety.
"""

from __future__ import annotations

import json
from datetime import datetime
from enum import Enum

from pydantic import BaseModel

DEFAULT_COLLECTION_PATH = "kelivo_backups"


class RestoreAction(str, Enum):
    """What to do with one data category during a restore."""

    IGNORE = "ignore"
    MERGE = "merge"
    OVERWRITE = "overwrite"


class RestoreMode(str, Enum):
    """Legacy two-mode restore switch."""

    OVERWRITE = "overwrite"
    MERGE = "merge"


class Category(str, Enum):
    """Data categories carried by a backup archive."""

    SETTINGS = "settings"
    PROVIDERS = "providers"
    CHATS = "chats"
    FILES = "files"


class WebDavConfig(BaseModel):
    """WebDAV endpoint and export toggles.

    Attributes:
        url: Base URL of the WebDAV server.
        username: Basic-auth user; empty disables the auth header.
        password: Basic-auth password.
        path: Collection path below ``url`` holding the backups.
        include_chats: Export/restore ``chats.json``.
        include_files: Export/restore the upload/images/avatars trees.
    """

    url: str = ""
    username: str = ""
    password: str = ""
    path: str = DEFAULT_COLLECTION_PATH
    include_chats: bool = True
    include_files: bool = True

    model_config = {"frozen": True}

    @property
    def path_segments(self) -> list[str]:
        """Non-empty segments of the collection path."""
        return [s.strip() for s in self.path.split("/") if s.strip()]

    @property
    def base_url(self) -> str:
        """Server URL without trailing slashes."""
        return self.url.strip().rstrip("/")

    @property
    def collection_url(self) -> str:
        """Collection URL, always ending in exactly one ``/``."""
        segments = self.path_segments
        if not segments:
            return f"{self.base_url}/"
        return f"{self.base_url}/{'/'.join(segments)}/"

    def file_url(self, name: str) -> str:
        """URL of the child resource *name* inside the collection."""
        return self.collection_url + name.lstrip("/")

    def to_json(self) -> dict:
        return {
            "url": self.url,
            "username": self.username,
            "password": self.password,
            "path": self.path,
            "includeChats": self.include_chats,
            "includeFiles": self.include_files,
        }

    @classmethod
    def from_json(cls, data: dict) -> WebDavConfig:
        """Build from the persisted camelCase form, applying defaults."""
        path = (data.get("path") or "").strip()
        include_chats = data.get("includeChats")
        include_files = data.get("includeFiles")
        return cls(
            url=(data.get("url") or "").strip(),
            username=(data.get("username") or "").strip(),
            password=data.get("password") or "",
            path=path or DEFAULT_COLLECTION_PATH,
            include_chats=True if include_chats is None else include_chats,
            include_files=True if include_files is None else include_files,
        )

    @classmethod
    def from_json_string(cls, text: str) -> WebDavConfig:
        """Parse a JSON string; malformed input yields the defaults."""
        try:
            data = json.loads(text)
        except (TypeError, ValueError):
            return cls()
        if not isinstance(data, dict):
            return cls()
        return cls.from_json(data)

    def to_json_string(self) -> str:
        return json.dumps(self.to_json())


class RestoreOptions(BaseModel):
    """One restore action per data category. Defaults to merge everywhere."""

    settings_action: RestoreAction = RestoreAction.MERGE
    providers_action: RestoreAction = RestoreAction.MERGE
    chats_action: RestoreAction = RestoreAction.MERGE
    files_action: RestoreAction = RestoreAction.MERGE

    model_config = {"frozen": True}

    @property
    def is_full_overwrite(self) -> bool:
        """True when every category is set to overwrite (legacy mode)."""
        return all(
            action == RestoreAction.OVERWRITE
            for action in (
                self.settings_action,
                self.providers_action,
                self.chats_action,
                self.files_action,
            )
        )

    @classmethod
    def from_mode(cls, mode: RestoreMode) -> RestoreOptions:
        """Map the legacy two-mode switch onto all four categories."""
        action = (
            RestoreAction.OVERWRITE
            if mode == RestoreMode.OVERWRITE
            else RestoreAction.MERGE
        )
        return cls(
            settings_action=action,
            providers_action=action,
            chats_action=action,
            files_action=action,
        )

    @classmethod
    def full_overwrite(cls) -> RestoreOptions:
        return cls.from_mode(RestoreMode.OVERWRITE)


class BackupFileItem(BaseModel):
    """A backup archive found in the remote collection.

    Attributes:
        href: Absolute URL of the archive.
        display_name: File name shown to the user.
        size: Size in bytes (0 when the server omits it).
        last_modified: Server timestamp, or one recovered from the name.
    """

    href: str
    display_name: str
    size: int = 0
    last_modified: datetime | None = None

    model_config = {"frozen": True}


class CategoryResult(BaseModel):
    """Outcome of restoring one data category.

    Attributes:
        category: The data category.
        action: The action requested for it.
        applied: False when the phase was skipped (ignored or absent).
        success: False when the phase raised and was abandoned.
        error: Error message for a failed phase.
        counts: Free-form counters (keys written, messages added, ...).
    """

    category: Category
    action: RestoreAction
    applied: bool = True
    success: bool = True
    error: str | None = None
    counts: dict[str, int] = {}

    model_config = {"frozen": True}


class RestoreReport(BaseModel):
    """Aggregate report for one restore run.

    Attributes:
        source: Name of the archive restored from.
        full_overwrite: Whether the legacy all-overwrite path was taken.
        categories: Per-category results in execution order.
        warnings: Non-fatal problems (e.g. individual file copy failures).
        started_at: ISO 8601 timestamp when the restore started.
        completed_at: ISO 8601 timestamp when the restore completed.
    """

    source: str
    full_overwrite: bool = False
    categories: list[CategoryResult] = []
    warnings: list[str] = []
    started_at: str
    completed_at: str | None = None

    model_config = {"frozen": True}

    @property
    def errors(self) -> list[CategoryResult]:
        """Categories whose phase failed."""
        return [c for c in self.categories if not c.success]

    @property
    def skipped(self) -> list[CategoryResult]:
        """Categories that were not applied."""
        return [c for c in self.categories if not c.applied]

    def get(self, category: Category) -> CategoryResult | None:
        for result in self.categories:
            if result.category == category:
                return result
        return None

    def summary(self) -> str:
        """Format a short human-readable summary of the restore."""
        lines = [
            f"Restore from '{self.source}'"
            + (" (full overwrite)" if self.full_overwrite else ""),
        ]
        for result in self.categories:
            state = "skipped"
            if result.applied:
                state = "ok" if result.success else "failed"
            lines.append(
                f"  {result.category.value:<10} {result.action.value:<10} {state}"
            )
        lines.append(f"  Warnings: {len(self.warnings)}")
        return "\n".join(lines)
