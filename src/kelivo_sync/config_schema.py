"""Unified configuration schema for kelivo_sync.

Defines Pydantic models for the YAML config structure with dedicated
sections for the WebDAV remote, local storage and logging, plus adapters
onto the runtime ``Config`` dataclass.

Example ``config.yml``::

    webdav:
      url: https://dav.example.com/remote.php/webdav
      username: me
      password: ${KELIVO_WEBDAV_PASSWORD}
      path: kelivo_backups
      include_files: false
    storage:
      data_dir: ~/.kelivo
    logging:
      level: INFO

Usage:
    from kelivo_sync.config_schema import build_config, to_runtime_config

    raw = load_hierarchical_config()
    unified = build_config(raw)
    config = to_runtime_config(unified, cli_overrides={"url": "https://..."})
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from .backup.models import DEFAULT_COLLECTION_PATH

if TYPE_CHECKING:
    from .config import Config


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class WebDavSection(BaseModel):
    """WebDAV remote settings.

    All connection fields are optional to support zero-config: env vars and
    CLI args can supply them at runtime instead.
    """

    url: str | None = Field(default=None, description="WebDAV server URL")
    username: str | None = Field(default=None, description="WebDAV username")
    password: str | None = Field(default=None, description="WebDAV password")
    path: str = Field(
        default=DEFAULT_COLLECTION_PATH,
        description="Collection path holding the backups",
    )
    include_chats: bool = Field(
        default=True, description="Back up and restore chats"
    )
    include_files: bool = Field(
        default=True, description="Back up and restore user files"
    )
    insecure: bool = Field(
        default=False,
        description="Disable SSL verification (development only)",
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    model_config = {"frozen": True}


class StorageConfig(BaseModel):
    """Local storage layout.

    Attributes:
        data_dir: Root holding ``settings.json``, ``chats.json`` and the
            ``upload``/``images``/``avatars`` trees.
        temp_dir: Parent for staging directories (system temp if unset).
    """

    data_dir: str | None = Field(default=None, description="Local data root")
    temp_dir: str | None = Field(
        default=None, description="Directory for temporary files"
    )

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Every section has defaults, so ``UnifiedConfig()`` is always valid.
    """

    webdav: WebDavSection = Field(default_factory=WebDavSection)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Args:
        raw_data: Merged configuration dictionary.

    Returns:
        Validated ``UnifiedConfig`` instance.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)


# ---------------------------------------------------------------------------
# Adapters
# ---------------------------------------------------------------------------


def yaml_fallbacks(unified: UnifiedConfig) -> dict[str, Any]:
    """Flatten the YAML values ``load_config()`` accepts as fallbacks.

    Unset (``None``) values are omitted.
    """
    values = unified.webdav.model_dump()
    values["data_dir"] = unified.storage.data_dir
    return {k: v for k, v in values.items() if v is not None}


def to_runtime_config(
    unified: UnifiedConfig,
    cli_overrides: dict | None = None,
) -> Config:
    """Convert a ``UnifiedConfig`` into the runtime ``Config`` dataclass,
    applying CLI overrides on top.

    CLI overrides dict keys: url, username, password, path, data_dir,
    insecure, debug.

    Returns:
        ``Config`` instance (NOT validated; run ``validate_config()``).
    """
    from .config import DEFAULT_DATA_DIR, Config

    overrides = cli_overrides or {}
    webdav = unified.webdav

    return Config(
        webdav_url=overrides.get("url") or webdav.url or "",
        username=overrides.get("username") or webdav.username or "",
        password=overrides.get("password") or webdav.password or "",
        path=overrides.get("path") or webdav.path,
        include_chats=webdav.include_chats,
        include_files=webdav.include_files,
        data_dir=overrides.get("data_dir")
        or unified.storage.data_dir
        or DEFAULT_DATA_DIR,
        insecure=overrides.get("insecure", False) or webdav.insecure,
        debug=overrides.get("debug", False) or webdav.debug,
    )
