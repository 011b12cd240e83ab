"""Runtime configuration for the backup MCP server.

Reads WebDAV connection settings and the local data directory from CLI
args, environment variables, .env files, and YAML config file fallbacks.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    KELIVO_WEBDAV_URL: WebDAV server URL (required)
    KELIVO_WEBDAV_USERNAME: Basic-auth user (optional; empty disables auth)
    KELIVO_WEBDAV_PASSWORD: Basic-auth password (optional)
    KELIVO_WEBDAV_PATH: Collection path for backups (default: kelivo_backups)
    KELIVO_INCLUDE_CHATS: Include chats in backups/restores (default: true)
    KELIVO_INCLUDE_FILES: Include upload/images/avatars (default: true)
    KELIVO_DATA_DIR: Local data root (default: ~/.kelivo)
    KELIVO_INSECURE: Skip SSL verification (optional, default: false)
    KELIVO_DEBUG: Enable debug logging (optional, default: false)
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlparse

from .backup.models import DEFAULT_COLLECTION_PATH, WebDavConfig

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = "~/.kelivo"


@dataclass
class Config:
    webdav_url: str
    username: str = ""
    password: str = ""
    path: str = DEFAULT_COLLECTION_PATH
    include_chats: bool = True
    include_files: bool = True
    data_dir: str = DEFAULT_DATA_DIR
    insecure: bool = False
    debug: bool = False

    @property
    def data_root(self) -> Path:
        return Path(self.data_dir).expanduser()

    def webdav(self) -> WebDavConfig:
        """Build the WebDAV value object used by the backup service."""
        return WebDavConfig(
            url=self.webdav_url,
            username=self.username,
            password=self.password,
            path=self.path,
            include_chats=self.include_chats,
            include_files=self.include_files,
        )


def validate_config(config: Config) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Args:
        config: Config instance to validate.

    Raises:
        ValueError: If the URL format is invalid or a password is set
            without a username.
    """
    config.webdav_url = config.webdav_url.strip()

    if not config.webdav_url.startswith(("http://", "https://")):
        raise ValueError(
            f"Invalid WebDAV URL '{config.webdav_url}': must start with http:// or https://"
        )

    parsed = urlparse(config.webdav_url)
    if not parsed.hostname:
        raise ValueError(
            f"Invalid WebDAV URL '{config.webdav_url}': URL must include a hostname"
        )

    config.webdav_url = config.webdav_url.rstrip("/")

    if config.password and not config.username.strip():
        raise ValueError(
            "WebDAV password is set but username is empty. "
            "Set KELIVO_WEBDAV_USERNAME environment variable."
        )

    if not config.path.strip("/ "):
        config.path = DEFAULT_COLLECTION_PATH

    if config.insecure:
        logger.warning(
            "WARNING: SSL verification disabled (insecure=True). Use only for development."
        )


def _get_bool_env(key: str) -> bool | None:
    """Return True/False from env var, or None if unset."""
    val = os.getenv(key)
    if val is None:
        return None
    return val.lower() in ("true", "1", "yes", "on")


def _resolve_bool(
    cli_value: bool, env_key: str, fb: dict, fb_key: str, default: bool
) -> bool:
    """Resolve a flag: a set CLI flag > env var > YAML > default."""
    if cli_value:
        return True
    env_value = _get_bool_env(env_key)
    if env_value is not None:
        return env_value
    return bool(fb.get(fb_key, default))


def load_config(
    url: str | None = None,
    username: str | None = None,
    password: str | None = None,
    path: str | None = None,
    data_dir: str | None = None,
    insecure: bool = False,
    debug: bool = False,
    yaml_fallbacks: dict | None = None,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > yaml_fallbacks > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        url: Override WebDAV URL.
        username: Override WebDAV username.
        password: Override WebDAV password.
        path: Override the remote collection path.
        data_dir: Override the local data root.
        insecure: Skip SSL verification (CLI flag).
        debug: Enable debug logging (CLI flag).
        yaml_fallbacks: Flat dict of values from the YAML config file.
            Used as fallback when CLI arg and env var are both unset.

    Returns:
        Validated Config instance.

    Raises:
        ValueError: If the WebDAV URL is missing after checking all sources,
            or any value is invalid.
    """
    fb = yaml_fallbacks or {}

    webdav_url = url or os.getenv("KELIVO_WEBDAV_URL") or fb.get("url")
    if not webdav_url:
        raise ValueError(
            "WebDAV URL not found. Set KELIVO_WEBDAV_URL environment variable, "
            "pass --url CLI argument, or add 'webdav.url' to config.yml."
        )

    final_username = (
        username or os.getenv("KELIVO_WEBDAV_USERNAME") or fb.get("username") or ""
    )
    final_password = (
        password or os.getenv("KELIVO_WEBDAV_PASSWORD") or fb.get("password") or ""
    )
    final_path = (
        path
        or os.getenv("KELIVO_WEBDAV_PATH")
        or fb.get("path")
        or DEFAULT_COLLECTION_PATH
    )
    final_data_dir = (
        data_dir
        or os.getenv("KELIVO_DATA_DIR")
        or fb.get("data_dir")
        or DEFAULT_DATA_DIR
    )

    # Export toggles default to on and have no CLI flag.
    include_chats = _get_bool_env("KELIVO_INCLUDE_CHATS")
    if include_chats is None:
        include_chats = bool(fb.get("include_chats", True))
    include_files = _get_bool_env("KELIVO_INCLUDE_FILES")
    if include_files is None:
        include_files = bool(fb.get("include_files", True))

    config = Config(
        webdav_url=webdav_url,
        username=final_username.strip(),
        password=final_password,
        path=final_path.strip(),
        include_chats=include_chats,
        include_files=include_files,
        data_dir=str(final_data_dir),
        insecure=_resolve_bool(insecure, "KELIVO_INSECURE", fb, "insecure", False),
        debug=_resolve_bool(debug, "KELIVO_DEBUG", fb, "debug", False),
    )

    validate_config(config)

    return config
