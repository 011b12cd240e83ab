"""Tests for kelivo_sync.mcp.lifespan: server startup/shutdown lifecycle.

Tests the server_lifespan() async context manager which:
- Loads config from env vars (with optional CLI overrides and YAML fallbacks)
- Opens the local stores and builds the BackupService
- Probes the WebDAV collection without failing startup
- Fails fast on config errors
- Prints status messages to stderr
"""

from contextlib import ExitStack
from unittest.mock import MagicMock, patch

import pytest

from kelivo_sync.backup.stores import JsonChatStore, JsonSettingsStore
from kelivo_sync.config import Config
from kelivo_sync.core.errors import AuthError
from kelivo_sync.mcp.lifespan import build_context, server_lifespan

# -------------------------------------------------------------------------
# Helpers
# -------------------------------------------------------------------------


def _make_config(tmp_path, **overrides):
    defaults = {
        "webdav_url": "https://dav.example.com/remote.php/webdav",
        "username": "alice",
        "password": "secret",
        "data_dir": str(tmp_path / "data"),
    }
    defaults.update(overrides)
    return Config(**defaults)


def _patches(stack: ExitStack, config=None, load_error=None, client=None):
    """Enter the standard lifespan patches; return the load_config mock."""
    stack.enter_context(patch("kelivo_sync.mcp.lifespan.load_dotenv"))
    stack.enter_context(
        patch(
            "kelivo_sync.mcp.lifespan.discover_config_files", return_value=[]
        )
    )
    stack.enter_context(patch("kelivo_sync.mcp.lifespan._stderr_print"))
    stack.enter_context(
        patch(
            "kelivo_sync.mcp.lifespan.WebDavClient",
            return_value=client or MagicMock(),
        )
    )
    return stack.enter_context(
        patch(
            "kelivo_sync.mcp.lifespan.load_config",
            return_value=config,
            side_effect=load_error,
        )
    )


# -------------------------------------------------------------------------
# build_context()
# -------------------------------------------------------------------------


class TestBuildContext:
    def test_wires_stores_under_data_dir(self, tmp_path):
        config = _make_config(tmp_path, path="phone/backups")

        ctx = build_context(config)

        root = tmp_path / "data"
        assert root.is_dir()
        assert ctx.export_dir == root / "exports"
        assert isinstance(ctx.service.planner.settings, JsonSettingsStore)
        assert isinstance(ctx.service.planner.chats, JsonChatStore)
        assert ctx.service.planner.directories.upload == root / "upload"
        assert ctx.webdav.collection_url == (
            "https://dav.example.com/remote.php/webdav/phone/backups/"
        )

    def test_insecure_reaches_client(self, tmp_path):
        ctx = build_context(_make_config(tmp_path, insecure=True))
        assert ctx.service.client.insecure is True

    def test_temp_dir(self, tmp_path):
        ctx = build_context(_make_config(tmp_path), str(tmp_path / "scratch"))
        assert ctx.service.temp_root == tmp_path / "scratch"


# -------------------------------------------------------------------------
# server_lifespan()
# -------------------------------------------------------------------------


class TestServerLifespan:
    async def test_successful_startup(self, tmp_path):
        client = MagicMock()
        config = _make_config(tmp_path)

        with ExitStack() as stack:
            _patches(stack, config=config, client=client)
            async with server_lifespan() as ctx:
                context = ctx["context"]
                assert context.config is config
                assert context.service.client is client
                client.test_connection.assert_called_once_with(context.webdav)

    async def test_overrides_forwarded_to_load_config(self, tmp_path):
        overrides = {
            "url": "https://cli.example.com",
            "username": "u",
            "password": "p",
            "path": "x",
            "data_dir": str(tmp_path / "cli"),
            "insecure": True,
        }

        with ExitStack() as stack:
            mock_load = _patches(stack, config=_make_config(tmp_path))
            async with server_lifespan(config_overrides=overrides):
                pass

        kwargs = mock_load.call_args[1]
        assert kwargs["url"] == "https://cli.example.com"
        assert kwargs["data_dir"] == str(tmp_path / "cli")
        assert kwargs["insecure"] is True
        assert kwargs["debug"] is False
        assert kwargs["yaml_fallbacks"] is None

    async def test_probe_failure_is_not_fatal(self, tmp_path):
        client = MagicMock()
        client.test_connection.side_effect = AuthError("https://dav/")

        with ExitStack() as stack:
            _patches(stack, config=_make_config(tmp_path), client=client)
            async with server_lifespan() as ctx:
                assert ctx["context"] is not None

    async def test_network_failure_is_not_fatal(self, tmp_path):
        client = MagicMock()
        client.test_connection.side_effect = OSError("connection refused")

        with ExitStack() as stack:
            _patches(stack, config=_make_config(tmp_path), client=client)
            async with server_lifespan() as ctx:
                assert "context" in ctx

    async def test_config_error_raises_runtime_error(self):
        with ExitStack() as stack:
            _patches(stack, load_error=ValueError("WebDAV URL not found"))
            with pytest.raises(RuntimeError, match="Configuration error"):
                async with server_lifespan():
                    pass

    async def test_yaml_fallbacks_used(self, tmp_path):
        config_file = tmp_path / "config.yml"
        config_file.write_text("webdav: {}\n")

        with ExitStack() as stack:
            mock_load = _patches(stack, config=_make_config(tmp_path))
            stack.enter_context(
                patch(
                    "kelivo_sync.mcp.lifespan.discover_config_files",
                    return_value=[config_file],
                )
            )
            stack.enter_context(
                patch(
                    "kelivo_sync.mcp.lifespan.load_hierarchical_config",
                    return_value={
                        "webdav": {"url": "https://yaml.example.com"},
                        "storage": {"temp_dir": str(tmp_path / "scratch")},
                    },
                )
            )
            async with server_lifespan() as ctx:
                assert ctx["context"].service.temp_root == tmp_path / "scratch"

        fallbacks = mock_load.call_args[1]["yaml_fallbacks"]
        assert fallbacks["url"] == "https://yaml.example.com"
