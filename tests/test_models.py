"""Tests for the backup data contracts."""

import pytest
from pydantic import ValidationError

from kelivo_sync.backup.models import (
    DEFAULT_COLLECTION_PATH,
    Category,
    CategoryResult,
    RestoreAction,
    RestoreMode,
    RestoreOptions,
    RestoreReport,
    WebDavConfig,
)


class TestWebDavConfig:
    def test_collection_url_normalised(self):
        cfg = WebDavConfig(url="https://dav.example.com//", path="/a//b/ ")
        assert cfg.collection_url == "https://dav.example.com/a/b/"
        assert cfg.file_url("x.zip") == "https://dav.example.com/a/b/x.zip"

    def test_empty_path_uses_base(self):
        cfg = WebDavConfig(url="https://dav.example.com", path="")
        assert cfg.collection_url == "https://dav.example.com/"

    def test_json_round_trip_uses_camel_case(self):
        cfg = WebDavConfig(
            url="https://dav.example.com",
            username="alice",
            password="pw",
            include_files=False,
        )
        data = cfg.to_json()
        assert data["includeFiles"] is False
        assert WebDavConfig.from_json(data) == cfg

    def test_from_json_defaults(self):
        cfg = WebDavConfig.from_json(
            {"url": " https://x ", "path": "  ", "includeChats": None}
        )
        assert cfg.url == "https://x"
        assert cfg.path == DEFAULT_COLLECTION_PATH
        assert cfg.include_chats is True
        assert cfg.include_files is True

    @pytest.mark.parametrize("text", ["not json", "[1, 2]", ""])
    def test_malformed_string_yields_defaults(self, text):
        assert WebDavConfig.from_json_string(text) == WebDavConfig()

    def test_frozen(self):
        cfg = WebDavConfig()
        with pytest.raises(ValidationError):
            cfg.url = "https://other"


class TestRestoreOptions:
    def test_default_is_merge_everywhere(self):
        options = RestoreOptions()
        assert options.settings_action == RestoreAction.MERGE
        assert options.files_action == RestoreAction.MERGE
        assert options.is_full_overwrite is False

    def test_from_mode(self):
        assert RestoreOptions.from_mode(RestoreMode.OVERWRITE).is_full_overwrite
        merge = RestoreOptions.from_mode(RestoreMode.MERGE)
        assert merge == RestoreOptions()

    def test_partial_overwrite_is_not_full(self):
        options = RestoreOptions(
            settings_action=RestoreAction.OVERWRITE,
            providers_action=RestoreAction.OVERWRITE,
            chats_action=RestoreAction.OVERWRITE,
            files_action=RestoreAction.IGNORE,
        )
        assert options.is_full_overwrite is False

    def test_actions_parse_from_strings(self):
        options = RestoreOptions(chats_action="ignore")
        assert options.chats_action == RestoreAction.IGNORE


class TestRestoreReport:
    def _report(self) -> RestoreReport:
        return RestoreReport(
            source="b.zip",
            categories=[
                CategoryResult(
                    category=Category.SETTINGS, action=RestoreAction.MERGE
                ),
                CategoryResult(
                    category=Category.CHATS,
                    action=RestoreAction.IGNORE,
                    applied=False,
                ),
                CategoryResult(
                    category=Category.FILES,
                    action=RestoreAction.OVERWRITE,
                    success=False,
                    error="disk full",
                ),
            ],
            warnings=["w1"],
            started_at="2025-01-19T00:00:00+00:00",
        )

    def test_errors_and_skipped(self):
        report = self._report()
        assert [r.category for r in report.errors] == [Category.FILES]
        assert [r.category for r in report.skipped] == [Category.CHATS]

    def test_get(self):
        report = self._report()
        assert report.get(Category.FILES).error == "disk full"
        assert report.get(Category.PROVIDERS) is None

    def test_summary(self):
        summary = self._report().summary()
        assert summary.splitlines()[0] == "Restore from 'b.zip'"
        assert "failed" in summary
        assert "skipped" in summary
        assert summary.endswith("Warnings: 1")
