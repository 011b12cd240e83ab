"""Tests for restore report and backup listing formatting.

Covers:
- format_restore_report with ok, failed and skipped categories
- format_backup_list sizes, dates and the empty listing
- report_to_json structure and completeness
"""

from __future__ import annotations

from datetime import datetime

from kelivo_sync.backup.models import (
    BackupFileItem,
    Category,
    CategoryResult,
    RestoreAction,
    RestoreReport,
)
from kelivo_sync.backup.reporter import (
    backup_item_to_json,
    format_backup_list,
    format_restore_report,
    report_to_json,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_report(
    categories: list[CategoryResult] | None = None,
    warnings: list[str] | None = None,
    full_overwrite: bool = False,
) -> RestoreReport:
    return RestoreReport(
        source="kelivo_backup_2025-01-19T12-34-56.123456.zip",
        full_overwrite=full_overwrite,
        categories=categories or [],
        warnings=warnings or [],
        started_at="2025-01-19T12:40:00+00:00",
        completed_at="2025-01-19T12:40:02+00:00",
    )


def _mixed() -> list[CategoryResult]:
    return [
        CategoryResult(
            category=Category.SETTINGS,
            action=RestoreAction.MERGE,
            counts={"written": 3, "kept": 1},
        ),
        CategoryResult(
            category=Category.PROVIDERS,
            action=RestoreAction.IGNORE,
            applied=False,
        ),
        CategoryResult(
            category=Category.CHATS,
            action=RestoreAction.OVERWRITE,
            success=False,
            error="database is locked",
        ),
        CategoryResult(
            category=Category.FILES,
            action=RestoreAction.MERGE,
            counts={"files_copied": 2, "files_failed": 1},
        ),
    ]


# ---------------------------------------------------------------------------
# format_restore_report
# ---------------------------------------------------------------------------


class TestFormatRestoreReport:
    def test_mixed_results(self):
        text = format_restore_report(
            _make_report(_mixed(), warnings=["/data/upload/x.png: denied"])
        )

        assert text.startswith(
            "Restore report for 'kelivo_backup_2025-01-19T12-34-56.123456.zip'"
        )
        assert "FULL OVERWRITE" not in text
        assert "settings   merge      ok" in text
        assert "providers  ignore     skipped" in text
        assert "chats      overwrite  FAILED" in text
        assert "  written: 3" in text
        assert "  files copied: 2" in text
        assert "Errors:\n  chats: database is locked" in text
        assert "Warnings (1):\n  /data/upload/x.png: denied" in text

    def test_full_overwrite_header(self):
        text = format_restore_report(_make_report(full_overwrite=True))
        assert text.splitlines()[0].endswith("(FULL OVERWRITE)")

    def test_clean_report_has_no_sections(self):
        text = format_restore_report(_make_report(_mixed()[:1]))
        assert "Errors:" not in text
        assert "Warnings" not in text
        assert not text.endswith("\n")


# ---------------------------------------------------------------------------
# format_backup_list
# ---------------------------------------------------------------------------


class TestFormatBackupList:
    def test_empty(self):
        assert format_backup_list([]) == "No backups found."

    def test_lines(self):
        items = [
            BackupFileItem(
                href="https://x/a.zip",
                display_name="a.zip",
                size=2048,
                last_modified=datetime(2025, 1, 19, 12, 34, 56),
            ),
            BackupFileItem(href="https://x/b.zip", display_name="b.zip", size=10),
        ]
        lines = format_backup_list(items).splitlines()

        assert lines[0] == "2 backup(s):"
        assert "a.zip" in lines[1]
        assert "2.0 KB" in lines[1]
        assert "2025-01-19 12:34:56" in lines[1]
        assert "10 B" in lines[2]
        assert "unknown date" in lines[2]

    def test_large_sizes(self):
        item = BackupFileItem(
            href="https://x/c.zip", display_name="c.zip", size=3 * 1024**3
        )
        assert "3.0 GB" in format_backup_list([item])


# ---------------------------------------------------------------------------
# JSON
# ---------------------------------------------------------------------------


class TestReportToJson:
    def test_structure(self):
        data = report_to_json(_make_report(_mixed(), warnings=["w"]))

        assert data["source"].startswith("kelivo_backup_")
        assert data["full_overwrite"] is False
        assert data["errors"] == 1
        assert data["warnings"] == ["w"]
        assert [c["category"] for c in data["categories"]] == [
            "settings",
            "providers",
            "chats",
            "files",
        ]
        chats = data["categories"][2]
        assert chats["success"] is False
        assert chats["error"] == "database is locked"
        assert "error" not in data["categories"][0]
        assert data["categories"][3]["counts"] == {
            "files_copied": 2,
            "files_failed": 1,
        }

    def test_backup_item(self):
        item = BackupFileItem(
            href="https://x/a.zip",
            display_name="a.zip",
            size=5,
            last_modified=datetime(2025, 1, 19, 12, 0, 0),
        )
        assert backup_item_to_json(item) == {
            "href": "https://x/a.zip",
            "display_name": "a.zip",
            "size": 5,
            "last_modified": "2025-01-19T12:00:00",
        }
        no_date = item.model_copy(update={"last_modified": None})
        assert backup_item_to_json(no_date)["last_modified"] is None
