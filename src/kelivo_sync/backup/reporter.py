"""Restore report and backup listing formatting.

Provides human-readable and machine-readable output:

- ``format_restore_report`` -- full post-restore summary.
- ``format_backup_list`` -- remote backup listing as a table.
- ``report_to_json`` -- structured dict for MCP tool output.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import BackupFileItem, CategoryResult, RestoreReport


def _format_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    value = size / 1024
    for unit in ("KB", "MB"):
        if value < 1024:
            return f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} GB"


def _state(result: CategoryResult) -> str:
    if not result.applied:
        return "skipped"
    return "ok" if result.success else "FAILED"


# ------------------------------------------------------------------
# Human-readable report
# ------------------------------------------------------------------


def format_restore_report(report: RestoreReport) -> str:
    """Format a complete restore report as human-readable text.

    Counters are listed under each applied category.  Warnings are listed
    individually; errors are repeated in their own section.

    Args:
        report: The completed restore report.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []

    header = f"Restore report for '{report.source}'"
    if report.full_overwrite:
        header += " (FULL OVERWRITE)"
    lines.append(header)
    lines.append(f"Started: {report.started_at}")
    if report.completed_at:
        lines.append(f"Completed: {report.completed_at}")
    lines.append("")

    for result in report.categories:
        lines.append(
            f"{result.category.value:<10} {result.action.value:<10} "
            f"{_state(result)}"
        )
        for name, count in sorted(result.counts.items()):
            lines.append(f"  {name.replace('_', ' ')}: {count}")
    lines.append("")

    if report.errors:
        lines.append("Errors:")
        for result in report.errors:
            lines.append(f"  {result.category.value}: {result.error}")
        lines.append("")

    if report.warnings:
        lines.append(f"Warnings ({len(report.warnings)}):")
        for warning in report.warnings:
            lines.append(f"  {warning}")
        lines.append("")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# Backup listing
# ------------------------------------------------------------------


def format_backup_list(items: list[BackupFileItem]) -> str:
    """Format a remote backup listing, one archive per line."""
    if not items:
        return "No backups found."
    lines = [f"{len(items)} backup(s):"]
    for item in items:
        stamp = (
            item.last_modified.isoformat(sep=" ", timespec="seconds")
            if item.last_modified
            else "unknown date"
        )
        lines.append(
            f"  {item.display_name}  {_format_size(item.size):>10}  {stamp}"
        )
    return "\n".join(lines)


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def report_to_json(report: RestoreReport) -> dict:
    """Convert a restore report to a structured dict for JSON serialisation.

    Suitable for MCP ``structuredContent`` output.

    Args:
        report: The restore report.

    Returns:
        Dict with run info, per-category results and warnings.
    """
    categories = []
    for result in report.categories:
        entry: dict = {
            "category": result.category.value,
            "action": result.action.value,
            "applied": result.applied,
            "success": result.success,
            "counts": dict(result.counts),
        }
        if result.error:
            entry["error"] = result.error
        categories.append(entry)

    return {
        "source": report.source,
        "full_overwrite": report.full_overwrite,
        "started_at": report.started_at,
        "completed_at": report.completed_at,
        "errors": len(report.errors),
        "categories": categories,
        "warnings": list(report.warnings),
    }


def backup_item_to_json(item: BackupFileItem) -> dict:
    return {
        "href": item.href,
        "display_name": item.display_name,
        "size": item.size,
        "last_modified": (
            item.last_modified.isoformat() if item.last_modified else None
        ),
    }
