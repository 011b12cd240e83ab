"""Exception taxonomy for backup transport and archive handling.

All terminal failures surfaced to callers derive from ``BackupError``:

- ``AuthError``: the WebDAV server answered 401.
- ``TransportError``: any other unexpected HTTP status (carries the code).
- ``ArchiveCorrupt``: the backup container could not be parsed.
- ``BackupNotFound``: a local backup file does not exist.
"""

from __future__ import annotations


class BackupError(Exception):
    """Base class for backup/restore failures."""


class AuthError(BackupError):
    """The remote rejected the configured credentials (HTTP 401)."""

    def __init__(self, url: str) -> None:
        super().__init__(f"Unauthorized at {url}")
        self.url = url
        self.status = 401


class TransportError(BackupError):
    """A WebDAV request returned a status outside the accepted range."""

    def __init__(self, operation: str, url: str, status: int) -> None:
        super().__init__(f"{operation} failed at {url}: {status}")
        self.operation = operation
        self.url = url
        self.status = status


class ArchiveCorrupt(BackupError):
    """The backup archive cannot be decoded."""


class BackupNotFound(BackupError):
    """A local backup file is missing."""
