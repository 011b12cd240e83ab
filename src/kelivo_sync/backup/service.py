"""Top-level backup and restore operations.

``BackupService`` sequences the snapshot builder, archive codec, WebDAV
client and restore planner into the operations exposed to callers:

1. ``backup_to_webdav`` -- snapshot, pack, ensure the collection, upload.
2. ``list_backups`` -- ensure the collection, then list it newest first.
3. ``restore_from_webdav`` / ``restore_from_local_file`` -- fetch or locate
   an archive and hand it to the planner.
4. ``delete_backup`` -- remove one remote archive.
5. ``export_to_file`` -- write an archive to a local directory.

Every public method is a coroutine; blocking work runs in a worker thread
via ``run_sync``.  Operations against the same remote collection are
serialised, and temporary files are scoped to one operation.
"""

from __future__ import annotations

import logging
import tempfile
from pathlib import Path

from ..core.async_utils import remote_operation, run_sync
from ..core.errors import BackupNotFound
from ..core.webdav import WebDavClient
from .models import (
    BackupFileItem,
    RestoreMode,
    RestoreOptions,
    RestoreReport,
    WebDavConfig,
)
from .planner import RestorePlanner
from .snapshot import SnapshotBuilder, backup_file_name
from .stores import AppDirectories, ChatService, SettingsStore

logger = logging.getLogger(__name__)


class BackupService:
    """Backup/restore orchestration over the given collaborators.

    Args:
        settings: Settings store to snapshot and restore into.
        chats: Chat service to snapshot and restore into.
        directories: The upload/images/avatars roots.
        client: WebDAV client (a default one is created if omitted).
        temp_root: Parent directory for temporary files (system temp if
            None).
    """

    def __init__(
        self,
        settings: SettingsStore,
        chats: ChatService,
        directories: AppDirectories,
        client: WebDavClient | None = None,
        temp_root: Path | None = None,
    ) -> None:
        self.client = client or WebDavClient()
        self.temp_root = temp_root
        self.builder = SnapshotBuilder(settings, chats, directories)
        self.planner = RestorePlanner(
            settings, chats, directories, temp_root=temp_root
        )

    # ------------------------------------------------------------------
    # Remote operations
    # ------------------------------------------------------------------

    async def test_webdav(self, cfg: WebDavConfig) -> None:
        """Check that the collection is reachable with the given credentials.

        Raises:
            AuthError: On HTTP 401.
            TransportError: On any other failure status.
        """
        await run_sync(self.client.test_connection, cfg)

    async def backup_to_webdav(self, cfg: WebDavConfig) -> BackupFileItem:
        """Build a fresh archive and upload it to the remote collection.

        Returns:
            The uploaded archive as a listing item.
        """
        async with remote_operation(cfg.collection_url):
            data = await run_sync(self.builder.build_archive, cfg)
            name = backup_file_name()
            await run_sync(self.client.ensure_collection, cfg)
            href = await run_sync(self.client.upload, cfg, data, name)
        logger.info("Uploaded backup %s (%d bytes)", name, len(data))
        return BackupFileItem(href=href, display_name=name, size=len(data))

    async def list_backups(self, cfg: WebDavConfig) -> list[BackupFileItem]:
        """List archives in the remote collection, newest first.

        The collection is created first if it does not exist.
        """
        await run_sync(self.client.ensure_collection, cfg)
        return await run_sync(self.client.list_collection, cfg)

    async def restore_from_webdav(
        self,
        cfg: WebDavConfig,
        item: BackupFileItem,
        options: RestoreOptions | None = None,
        mode: RestoreMode = RestoreMode.OVERWRITE,
    ) -> RestoreReport:
        """Download *item* and restore it.

        Args:
            cfg: WebDAV config (its toggles gate chats and files).
            item: Archive to restore, as returned by ``list_backups``.
            options: Per-category actions.  When omitted, *mode* is mapped
                onto all four categories.
            mode: Legacy restore mode, used only without *options*.

        Raises:
            AuthError, TransportError: If the download fails.
            ArchiveCorrupt: If the archive cannot be unpacked.
        """
        opts = options or RestoreOptions.from_mode(mode)
        async with remote_operation(cfg.collection_url):
            data = await run_sync(self.client.download, cfg, item)
            return await run_sync(
                self._restore_downloaded, data, item.display_name, cfg, opts
            )

    async def delete_backup(
        self, cfg: WebDavConfig, item: BackupFileItem
    ) -> None:
        async with remote_operation(cfg.collection_url):
            await run_sync(self.client.delete, cfg, item)
        logger.info("Deleted backup %s", item.display_name)

    # ------------------------------------------------------------------
    # Local operations
    # ------------------------------------------------------------------

    async def export_to_file(self, cfg: WebDavConfig, dest_dir: Path) -> Path:
        """Write a fresh archive into *dest_dir* and return its path."""
        data = await run_sync(self.builder.build_archive, cfg)
        return await run_sync(self._write_export, data, dest_dir)

    async def restore_from_local_file(
        self,
        path: Path,
        cfg: WebDavConfig,
        options: RestoreOptions | None = None,
        mode: RestoreMode = RestoreMode.OVERWRITE,
    ) -> RestoreReport:
        """Restore from an archive on the local filesystem.

        Raises:
            BackupNotFound: If *path* is not an existing file.
            ArchiveCorrupt: If the archive cannot be unpacked.
        """
        if not path.is_file():
            raise BackupNotFound(f"Backup file not found: {path}")
        opts = options or RestoreOptions.from_mode(mode)
        async with remote_operation(cfg.collection_url):
            return await run_sync(
                self.planner.restore_archive, path, cfg, opts, path.name
            )

    # ------------------------------------------------------------------
    # Blocking helpers
    # ------------------------------------------------------------------

    def _restore_downloaded(
        self,
        data: bytes,
        name: str,
        cfg: WebDavConfig,
        options: RestoreOptions,
    ) -> RestoreReport:
        """Spool a downloaded archive to disk and restore from it."""
        if self.temp_root is not None:
            self.temp_root.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(
            prefix="kelivo_download_",
            dir=self.temp_root,
            ignore_cleanup_errors=True,
        ) as tmp:
            archive = Path(tmp) / "backup.zip"
            archive.write_bytes(data)
            return self.planner.restore_archive(archive, cfg, options, name)

    @staticmethod
    def _write_export(data: bytes, dest_dir: Path) -> Path:
        dest_dir.mkdir(parents=True, exist_ok=True)
        target = dest_dir / backup_file_name()
        target.write_bytes(data)
        logger.info("Exported backup to %s", target)
        return target
