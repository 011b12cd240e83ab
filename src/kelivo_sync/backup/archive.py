"""Zip archive packing and hardened unpacking.

``pack()`` builds a single zip from in-memory blobs and directory trees.
``unpack()`` extracts an archive into a staging directory.  Entry names are
normalised to forward slashes and every empty, ``.`` or ``..`` segment is
dropped, so a crafted archive can never write outside the staging directory.
"""

from __future__ import annotations

import io
import logging
import zipfile
import zlib
from pathlib import Path
from typing import Union

from ..core.errors import ArchiveCorrupt

logger = logging.getLogger(__name__)

ArchiveEntry = tuple[str, Union[bytes, Path]]


def normalize_entry_name(name: str) -> list[str]:
    """Split an archive entry name into safe path segments."""
    return [
        seg
        for seg in name.replace("\\", "/").split("/")
        if seg and seg not in (".", "..")
    ]


def iter_tree(root: Path) -> list[tuple[str, Path]]:
    """Return ``(posix_relative_path, file)`` for every regular file under *root*.

    Symlinks are not followed.  Results are sorted for stable archives.
    """
    if not root.is_dir():
        return []
    files = [
        p for p in root.rglob("*") if p.is_file() and not p.is_symlink()
    ]
    return sorted(
        (p.relative_to(root).as_posix(), p) for p in files
    )


def pack(entries: list[ArchiveEntry]) -> bytes:
    """Pack blobs and directory trees into one zip archive.

    Args:
        entries: Ordered ``(archive_path, payload)`` pairs.  A ``bytes``
            payload or a ``Path`` to a file becomes a single file.  A
            ``Path`` to a directory stores its files below
            ``archive_path/``; empty sub-directories are stored as
            directory entries.

    Returns:
        The encoded zip archive.
    """
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as zf:
        for archive_path, payload in entries:
            prefix = "/".join(normalize_entry_name(archive_path))
            if isinstance(payload, bytes):
                zf.writestr(prefix, payload)
                continue
            if payload.is_file():
                zf.writestr(prefix, payload.read_bytes())
                continue
            if not payload.is_dir():
                logger.debug("Skipping missing tree %s", payload)
                continue
            for rel, file in iter_tree(payload):
                zf.writestr(f"{prefix}/{rel}", file.read_bytes())
            for sub in sorted(p for p in payload.rglob("*") if p.is_dir()):
                if not any(sub.iterdir()):
                    rel = sub.relative_to(payload).as_posix()
                    zf.writestr(f"{prefix}/{rel}/", b"")
    return buffer.getvalue()


def unpack(blob: bytes | Path, dest: Path) -> Path:
    """Extract an archive into *dest* (created if missing).

    Args:
        blob: Archive bytes, or the path of an archive file.
        dest: Staging directory to extract into.

    Returns:
        *dest*.

    Raises:
        ArchiveCorrupt: If the container cannot be parsed or read, uses an
            unsupported method or encryption, or has entries whose paths
            collide.
    """
    source = io.BytesIO(blob) if isinstance(blob, bytes) else blob
    dest.mkdir(parents=True, exist_ok=True)
    try:
        with zipfile.ZipFile(source) as zf:
            for info in zf.infolist():
                parts = normalize_entry_name(info.filename)
                if not parts:
                    continue
                out_path = dest.joinpath(*parts)
                if info.is_dir():
                    out_path.mkdir(parents=True, exist_ok=True)
                    continue
                out_path.parent.mkdir(parents=True, exist_ok=True)
                out_path.write_bytes(zf.read(info))
    except (zipfile.BadZipFile, zlib.error, EOFError) as exc:
        raise ArchiveCorrupt(f"Cannot read backup archive: {exc}") from exc
    except (NotImplementedError, RuntimeError) as exc:
        # Unsupported compression method or encrypted entry
        raise ArchiveCorrupt(f"Unsupported backup archive: {exc}") from exc
    except (FileExistsError, NotADirectoryError, IsADirectoryError) as exc:
        # A file entry and a directory entry share a path
        raise ArchiveCorrupt(
            f"Conflicting entries in backup archive: {exc}"
        ) from exc
    return dest
