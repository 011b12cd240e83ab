"""Tests for archive packing and hardened unpacking."""

import io
import zipfile

import pytest

from kelivo_sync.backup.archive import (
    iter_tree,
    normalize_entry_name,
    pack,
    unpack,
)
from kelivo_sync.core.errors import ArchiveCorrupt


def _names(blob: bytes) -> list[str]:
    with zipfile.ZipFile(io.BytesIO(blob)) as zf:
        return sorted(zf.namelist())


class TestNormalizeEntryName:
    @pytest.mark.parametrize(
        "name, expected",
        [
            ("upload/a.txt", ["upload", "a.txt"]),
            ("upload\\sub\\a.txt", ["upload", "sub", "a.txt"]),
            ("../../etc/passwd", ["etc", "passwd"]),
            ("/abs//./x", ["abs", "x"]),
            ("..", []),
        ],
    )
    def test_segments(self, name, expected):
        assert normalize_entry_name(name) == expected


class TestPack:
    def test_blobs_and_trees(self, tmp_path):
        tree = tmp_path / "upload"
        (tree / "nested").mkdir(parents=True)
        (tree / "a.txt").write_bytes(b"a")
        (tree / "nested" / "b.txt").write_bytes(b"b")
        (tree / "empty").mkdir()

        blob = pack([("settings.json", b"{}"), ("upload", tree)])

        assert _names(blob) == [
            "settings.json",
            "upload/a.txt",
            "upload/empty/",
            "upload/nested/b.txt",
        ]

    def test_single_file_path(self, tmp_path):
        source = tmp_path / "img.png"
        source.write_bytes(b"\x89PNG")
        blob = pack([("images/img.png", source)])
        with zipfile.ZipFile(io.BytesIO(blob)) as zf:
            assert zf.read("images/img.png") == b"\x89PNG"

    def test_missing_tree_is_skipped(self, tmp_path):
        blob = pack([("settings.json", b"{}"), ("avatars", tmp_path / "nope")])
        assert _names(blob) == ["settings.json"]


class TestUnpack:
    def test_round_trip_tree(self, tmp_path):
        tree = tmp_path / "src"
        (tree / "d").mkdir(parents=True)
        (tree / "d" / "f.bin").write_bytes(b"\x00\x01")

        dest = unpack(pack([("upload", tree)]), tmp_path / "staging")

        assert (dest / "upload" / "d" / "f.bin").read_bytes() == b"\x00\x01"

    def test_traversal_entries_stay_inside_staging(self, tmp_path):
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w") as zf:
            zf.writestr("../../escape.txt", b"x")
            zf.writestr("upload/../../other.txt", b"y")
        staging = tmp_path / "staging"

        unpack(buffer.getvalue(), staging)

        assert not (tmp_path / "escape.txt").exists()
        assert (staging / "escape.txt").read_bytes() == b"x"
        assert (staging / "upload" / "other.txt").read_bytes() == b"y"

    def test_directory_entries_create_directories(self, tmp_path):
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w") as zf:
            zf.writestr("images/", b"")
        staging = unpack(buffer.getvalue(), tmp_path / "staging")
        assert (staging / "images").is_dir()

    def test_unpack_from_path(self, tmp_path):
        archive = tmp_path / "a.zip"
        archive.write_bytes(pack([("settings.json", b"{}")]))
        staging = unpack(archive, tmp_path / "staging")
        assert (staging / "settings.json").read_bytes() == b"{}"

    def test_garbage_raises_archive_corrupt(self, tmp_path):
        with pytest.raises(ArchiveCorrupt):
            unpack(b"definitely not a zip", tmp_path / "staging")

    def test_file_and_directory_collision(self, tmp_path):
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w") as zf:
            zf.writestr("upload", b"x")
            zf.writestr("upload/a.txt", b"y")

        with pytest.raises(ArchiveCorrupt, match="Conflicting entries"):
            unpack(buffer.getvalue(), tmp_path / "staging")

    def test_unsupported_compression_method(self, tmp_path):
        blob = bytearray(pack([("settings.json", b"{}")]))
        # Compression method lives 10 bytes into the central directory record
        central = blob.index(b"PK\x01\x02")
        blob[central + 10:central + 12] = (99).to_bytes(2, "little")

        with pytest.raises(ArchiveCorrupt, match="Unsupported"):
            unpack(bytes(blob), tmp_path / "staging")


class TestIterTree:
    def test_missing_root(self, tmp_path):
        assert iter_tree(tmp_path / "missing") == []

    def test_posix_relative_paths(self, tmp_path):
        (tmp_path / "x" / "y").mkdir(parents=True)
        (tmp_path / "x" / "y" / "z.txt").write_text("z")
        assert [rel for rel, _ in iter_tree(tmp_path)] == ["x/y/z.txt"]
