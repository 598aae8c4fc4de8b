"""
Unit tests for the sandboxed file system.

Tests cover:
- Path normalization
- MemoryFileSystem and LocalFileSystem backends
- ScopedFileSystem access enforcement and readdir
"""

from pathlib import Path

import pytest

from toolpipe.sandbox import (
    FileSystem,
    LocalFileSystem,
    MemoryFileSystem,
    ScopedFileSystem,
    normalize_path,
)
from toolpipe.schema import FileAccess


class TestNormalizePath:
    """Tests for normalize_path."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("a/b/c", "a/b/c"),
            ("/a/b", "a/b"),
            ("a//b/./c", "a/b/c"),
            ("a/../b", "b"),
            ("../../etc/passwd", "etc/passwd"),
            ("a\\b", "a/b"),
            ("", ""),
        ],
    )
    def test_normalize(self, raw: str, expected: str) -> None:
        """Paths are normalized and never climb above the root."""
        assert normalize_path(raw) == expected


class TestMemoryFileSystem:
    """Tests for the in-memory backend."""

    def test_read_write(self) -> None:
        """Written bytes are read back."""
        fs = MemoryFileSystem()
        fs.write_file("/dir/a.bin", b"\x00\xff")
        assert fs.read_file("dir/a.bin") == b"\x00\xff"

    def test_missing_file(self) -> None:
        """Missing files raise FileNotFoundError."""
        with pytest.raises(FileNotFoundError, match="File not found"):
            MemoryFileSystem().read_file("nope.txt")

    def test_satisfies_protocol(self) -> None:
        """The backend satisfies the FileSystem protocol."""
        assert isinstance(MemoryFileSystem(), FileSystem)


class TestLocalFileSystem:
    """Tests for the directory-rooted backend."""

    def test_read_write(self, temp_dir: Path) -> None:
        """Files are written under the root."""
        fs = LocalFileSystem(temp_dir)
        fs.write_file("sub/out.txt", "hello")
        assert (temp_dir / "sub" / "out.txt").read_text() == "hello"
        assert fs.read_file("sub/out.txt") == b"hello"

    def test_list_files(self, temp_dir: Path) -> None:
        """Files are listed with posix paths relative to the root."""
        (temp_dir / "a").mkdir()
        (temp_dir / "a" / "b.txt").write_text("x")
        entries = LocalFileSystem(temp_dir).list_files()
        assert [e.path for e in entries] == ["a/b.txt"]

    def test_directory_is_not_a_file(self, temp_dir: Path) -> None:
        """Reading a directory fails."""
        (temp_dir / "d").mkdir()
        with pytest.raises(IsADirectoryError):
            LocalFileSystem(temp_dir).read_file("d")


class TestScopedFileSystem:
    """Tests for access enforcement."""

    def test_none_blocks_reads(self, memory_fs: MemoryFileSystem) -> None:
        """fileAccess none blocks reads."""
        scoped = ScopedFileSystem(memory_fs, FileAccess.NONE)
        with pytest.raises(PermissionError):
            scoped.read_file("fruits.txt")

    def test_read_blocks_writes(self, memory_fs: MemoryFileSystem) -> None:
        """fileAccess read blocks writes."""
        scoped = ScopedFileSystem(memory_fs, FileAccess.READ)
        assert scoped.read_text("fruits.txt").startswith("banana")
        with pytest.raises(PermissionError):
            scoped.write_file("x.txt", "data")

    def test_write_blocks_reads(self, memory_fs: MemoryFileSystem) -> None:
        """fileAccess write blocks reads."""
        scoped = ScopedFileSystem(memory_fs, FileAccess.WRITE)
        scoped.write_file("x.txt", "data")
        with pytest.raises(PermissionError):
            scoped.read_file("x.txt")

    def test_read_text_lossy(self) -> None:
        """read_text replaces invalid UTF-8."""
        scoped = ScopedFileSystem(MemoryFileSystem({"b.bin": b"a\xffb"}), FileAccess.READ)
        assert scoped.read_text("b.bin") == "a�b"

    def test_readdir(self, memory_fs: MemoryFileSystem) -> None:
        """readdir lists direct children, directories once."""
        scoped = ScopedFileSystem(memory_fs, FileAccess.READ)
        names = [(e.name, e.is_dir) for e in scoped.readdir("/")]
        assert names == [("fruits.txt", False), ("notes", True), ("numbers.txt", False)]
        assert [e.name for e in scoped.readdir("notes")] == ["todo.md"]

    def test_exists(self, memory_fs: MemoryFileSystem) -> None:
        """exists normalizes the path."""
        scoped = ScopedFileSystem(memory_fs, FileAccess.READWRITE)
        assert scoped.exists("/notes/./todo.md")
        assert not scoped.exists("missing.txt")
