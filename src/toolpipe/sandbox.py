"""
Sandboxed file system for tools.

Tools never open host paths directly. They receive a ScopedFileSystem that
wraps a backend and enforces the manifest's ``fileAccess`` setting.

Security Note:
    Every path is normalized before it reaches a backend: leading slashes,
    empty segments and ``.`` are dropped and ``..`` can never climb above the
    root. LocalFileSystem additionally resolves symlinks and refuses any
    target outside its root directory.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, runtime_checkable

from toolpipe.schema import FileAccess

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FileEntry:
    """A file visible through a file system backend."""

    path: str
    size: int = 0
    is_dir: bool = False

    @property
    def name(self) -> str:
        return self.path.rsplit("/", 1)[-1]


def normalize_path(path: str) -> str:
    """
    Normalize a sandbox path.

    Examples:
        >>> normalize_path("/a/./b//c")
        'a/b/c'
        >>> normalize_path("../../etc/passwd")
        'etc/passwd'
    """
    parts: list[str] = []
    for segment in path.replace("\\", "/").split("/"):
        if segment in ("", "."):
            continue
        if segment == "..":
            if parts:
                parts.pop()
            continue
        parts.append(segment)
    return "/".join(parts)


@runtime_checkable
class FileSystem(Protocol):
    """Backend interface for sandboxed file access."""

    def read_file(self, path: str) -> bytes: ...

    def write_file(self, path: str, data: bytes | str) -> None: ...

    def list_files(self) -> list[FileEntry]: ...


class MemoryFileSystem:
    """Dict-backed file system, keyed by normalized path."""

    def __init__(self, files: dict[str, bytes | str] | None = None) -> None:
        self._files: dict[str, bytes] = {}
        for path, data in (files or {}).items():
            self.write_file(path, data)

    def read_file(self, path: str) -> bytes:
        key = normalize_path(path)
        try:
            return self._files[key]
        except KeyError:
            raise FileNotFoundError(f"File not found: {path}") from None

    def write_file(self, path: str, data: bytes | str) -> None:
        key = normalize_path(path)
        if not key:
            raise IsADirectoryError(f"Not a file: {path}")
        self._files[key] = data.encode("utf-8") if isinstance(data, str) else bytes(data)

    def list_files(self) -> list[FileEntry]:
        return [FileEntry(path=p, size=len(d)) for p, d in sorted(self._files.items())]

    def __contains__(self, path: str) -> bool:
        return normalize_path(path) in self._files

    def __len__(self) -> int:
        return len(self._files)


class LocalFileSystem:
    """
    File system rooted at a host directory.

    Args:
        root: Directory that acts as the sandbox root
    """

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root).resolve()

    def _resolve(self, path: str) -> Path:
        target = (self.root / normalize_path(path)).resolve()
        if not target.is_relative_to(self.root):
            logger.warning("Blocked path escaping sandbox root: %s", path)
            raise PermissionError(f"Path escapes sandbox root: {path}")
        return target

    def read_file(self, path: str) -> bytes:
        target = self._resolve(path)
        if not target.exists():
            raise FileNotFoundError(f"File not found: {path}")
        if not target.is_file():
            raise IsADirectoryError(f"Not a file: {path}")
        return target.read_bytes()

    def write_file(self, path: str, data: bytes | str) -> None:
        target = self._resolve(path)
        if target == self.root:
            raise IsADirectoryError(f"Not a file: {path}")
        target.parent.mkdir(parents=True, exist_ok=True)
        payload = data.encode("utf-8") if isinstance(data, str) else bytes(data)
        target.write_bytes(payload)

    def list_files(self) -> list[FileEntry]:
        entries = []
        for item in sorted(self.root.rglob("*")):
            if item.is_file():
                rel = item.relative_to(self.root).as_posix()
                entries.append(FileEntry(path=rel, size=item.stat().st_size))
        return entries

    def __repr__(self) -> str:
        return f"LocalFileSystem(root={str(self.root)!r})"


class ScopedFileSystem:
    """
    A backend restricted to the access a tool declared.

    Args:
        backend: The underlying file system
        access: The tool's declared file access
    """

    def __init__(self, backend: FileSystem, access: FileAccess) -> None:
        self.backend = backend
        self.access = access

    def _require_read(self, path: str) -> None:
        if not self.access.can_read:
            raise PermissionError(f"Read access not granted: {path}")

    def read_file(self, path: str) -> bytes:
        self._require_read(path)
        return self.backend.read_file(normalize_path(path))

    def read_text(self, path: str) -> str:
        """Read a file and decode it as UTF-8, replacing invalid sequences."""
        return self.read_file(path).decode("utf-8", errors="replace")

    def write_file(self, path: str, data: bytes | str) -> None:
        if not self.access.can_write:
            raise PermissionError(f"Write access not granted: {path}")
        self.backend.write_file(normalize_path(path), data)

    def exists(self, path: str) -> bool:
        self._require_read(path)
        key = normalize_path(path)
        return any(entry.path == key for entry in self.backend.list_files())

    def list_files(self) -> list[FileEntry]:
        self._require_read("/")
        return self.backend.list_files()

    def readdir(self, path: str = "") -> list[FileEntry]:
        """
        List the direct children of a directory.

        Subdirectories are reported once, as entries with ``is_dir=True``.
        """
        self._require_read(path or "/")
        prefix = normalize_path(path)
        prefix = f"{prefix}/" if prefix else ""
        children: dict[str, FileEntry] = {}
        for entry in self.backend.list_files():
            if not entry.path.startswith(prefix):
                continue
            rest = entry.path[len(prefix) :]
            head, sep, _ = rest.partition("/")
            if sep:
                children.setdefault(head, FileEntry(path=prefix + head, is_dir=True))
            else:
                children[head] = entry
        return [children[name] for name in sorted(children)]
