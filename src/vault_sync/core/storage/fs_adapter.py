"""Path-addressed file operations over a directory handle.

Every path is relative to the handle's root. Both ``/`` and ``\\`` separate
segments; empty and ``.`` segments are ignored, dotfiles such as ``.git`` are
kept. Lookups of missing entries raise
:class:`~vault_sync.errors.EntryNotFoundError` so callers can treat
"doesn't exist yet" as an ordinary branch.
"""

import re
import time
from dataclasses import dataclass
from typing import Literal, overload

from loguru import logger

from vault_sync.errors import EntryNotFoundError, PermissionDeniedError
from vault_sync.protocols import DirectoryHandle, FileHandle

_SEPARATORS = re.compile(r"[/\\]")


def split_path(path: str) -> list[str]:
    return [part for part in _SEPARATORS.split(path or "") if part not in ("", ".")]


def join_path(*parts: str) -> str:
    return "/".join(p for part in parts for p in split_path(part))


@dataclass(frozen=True)
class StatResult:
    type: Literal["file", "dir"]
    mode: int
    size: int
    mtime_ms: int

    def is_file(self) -> bool:
        return self.type == "file"

    def is_directory(self) -> bool:
        return self.type == "dir"

    def is_symbolic_link(self) -> bool:
        return False


def _dir_stat() -> StatResult:
    return StatResult(type="dir", mode=0o755, size=0, mtime_ms=int(time.time() * 1000))


class StorageAdapter:
    """File operations for one vault, addressed by relative path."""

    def __init__(self, root: DirectoryHandle) -> None:
        self.root = root

    # --- handle resolution ---

    def _directory(self, path: str, *, create: bool = False) -> DirectoryHandle:
        current = self.root
        for part in split_path(path):
            try:
                current = current.get_directory_handle(part, create=create)
            except (FileNotFoundError, NotADirectoryError) as e:
                raise EntryNotFoundError(path) from e
            except PermissionError as e:
                raise PermissionDeniedError(f"EPERM: permission denied, {path!r}") from e
        return current

    def _parent_and_name(self, path: str, *, create: bool = False) -> tuple[DirectoryHandle, str]:
        parts = split_path(path)
        if not parts:
            msg = f"EISDIR: illegal operation on a directory, {path!r}"
            raise IsADirectoryError(msg)
        name = parts.pop()
        return self._directory("/".join(parts), create=create), name

    def _file(self, path: str) -> FileHandle:
        parent, name = self._parent_and_name(path)
        try:
            return parent.get_file_handle(name)
        except (FileNotFoundError, IsADirectoryError) as e:
            raise EntryNotFoundError(path) from e

    # --- operations ---

    @overload
    def read_file(self, path: str, encoding: None = None) -> bytes: ...

    @overload
    def read_file(self, path: str, encoding: str) -> str: ...

    def read_file(self, path: str, encoding: str | None = None) -> bytes | str:
        data = self._file(path).read_bytes()
        return data.decode(encoding) if encoding else data

    def write_file(self, path: str, data: bytes | str) -> None:
        """Write a file, creating missing parent directories."""
        parent, name = self._parent_and_name(path, create=True)
        if isinstance(data, str):
            data = data.encode("utf-8")
        try:
            handle = parent.get_file_handle(name, create=True)
        except PermissionError as e:
            raise PermissionDeniedError(f"EPERM: permission denied, {path!r}") from e
        handle.write_bytes(data)

    def unlink(self, path: str) -> None:
        parent, name = self._parent_and_name(path)
        try:
            parent.remove_entry(name)
        except FileNotFoundError as e:
            raise EntryNotFoundError(path) from e

    def readdir(self, path: str = "") -> list[str]:
        return [name for name, _ in self._directory(path).entries()]

    def mkdir(self, path: str, *, recursive: bool = True) -> None:
        """Create a directory. Existing directories are left alone."""
        if recursive:
            self._directory(path, create=True)
            return
        parent, name = self._parent_and_name(path)
        parent.get_directory_handle(name, create=True)

    def rmdir(self, path: str, *, recursive: bool = False) -> None:
        parent, name = self._parent_and_name(path)
        try:
            parent.remove_entry(name, recursive=recursive)
        except FileNotFoundError as e:
            raise EntryNotFoundError(path) from e

    def lstat(self, path: str) -> StatResult:
        parts = split_path(path)
        if not parts:
            return _dir_stat()
        parent, name = self._parent_and_name(path)
        try:
            info = parent.get_file_handle(name).info()
        except IsADirectoryError:
            return _dir_stat()
        except FileNotFoundError as e:
            raise EntryNotFoundError(path) from e
        return StatResult(type="file", mode=0o644, size=info.size, mtime_ms=info.last_modified)

    def stat(self, path: str) -> StatResult:
        return self.lstat(path)

    def exists(self, path: str) -> bool:
        try:
            self.lstat(path)
        except EntryNotFoundError:
            return False
        return True

    def rename(self, old_path: str, new_path: str) -> None:
        """Move a file by copying it and deleting the original.

        A failure after the write leaves both names present.
        """
        data = self.read_file(old_path)
        self.write_file(new_path, data)
        self.unlink(old_path)

    def readlink(self, path: str) -> str:
        raise EntryNotFoundError(path)

    def symlink(self, target: str, path: str) -> None:
        msg = f"EPERM: symbolic links not supported, {path!r}"
        raise PermissionDeniedError(msg)

    def chmod(self, path: str, mode: int) -> None:
        pass

    def walk_files(self, path: str = "") -> list[str]:
        """Return every file below ``path`` as a slash-joined relative path."""
        found: list[str] = []
        base = join_path(path)
        for name, child in self._directory(path).entries():
            child_path = f"{base}/{name}" if base else name
            if child.kind == "directory":
                found.extend(self.walk_files(child_path))
            else:
                found.append(child_path)
        return found


class AdapterCache:
    """One adapter per vault, reused until the vault's git state is reset."""

    def __init__(self) -> None:
        self._adapters: dict[str, StorageAdapter] = {}

    def get(self, vault_id: str, handle: DirectoryHandle) -> StorageAdapter:
        adapter = self._adapters.get(vault_id)
        if adapter is None or adapter.root is not handle:
            adapter = StorageAdapter(handle)
            self._adapters[vault_id] = adapter
        return adapter

    def invalidate(self, vault_id: str) -> None:
        if self._adapters.pop(vault_id, None) is not None:
            logger.debug("Dropped cached adapter for {}", vault_id)

    def __contains__(self, vault_id: str) -> bool:
        return vault_id in self._adapters

    def clear(self) -> None:
        self._adapters.clear()
